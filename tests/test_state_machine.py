"""Tests for reminder_engine.core.state_machine — guarded transitions."""

from datetime import timedelta, timezone

import pytest

from conftest import NOW, TODAY
from reminder_engine.core.errors import ConflictError, NotFoundError, ValidationError
from reminder_engine.core.instance_key import instance_key
from reminder_engine.core.state_machine import (
    TransitionAction,
    allowed_sources,
    target_status,
)
from reminder_engine.data.models import (
    InstanceDraft,
    InstanceStatus,
    PlanTier,
    Priority,
    ReminderType,
)

OWNER = 1


@pytest.fixture
def pending(instance_db):
    draft = InstanceDraft(
        rule_id=1, owner_id=OWNER, instance_key=instance_key(1, TODAY),
        due_date=TODAY, type=ReminderType.BIRTHDAY, priority=Priority.HIGH,
        target_name="Dana",
    )
    instance_db.bulk_upsert([draft], NOW)
    [instance] = instance_db.list_for_rule(1)
    return instance


class TestTables:
    def test_every_action_has_sources_and_target(self):
        for action in TransitionAction:
            assert allowed_sources(action)
            assert isinstance(target_status(action), InstanceStatus)

    def test_terminal_statuses_are_never_sources(self):
        for action in TransitionAction:
            sources = allowed_sources(action)
            assert InstanceStatus.COMPLETED not in sources
            assert InstanceStatus.SKIPPED not in sources


class TestComplete:
    def test_pending_to_completed(self, state_machine, pending):
        done = state_machine.complete(pending.id, OWNER)
        assert done.status is InstanceStatus.COMPLETED
        assert done.completed_at == NOW.replace(microsecond=0)

    def test_second_complete_is_a_miss(self, state_machine, pending):
        assert state_machine.complete(pending.id, OWNER) is not None
        assert state_machine.complete(pending.id, OWNER) is None

    def test_snoozed_can_be_completed(self, state_machine, pending):
        state_machine.snooze(pending.id, OWNER, days=2)
        done = state_machine.complete(pending.id, OWNER)
        assert done.status is InstanceStatus.COMPLETED
        assert done.snoozed_until is None

    def test_other_owner_is_a_miss(self, state_machine, pending):
        assert state_machine.complete(pending.id, OWNER + 1) is None

    def test_missing_instance_is_a_miss(self, state_machine):
        assert state_machine.complete(999, OWNER) is None


class TestSnooze:
    def test_default_days(self, state_machine, pending):
        snoozed = state_machine.snooze(pending.id, OWNER)
        assert snoozed.status is InstanceStatus.SNOOZED
        assert snoozed.snoozed_until == (NOW + timedelta(days=1)).replace(microsecond=0)

    def test_until(self, state_machine, pending):
        until = NOW + timedelta(hours=3)
        snoozed = state_machine.snooze(pending.id, OWNER, until=until)
        assert snoozed.snoozed_until == until.replace(microsecond=0)

    def test_until_in_the_past_rejected(self, state_machine, pending):
        with pytest.raises(ValidationError):
            state_machine.snooze(pending.id, OWNER, until=NOW - timedelta(minutes=1))

    def test_aware_until_against_naive_clock_rejected(self, state_machine, pending):
        until = (NOW + timedelta(days=1)).replace(tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            state_machine.snooze(pending.id, OWNER, until=until)
        assert state_machine.unsnooze(pending.id, OWNER) is None

    @pytest.mark.parametrize("days", [0, 31, -1])
    def test_days_out_of_range(self, state_machine, pending, days):
        with pytest.raises(ValidationError):
            state_machine.snooze(pending.id, OWNER, days=days)

    def test_cannot_snooze_twice(self, state_machine, pending):
        state_machine.snooze(pending.id, OWNER)
        assert state_machine.snooze(pending.id, OWNER) is None

    def test_snoozed_leaves_queue(self, state_machine, scorer, pending):
        assert scorer.get_queue(OWNER, PlanTier.FREE).total == 1
        state_machine.snooze(pending.id, OWNER)
        assert scorer.get_queue(OWNER, PlanTier.FREE).total == 0


class TestUnsnooze:
    def test_snoozed_back_to_pending(self, state_machine, pending):
        state_machine.snooze(pending.id, OWNER)
        back = state_machine.unsnooze(pending.id, OWNER)
        assert back.status is InstanceStatus.PENDING
        assert back.snoozed_until is None

    def test_pending_cannot_unsnooze(self, state_machine, pending):
        assert state_machine.unsnooze(pending.id, OWNER) is None


class TestSkip:
    def test_pending_to_skipped(self, state_machine, pending):
        skipped = state_machine.skip(pending.id, OWNER)
        assert skipped.status is InstanceStatus.SKIPPED
        assert skipped.skipped_at == NOW.replace(microsecond=0)

    def test_snoozed_to_skipped(self, state_machine, pending):
        state_machine.snooze(pending.id, OWNER)
        assert state_machine.skip(pending.id, OWNER).status is InstanceStatus.SKIPPED

    def test_terminal_is_final(self, state_machine, pending):
        state_machine.skip(pending.id, OWNER)
        assert state_machine.complete(pending.id, OWNER) is None
        assert state_machine.snooze(pending.id, OWNER) is None
        assert state_machine.unsnooze(pending.id, OWNER) is None


class TestExplainMiss:
    def test_not_found(self, state_machine):
        assert isinstance(state_machine.explain_miss(999, OWNER), NotFoundError)

    def test_other_owner_looks_like_not_found(self, state_machine, pending):
        assert isinstance(state_machine.explain_miss(pending.id, OWNER + 1), NotFoundError)

    def test_conflict_names_status(self, state_machine, pending):
        state_machine.complete(pending.id, OWNER)
        miss = state_machine.explain_miss(pending.id, OWNER)
        assert isinstance(miss, ConflictError)
        assert miss.current_status == "completed"
        assert "already completed" in str(miss)
