"""Tests for reminder_engine.core.materializer."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from conftest import NOW, TODAY
from reminder_engine.core.errors import StorageError
from reminder_engine.core.materializer import Materializer
from reminder_engine.data.models import (
    AnchorMode,
    InstanceStatus,
    MonthDay,
    PlanTier,
    ReminderType,
    Rule,
)
from reminder_engine.ports.instance_port import BulkUpsertResult, WriteFailure

ACTIVE = frozenset({InstanceStatus.PENDING, InstanceStatus.SNOOZED})


@pytest.fixture
def dana(contact_db, owner):
    return contact_db.add_contact(owner.id, "Dana", last_contacted_at=NOW - timedelta(days=45))


def _add_follow_up(rule_db, owner, target, **kw):
    fields = dict(
        id=0, owner_id=owner.id, type=ReminderType.FOLLOW_UP, created_at=NOW,
        target_id=target.id, interval_days=30, notify_offsets=[0],
    )
    fields.update(kw)
    return rule_db.add_rule(Rule(**fields))


def _add_birthday(rule_db, owner, target, month_day, **kw):
    fields = dict(
        id=0, owner_id=owner.id, type=ReminderType.BIRTHDAY, created_at=NOW,
        target_id=target.id, fixed_date=month_day, notify_offsets=[0, 7],
    )
    fields.update(kw)
    return rule_db.add_rule(Rule(**fields))


# ---------------------------------------------------------------------------
# materialize_for_owner
# ---------------------------------------------------------------------------


class TestMaterializeForOwner:
    def test_follow_up_anchored_on_last_contact(
        self, materializer, rule_db, instance_db, owner, dana,
    ):
        rule = _add_follow_up(rule_db, owner, dana)
        result = materializer.materialize_for_owner(owner.id, PlanTier.FREE)

        assert result.rules_processed == 1
        assert result.instances_created == 1
        assert result.errors == []
        [instance] = instance_db.list_for_rule(rule.id)
        assert instance.due_date == TODAY + timedelta(days=15)
        assert instance.instance_key == f"{rule.id}:{(TODAY + timedelta(days=15)).isoformat()}"
        assert instance.target_name == "Dana"
        assert instance.status is InstanceStatus.PENDING

    def test_pro_window_is_longer(self, materializer, rule_db, instance_db, owner, dana):
        rule = _add_follow_up(rule_db, owner, dana)
        materializer.materialize_for_owner(owner.id, PlanTier.PRO)
        dues = [i.due_date for i in instance_db.list_for_rule(rule.id)]
        assert dues == [TODAY + timedelta(days=d) for d in (15, 45, 75)]

    def test_idempotent(self, materializer, rule_db, instance_db, owner, dana):
        rule = _add_follow_up(rule_db, owner, dana)
        first = materializer.materialize_for_owner(owner.id, PlanTier.PRO)
        second = materializer.materialize_for_owner(owner.id, PlanTier.PRO)

        assert first.instances_created == 3
        assert second.instances_created == 0
        assert second.instances_updated == 3
        assert len(instance_db.list_for_rule(rule.id)) == 3

    def test_rerun_never_resets_status(self, materializer, rule_db, instance_db, owner, dana):
        rule = _add_follow_up(rule_db, owner, dana)
        materializer.materialize_for_owner(owner.id, PlanTier.FREE)
        [instance] = instance_db.list_for_rule(rule.id)
        instance_db.transition(instance.id, owner.id, ACTIVE, InstanceStatus.COMPLETED, completed_at=NOW)

        materializer.materialize_for_owner(owner.id, PlanTier.FREE)

        [instance] = instance_db.list_for_rule(rule.id)
        assert instance.status is InstanceStatus.COMPLETED

    def test_leap_day_birthday(self, materializer, clock, rule_db, instance_db, owner, dana):
        clock.now = datetime(2026, 2, 1, 8, 0)
        rule = _add_birthday(rule_db, owner, dana, MonthDay(2, 29, 1992))
        materializer.materialize_for_owner(owner.id, PlanTier.FREE)
        dues = [i.due_date for i in instance_db.list_for_rule(rule.id)]
        assert dues == [date(2026, 2, 21), date(2026, 2, 28)]

    def test_missing_target_is_a_rule_error(
        self, materializer, rule_db, instance_db, owner, dana,
    ):
        good = _add_follow_up(rule_db, owner, dana)
        bad = rule_db.add_rule(Rule(
            id=0, owner_id=owner.id, type=ReminderType.FOLLOW_UP, created_at=NOW,
            target_id=999, interval_days=30,
        ))
        result = materializer.materialize_for_owner(owner.id, PlanTier.FREE)

        assert result.rules_processed == 2
        assert [e.rule_id for e in result.errors] == [bad.id]
        assert "not found" in result.errors[0].error
        assert len(instance_db.list_for_rule(good.id)) == 1

    def test_bad_payload_is_a_rule_error(self, materializer, rule_db, owner, dana):
        bad = _add_birthday(rule_db, owner, dana, MonthDay(2, 30))
        result = materializer.materialize_for_owner(owner.id, PlanTier.FREE)
        assert [e.rule_id for e in result.errors] == [bad.id]

    def test_custom_rule_without_target(self, materializer, rule_db, instance_db, owner):
        rule = rule_db.add_rule(Rule(
            id=0, owner_id=owner.id, type=ReminderType.CUSTOM, created_at=NOW,
            interval_days=7, anchor_mode=AnchorMode.RULE_CREATION, notify_offsets=[0],
            title="Water plants",
        ))
        materializer.materialize_for_owner(owner.id, PlanTier.FREE)
        instances = instance_db.list_for_rule(rule.id)
        assert [i.due_date for i in instances] == [TODAY + timedelta(days=d) for d in (7, 14, 21, 28)]
        assert instances[0].display_title == "Water plants"

    def test_inactive_rules_skipped(self, materializer, rule_db, instance_db, owner, dana):
        rule = _add_follow_up(rule_db, owner, dana)
        rule_db.set_active(rule.id, False)
        result = materializer.materialize_for_owner(owner.id, PlanTier.FREE)
        assert result.rules_processed == 0
        assert instance_db.list_for_rule(rule.id) == []

    def test_concurrent_runs_converge(self, materializer, rule_db, instance_db, owner, dana):
        rule = _add_follow_up(rule_db, owner, dana)
        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(
                lambda _: materializer.materialize_for_owner(owner.id, PlanTier.PRO), range(4),
            ))
        assert sum(r.instances_created for r in results) == 3
        assert len(instance_db.list_for_rule(rule.id)) == 3


# ---------------------------------------------------------------------------
# materialize_for_rule / rematerialize_for_target
# ---------------------------------------------------------------------------


class TestMaterializeForRule:
    def test_single_rule(self, materializer, rule_db, owner, dana):
        rule = _add_follow_up(rule_db, owner, dana)
        result = materializer.materialize_for_rule(rule.id, PlanTier.FREE)
        assert result.owner_id == owner.id
        assert result.rules_processed == 1
        assert result.instances_created == 1

    def test_missing_rule(self, materializer):
        result = materializer.materialize_for_rule(999, PlanTier.FREE)
        assert result.rules_processed == 0
        assert result.errors[0].rule_id == 999

    def test_inactive_rule_yields_empty_result(self, materializer, rule_db, owner, dana):
        rule = _add_follow_up(rule_db, owner, dana)
        rule_db.set_active(rule.id, False)
        result = materializer.materialize_for_rule(rule.id, PlanTier.FREE)
        assert result.rules_processed == 0
        assert result.instances_created == 0
        assert result.errors == []

    def test_interval_change_retires_old_pending(
        self, materializer, rule_db, instance_db, owner, dana,
    ):
        rule = _add_follow_up(rule_db, owner, dana)
        materializer.materialize_for_rule(rule.id, PlanTier.FREE)
        rule.interval_days = 50
        rule_db.save_rule(rule)

        result = materializer.materialize_for_rule(rule.id, PlanTier.FREE)

        assert result.instances_removed == 1
        dues = [i.due_date for i in instance_db.list_for_rule(rule.id)]
        assert dues == [TODAY + timedelta(days=5)]


class TestRematerializeForTarget:
    def test_new_interaction_moves_follow_up(
        self, materializer, rule_db, contact_db, instance_db, owner, dana,
    ):
        rule = _add_follow_up(rule_db, owner, dana)
        materializer.materialize_for_owner(owner.id, PlanTier.FREE)

        contact_db.record_interaction(dana.id, NOW)
        result = materializer.rematerialize_for_target(dana.id, PlanTier.FREE)

        # Anchor moved to today, so the next follow-up is one interval out
        assert result.instances_created == 1
        assert result.instances_removed == 1
        dues = [i.due_date for i in instance_db.list_for_rule(rule.id)]
        assert dues == [TODAY + timedelta(days=30)]

    def test_only_interval_rules(self, materializer, rule_db, owner, dana):
        _add_follow_up(rule_db, owner, dana)
        _add_birthday(rule_db, owner, dana, MonthDay(3, 20))
        result = materializer.rematerialize_for_target(dana.id, PlanTier.FREE)
        assert result.rules_processed == 1

    def test_completed_instances_survive(
        self, materializer, rule_db, contact_db, instance_db, owner, dana,
    ):
        rule = _add_follow_up(rule_db, owner, dana)
        materializer.materialize_for_owner(owner.id, PlanTier.FREE)
        [instance] = instance_db.list_for_rule(rule.id)
        instance_db.transition(instance.id, owner.id, ACTIVE, InstanceStatus.COMPLETED, completed_at=NOW)

        contact_db.record_interaction(dana.id, NOW)
        result = materializer.rematerialize_for_target(dana.id, PlanTier.FREE)

        assert result.instances_removed == 0
        statuses = {i.status for i in instance_db.list_for_rule(rule.id)}
        assert InstanceStatus.COMPLETED in statuses

    def test_missing_target(self, materializer):
        result = materializer.rematerialize_for_target(999, PlanTier.FREE)
        assert result.rules_processed == 0
        assert result.errors[0].rule_id is None


# ---------------------------------------------------------------------------
# Port-level behavior
# ---------------------------------------------------------------------------


def _mocked(rule):
    rules = MagicMock()
    rules.list_active_rules.return_value = [rule]
    targets = MagicMock()
    targets.get_targets.return_value = {}
    instances = MagicMock()
    return rules, targets, instances


class TestPortInteraction:
    RULE = Rule(
        id=3, owner_id=1, type=ReminderType.CUSTOM, created_at=NOW,
        interval_days=10, anchor_mode=AnchorMode.RULE_CREATION, notify_offsets=[0],
    )

    def test_one_bulk_call_per_run(self):
        rules, targets, instances = _mocked(self.RULE)
        instances.bulk_upsert.return_value = BulkUpsertResult(created=3)
        Materializer(rules, targets, instances, clock=lambda: NOW).materialize_for_owner(1, PlanTier.FREE)

        instances.bulk_upsert.assert_called_once()
        drafts, observed_at = instances.bulk_upsert.call_args.args
        assert observed_at == NOW
        assert [d.due_date for d in drafts] == [TODAY + timedelta(days=d) for d in (10, 20, 30)]

    def test_write_failures_become_rule_errors(self):
        rules, targets, instances = _mocked(self.RULE)
        instances.bulk_upsert.return_value = BulkUpsertResult(
            created=2, failures=[WriteFailure(3, "3:2026-03-20", "constraint failed")],
        )
        result = Materializer(rules, targets, instances, clock=lambda: NOW).materialize_for_owner(
            1, PlanTier.FREE,
        )
        assert result.instances_created == 2
        assert result.errors[0].rule_id == 3
        assert "3:2026-03-20" in result.errors[0].error

    def test_storage_error_propagates(self):
        rules, targets, instances = _mocked(self.RULE)
        instances.bulk_upsert.side_effect = StorageError("locked")
        with pytest.raises(StorageError):
            Materializer(rules, targets, instances, clock=lambda: NOW).materialize_for_owner(
                1, PlanTier.FREE,
            )

    def test_prune_cutoffs(self):
        instances = MagicMock()
        instances.prune.return_value = 4
        materializer = Materializer(MagicMock(), MagicMock(), instances, clock=lambda: NOW)

        assert materializer.prune_stale(1) == 4
        instances.prune.assert_called_once_with(
            1, NOW - timedelta(days=30), TODAY - timedelta(days=90),
        )
