"""
Reminder Engine — Instance state machine.

    pending ──complete──▶ completed
    pending ──snooze────▶ snoozed ──unsnooze──▶ pending
    snoozed ──complete──▶ completed
    pending|snoozed ──skip──▶ skipped

completed and skipped are terminal. Each action is one conditional update
in the store; when the instance is missing, owned by someone else or in an
incompatible status the action returns None instead of raising, so a
double-tapped "done" is harmless. explain_miss tells the caller which.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from reminder_engine.config import settings
from reminder_engine.core.errors import ConflictError, NotFoundError, ValidationError
from reminder_engine.data.models import Instance, InstanceStatus
from reminder_engine.ports.instance_port import InstancePort

logger = logging.getLogger(__name__)

MAX_SNOOZE_DAYS = 30


class TransitionAction(Enum):
    COMPLETE = "complete"
    SNOOZE = "snooze"
    UNSNOOZE = "unsnooze"
    SKIP = "skip"


def allowed_sources(action: TransitionAction) -> frozenset[InstanceStatus]:
    """Statuses an action may start from."""
    match action:
        case TransitionAction.COMPLETE | TransitionAction.SKIP:
            return frozenset({InstanceStatus.PENDING, InstanceStatus.SNOOZED})
        case TransitionAction.SNOOZE:
            return frozenset({InstanceStatus.PENDING})
        case TransitionAction.UNSNOOZE:
            return frozenset({InstanceStatus.SNOOZED})
    raise ValueError(f"Unhandled transition action: {action!r}")


def target_status(action: TransitionAction) -> InstanceStatus:
    match action:
        case TransitionAction.COMPLETE:
            return InstanceStatus.COMPLETED
        case TransitionAction.SNOOZE:
            return InstanceStatus.SNOOZED
        case TransitionAction.UNSNOOZE:
            return InstanceStatus.PENDING
        case TransitionAction.SKIP:
            return InstanceStatus.SKIPPED
    raise ValueError(f"Unhandled transition action: {action!r}")


class InstanceStateMachine:
    """Guarded status transitions on materialized instances."""

    def __init__(
        self,
        instances: InstancePort,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._instances = instances
        self._clock = clock

    def complete(self, instance_id: int, owner_id: int) -> Instance | None:
        return self._apply(
            TransitionAction.COMPLETE, instance_id, owner_id, completed_at=self._clock(),
        )

    def snooze(
        self,
        instance_id: int,
        owner_id: int,
        until: datetime | None = None,
        days: int | None = None,
    ) -> Instance | None:
        """Hide a pending instance until `until`, or for `days` days.

        Raises:
            ValidationError: `until` is not in the future, mixes naive and
                aware datetimes with the clock, or `days` is outside 1..30.
        """
        now = self._clock()
        if until is not None:
            if (until.tzinfo is None) != (now.tzinfo is None):
                raise ValidationError(
                    "Snooze time must match the clock: both naive or both timezone-aware"
                )
            if until <= now:
                raise ValidationError("Snooze time must be in the future")
            snoozed_until = until
        else:
            days = settings.DEFAULT_SNOOZE_DAYS if days is None else days
            if not 1 <= days <= MAX_SNOOZE_DAYS:
                raise ValidationError(
                    f"Snooze days must be between 1 and {MAX_SNOOZE_DAYS}, got {days}"
                )
            snoozed_until = now + timedelta(days=days)
        return self._apply(
            TransitionAction.SNOOZE, instance_id, owner_id, snoozed_until=snoozed_until,
        )

    def unsnooze(self, instance_id: int, owner_id: int) -> Instance | None:
        return self._apply(TransitionAction.UNSNOOZE, instance_id, owner_id)

    def skip(self, instance_id: int, owner_id: int) -> Instance | None:
        return self._apply(
            TransitionAction.SKIP, instance_id, owner_id, skipped_at=self._clock(),
        )

    def explain_miss(
        self, instance_id: int, owner_id: int,
    ) -> NotFoundError | ConflictError:
        """Describe why a transition returned None. Returns, never raises."""
        instance = self._instances.get_instance(instance_id, owner_id)
        if instance is None:
            return NotFoundError(f"Reminder instance {instance_id} not found")
        return ConflictError(
            f"Reminder instance {instance_id} is already {instance.status.value}",
            current_status=instance.status.value,
        )

    def _apply(
        self,
        action: TransitionAction,
        instance_id: int,
        owner_id: int,
        completed_at: datetime | None = None,
        skipped_at: datetime | None = None,
        snoozed_until: datetime | None = None,
    ) -> Instance | None:
        instance = self._instances.transition(
            instance_id,
            owner_id,
            from_statuses=allowed_sources(action),
            to_status=target_status(action),
            completed_at=completed_at,
            skipped_at=skipped_at,
            snoozed_until=snoozed_until,
        )
        if instance is None:
            logger.warning(
                "%s missed for instance #%d (owner %d)", action.value, instance_id, owner_id,
            )
            return None
        logger.info(
            "Instance #%d '%s' -> %s",
            instance.id, instance.display_title, instance.status.value,
        )
        return instance
