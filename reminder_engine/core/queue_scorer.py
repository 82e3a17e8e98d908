"""
Reminder Engine — Today queue scoring.

score = type base score * priority multiplier + 5 * days overdue

Base scores: birthday 15, anniversary 12, follow_up 10, custom 8.
Multipliers: high 3, medium 2, low 1.

The ranked queue is capped per plan tier; `total` always reports the
uncapped size so the UI can say "10 of 14".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable

from reminder_engine.core.plans import limits_for
from reminder_engine.data.models import Instance, PlanTier, Priority, ReminderType
from reminder_engine.ports.instance_port import InstancePort

logger = logging.getLogger(__name__)

OVERDUE_PENALTY_PER_DAY = 5
UPCOMING_LIMIT = 50
OVERDUE_LIMIT = 100


def type_base_score(reminder_type: ReminderType) -> int:
    match reminder_type:
        case ReminderType.BIRTHDAY:
            return 15
        case ReminderType.ANNIVERSARY:
            return 12
        case ReminderType.FOLLOW_UP:
            return 10
        case ReminderType.CUSTOM:
            return 8
    raise ValueError(f"Unhandled reminder type: {reminder_type!r}")


def priority_multiplier(priority: Priority) -> int:
    match priority:
        case Priority.HIGH:
            return 3
        case Priority.MEDIUM:
            return 2
        case Priority.LOW:
            return 1
    raise ValueError(f"Unhandled priority: {priority!r}")


def days_overdue(due_date: date, today: date) -> int:
    return max(0, (today - due_date).days)


def score_instance(instance: Instance, today: date) -> int:
    base = type_base_score(instance.type) * priority_multiplier(instance.priority)
    return base + OVERDUE_PENALTY_PER_DAY * days_overdue(instance.due_date, today)


@dataclass
class ScoredInstance:
    instance: Instance
    score: int
    days_overdue: int


@dataclass
class QueueResult:
    items: list[ScoredInstance] = field(default_factory=list)
    total: int = 0
    capped: bool = False
    applied_cap: int = 0


def rank(instances: list[Instance], today: date) -> list[ScoredInstance]:
    """Score and order: score descending, then due date, then id."""
    scored = [
        ScoredInstance(
            instance=inst,
            score=score_instance(inst, today),
            days_overdue=days_overdue(inst.due_date, today),
        )
        for inst in instances
    ]
    scored.sort(key=lambda s: (-s.score, s.instance.due_date, s.instance.id))
    return scored


def cap_queue(ranked: list[ScoredInstance], cap: int) -> QueueResult:
    """Keep exactly min(total, cap) items."""
    total = len(ranked)
    return QueueResult(
        items=ranked[:cap],
        total=total,
        capped=total > cap,
        applied_cap=cap,
    )


class QueueScorer:
    """Builds the Today queue and its companion lists from the instance store."""

    def __init__(
        self,
        instances: InstancePort,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._instances = instances
        self._clock = clock

    def get_queue(
        self,
        owner_id: int,
        tier: PlanTier,
        include_overdue: bool = True,
        limit: int | None = None,
    ) -> QueueResult:
        """Return the scored, ranked and capped queue for today.

        Args:
            owner_id: Whose queue.
            tier: Plan tier, which sets the default cap.
            include_overdue: When False, only instances due exactly today.
            limit: Overrides the tier cap when given.
        """
        now = self._clock()
        today = now.date()
        cap = limit if limit is not None else limits_for(tier).queue_cap
        if cap < 0:
            raise ValueError(f"Queue limit must be non-negative, got {cap}")

        due = self._instances.list_due(owner_id, today, now, include_overdue=include_overdue)
        result = cap_queue(rank(due, today), cap)
        if result.capped:
            logger.debug(
                "Queue for owner %d capped at %d of %d", owner_id, cap, result.total,
            )
        return result

    def get_today_count(self, owner_id: int) -> int:
        """Uncapped count of today's actionable items, for a badge."""
        now = self._clock()
        return len(self._instances.list_due(owner_id, now.date(), now))

    def get_upcoming(self, owner_id: int, days: int = 7) -> list[Instance]:
        """Pending instances due after today, within `days` days."""
        today = self._clock().date()
        return self._instances.list_upcoming(
            owner_id, today, today + timedelta(days=days), limit=UPCOMING_LIMIT,
        )

    def get_overdue(self, owner_id: int) -> list[Instance]:
        """Pending, unsnoozed instances due before today, oldest first."""
        now = self._clock()
        today = now.date()
        due = self._instances.list_due(owner_id, today, now)
        return [inst for inst in due if inst.due_date < today][:OVERDUE_LIMIT]
