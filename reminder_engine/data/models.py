"""
Reminder Engine — Data Models.

Rules are what the user defines ("call Dana every 30 days", "Amit's birthday
on 3/14"). Instances are what the engine materializes from them: one row per
rule per notify date, carrying just enough denormalized display data to render
the Today queue without joins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class ReminderType(Enum):
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"
    FOLLOW_UP = "follow_up"
    CUSTOM = "custom"


class RecurrenceKind(Enum):
    FIXED_DATE = "fixed-date"
    INTERVAL = "interval"
    HYBRID = "hybrid"


class AnchorMode(Enum):
    LAST_ACTIVITY = "last-activity"
    RULE_CREATION = "rule-creation"
    EXPLICIT_DATE = "explicit-date"


class Priority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class InstanceStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SNOOZED = "snoozed"
    SKIPPED = "skipped"


class PlanTier(Enum):
    FREE = "free"
    PRO = "pro"


DEFAULT_NOTIFY_OFFSETS = [0, 7]  # day-of and one week before


@dataclass
class MonthDay:
    """A yearless calendar date. `year` is only kept for age display."""

    month: int
    day: int
    year: int | None = None


@dataclass
class Owner:
    """An account that owns rules, targets and instances."""

    id: int
    display_name: str
    tier: PlanTier = PlanTier.FREE
    created_at: str = ""


@dataclass
class Contact:
    """A person reminders are about.

    `last_contacted_at` is the anchor for follow-up rules in
    last-activity mode; it only ever moves forward.
    """

    id: int
    owner_id: int
    name: str
    last_contacted_at: datetime | None = None
    created_at: str = ""


@dataclass
class Rule:
    """A recurrence definition owned by one account."""

    id: int
    owner_id: int
    type: ReminderType
    created_at: datetime
    target_id: int | None = None
    priority: Priority = Priority.MEDIUM
    fixed_date: MonthDay | None = None
    interval_days: int | None = None
    anchor_mode: AnchorMode = AnchorMode.LAST_ACTIVITY
    explicit_anchor_date: date | None = None
    notify_offsets: list[int] = field(default_factory=lambda: list(DEFAULT_NOTIFY_OFFSETS))
    active: bool = True
    title: str | None = None
    notes: str | None = None

    @property
    def kind(self) -> RecurrenceKind:
        match self.type:
            case ReminderType.BIRTHDAY | ReminderType.ANNIVERSARY:
                return RecurrenceKind.FIXED_DATE
            case ReminderType.FOLLOW_UP:
                return RecurrenceKind.INTERVAL
            case ReminderType.CUSTOM:
                return RecurrenceKind.HYBRID
        raise ValueError(f"Unhandled reminder type: {self.type!r}")

    @property
    def is_interval_driven(self) -> bool:
        """True when due dates come from interval stepping, not a fixed date."""
        if self.kind is RecurrenceKind.INTERVAL:
            return True
        if self.kind is RecurrenceKind.HYBRID:
            return self.fixed_date is None and self.interval_days is not None
        return False


@dataclass
class InstanceDraft:
    """Insert-only payload for one staged upsert.

    Everything here is written only when the instance key is new; an
    existing instance only gets its `observed_at` bumped.
    """

    rule_id: int
    owner_id: int
    instance_key: str
    due_date: date
    type: ReminderType
    priority: Priority
    target_id: int | None = None
    target_name: str | None = None
    title: str | None = None


@dataclass
class Instance:
    """One materialized occurrence of a rule."""

    id: int
    rule_id: int
    owner_id: int
    instance_key: str
    due_date: date
    type: ReminderType
    priority: Priority
    status: InstanceStatus = InstanceStatus.PENDING
    target_id: int | None = None
    target_name: str | None = None
    title: str | None = None
    completed_at: datetime | None = None
    skipped_at: datetime | None = None
    snoozed_until: datetime | None = None
    created_at: datetime | None = None
    observed_at: datetime | None = None

    @property
    def display_title(self) -> str:
        return self.title or self.target_name or self.type.value
