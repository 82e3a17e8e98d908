"""
Reminder Engine — Rule payload validation.

Incoming rule payloads (plain dicts from whichever surface created them)
are parsed into pydantic models here. Any pydantic failure leaves this
module as our ValidationError carrying the per-field details.
"""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from typing import Annotated, Any

import pydantic
from pydantic import BaseModel, Field, field_validator, model_validator

from reminder_engine.core.errors import ValidationError
from reminder_engine.core.recurrence import validate_month_day
from reminder_engine.data.models import (
    DEFAULT_NOTIFY_OFFSETS,
    AnchorMode,
    MonthDay,
    Priority,
    ReminderType,
    Rule,
)

NotifyOffset = Annotated[int, Field(ge=0, le=30)]

# Rule attributes an update may omit but never clear
_REQUIRED_ON_RULE = frozenset({"anchor_mode", "priority", "notify_offsets", "active"})


class MonthDayIn(BaseModel):
    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=31)
    year: int | None = Field(default=None, ge=1900, le=2100)

    @model_validator(mode="after")
    def check_calendar(self) -> "MonthDayIn":
        try:
            validate_month_day(MonthDay(self.month, self.day))
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
        return self

    def to_month_day(self) -> MonthDay:
        return MonthDay(month=self.month, day=self.day, year=self.year)


class RuleCreate(BaseModel):
    """A complete rule definition.

    JSON example:
    {
        "type": "follow_up",
        "target_id": 7,
        "interval_days": 30,
        "anchor_mode": "last-activity",
        "priority": "high",
        "notify_offsets": [0]
    }
    """

    type: ReminderType
    target_id: int | None = None
    fixed_date: MonthDayIn | None = None
    interval_days: int | None = Field(default=None, ge=1, le=365)
    anchor_mode: AnchorMode = AnchorMode.LAST_ACTIVITY
    explicit_anchor_date: date | None = None
    priority: Priority = Priority.MEDIUM
    notify_offsets: list[NotifyOffset] = Field(
        default_factory=lambda: list(DEFAULT_NOTIFY_OFFSETS)
    )
    title: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("notify_offsets")
    @classmethod
    def dedupe_offsets(cls, v: list[int]) -> list[int]:
        return sorted(set(v))

    @model_validator(mode="after")
    def check_type_payload(self) -> "RuleCreate":
        match self.type:
            case ReminderType.BIRTHDAY | ReminderType.ANNIVERSARY:
                if self.fixed_date is None:
                    raise ValueError(f"{self.type.value} reminders require a fixed date")
                if self.target_id is None:
                    raise ValueError(f"{self.type.value} reminders require a target")
            case ReminderType.FOLLOW_UP:
                if self.interval_days is None:
                    raise ValueError("follow_up reminders require an interval")
                if self.target_id is None:
                    raise ValueError("follow_up reminders require a target")
            case ReminderType.CUSTOM:
                if self.fixed_date is None and self.interval_days is None:
                    raise ValueError("custom reminders require a fixed date or an interval")
            case _:
                raise ValueError(f"Unhandled reminder type: {self.type!r}")

        if (
            self.interval_days is not None
            and self.anchor_mode is AnchorMode.EXPLICIT_DATE
            and self.explicit_anchor_date is None
        ):
            raise ValueError("explicit-date anchoring requires explicit_anchor_date")
        return self

    def to_rule(self, owner_id: int, created_at: datetime) -> Rule:
        """Build an unsaved Rule (id 0) owned by `owner_id`."""
        return Rule(
            id=0,
            owner_id=owner_id,
            type=self.type,
            created_at=created_at,
            target_id=self.target_id,
            priority=self.priority,
            fixed_date=self.fixed_date.to_month_day() if self.fixed_date else None,
            interval_days=self.interval_days,
            anchor_mode=self.anchor_mode,
            explicit_anchor_date=self.explicit_anchor_date,
            notify_offsets=list(self.notify_offsets),
            title=self.title,
            notes=self.notes,
        )


class RuleUpdate(BaseModel):
    """Partial edit. The rule's type and target cannot change."""

    fixed_date: MonthDayIn | None = None
    interval_days: int | None = Field(default=None, ge=1, le=365)
    anchor_mode: AnchorMode | None = None
    explicit_anchor_date: date | None = None
    priority: Priority | None = None
    notify_offsets: list[NotifyOffset] | None = None
    title: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=2000)
    active: bool | None = None


def _wrap(exc: pydantic.ValidationError, what: str) -> ValidationError:
    details = exc.errors(include_url=False)
    first = details[0]["msg"] if details else "invalid payload"
    return ValidationError(f"Invalid {what}: {first}", details=details)


def parse_rule_create(data: dict[str, Any]) -> RuleCreate:
    try:
        return RuleCreate.model_validate(data)
    except pydantic.ValidationError as exc:
        raise _wrap(exc, "rule") from exc


def parse_rule_update(data: dict[str, Any]) -> RuleUpdate:
    try:
        return RuleUpdate.model_validate(data)
    except pydantic.ValidationError as exc:
        raise _wrap(exc, "rule update") from exc


def apply_update(rule: Rule, update: RuleUpdate) -> Rule:
    """Merge the fields set in `update` onto a copy of `rule` and re-validate
    the result as a whole rule."""
    changes = update.model_dump(exclude_unset=True)
    merged = dataclasses.replace(rule)
    for name, value in changes.items():
        if value is None and name in _REQUIRED_ON_RULE:
            continue
        if name == "fixed_date" and value is not None:
            value = MonthDay(**value)
        setattr(merged, name, value)

    check = {
        "type": merged.type,
        "target_id": merged.target_id,
        "fixed_date": dataclasses.asdict(merged.fixed_date) if merged.fixed_date else None,
        "interval_days": merged.interval_days,
        "anchor_mode": merged.anchor_mode,
        "explicit_anchor_date": merged.explicit_anchor_date,
        "priority": merged.priority,
        "notify_offsets": merged.notify_offsets,
        "title": merged.title,
        "notes": merged.notes,
    }
    validated = parse_rule_create(check)
    merged.notify_offsets = list(validated.notify_offsets)
    return merged
