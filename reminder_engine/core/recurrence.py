"""Recurrence calculator — pure date math.

Turns a rule plus a window into the ascending list of dates on which an
instance should exist. Two algorithms:

- fixed-date (birthdays, anniversaries): the event falls on month/day every
  year; Feb 29 falls back to Feb 28 in non-leap years.
- interval (follow-ups): the event recurs every N days counted from an
  anchor (last contact, rule creation, or an explicit date).

Each event date fans out into one notify date per offset ("7 days before").

No I/O: this module only transforms data.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timedelta

from reminder_engine.core.errors import ValidationError
from reminder_engine.data.models import AnchorMode, MonthDay, RecurrenceKind, Rule

logger = logging.getLogger(__name__)


def _as_date(value: date | datetime) -> date:
    # datetime is a date subclass; keep only the calendar day
    if isinstance(value, datetime):
        return value.date()
    return value


def validate_month_day(month_day: MonthDay) -> None:
    """Raise ValidationError unless month/day exists in some year.

    Feb 29 is accepted (it exists in leap years).
    """
    if not 1 <= month_day.month <= 12:
        raise ValidationError(f"Month out of range: {month_day.month}")
    # 2000 is a leap year, so this allows Feb 29
    max_day = calendar.monthrange(2000, month_day.month)[1]
    if not 1 <= month_day.day <= max_day:
        raise ValidationError(
            f"Day {month_day.day} is not valid for month {month_day.month}"
        )


def event_date_for_year(month_day: MonthDay, year: int) -> date:
    """Return the event date in `year`, moving Feb 29 to Feb 28 when needed."""
    validate_month_day(month_day)
    if month_day.month == 2 and month_day.day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return date(year, month_day.month, month_day.day)


def _notify_dates_for_event(
    event: date,
    offsets: list[int],
    window_start: date,
    window_end: date,
) -> list[date]:
    """Apply each offset; dates pushed outside the window are dropped, not clamped."""
    dates = []
    for offset in offsets:
        notify = event - timedelta(days=offset)
        if window_start <= notify <= window_end:
            dates.append(notify)
    return dates


def fixed_date_notify_dates(
    month_day: MonthDay,
    offsets: list[int],
    window_start: date,
    window_end: date,
) -> list[date]:
    """Notify dates for a fixed annual date.

    Checks this year and next year, which covers any window up to a year wide,
    including windows that wrap over New Year.
    """
    dates: set[date] = set()
    for year in (window_start.year, window_start.year + 1):
        event = event_date_for_year(month_day, year)
        dates.update(_notify_dates_for_event(event, offsets, window_start, window_end))
    return sorted(dates)


def first_due_on_or_after(anchor: date, interval_days: int, window_start: date) -> date:
    """First anchor + k * interval_days that is >= window_start.

    The anchor day itself is the activity, not a follow-up, so an anchor on
    window_start is first due one interval later. A future anchor is its own
    first due date. Uses ceiling division, so an anchor years in the past
    costs the same as one from yesterday.
    """
    if interval_days < 1:
        raise ValidationError(f"Interval must be at least 1 day, got {interval_days}")
    elapsed = (window_start - anchor).days
    if elapsed < 0:
        return anchor
    if elapsed == 0:
        return anchor + timedelta(days=interval_days)
    intervals = -(-elapsed // interval_days)
    return anchor + timedelta(days=intervals * interval_days)



def interval_notify_dates(
    anchor: date,
    interval_days: int,
    offsets: list[int],
    window_start: date,
    window_end: date,
) -> list[date]:
    """Notify dates for an every-N-days rule counted from `anchor`."""
    dates: set[date] = set()
    due = first_due_on_or_after(anchor, interval_days, window_start)
    step = timedelta(days=interval_days)
    while due <= window_end:
        dates.update(_notify_dates_for_event(due, offsets, window_start, window_end))
        due += step
    return sorted(dates)


def resolve_anchor(rule: Rule, last_activity_at: date | datetime | None = None) -> date:
    """Pick the date an interval rule counts from.

    last-activity falls back to the rule's creation date when there has been
    no activity yet; explicit-date falls back to creation when unset.
    """
    match rule.anchor_mode:
        case AnchorMode.LAST_ACTIVITY:
            anchor = last_activity_at or rule.created_at
        case AnchorMode.EXPLICIT_DATE:
            anchor = rule.explicit_anchor_date or rule.created_at
        case AnchorMode.RULE_CREATION:
            anchor = rule.created_at
        case _:
            raise ValueError(f"Unhandled anchor mode: {rule.anchor_mode!r}")
    return _as_date(anchor)


def compute_notify_dates(
    rule: Rule,
    window_start: date,
    window_end: date,
    last_activity_at: date | datetime | None = None,
) -> list[date]:
    """Return the ascending, de-duplicated notify dates for `rule` in the window.

    Args:
        rule: The rule to expand.
        window_start: First day of the window (today at materialization time).
        window_end: Last day of the window, inclusive.
        last_activity_at: The target's last-contact time, used only by
            interval rules in last-activity mode.
    """
    offsets = rule.notify_offsets or [0]

    match rule.kind:
        case RecurrenceKind.FIXED_DATE:
            use_fixed = True
        case RecurrenceKind.INTERVAL:
            use_fixed = False
        case RecurrenceKind.HYBRID:
            if rule.fixed_date is not None:
                use_fixed = True
            elif rule.interval_days is not None:
                use_fixed = False
            else:
                logger.debug("Rule #%d has neither payload, nothing to compute", rule.id)
                return []
        case _:
            raise ValueError(f"Unhandled recurrence kind: {rule.kind!r}")

    if use_fixed:
        if rule.fixed_date is None:
            raise ValidationError(f"Rule #{rule.id} requires a fixed date")
        return fixed_date_notify_dates(rule.fixed_date, offsets, window_start, window_end)

    if rule.interval_days is None:
        raise ValidationError(f"Rule #{rule.id} requires an interval")
    anchor = resolve_anchor(rule, last_activity_at)
    return interval_notify_dates(anchor, rule.interval_days, offsets, window_start, window_end)
