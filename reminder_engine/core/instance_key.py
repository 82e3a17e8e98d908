"""Instance keys — the idempotency anchor of materialization.

A key identifies "this rule fired on this calendar day" and nothing else, so
the nightly sweep, a rule edit and an interaction-triggered rematerialization
all collapse onto the same row.
"""

from __future__ import annotations

from datetime import date, datetime


def instance_key(rule_id: int | str, due_date: date | datetime) -> str:
    """Return "<rule_id>:<YYYY-MM-DD>". Any time component is dropped."""
    if isinstance(due_date, datetime):
        due_date = due_date.date()
    return f"{rule_id}:{due_date.isoformat()}"
