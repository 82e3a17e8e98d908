"""Instance port — the materialized instance store.

Correctness of concurrent materialization rests on two guarantees an
implementation must give: upserts are atomic per instance key, and
transitions are conditional on the current status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol

from reminder_engine.data.models import Instance, InstanceDraft, InstanceStatus


@dataclass
class WriteFailure:
    """One staged upsert the store could not apply."""

    rule_id: int
    instance_key: str
    error: str


@dataclass
class BulkUpsertResult:
    created: int = 0
    updated: int = 0
    failures: list[WriteFailure] = field(default_factory=list)


class InstancePort(Protocol):
    """Abstract instance storage used by core modules."""

    def bulk_upsert(
        self, drafts: list[InstanceDraft], observed_at: datetime,
    ) -> BulkUpsertResult: ...

    def delete_superseded(
        self, rule_ids: list[int], keep_keys: set[str], from_date: date,
    ) -> int: ...

    def prune(
        self, owner_id: int, terminal_cutoff: datetime, hard_cutoff: date,
    ) -> int: ...

    def list_due(
        self, owner_id: int, today: date, now: datetime, include_overdue: bool = True,
    ) -> list[Instance]: ...

    def list_upcoming(
        self, owner_id: int, after: date, until: date, limit: int = 50,
    ) -> list[Instance]: ...

    def get_instance(self, instance_id: int, owner_id: int) -> Instance | None: ...

    def transition(
        self,
        instance_id: int,
        owner_id: int,
        from_statuses: frozenset[InstanceStatus],
        to_status: InstanceStatus,
        completed_at: datetime | None = None,
        skipped_at: datetime | None = None,
        snoozed_until: datetime | None = None,
    ) -> Instance | None: ...
