"""
Reminder Engine — SQLite storage.

Owners, contacts, rules and materialized instances persist in one SQLite
file. Two properties carry the engine's correctness:

- `reminder_instances.instance_key` is UNIQUE and written with
  INSERT ... ON CONFLICT DO NOTHING, so concurrent materializations of the
  same rule/day collapse onto one row.
- Status transitions are a single UPDATE guarded by the expected status,
  so a duplicate "done" is a no-op the caller sees as a miss.

Every sqlite3 failure leaves this module as a retryable StorageError.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from reminder_engine.core.errors import StorageError
from reminder_engine.data.models import (
    AnchorMode,
    Contact,
    Instance,
    InstanceDraft,
    InstanceStatus,
    MonthDay,
    Owner,
    PlanTier,
    Priority,
    ReminderType,
    Rule,
)
from reminder_engine.ports.instance_port import BulkUpsertResult, WriteFailure

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_TERMINAL = (InstanceStatus.COMPLETED.value, InstanceStatus.SKIPPED.value)


def storage_call(func: F) -> F:
    """Decorator translating sqlite3 failures into StorageError."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as exc:
            logger.error("Storage call %s failed: %s", func.__name__, exc)
            raise StorageError(f"{func.__name__} failed: {exc}") from exc

    return wrapper  # type: ignore[return-value]


def _ts(value: datetime | None) -> str | None:
    return value.isoformat(timespec="seconds") if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


class _SQLiteStore:
    """Shared connection handling for the storage classes below."""

    def __init__(self, db_path: str | None = None, timeout: float | None = None) -> None:
        if db_path is None or timeout is None:
            from reminder_engine.config import settings
            db_path = db_path or settings.DATABASE_PATH
            timeout = timeout if timeout is not None else settings.DB_TIMEOUT_SECONDS

        self._db_path = db_path
        self._timeout = timeout
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        raise NotImplementedError


class OwnerDB(_SQLiteStore):
    """Accounts and their plan tier. Satisfies TierPort."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS owners (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT NOT NULL,
                    tier         TEXT NOT NULL DEFAULT 'free',
                    created_at   TEXT NOT NULL
                )
            """)
        logger.debug("Owners table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_owner(row: sqlite3.Row) -> Owner:
        return Owner(
            id=row["id"],
            display_name=row["display_name"],
            tier=PlanTier(row["tier"]),
            created_at=row["created_at"],
        )

    @storage_call
    def add_owner(self, display_name: str, tier: PlanTier = PlanTier.FREE) -> Owner:
        """Register a new owner."""
        now = datetime.now().isoformat(timespec="seconds")
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO owners (display_name, tier, created_at) VALUES (?, ?, ?)",
                (display_name, tier.value, now),
            )
            owner_id = cursor.lastrowid
        logger.info("Owner registered: #%d '%s' (%s)", owner_id, display_name, tier.value)
        return Owner(id=owner_id, display_name=display_name, tier=tier, created_at=now)

    @storage_call
    def get_owner(self, owner_id: int) -> Owner | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM owners WHERE id = ?", (owner_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_owner(row)

    @storage_call
    def set_tier(self, owner_id: int, tier: PlanTier) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE owners SET tier = ? WHERE id = ?", (tier.value, owner_id),
            )
        changed = cursor.rowcount > 0
        if changed:
            logger.info("Owner #%d moved to tier %s", owner_id, tier.value)
        return changed

    def get_tier(self, owner_id: int) -> PlanTier:
        """Current tier; unknown owners get the base tier."""
        owner = self.get_owner(owner_id)
        return owner.tier if owner is not None else PlanTier.FREE

    @storage_call
    def list_owners(self) -> list[Owner]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM owners ORDER BY id").fetchall()
        return [self._row_to_owner(r) for r in rows]


class ContactDB(_SQLiteStore):
    """People reminders are about. Satisfies TargetPort."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS contacts (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id          INTEGER NOT NULL,
                    name              TEXT    NOT NULL,
                    last_contacted_at TEXT,
                    created_at        TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_contacts_owner ON contacts (owner_id)"
            )
        logger.debug("Contacts table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_contact(row: sqlite3.Row) -> Contact:
        return Contact(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            last_contacted_at=_parse_ts(row["last_contacted_at"]),
            created_at=row["created_at"],
        )

    @storage_call
    def add_contact(
        self, owner_id: int, name: str, last_contacted_at: datetime | None = None,
    ) -> Contact:
        now = datetime.now().isoformat(timespec="seconds")
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO contacts (owner_id, name, last_contacted_at, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (owner_id, name.strip(), _ts(last_contacted_at), now),
            )
            contact_id = cursor.lastrowid
        logger.info("Contact added: #%d '%s' for owner %d", contact_id, name, owner_id)
        return Contact(
            id=contact_id,
            owner_id=owner_id,
            name=name.strip(),
            last_contacted_at=last_contacted_at,
            created_at=now,
        )

    @storage_call
    def get_target(self, target_id: int) -> Contact | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM contacts WHERE id = ?", (target_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_contact(row)

    @storage_call
    def get_targets(self, target_ids: list[int], owner_id: int) -> dict[int, Contact]:
        """Batch lookup scoped to one owner; missing ids are simply absent."""
        if not target_ids:
            return {}
        placeholders = ", ".join("?" for _ in target_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM contacts WHERE owner_id = ? AND id IN ({placeholders})",
                [owner_id, *target_ids],
            ).fetchall()
        return {row["id"]: self._row_to_contact(row) for row in rows}

    @storage_call
    def record_interaction(self, contact_id: int, occurred_at: datetime) -> bool:
        """Move last_contacted_at forward to `occurred_at`.

        Returns True when the anchor changed. Back-dated interactions older
        than the current value leave it untouched.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE contacts SET last_contacted_at = ?
                WHERE id = ? AND (last_contacted_at IS NULL OR last_contacted_at < ?)
                """,
                (_ts(occurred_at), contact_id, _ts(occurred_at)),
            )
        changed = cursor.rowcount > 0
        if changed:
            logger.info("Contact #%d last contacted at %s", contact_id, _ts(occurred_at))
        return changed

    @storage_call
    def delete_contact(self, contact_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM contacts WHERE id = ?", (contact_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Contact #%d deleted", contact_id)
        return deleted


class RuleDB(_SQLiteStore):
    """Reminder rules. Satisfies RulePort."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminder_rules (
                    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id             INTEGER NOT NULL,
                    target_id            INTEGER,
                    type                 TEXT    NOT NULL,
                    priority             TEXT    NOT NULL DEFAULT 'medium',
                    fixed_month          INTEGER,
                    fixed_day            INTEGER,
                    fixed_year           INTEGER,
                    interval_days        INTEGER,
                    anchor_mode          TEXT    NOT NULL DEFAULT 'last-activity',
                    explicit_anchor_date TEXT,
                    notify_offsets       TEXT    NOT NULL DEFAULT '[0, 7]',
                    active               INTEGER NOT NULL DEFAULT 1,
                    title                TEXT,
                    notes                TEXT,
                    created_at           TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_rules_owner_active "
                "ON reminder_rules (owner_id, active)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_rules_target ON reminder_rules (target_id)"
            )
        logger.debug("Rules table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> Rule:
        fixed_date = None
        if row["fixed_month"] is not None and row["fixed_day"] is not None:
            fixed_date = MonthDay(
                month=row["fixed_month"], day=row["fixed_day"], year=row["fixed_year"],
            )
        return Rule(
            id=row["id"],
            owner_id=row["owner_id"],
            target_id=row["target_id"],
            type=ReminderType(row["type"]),
            priority=Priority(row["priority"]),
            fixed_date=fixed_date,
            interval_days=row["interval_days"],
            anchor_mode=AnchorMode(row["anchor_mode"]),
            explicit_anchor_date=_parse_date(row["explicit_anchor_date"]),
            notify_offsets=json.loads(row["notify_offsets"]),
            active=bool(row["active"]),
            title=row["title"],
            notes=row["notes"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _rule_params(rule: Rule) -> dict:
        fixed = rule.fixed_date
        return {
            "owner_id": rule.owner_id,
            "target_id": rule.target_id,
            "type": rule.type.value,
            "priority": rule.priority.value,
            "fixed_month": fixed.month if fixed else None,
            "fixed_day": fixed.day if fixed else None,
            "fixed_year": fixed.year if fixed else None,
            "interval_days": rule.interval_days,
            "anchor_mode": rule.anchor_mode.value,
            "explicit_anchor_date": (
                rule.explicit_anchor_date.isoformat() if rule.explicit_anchor_date else None
            ),
            "notify_offsets": json.dumps(rule.notify_offsets),
            "active": int(rule.active),
            "title": rule.title,
            "notes": rule.notes,
            "created_at": _ts(rule.created_at),
        }

    @storage_call
    def add_rule(self, rule: Rule) -> Rule:
        """Insert `rule` (its id is ignored) and return it with the new id."""
        params = self._rule_params(rule)
        columns = ", ".join(params)
        placeholders = ", ".join(f":{name}" for name in params)
        with self._connect() as conn:
            cursor = conn.execute(
                f"INSERT INTO reminder_rules ({columns}) VALUES ({placeholders})", params,
            )
            rule_id = cursor.lastrowid
        rule.id = rule_id
        logger.info(
            "Rule added: #%d %s for owner %d", rule_id, rule.type.value, rule.owner_id,
        )
        return rule

    @storage_call
    def save_rule(self, rule: Rule) -> bool:
        """Overwrite every column of an existing rule."""
        params = self._rule_params(rule)
        params.pop("created_at")
        assignments = ", ".join(f"{name} = :{name}" for name in params)
        params["id"] = rule.id
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE reminder_rules SET {assignments} WHERE id = :id", params,
            )
        return cursor.rowcount > 0

    @storage_call
    def get_rule(self, rule_id: int) -> Rule | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reminder_rules WHERE id = ?", (rule_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_rule(row)

    @storage_call
    def list_rules(
        self, owner_id: int, active_only: bool = False, target_id: int | None = None,
    ) -> list[Rule]:
        query = "SELECT * FROM reminder_rules WHERE owner_id = ?"
        params: list = [owner_id]
        if active_only:
            query += " AND active = 1"
        if target_id is not None:
            query += " AND target_id = ?"
            params.append(target_id)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_rule(r) for r in rows]

    def list_active_rules(self, owner_id: int) -> list[Rule]:
        return self.list_rules(owner_id, active_only=True)

    @storage_call
    def list_active_rules_for_target(self, target_id: int) -> list[Rule]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM reminder_rules WHERE target_id = ? AND active = 1 ORDER BY id",
                (target_id,),
            ).fetchall()
        return [self._row_to_rule(r) for r in rows]

    @storage_call
    def set_active(self, rule_id: int, active: bool) -> bool:
        """Soft-delete (or revive) a rule. Returns False when nothing changed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE reminder_rules SET active = ? WHERE id = ? AND active = ?",
                (int(active), rule_id, int(not active)),
            )
        changed = cursor.rowcount > 0
        if changed:
            logger.info("Rule #%d %s", rule_id, "reactivated" if active else "deactivated")
        return changed

    @storage_call
    def delete_rule(self, rule_id: int) -> bool:
        """Hard-delete a rule together with all of its instances."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM reminder_rules WHERE id = ?", (rule_id,))
            deleted = cursor.rowcount > 0
            if deleted:
                # The instances table may not exist yet if no InstanceDB was opened
                has_instances = conn.execute(
                    "SELECT 1 FROM sqlite_master WHERE type = 'table' "
                    "AND name = 'reminder_instances'"
                ).fetchone()
                if has_instances:
                    removed = conn.execute(
                        "DELETE FROM reminder_instances WHERE rule_id = ?", (rule_id,)
                    ).rowcount
                    logger.info("Rule #%d deleted with %d instances", rule_id, removed)
        return deleted


class InstanceDB(_SQLiteStore):
    """Materialized instances. Satisfies InstancePort."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminder_instances (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    rule_id       INTEGER NOT NULL,
                    owner_id      INTEGER NOT NULL,
                    target_id     INTEGER,
                    instance_key  TEXT    NOT NULL UNIQUE,
                    due_date      TEXT    NOT NULL,
                    status        TEXT    NOT NULL DEFAULT 'pending',
                    type          TEXT    NOT NULL,
                    priority      TEXT    NOT NULL,
                    target_name   TEXT,
                    title         TEXT,
                    completed_at  TEXT,
                    skipped_at    TEXT,
                    snoozed_until TEXT,
                    created_at    TEXT    NOT NULL,
                    observed_at   TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_instances_owner_status_due "
                "ON reminder_instances (owner_id, status, due_date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_instances_rule_due "
                "ON reminder_instances (rule_id, due_date)"
            )
        logger.debug("Instances table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> Instance:
        return Instance(
            id=row["id"],
            rule_id=row["rule_id"],
            owner_id=row["owner_id"],
            target_id=row["target_id"],
            instance_key=row["instance_key"],
            due_date=date.fromisoformat(row["due_date"]),
            status=InstanceStatus(row["status"]),
            type=ReminderType(row["type"]),
            priority=Priority(row["priority"]),
            target_name=row["target_name"],
            title=row["title"],
            completed_at=_parse_ts(row["completed_at"]),
            skipped_at=_parse_ts(row["skipped_at"]),
            snoozed_until=_parse_ts(row["snoozed_until"]),
            created_at=_parse_ts(row["created_at"]),
            observed_at=_parse_ts(row["observed_at"]),
        )

    @storage_call
    def bulk_upsert(
        self, drafts: list[InstanceDraft], observed_at: datetime,
    ) -> BulkUpsertResult:
        """Unordered upsert keyed on instance_key.

        New keys get every draft field (status pending); existing keys only
        get observed_at bumped, so a completed or snoozed instance is never
        reset. A constraint failure on one draft is recorded and the rest
        continue.
        """
        result = BulkUpsertResult()
        if not drafts:
            return result

        stamp = _ts(observed_at)
        with self._connect() as conn:
            for draft in drafts:
                try:
                    cursor = conn.execute(
                        """
                        INSERT INTO reminder_instances
                            (rule_id, owner_id, target_id, instance_key, due_date,
                             status, type, priority, target_name, title,
                             created_at, observed_at)
                        VALUES (?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(instance_key) DO NOTHING
                        """,
                        (
                            draft.rule_id, draft.owner_id, draft.target_id,
                            draft.instance_key, draft.due_date.isoformat(),
                            draft.type.value, draft.priority.value,
                            draft.target_name, draft.title, stamp, stamp,
                        ),
                    )
                    if cursor.rowcount > 0:
                        result.created += 1
                        continue
                    cursor = conn.execute(
                        "UPDATE reminder_instances SET observed_at = ? WHERE instance_key = ?",
                        (stamp, draft.instance_key),
                    )
                    result.updated += cursor.rowcount
                except sqlite3.IntegrityError as exc:
                    result.failures.append(
                        WriteFailure(
                            rule_id=draft.rule_id,
                            instance_key=draft.instance_key,
                            error=str(exc),
                        )
                    )

        logger.debug(
            "Bulk upsert: %d staged, %d created, %d updated, %d failed",
            len(drafts), result.created, result.updated, len(result.failures),
        )
        return result

    @storage_call
    def delete_superseded(
        self, rule_ids: list[int], keep_keys: set[str], from_date: date,
    ) -> int:
        """Delete pending instances of `rule_ids` due on/after `from_date`
        whose key is not in `keep_keys`. Returns the number removed."""
        if not rule_ids:
            return 0
        placeholders = ", ".join("?" for _ in rule_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT id, instance_key FROM reminder_instances
                WHERE rule_id IN ({placeholders}) AND status = 'pending' AND due_date >= ?
                """,
                [*rule_ids, from_date.isoformat()],
            ).fetchall()
            stale = [(row["id"],) for row in rows if row["instance_key"] not in keep_keys]
            if stale:
                # Re-check status so a concurrent completion is never deleted
                conn.executemany(
                    "DELETE FROM reminder_instances WHERE id = ? AND status = 'pending'",
                    stale,
                )
        if stale:
            logger.info("Removed %d superseded instances for rules %s", len(stale), rule_ids)
        return len(stale)

    @storage_call
    def prune(self, owner_id: int, terminal_cutoff: datetime, hard_cutoff: date) -> int:
        """Delete old terminal instances and anything past the hard cutoff."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM reminder_instances
                WHERE owner_id = ?
                  AND (
                    (status IN (?, ?)
                     AND COALESCE(completed_at, skipped_at, due_date) < ?)
                    OR due_date < ?
                  )
                """,
                (
                    owner_id, *_TERMINAL, _ts(terminal_cutoff), hard_cutoff.isoformat(),
                ),
            )
        deleted = cursor.rowcount
        if deleted:
            logger.info("Pruned %d stale instances for owner %d", deleted, owner_id)
        return deleted

    @storage_call
    def list_due(
        self, owner_id: int, today: date, now: datetime, include_overdue: bool = True,
    ) -> list[Instance]:
        """Pending instances due today (and earlier, unless excluded) that no
        active snooze is hiding."""
        query = """
            SELECT * FROM reminder_instances
            WHERE owner_id = ? AND status = 'pending' AND due_date <= ?
              AND (snoozed_until IS NULL OR snoozed_until <= ?)
        """
        params: list = [owner_id, today.isoformat(), _ts(now)]
        if not include_overdue:
            query += " AND due_date >= ?"
            params.append(today.isoformat())
        query += " ORDER BY due_date, id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_instance(r) for r in rows]

    @storage_call
    def list_upcoming(
        self, owner_id: int, after: date, until: date, limit: int = 50,
    ) -> list[Instance]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminder_instances
                WHERE owner_id = ? AND status = 'pending'
                  AND due_date > ? AND due_date <= ?
                ORDER BY due_date, id
                LIMIT ?
                """,
                (owner_id, after.isoformat(), until.isoformat(), limit),
            ).fetchall()
        return [self._row_to_instance(r) for r in rows]

    @storage_call
    def list_history(self, target_id: int, owner_id: int, limit: int = 20) -> list[Instance]:
        """Completed/skipped instances for a target, most recent action first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminder_instances
                WHERE target_id = ? AND owner_id = ? AND status IN (?, ?)
                ORDER BY COALESCE(completed_at, skipped_at) DESC, id DESC
                LIMIT ?
                """,
                (target_id, owner_id, *_TERMINAL, limit),
            ).fetchall()
        return [self._row_to_instance(r) for r in rows]

    @storage_call
    def list_for_rule(self, rule_id: int) -> list[Instance]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM reminder_instances WHERE rule_id = ? ORDER BY due_date, id",
                (rule_id,),
            ).fetchall()
        return [self._row_to_instance(r) for r in rows]

    @storage_call
    def get_instance(self, instance_id: int, owner_id: int) -> Instance | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reminder_instances WHERE id = ? AND owner_id = ?",
                (instance_id, owner_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_instance(row)

    @storage_call
    def transition(
        self,
        instance_id: int,
        owner_id: int,
        from_statuses: frozenset[InstanceStatus],
        to_status: InstanceStatus,
        completed_at: datetime | None = None,
        skipped_at: datetime | None = None,
        snoozed_until: datetime | None = None,
    ) -> Instance | None:
        """Conditionally move an instance to `to_status`.

        The UPDATE only matches while the current status is one of
        `from_statuses`, so of two racing identical requests exactly one
        wins. snoozed_until is always overwritten (None clears it).
        Returns the updated instance, or None on a miss.
        """
        allowed = sorted(status.value for status in from_statuses)
        placeholders = ", ".join("?" for _ in allowed)
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE reminder_instances
                SET status = ?,
                    completed_at = COALESCE(?, completed_at),
                    skipped_at = COALESCE(?, skipped_at),
                    snoozed_until = ?
                WHERE id = ? AND owner_id = ? AND status IN ({placeholders})
                """,
                (
                    to_status.value, _ts(completed_at), _ts(skipped_at),
                    _ts(snoozed_until), instance_id, owner_id, *allowed,
                ),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM reminder_instances WHERE id = ?", (instance_id,)
            ).fetchone()
        return self._row_to_instance(row)
