"""
Reminder Engine — Materializer.

Turns active rules into dated instances inside the owner's tier window.

Every call stages one upsert per (rule, notify date) and submits them as a
single unordered bulk write. The store's unique instance key makes repeated
or concurrent runs converge: a key that already exists only has its
observed_at bumped, so completed or snoozed instances are never reset.

A failure in one rule (bad payload, missing target) is recorded in the
result and the remaining rules still materialize. Storage errors propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable

from reminder_engine.config import settings
from reminder_engine.core.errors import NotFoundError, ReminderError
from reminder_engine.core.instance_key import instance_key
from reminder_engine.core.plans import materialization_window
from reminder_engine.core.recurrence import compute_notify_dates
from reminder_engine.data.models import Contact, InstanceDraft, PlanTier, Rule
from reminder_engine.ports.instance_port import InstancePort
from reminder_engine.ports.rule_port import RulePort
from reminder_engine.ports.target_port import TargetPort

logger = logging.getLogger(__name__)


@dataclass
class RuleError:
    """A per-rule failure. rule_id is None when no rule could be resolved."""

    rule_id: int | None
    error: str


@dataclass
class MaterializationResult:
    owner_id: int | None
    rules_processed: int = 0
    instances_created: int = 0
    instances_updated: int = 0
    instances_removed: int = 0
    errors: list[RuleError] = field(default_factory=list)


class Materializer:
    """Expands rules into instances through the rule, target and instance ports."""

    def __init__(
        self,
        rules: RulePort,
        targets: TargetPort,
        instances: InstancePort,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._rules = rules
        self._targets = targets
        self._instances = instances
        self._clock = clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def materialize_for_owner(self, owner_id: int, tier: PlanTier) -> MaterializationResult:
        """Materialize every active rule the owner has."""
        rules = self._rules.list_active_rules(owner_id)
        return self._materialize(owner_id, rules, tier, retire_superseded=False)

    def materialize_for_rule(self, rule_id: int, tier: PlanTier) -> MaterializationResult:
        """Materialize one rule, typically right after it was created or edited."""
        rule = self._rules.get_rule(rule_id)
        if rule is None:
            logger.warning("Materialize skipped: rule #%d not found", rule_id)
            return MaterializationResult(
                owner_id=None,
                errors=[RuleError(rule_id, f"Rule {rule_id} not found")],
            )
        if not rule.active:
            logger.debug("Rule #%d is inactive, nothing to materialize", rule_id)
            return MaterializationResult(owner_id=rule.owner_id)
        return self._materialize(rule.owner_id, [rule], tier, retire_superseded=True)

    def rematerialize_for_target(self, target_id: int, tier: PlanTier) -> MaterializationResult:
        """Recompute the interval-driven rules of one target after its anchor moved."""
        target = self._targets.get_target(target_id)
        if target is None:
            logger.warning("Rematerialize skipped: target #%d not found", target_id)
            return MaterializationResult(
                owner_id=None,
                errors=[RuleError(None, f"Target {target_id} not found")],
            )
        rules = [
            rule
            for rule in self._rules.list_active_rules_for_target(target_id)
            if rule.is_interval_driven and rule.owner_id == target.owner_id
        ]
        return self._materialize(target.owner_id, rules, tier, retire_superseded=True)

    def prune_stale(self, owner_id: int) -> int:
        """Delete old terminal instances and anything past hard retention."""
        now = self._clock()
        terminal_cutoff = now - timedelta(days=settings.TERMINAL_RETENTION_DAYS)
        hard_cutoff = now.date() - timedelta(days=settings.HARD_RETENTION_DAYS)
        deleted = self._instances.prune(owner_id, terminal_cutoff, hard_cutoff)
        logger.info("Pruned %d instances for owner %d", deleted, owner_id)
        return deleted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _materialize(
        self,
        owner_id: int,
        rules: list[Rule],
        tier: PlanTier,
        retire_superseded: bool,
    ) -> MaterializationResult:
        result = MaterializationResult(owner_id=owner_id)
        if not rules:
            return result

        now = self._clock()
        window_start, window_end = materialization_window(now.date(), tier)

        target_ids = sorted({r.target_id for r in rules if r.target_id is not None})
        targets = self._targets.get_targets(target_ids, owner_id) if target_ids else {}

        drafts: list[InstanceDraft] = []
        retired_rule_ids: list[int] = []
        for rule in rules:
            result.rules_processed += 1
            try:
                rule_drafts = self._drafts_for_rule(rule, targets, window_start, window_end)
            except ReminderError as exc:
                logger.warning("Rule #%d not materialized: %s", rule.id, exc)
                result.errors.append(RuleError(rule.id, str(exc)))
                continue
            drafts.extend(rule_drafts)
            retired_rule_ids.append(rule.id)

        upsert = self._instances.bulk_upsert(drafts, now)
        result.instances_created = upsert.created
        result.instances_updated = upsert.updated
        for failure in upsert.failures:
            logger.warning(
                "Instance %s for rule #%d not written: %s",
                failure.instance_key, failure.rule_id, failure.error,
            )
            result.errors.append(
                RuleError(failure.rule_id, f"{failure.instance_key}: {failure.error}")
            )

        if retire_superseded and retired_rule_ids:
            keep_keys = {d.instance_key for d in drafts}
            result.instances_removed = self._instances.delete_superseded(
                retired_rule_ids, keep_keys, window_start,
            )

        logger.info(
            "Materialized owner %d: %d rules, %d created, %d updated, %d removed, %d errors",
            owner_id, result.rules_processed, result.instances_created,
            result.instances_updated, result.instances_removed, len(result.errors),
        )
        return result

    def _drafts_for_rule(
        self,
        rule: Rule,
        targets: dict[int, Contact],
        window_start: date,
        window_end: date,
    ) -> list[InstanceDraft]:
        target = None
        if rule.target_id is not None:
            target = targets.get(rule.target_id)
            if target is None:
                raise NotFoundError(f"Target {rule.target_id} not found")

        last_activity = target.last_contacted_at if target is not None else None
        dates = compute_notify_dates(rule, window_start, window_end, last_activity)
        return [
            InstanceDraft(
                rule_id=rule.id,
                owner_id=rule.owner_id,
                instance_key=instance_key(rule.id, due),
                due_date=due,
                type=rule.type,
                priority=rule.priority,
                target_id=rule.target_id,
                target_name=target.name if target is not None else None,
                title=rule.title,
            )
            for due in dates
        ]
