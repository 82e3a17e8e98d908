"""
Reminder Engine — Rule lifecycle service.

Orchestrates rule CRUD and interaction logging on top of the stores, and
keeps the materialized instances in step: every create, edit or new
interaction re-materializes the affected rules.

Owner scoping is enforced here: a rule or target belonging to another owner
behaves exactly like one that does not exist.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from reminder_engine.core.errors import NotFoundError
from reminder_engine.core.materializer import MaterializationResult, Materializer
from reminder_engine.core.rule_validation import (
    apply_update,
    parse_rule_create,
    parse_rule_update,
)
from reminder_engine.data.models import Instance, PlanTier, Rule

if TYPE_CHECKING:
    from reminder_engine.data.db import ContactDB, InstanceDB, RuleDB

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20


class ReminderService:
    """Rule CRUD plus interaction logging, each followed by materialization."""

    def __init__(
        self,
        rules: RuleDB,
        contacts: ContactDB,
        instances: InstanceDB,
        materializer: Materializer,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._rules = rules
        self._contacts = contacts
        self._instances = instances
        self._materializer = materializer
        self._clock = clock

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def create_rule(self, owner_id: int, data: dict[str, Any], tier: PlanTier) -> Rule:
        """Validate, persist and materialize a new rule.

        Raises:
            ValidationError: The payload is malformed.
            NotFoundError: The referenced target is not the owner's.
        """
        payload = parse_rule_create(data)
        if payload.target_id is not None:
            self._require_target(payload.target_id, owner_id)

        rule = self._rules.add_rule(payload.to_rule(owner_id, self._clock()))
        result = self._materializer.materialize_for_rule(rule.id, tier)
        logger.info(
            "Rule #%d (%s) created for owner %d, %d instances",
            rule.id, rule.type.value, owner_id, result.instances_created,
        )
        return rule

    def get_rule(self, rule_id: int, owner_id: int) -> Rule | None:
        rule = self._rules.get_rule(rule_id)
        if rule is None or rule.owner_id != owner_id:
            return None
        return rule

    def list_rules(
        self, owner_id: int, active_only: bool = False, target_id: int | None = None,
    ) -> list[Rule]:
        return self._rules.list_rules(owner_id, active_only=active_only, target_id=target_id)

    def update_rule(
        self, rule_id: int, owner_id: int, changes: dict[str, Any], tier: PlanTier,
    ) -> Rule | None:
        """Apply a partial edit and re-materialize. None if the rule is not the owner's."""
        update = parse_rule_update(changes)
        rule = self.get_rule(rule_id, owner_id)
        if rule is None:
            return None

        merged = apply_update(rule, update)
        self._rules.save_rule(merged)
        if merged.active:
            self._materializer.materialize_for_rule(rule_id, tier)
        elif rule.active:
            self._retire_pending(rule_id)
        logger.info("Rule #%d updated: %s", rule_id, sorted(update.model_fields_set))
        return merged

    def deactivate_rule(self, rule_id: int, owner_id: int) -> bool:
        """Soft delete. Pending instances from today on are retired; history stays."""
        if self.get_rule(rule_id, owner_id) is None:
            return False
        changed = self._rules.set_active(rule_id, False)
        if changed:
            self._retire_pending(rule_id)
        return changed

    def delete_rule(self, rule_id: int, owner_id: int) -> bool:
        """Hard delete, cascading to every instance of the rule."""
        if self.get_rule(rule_id, owner_id) is None:
            return False
        return self._rules.delete_rule(rule_id)

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def log_interaction(
        self,
        owner_id: int,
        target_id: int,
        occurred_at: datetime | None,
        tier: PlanTier,
    ) -> MaterializationResult:
        """Record contact with a target and recompute its follow-ups.

        A back-dated interaction older than the current anchor leaves the
        anchor alone; rematerialization still runs and is then a no-op.
        """
        self._require_target(target_id, owner_id)
        occurred_at = occurred_at or self._clock()
        self._contacts.record_interaction(target_id, occurred_at)
        return self._materializer.rematerialize_for_target(target_id, tier)

    def get_target_history(
        self, target_id: int, owner_id: int, limit: int = HISTORY_LIMIT,
    ) -> list[Instance]:
        """Completed and skipped instances for a target, newest first."""
        return self._instances.list_history(target_id, owner_id, limit=limit)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_target(self, target_id: int, owner_id: int) -> None:
        target = self._contacts.get_target(target_id)
        if target is None or target.owner_id != owner_id:
            raise NotFoundError(f"Target {target_id} not found")

    def _retire_pending(self, rule_id: int) -> None:
        removed = self._instances.delete_superseded(
            [rule_id], set(), self._clock().date(),
        )
        logger.info("Rule #%d deactivated, %d pending instances retired", rule_id, removed)
