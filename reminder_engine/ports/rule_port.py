"""Rule port — read access to reminder rules.

The materializer depends on this protocol, never on a specific store.
"""

from __future__ import annotations

from typing import Protocol

from reminder_engine.data.models import Rule


class RulePort(Protocol):
    """Abstract rule storage used by core modules."""

    def get_rule(self, rule_id: int) -> Rule | None: ...

    def list_active_rules(self, owner_id: int) -> list[Rule]: ...

    def list_active_rules_for_target(self, target_id: int) -> list[Rule]: ...
