"""Target port — anchor and display data for the people rules are about."""

from __future__ import annotations

from typing import Protocol

from reminder_engine.data.models import Contact


class TargetPort(Protocol):
    """Abstract target provider used by core modules.

    Implementations return None / omit ids for targets that do not exist.
    """

    def get_target(self, target_id: int) -> Contact | None: ...

    def get_targets(self, target_ids: list[int], owner_id: int) -> dict[int, Contact]: ...
