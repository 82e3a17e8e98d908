"""Tier port — resolves an owner's current subscription tier."""

from __future__ import annotations

from typing import Protocol

from reminder_engine.data.models import Owner, PlanTier


class TierPort(Protocol):
    """Abstract tier resolver; also enumerates owners for the nightly sweep."""

    def get_tier(self, owner_id: int) -> PlanTier: ...

    def list_owners(self) -> list[Owner]: ...
