"""Plan tier limits — materialization window length and Today queue cap."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from reminder_engine.config import settings
from reminder_engine.data.models import PlanTier


@dataclass(frozen=True)
class PlanLimits:
    window_days: int
    queue_cap: int


def limits_for(tier: PlanTier) -> PlanLimits:
    """Return the limits for a tier, read from settings on every call."""
    match tier:
        case PlanTier.FREE:
            return PlanLimits(settings.FREE_WINDOW_DAYS, settings.FREE_QUEUE_CAP)
        case PlanTier.PRO:
            return PlanLimits(settings.PRO_WINDOW_DAYS, settings.PRO_QUEUE_CAP)
    raise ValueError(f"Unhandled plan tier: {tier!r}")


def materialization_window(today: date, tier: PlanTier) -> tuple[date, date]:
    """Return the inclusive [start, end] window for a tier, starting today."""
    return today, today + timedelta(days=limits_for(tier).window_days)
