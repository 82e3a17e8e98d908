"""
Reminder Engine — Nightly sweep.

Once a night, every owner's rules are re-materialized with the owner's
current tier (so the window slides forward by a day) and stale instances
are pruned. The sweep is safe to re-run at any time: materialization is
idempotent and pruning only removes what is already past retention.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from reminder_engine.config import settings
from reminder_engine.core.errors import StorageError
from reminder_engine.core.materializer import Materializer
from reminder_engine.data.db import ContactDB, InstanceDB, OwnerDB, RuleDB
from reminder_engine.data.models import Owner
from reminder_engine.ports.tier_port import TierPort

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    owners_processed: int = 0
    instances_created: int = 0
    instances_pruned: int = 0
    rule_errors: int = 0
    failed_owners: list[int] = field(default_factory=list)


def _sweep_owner(materializer: Materializer, owner: Owner) -> tuple[int, int, int]:
    result = materializer.materialize_for_owner(owner.id, owner.tier)
    pruned = materializer.prune_stale(owner.id)
    return result.instances_created, pruned, len(result.errors)


async def run_sweep(materializer: Materializer, owners: list[Owner]) -> SweepReport:
    """Materialize and prune every owner, one at a time.

    Storage calls are blocking sqlite3, so each owner runs in a worker
    thread. A StorageError for one owner is logged and the sweep continues.
    """
    report = SweepReport()
    for owner in owners:
        try:
            created, pruned, errors = await asyncio.to_thread(
                _sweep_owner, materializer, owner,
            )
        except StorageError as exc:
            logger.error("Sweep failed for owner %d: %s", owner.id, exc)
            report.failed_owners.append(owner.id)
            continue
        report.owners_processed += 1
        report.instances_created += created
        report.instances_pruned += pruned
        report.rule_errors += errors

    logger.info(
        "Sweep finished: %d owners, %d created, %d pruned, %d rule errors, %d failed",
        report.owners_processed, report.instances_created, report.instances_pruned,
        report.rule_errors, len(report.failed_owners),
    )
    return report


def _build_materializer() -> tuple[Materializer, TierPort]:
    materializer = Materializer(
        rules=RuleDB(), targets=ContactDB(), instances=InstanceDB(),
    )
    return materializer, OwnerDB()


async def nightly_sweep() -> SweepReport:
    """Scheduled job: sweep every registered owner."""
    materializer, tiers = _build_materializer()
    owners = await asyncio.to_thread(tiers.list_owners)
    return await run_sweep(materializer, owners)


def setup_scheduler() -> AsyncIOScheduler:
    """Register the nightly sweep at SWEEP_HOUR:SWEEP_MINUTE in TIMEZONE."""
    scheduler = AsyncIOScheduler(timezone=settings.TIMEZONE)
    scheduler.add_job(
        nightly_sweep,
        CronTrigger(
            hour=settings.SWEEP_HOUR,
            minute=settings.SWEEP_MINUTE,
            timezone=settings.TIMEZONE,
        ),
        id="nightly_sweep",
        replace_existing=True,
    )
    logger.info(
        "Scheduled nightly sweep at %02d:%02d %s",
        settings.SWEEP_HOUR, settings.SWEEP_MINUTE, settings.TIMEZONE,
    )
    return scheduler


async def _serve() -> None:
    scheduler = setup_scheduler()
    scheduler.start()
    logger.info("Scheduler started")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)


def main() -> None:
    """Entry point: run the scheduler until interrupted."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Scheduler stopped")
