"""
Periodic maintenance job for the personalization core.

Each run:
1. Decays stale interests in every stored profile
2. Prunes breaking news tracking state and notification history
3. Runs a learning cycle for every user whose buffer calls for one
"""
import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

import structlog

from personalization.core.clock import utcnow

if TYPE_CHECKING:
    from personalization.main import PersonalizationServices

logger = structlog.get_logger()


class MaintenanceJob:
    """
    Keeps long-lived personalization state fresh.

    Per-user learning failures are logged and counted; they never abort
    the run. Decay and pruning failures propagate.
    """

    def __init__(self, services: "PersonalizationServices"):
        self.services = services

    async def run(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Execute one maintenance pass."""
        now = now or utcnow()
        start_time = utcnow()
        logger.info("Starting maintenance job", now=now.isoformat())

        stats: dict[str, Any] = {
            "profiles_decayed": 0,
            "tracked_items_removed": 0,
            "notifications_removed": 0,
            "learning_cycles_run": 0,
            "learning_failures": 0,
            "errors": [],
        }

        try:
            # Stage 1: Interest decay
            stats["profiles_decayed"] = await self.services.interest_modeler.apply_decay_to_all(now)
            logger.info("Interest decay applied", changed=stats["profiles_decayed"])

            # Stage 2: Breaking news state
            pruned = await self.services.breaking_news.prune_tracking_data(now)
            stats.update(pruned)
            logger.info("Tracking data pruned", **pruned)
        except Exception as e:
            logger.error("Maintenance job failed", error=str(e))
            stats["errors"].append(str(e))
            raise

        # Stage 3: Due learning cycles
        await self._run_learning_cycles(now, stats)

        elapsed = (utcnow() - start_time).total_seconds()
        logger.info("Maintenance job completed", elapsed_seconds=elapsed, stats=stats)
        return stats

    async def _run_learning_cycles(self, now: datetime, stats: dict[str, Any]) -> None:
        learner = self.services.interaction_learner
        for user_id in await learner.list_user_ids():
            try:
                if not await learner.should_trigger_learning(user_id, now):
                    continue
                outcome = await learner.perform_learning(user_id, now)
                if outcome.success:
                    stats["learning_cycles_run"] += 1
            except Exception as e:
                logger.error("Learning cycle failed", user_id=user_id, error=str(e))
                stats["learning_failures"] += 1
                stats["errors"].append(f"{user_id}: {e}")


async def run_maintenance_job(database_url: Optional[str] = None) -> dict[str, Any]:
    """Entry point for running the maintenance job once."""
    from personalization.config import get_settings
    from personalization.main import build_services, configure_logging
    from personalization.models.database import Database

    settings = get_settings()
    configure_logging(settings.log_level)

    database = Database(database_url or settings.database_url)
    await database.create_tables()
    try:
        services = build_services(settings, database)
        return await MaintenanceJob(services).run()
    finally:
        await database.dispose()


def main() -> None:
    asyncio.run(run_maintenance_job())


if __name__ == "__main__":
    main()
