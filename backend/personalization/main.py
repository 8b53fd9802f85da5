"""
Bootstrap for the personalization core: logging, service wiring, scheduler.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from personalization.config import Settings, get_settings
from personalization.jobs.maintenance import MaintenanceJob
from personalization.models.database import Database
from personalization.repositories import (
    InMemoryFocusAreaRepository,
    InMemoryInteractionRepository,
    InMemoryNotificationRepository,
    InMemoryProfileRepository,
    InMemoryScoringConfigRepository,
    NotificationSender,
    SQLFocusAreaRepository,
    SQLProfileRepository,
    SQLScoringConfigRepository,
)
from personalization.services import (
    BreakingNewsDetector,
    FocusAreaManager,
    InteractionLearner,
    InterestModeler,
    RelevanceScorer,
)

logger = structlog.get_logger()


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured JSON logging on top of the stdlib logging module."""
    logging.basicConfig(format="%(message)s", level=log_level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


@dataclass
class PersonalizationServices:
    """All wired components of the personalization core."""
    settings: Settings
    interest_modeler: InterestModeler
    relevance_scorer: RelevanceScorer
    interaction_learner: InteractionLearner
    breaking_news: BreakingNewsDetector
    focus_areas: FocusAreaManager


def build_services(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    notification_sender: Optional[NotificationSender] = None,
) -> PersonalizationServices:
    """
    Wire all services together.

    Profiles, scoring configs and focus areas are stored in the database when
    one is given, in memory otherwise. Interaction buffers and notification
    history are always process-local.
    """
    settings = settings or get_settings()

    if database is not None:
        profiles = SQLProfileRepository(database)
        scoring_configs = SQLScoringConfigRepository(database)
        focus_areas = SQLFocusAreaRepository(database)
    else:
        profiles = InMemoryProfileRepository()
        scoring_configs = InMemoryScoringConfigRepository()
        focus_areas = InMemoryFocusAreaRepository()

    interest_modeler = InterestModeler(profiles, settings)
    relevance_scorer = RelevanceScorer(interest_modeler, scoring_configs, settings)

    return PersonalizationServices(
        settings=settings,
        interest_modeler=interest_modeler,
        relevance_scorer=relevance_scorer,
        interaction_learner=InteractionLearner(
            interest_modeler,
            relevance_scorer,
            InMemoryInteractionRepository(),
            settings,
        ),
        breaking_news=BreakingNewsDetector(
            InMemoryNotificationRepository(),
            notification_sender,
            settings,
        ),
        focus_areas=FocusAreaManager(focus_areas, settings),
    )


def create_scheduler(services: PersonalizationServices) -> AsyncIOScheduler:
    """Scheduler running the maintenance job on a fixed interval (not started)."""
    job = MaintenanceJob(services)

    async def run_maintenance():
        try:
            stats = await job.run()
            logger.info("Maintenance completed", stats=stats)
        except Exception as e:
            logger.error("Maintenance failed", error=str(e))

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_maintenance,
        IntervalTrigger(minutes=services.settings.maintenance_interval_minutes),
        id="maintenance",
        name="Personalization Maintenance",
        replace_existing=True,
    )
    return scheduler


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("Initializing database", url=settings.database_url)
    database = Database(settings.database_url)
    await database.create_tables()

    services = build_services(settings, database)
    scheduler = create_scheduler(services)
    scheduler.start()
    logger.info(
        "Scheduler started",
        app=settings.app_name,
        interval_minutes=settings.maintenance_interval_minutes,
    )

    try:
        await asyncio.Event().wait()
    finally:
        logger.info("Shutting down")
        scheduler.shutdown()
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(main())
