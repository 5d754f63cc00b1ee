"""Job scheduler using APScheduler."""

import logging
from typing import NoReturn

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from kokitzu.engine import Engine
from kokitzu.settlement import resolver_job, settlement_job

logger = logging.getLogger(__name__)


def create_scheduler(engine: Engine) -> BlockingScheduler:
    """Register the settlement and resolver jobs.

    Both jobs run on the scheduler's thread pool and may overlap; they share
    the engine's single rate limiter.
    """
    settings = engine.settings
    scheduler = BlockingScheduler()

    scheduler.add_job(
        settlement_job,
        IntervalTrigger(seconds=settings.scheduler.settlement_interval_seconds),
        args=[engine.scanner],
        id="settlement-scan",
        name="Settlement: Scanner",
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Registered job: Settlement Scanner (every {settings.scheduler.settlement_interval_seconds}s)"
    )

    scheduler.add_job(
        resolver_job,
        IntervalTrigger(seconds=settings.scheduler.resolver_interval_seconds),
        args=[engine.resolver],
        id="pending-id-resolver",
        name="Settlement: Pending IDs",
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Registered job: Pending ID Resolver (every {settings.scheduler.resolver_interval_seconds}s)"
    )

    return scheduler


def start_scheduler(engine: Engine) -> NoReturn:
    """Start the APScheduler with the settlement jobs."""
    scheduler = create_scheduler(engine)

    try:
        logger.info("✓ Scheduler starting...")
        logger.info(f"✓ {len(scheduler.get_jobs())} jobs registered")
        logger.info("Press Ctrl+C to stop\n")

        scheduler.start()

    except (KeyboardInterrupt, SystemExit):
        logger.info("\nReceived interrupt signal")
        scheduler.shutdown()
        logger.info("✓ Scheduler stopped cleanly")
