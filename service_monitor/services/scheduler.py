"""Background job scheduler.

APScheduler-based scheduler for the periodic health check sweep and the
sweep that takes over escalation runs abandoned by a crashed process.
"""

import asyncio

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from service_monitor.config import settings
from service_monitor.database import get_session_maker
from service_monitor.logging_config import get_logger
from service_monitor.models.health_check import HealthStatus
from service_monitor.models.service import Service
from service_monitor.services.health_check import check_service

logger = get_logger(__name__)

scheduler: AsyncIOScheduler | None = None


async def check_all_services(engine) -> None:
    """Probe every monitored service.

    Each service gets its own session so one failure does not affect
    the rest of the sweep.
    """
    async with get_session_maker()() as db:
        result = await db.execute(select(Service).order_by(Service.name))
        services = result.scalars().all()

    if not services:
        logger.debug("No services to check")
        return

    up_count = 0
    down_count = 0
    error_count = 0

    async with httpx.AsyncClient(
        timeout=settings.health_check_timeout_seconds,
        follow_redirects=True,
    ) as client:
        for service in services:
            try:
                async with get_session_maker()() as service_db:
                    check = await check_service(service_db, client, engine, service)
                if check.status == HealthStatus.UP:
                    up_count += 1
                else:
                    down_count += 1
            except Exception as e:
                logger.error(
                    "Health check failed for service",
                    service_id=str(service.id),
                    error=str(e),
                )
                error_count += 1

            # Yield between services so escalation runs stay responsive
            await asyncio.sleep(0)

    logger.info(
        "Health check sweep completed",
        up=up_count,
        down=down_count,
        errors=error_count,
    )


async def resume_orphaned_escalations(engine) -> None:
    """Take over open runs whose owning process stopped renewing its lease."""
    try:
        resumed = await engine.resume_open_escalations()
    except Exception as e:
        logger.error("Escalation resume sweep failed", error=str(e))
        return

    if resumed:
        logger.info("Orphaned escalations resumed", count=resumed)


def start_scheduler(engine) -> AsyncIOScheduler:
    """Start the background job scheduler.

    Args:
        engine: Escalation engine handed to jobs that open alerts.

    Returns:
        The started scheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return scheduler

    scheduler = AsyncIOScheduler()

    if settings.health_check_enabled:
        scheduler.add_job(
            check_all_services,
            trigger=IntervalTrigger(seconds=settings.health_check_interval_seconds),
            args=[engine],
            id="health_check",
            name="Service Health Check",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            "Scheduled health check job",
            interval_seconds=settings.health_check_interval_seconds,
        )

    scheduler.add_job(
        resume_orphaned_escalations,
        trigger=IntervalTrigger(seconds=settings.escalation_lease_seconds),
        args=[engine],
        id="escalation_resume",
        name="Orphaned Escalation Resume",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def stop_scheduler() -> None:
    """Stop the background job scheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance, or None if not started."""
    return scheduler
