"""Service health probing.

Probes each monitored service over HTTP, records the result, and opens
an alert (starting its escalation) when a service is down and has no
active alert yet. A healthy probe never resolves an alert; resolution is
an operator action.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from service_monitor.logging_config import get_logger
from service_monitor.models.alert import Alert
from service_monitor.models.health_check import HealthCheck, HealthStatus
from service_monitor.models.service import Service
from service_monitor.services.alerts import create_alert, get_active_alert_for_service

logger = get_logger(__name__)


@dataclass
class ProbeResult:
    """Outcome of one HTTP probe."""

    status: HealthStatus
    response_time: int
    error: str | None = None


async def probe_service(client: httpx.AsyncClient, url: str) -> ProbeResult:
    """GET a service URL; any 2xx response counts as up.

    Args:
        client: HTTP client (its timeout bounds the probe).
        url: URL to probe.

    Returns:
        ProbeResult with the response time in milliseconds (0 when the
        request never completed).
    """
    start = time.perf_counter()
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        return ProbeResult(
            status=HealthStatus.DOWN,
            response_time=0,
            error=str(e) or type(e).__name__,
        )

    response_time = int((time.perf_counter() - start) * 1000)
    if 200 <= response.status_code < 300:
        return ProbeResult(status=HealthStatus.UP, response_time=response_time)

    return ProbeResult(
        status=HealthStatus.DOWN,
        response_time=response_time,
        error=f"HTTP {response.status_code}",
    )


async def record_health_check(
    db: AsyncSession,
    service_id: uuid.UUID,
    result: ProbeResult,
) -> HealthCheck:
    """Store a probe result."""
    check = HealthCheck(
        service_id=service_id,
        status=result.status,
        response_time=result.response_time,
        error=result.error,
        checked_at=datetime.now(UTC),
    )
    db.add(check)
    await db.commit()
    await db.refresh(check)
    return check


async def open_alert_if_needed(
    db: AsyncSession,
    engine,
    service_id: uuid.UUID,
) -> Alert | None:
    """Open an alert for a failing service unless one is already active.

    The new alert's escalation starts in the background; this returns as
    soon as the alert is committed.

    Returns:
        The newly created Alert, or None if an active alert already exists
        or another writer opened one concurrently.
    """
    existing = await get_active_alert_for_service(db, service_id)
    if existing is not None:
        logger.debug(
            "Service already has an active alert",
            service_id=str(service_id),
            alert_id=str(existing.id),
        )
        return None

    alert = await create_alert(db, service_id)
    if alert is None:
        return None

    engine.start(alert.id)
    return alert


async def check_service(
    db: AsyncSession,
    client: httpx.AsyncClient,
    engine,
    service: Service,
) -> HealthCheck:
    """Probe one service, record the result, and raise an alert if down."""
    result = await probe_service(client, service.url)
    check = await record_health_check(db, service.id, result)

    if result.status == HealthStatus.DOWN:
        logger.warning(
            "Service health check failed",
            service_id=str(service.id),
            service_name=service.name,
            error=result.error,
        )
        await open_alert_if_needed(db, engine, service.id)
    else:
        logger.debug(
            "Service healthy",
            service_id=str(service.id),
            response_time_ms=result.response_time,
        )

    return check
