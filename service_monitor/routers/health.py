"""Health check endpoints for container orchestration.

These report on this API process itself, not on the monitored services.
"""

from typing import Any

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from service_monitor.database import check_database_connection

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=None)
async def health_check(request: Request) -> Response:
    """
    Health check endpoint with database and escalation status.

    Returns 200 with {"status": "healthy", ...} when the database is
    reachable, 503 with {"status": "degraded", ...} otherwise.
    """
    db_connected = await check_database_connection()
    engine = getattr(request.app.state, "escalation_engine", None)

    content = {
        "status": "healthy" if db_connected else "degraded",
        "database": "connected" if db_connected else "disconnected",
        "active_escalations": engine.active_runs if engine is not None else 0,
    }
    return JSONResponse(
        status_code=(
            status.HTTP_200_OK if db_connected else status.HTTP_503_SERVICE_UNAVAILABLE
        ),
        content=content,
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, Any]:
    """
    Liveness probe.

    Succeeds while the process is running; never checks dependencies.
    """
    return {"status": "alive"}


@router.get("/health/ready", response_model=None)
async def readiness_probe() -> Response:
    """
    Readiness probe.

    Checks database connectivity so traffic is only routed to an
    instance that can serve it.
    """
    db_connected = await check_database_connection()

    if db_connected:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "status": "ready",
                "database": "connected",
            },
        )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "not_ready",
            "database": "disconnected",
        },
    )
