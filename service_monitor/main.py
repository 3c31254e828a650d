"""Service Monitor FastAPI Application."""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from service_monitor.config import settings
from service_monitor.database import close_database, get_session_maker
from service_monitor.logging_config import get_logger, setup_logging
from service_monitor.middleware import CorrelationIdMiddleware
from service_monitor.routers import alerts, health
from service_monitor.services.acknowledgment import AcknowledgmentSignals
from service_monitor.services.escalation_chain import SqlChainResolver
from service_monitor.services.escalation_engine import EscalationEngine
from service_monitor.services.escalation_store import SqlEscalationStore
from service_monitor.services.notification_channel import TwilioChannel
from service_monitor.services.scheduler import start_scheduler, stop_scheduler
from service_monitor.services.signal_relay import RedisSignalRelay, create_redis_client

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)


def build_escalation_engine() -> EscalationEngine:
    """Wire the escalation engine to the database and Twilio."""
    session_maker = get_session_maker()
    return EscalationEngine(
        store=SqlEscalationStore(session_maker),
        chain_resolver=SqlChainResolver(session_maker),
        channel=TwilioChannel.from_settings(),
        signals=AcknowledgmentSignals(),
        response_timeout=settings.escalation_response_timeout_seconds,
        poll_interval=settings.escalation_poll_interval_seconds,
        lease_seconds=settings.escalation_lease_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    if settings.run_migrations_on_startup:
        from service_monitor.core.migrations import run_migrations

        # Alembic's env.py drives its own event loop
        await asyncio.to_thread(run_migrations)

    engine = build_escalation_engine()
    app.state.escalation_engine = engine

    relay = None
    if settings.ack_signal_backend == "redis":
        relay = RedisSignalRelay(
            create_redis_client(),
            settings.ack_signal_channel,
            on_acknowledged=engine.signals.notify_acknowledged,
            on_resolved=engine.cancel,
        )
        engine.attach_relay(relay)
        relay.start()
        logger.info("Redis escalation signal relay started")

    if settings.escalation_resume_on_startup:
        resumed = await engine.resume_open_escalations()
        logger.info("Open escalations resumed", count=resumed)

    start_scheduler(engine)
    logger.info("Service Monitor API started")

    yield

    logger.info("Shutting down Service Monitor API...")
    stop_scheduler()
    await engine.shutdown()
    if relay is not None:
        await relay.stop()
    await close_database()
    logger.info("Service Monitor API shutdown complete")


app = FastAPI(
    title="Service Monitor API",
    description="Service health monitoring with on-call alert escalation",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(health.router)
app.include_router(alerts.router)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint."""
    return {
        "name": "Service Monitor API",
        "version": "0.1.0",
        "docs": "/docs",
    }
