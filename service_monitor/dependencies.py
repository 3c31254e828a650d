"""FastAPI dependencies shared by routers."""

from fastapi import HTTPException, Request, status

from service_monitor.services.escalation_engine import EscalationEngine


def get_escalation_engine(request: Request) -> EscalationEngine:
    """Return the process-wide escalation engine built at startup."""
    engine = getattr(request.app.state, "escalation_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Escalation engine is not running",
        )
    return engine
