"""Alerts router.

Read queries for alerts and their notification history, the operator
actions (resolve, verify), and the acknowledgment endpoint used by the
reply webhook.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from service_monitor.database import get_db
from service_monitor.dependencies import get_escalation_engine
from service_monitor.models.alert import Alert, AlertStatus
from service_monitor.models.alert_notification import AlertNotification
from service_monitor.schemas.alert import (
    AlertAcknowledgeRequest,
    AlertListResponse,
    AlertNotificationHistoryResponse,
    AlertNotificationResponse,
    AlertResponse,
)
from service_monitor.services.alerts import (
    acknowledge_notification,
    get_alert,
    get_notifications_for_alert,
    list_alerts,
    resolve_alert,
    verify_alert,
)
from service_monitor.services.escalation_engine import EscalationEngine

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


def _alert_response(alert: Alert) -> AlertResponse:
    return AlertResponse(
        id=alert.id,
        service_id=alert.service_id,
        status=alert.status.value,
        verification_status=alert.verification_status.value,
        started_at=alert.started_at,
        resolved_at=alert.resolved_at,
        escalation_state=alert.escalation_state.value,
        escalation_level=alert.escalation_level,
        escalation_channel=alert.escalation_channel,
        created_at=alert.created_at,
        updated_at=alert.updated_at,
    )


def _notification_response(notification: AlertNotification) -> AlertNotificationResponse:
    return AlertNotificationResponse(
        id=notification.id,
        alert_id=notification.alert_id,
        user_id=notification.user_id,
        channel=notification.channel.value,
        status=notification.status.value,
        sent_at=notification.sent_at,
        responded_at=notification.responded_at,
    )


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Alert not found",
    )


@router.get("", response_model=AlertListResponse)
async def get_alerts(
    alert_status: AlertStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> AlertListResponse:
    """List alerts, newest first."""
    alerts = await list_alerts(db, status=alert_status, limit=limit)
    return AlertListResponse(
        alerts=[_alert_response(alert) for alert in alerts],
        count=len(alerts),
    )


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert_by_id(
    alert_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> AlertResponse:
    """Get a single alert."""
    alert = await get_alert(db, alert_id)
    if alert is None:
        raise _not_found()
    return _alert_response(alert)


@router.get(
    "/{alert_id}/notifications",
    response_model=AlertNotificationHistoryResponse,
)
async def get_alert_notifications(
    alert_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> AlertNotificationHistoryResponse:
    """Get every notification attempt made for an alert."""
    alert = await get_alert(db, alert_id)
    if alert is None:
        raise _not_found()

    notifications = await get_notifications_for_alert(db, alert_id)
    return AlertNotificationHistoryResponse(
        alert_id=alert_id,
        notifications=[_notification_response(n) for n in notifications],
        count=len(notifications),
    )


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve(
    alert_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    engine: EscalationEngine = Depends(get_escalation_engine),
) -> AlertResponse:
    """Resolve an alert and stop its escalation.

    Resolving an already resolved alert has no further effect.
    """
    alert = await resolve_alert(db, alert_id)
    if alert is None:
        raise _not_found()

    await engine.notify_resolved(alert_id)
    return _alert_response(alert)


@router.post("/{alert_id}/verify", response_model=AlertResponse)
async def verify(
    alert_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> AlertResponse:
    """Confirm that the alert's incident was real."""
    alert = await verify_alert(db, alert_id)
    if alert is None:
        raise _not_found()
    return _alert_response(alert)


@router.post(
    "/{alert_id}/acknowledge",
    response_model=AlertNotificationResponse,
)
async def acknowledge(
    alert_id: uuid.UUID,
    body: AlertAcknowledgeRequest,
    db: AsyncSession = Depends(get_db),
    engine: EscalationEngine = Depends(get_escalation_engine),
) -> AlertNotificationResponse:
    """Record that a paged user responded.

    Stamps the user's most recent notification for the alert and wakes
    the alert's escalation run.
    """
    notification = await acknowledge_notification(db, alert_id, body.user_id)
    if notification is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No notification found for this alert and user",
        )

    await engine.notify_acknowledged(alert_id, body.user_id)
    return _notification_response(notification)
