"""Alert lifecycle and read queries.

Creation, operator actions (resolve, verify), the acknowledgment write
path, and the history queries used by the API. Escalation itself lives
in escalation_engine; callers that create or resolve alerts pass the
outcome on to the engine.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from service_monitor.logging_config import get_logger
from service_monitor.models.alert import (
    Alert,
    AlertStatus,
    EscalationState,
    VerificationStatus,
)
from service_monitor.models.alert_notification import (
    AlertNotification,
    NotificationStatus,
)

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 100


async def create_alert(db: AsyncSession, service_id: uuid.UUID) -> Alert | None:
    """Create and commit a new active alert for a service.

    Args:
        db: Database session.
        service_id: Service that failed its health check.

    Returns:
        The persisted Alert, or None if another writer opened an active
        alert for the service first.
    """
    now = datetime.now(UTC)
    alert = Alert(
        service_id=service_id,
        status=AlertStatus.ACTIVE,
        verification_status=VerificationStatus.PENDING,
        escalation_state=EscalationState.PENDING,
        started_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(alert)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info(
            "Service already has an active alert",
            service_id=str(service_id),
        )
        return None
    await db.refresh(alert)

    logger.info(
        "Alert created",
        alert_id=str(alert.id),
        service_id=str(service_id),
    )
    return alert


async def get_alert(db: AsyncSession, alert_id: uuid.UUID) -> Alert | None:
    """Get an alert by ID."""
    result = await db.execute(select(Alert).where(Alert.id == alert_id))
    return result.scalar_one_or_none()


async def list_alerts(
    db: AsyncSession,
    status: AlertStatus | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> list[Alert]:
    """List alerts, newest first, optionally filtered by status."""
    query = select(Alert)
    if status is not None:
        query = query.where(Alert.status == status)
    result = await db.execute(query.order_by(Alert.started_at.desc()).limit(limit))
    return list(result.scalars().all())


async def get_active_alert_for_service(
    db: AsyncSession,
    service_id: uuid.UUID,
) -> Alert | None:
    """Get the newest active alert for a service, if any."""
    result = await db.execute(
        select(Alert)
        .where(
            Alert.service_id == service_id,
            Alert.status == AlertStatus.ACTIVE,
        )
        .order_by(Alert.started_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_notifications_for_alert(
    db: AsyncSession,
    alert_id: uuid.UUID,
) -> list[AlertNotification]:
    """Get the notification history for an alert, ordered by sent_at."""
    result = await db.execute(
        select(AlertNotification)
        .where(AlertNotification.alert_id == alert_id)
        .order_by(AlertNotification.sent_at)
    )
    return list(result.scalars().all())


async def resolve_alert(db: AsyncSession, alert_id: uuid.UUID) -> Alert | None:
    """Mark an alert resolved.

    Re-resolving an already resolved alert keeps the original
    resolved_at.

    Args:
        db: Database session.
        alert_id: Alert to resolve.

    Returns:
        The updated Alert, or None if it does not exist.
    """
    alert = await get_alert(db, alert_id)
    if alert is None:
        return None

    if alert.status == AlertStatus.RESOLVED:
        logger.debug("Alert already resolved", alert_id=str(alert_id))
        return alert

    alert.status = AlertStatus.RESOLVED
    alert.resolved_at = datetime.now(UTC)
    await db.commit()
    await db.refresh(alert)

    logger.info("Alert resolved", alert_id=str(alert_id))
    return alert


async def verify_alert(db: AsyncSession, alert_id: uuid.UUID) -> Alert | None:
    """Mark an alert's incident as verified.

    Independent of escalation and resolution state.

    Returns:
        The updated Alert, or None if it does not exist.
    """
    alert = await get_alert(db, alert_id)
    if alert is None:
        return None

    if alert.verification_status != VerificationStatus.VERIFIED:
        alert.verification_status = VerificationStatus.VERIFIED
        await db.commit()
        await db.refresh(alert)
        logger.info("Alert verified", alert_id=str(alert_id))

    return alert


async def acknowledge_notification(
    db: AsyncSession,
    alert_id: uuid.UUID,
    user_id: uuid.UUID,
) -> AlertNotification | None:
    """Record a user's acknowledgment of an alert.

    Stamps the user's most recent notification for the alert. A row that
    already has responded_at keeps its original value.

    Args:
        db: Database session.
        alert_id: Alert being acknowledged.
        user_id: Responding user.

    Returns:
        The acknowledged notification, or None if the user was never
        notified about this alert.
    """
    result = await db.execute(
        select(AlertNotification)
        .where(
            AlertNotification.alert_id == alert_id,
            AlertNotification.user_id == user_id,
        )
        .order_by(AlertNotification.sent_at.desc())
        .limit(1)
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        return None

    if notification.responded_at is None:
        notification.responded_at = datetime.now(UTC)
        notification.status = NotificationStatus.ACKNOWLEDGED
        await db.commit()
        await db.refresh(notification)
        logger.info(
            "Alert acknowledged",
            alert_id=str(alert_id),
            user_id=str(user_id),
            channel=notification.channel.value,
        )

    return notification
