"""Persistence used by escalation runs.

Every method opens its own short-lived session so concurrent runs never
share one. The store is the only state shared between runs.
"""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from service_monitor.models.alert import (
    OPEN_ESCALATION_STATES,
    Alert,
    AlertStatus,
    EscalationState,
)
from service_monitor.models.alert_notification import (
    AlertNotification,
    NotificationChannel,
    NotificationStatus,
)
from service_monitor.models.service import Service


@dataclass(frozen=True)
class AlertSnapshot:
    """The fields of an alert an escalation run needs."""

    id: uuid.UUID
    service_id: uuid.UUID
    service_name: str | None
    status: AlertStatus
    escalation_state: EscalationState
    escalation_level: int | None = None
    escalation_channel: str | None = None


def _snapshot_query():
    return select(
        Alert.id,
        Alert.service_id,
        Service.name,
        Alert.status,
        Alert.escalation_state,
        Alert.escalation_level,
        Alert.escalation_channel,
    ).outerjoin(Service, Service.id == Alert.service_id)


async def fetch_alert_snapshot(
    db: AsyncSession,
    alert_id: uuid.UUID,
) -> AlertSnapshot | None:
    """Load one alert with its service name."""
    result = await db.execute(_snapshot_query().where(Alert.id == alert_id))
    row = result.first()
    return AlertSnapshot(*row) if row is not None else None


async def fetch_open_escalations(db: AsyncSession) -> list[AlertSnapshot]:
    """Active alerts whose escalation run has not reached an outcome."""
    result = await db.execute(
        _snapshot_query()
        .where(
            Alert.status == AlertStatus.ACTIVE,
            Alert.escalation_state.in_(OPEN_ESCALATION_STATES),
        )
        .order_by(Alert.started_at)
    )
    return [AlertSnapshot(*row) for row in result.all()]


async def latest_notification_acknowledged(
    db: AsyncSession,
    alert_id: uuid.UUID,
    user_id: uuid.UUID,
) -> bool:
    """Whether the newest notification for (alert, user) has a response.

    Ordering is by sent_at, never by row identity.
    """
    result = await db.execute(
        select(AlertNotification.responded_at)
        .where(
            AlertNotification.alert_id == alert_id,
            AlertNotification.user_id == user_id,
        )
        .order_by(AlertNotification.sent_at.desc())
        .limit(1)
    )
    row = result.first()
    return row is not None and row[0] is not None


class SqlEscalationStore:
    """Escalation persistence backed by the alerts tables."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def get_alert(self, alert_id: uuid.UUID) -> AlertSnapshot | None:
        async with self._session_maker() as db:
            return await fetch_alert_snapshot(db, alert_id)

    async def list_open_escalations(self) -> list[AlertSnapshot]:
        async with self._session_maker() as db:
            return await fetch_open_escalations(db)

    async def is_resolved(self, alert_id: uuid.UUID) -> bool:
        async with self._session_maker() as db:
            result = await db.execute(select(Alert.status).where(Alert.id == alert_id))
            return result.scalar_one_or_none() == AlertStatus.RESOLVED

    async def has_acknowledged(
        self,
        alert_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> bool:
        async with self._session_maker() as db:
            return await latest_notification_acknowledged(db, alert_id, user_id)

    async def record_notification(
        self,
        alert_id: uuid.UUID,
        user_id: uuid.UUID,
        channel: NotificationChannel,
    ) -> uuid.UUID:
        """Insert a notification row immediately before a send attempt."""
        async with self._session_maker() as db:
            notification = AlertNotification(
                alert_id=alert_id,
                user_id=user_id,
                channel=channel,
                status=NotificationStatus.SENT,
                sent_at=datetime.now(UTC),
            )
            db.add(notification)
            await db.commit()
            return notification.id

    async def claim(
        self,
        alert_id: uuid.UUID,
        owner: str,
        lease_seconds: float,
    ) -> bool:
        """Take ownership of an open run unless another owner's lease is live.

        The check and the write are a single conditional UPDATE, so two
        processes racing for the same alert cannot both win.
        """
        now = datetime.now(UTC)
        stale_before = now - timedelta(seconds=lease_seconds)
        async with self._session_maker() as db:
            result = await db.execute(
                update(Alert)
                .where(
                    Alert.id == alert_id,
                    Alert.escalation_state.in_(OPEN_ESCALATION_STATES),
                    or_(
                        Alert.escalation_owner.is_(None),
                        Alert.escalation_owner == owner,
                        Alert.escalation_heartbeat_at.is_(None),
                        Alert.escalation_heartbeat_at < stale_before,
                    ),
                )
                .values(escalation_owner=owner, escalation_heartbeat_at=now)
                .returning(Alert.id)
            )
            claimed = result.first() is not None
            await db.commit()
            return claimed

    async def renew_lease(self, alert_id: uuid.UUID, owner: str) -> bool:
        """Refresh the heartbeat. False means the lease was taken over."""
        async with self._session_maker() as db:
            result = await db.execute(
                update(Alert)
                .where(Alert.id == alert_id, Alert.escalation_owner == owner)
                .values(escalation_heartbeat_at=datetime.now(UTC))
                .returning(Alert.id)
            )
            renewed = result.first() is not None
            await db.commit()
            return renewed

    async def release(self, alert_id: uuid.UUID, owner: str) -> None:
        """Give up ownership so another process may resume the run at once."""
        async with self._session_maker() as db:
            await db.execute(
                update(Alert)
                .where(Alert.id == alert_id, Alert.escalation_owner == owner)
                .values(escalation_owner=None, escalation_heartbeat_at=None)
            )
            await db.commit()

    async def save_position(
        self,
        alert_id: uuid.UUID,
        state: EscalationState,
        level: int | None = None,
        channel: NotificationChannel | None = None,
        owner: str | None = None,
    ) -> bool:
        """Persist the run state and its last issued attempt.

        A None level/channel leaves the stored position unchanged. With an
        owner, the write only applies while that owner holds the lease and
        also renews it. Returns whether a row was written.
        """
        now = datetime.now(UTC)
        values: dict = {
            "escalation_state": state,
            "escalation_updated_at": now,
        }
        if level is not None:
            values["escalation_level"] = level
        if channel is not None:
            values["escalation_channel"] = channel.value

        stmt = update(Alert).where(Alert.id == alert_id)
        if owner is not None:
            stmt = stmt.where(Alert.escalation_owner == owner)
            values["escalation_heartbeat_at"] = now

        async with self._session_maker() as db:
            result = await db.execute(stmt.values(**values).returning(Alert.id))
            saved = result.first() is not None
            await db.commit()
            return saved
