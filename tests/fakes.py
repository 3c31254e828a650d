"""In-memory doubles for the escalation engine's collaborators."""

import itertools
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import OperationalError

from service_monitor.models.alert import (
    OPEN_ESCALATION_STATES,
    AlertStatus,
    EscalationState,
)
from service_monitor.models.alert_notification import NotificationChannel
from service_monitor.services.escalation_chain import ChainMember
from service_monitor.services.escalation_store import AlertSnapshot
from service_monitor.services.notification_channel import (
    BaseNotificationChannel,
    NotificationError,
)


def db_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


def make_chain(length: int, start_level: int = 1) -> list[ChainMember]:
    """Build a chain with one distinct user per level."""
    return [
        ChainMember(
            level=level,
            user_id=uuid.uuid4(),
            name=f"User {level}",
            phone=f"+1555000{level:04d}",
        )
        for level in range(start_level, start_level + length)
    ]


@dataclass
class FakeAlert:
    id: uuid.UUID
    service_id: uuid.UUID
    service_name: str | None
    status: AlertStatus = AlertStatus.ACTIVE
    escalation_state: EscalationState = EscalationState.PENDING
    escalation_level: int | None = None
    escalation_channel: str | None = None
    escalation_owner: str | None = None
    escalation_heartbeat_at: datetime | None = None


@dataclass
class FakeNotification:
    alert_id: uuid.UUID
    user_id: uuid.UUID
    channel: NotificationChannel
    sent_at: int
    responded_at: datetime | None = None


@dataclass
class FakeEscalationStore:
    """Store double with the same surface as SqlEscalationStore."""

    alerts: dict[uuid.UUID, FakeAlert] = field(default_factory=dict)
    notifications: list[FakeNotification] = field(default_factory=list)
    positions: list[tuple] = field(default_factory=list)
    fail_records: int = 0
    fail_polls: int = 0
    fail_saves: bool = False
    _clock: itertools.count = field(default_factory=itertools.count)

    def add_alert(
        self,
        service_id: uuid.UUID | None = None,
        service_name: str | None = "checkout-api",
        **fields,
    ) -> FakeAlert:
        alert = FakeAlert(
            id=uuid.uuid4(),
            service_id=service_id or uuid.uuid4(),
            service_name=service_name,
            **fields,
        )
        self.alerts[alert.id] = alert
        return alert

    def _snapshot(self, alert: FakeAlert) -> AlertSnapshot:
        return AlertSnapshot(
            id=alert.id,
            service_id=alert.service_id,
            service_name=alert.service_name,
            status=alert.status,
            escalation_state=alert.escalation_state,
            escalation_level=alert.escalation_level,
            escalation_channel=alert.escalation_channel,
        )

    async def get_alert(self, alert_id: uuid.UUID) -> AlertSnapshot | None:
        alert = self.alerts.get(alert_id)
        return self._snapshot(alert) if alert is not None else None

    async def list_open_escalations(self) -> list[AlertSnapshot]:
        return [
            self._snapshot(alert)
            for alert in self.alerts.values()
            if alert.status == AlertStatus.ACTIVE
            and alert.escalation_state
            in (EscalationState.PENDING, EscalationState.RUNNING)
        ]

    async def is_resolved(self, alert_id: uuid.UUID) -> bool:
        if self.fail_polls:
            self.fail_polls -= 1
            raise db_error()
        alert = self.alerts.get(alert_id)
        return alert is not None and alert.status == AlertStatus.RESOLVED

    def _latest(self, alert_id: uuid.UUID, user_id: uuid.UUID) -> FakeNotification | None:
        rows = [
            n for n in self.notifications
            if n.alert_id == alert_id and n.user_id == user_id
        ]
        return max(rows, key=lambda n: n.sent_at) if rows else None

    async def has_acknowledged(self, alert_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        if self.fail_polls:
            self.fail_polls -= 1
            raise db_error()
        latest = self._latest(alert_id, user_id)
        return latest is not None and latest.responded_at is not None

    async def record_notification(
        self,
        alert_id: uuid.UUID,
        user_id: uuid.UUID,
        channel: NotificationChannel,
    ) -> uuid.UUID:
        if self.fail_records:
            self.fail_records -= 1
            raise db_error()
        self.notifications.append(
            FakeNotification(alert_id, user_id, channel, sent_at=next(self._clock))
        )
        return uuid.uuid4()

    async def claim(self, alert_id, owner, lease_seconds) -> bool:
        alert = self.alerts.get(alert_id)
        if alert is None or alert.escalation_state not in OPEN_ESCALATION_STATES:
            return False
        now = datetime.now(UTC)
        lease_live = (
            alert.escalation_owner is not None
            and alert.escalation_owner != owner
            and alert.escalation_heartbeat_at is not None
            and alert.escalation_heartbeat_at >= now - timedelta(seconds=lease_seconds)
        )
        if lease_live:
            return False
        alert.escalation_owner = owner
        alert.escalation_heartbeat_at = now
        return True

    async def renew_lease(self, alert_id, owner) -> bool:
        alert = self.alerts.get(alert_id)
        if alert is None or alert.escalation_owner != owner:
            return False
        alert.escalation_heartbeat_at = datetime.now(UTC)
        return True

    async def release(self, alert_id, owner) -> None:
        alert = self.alerts.get(alert_id)
        if alert is not None and alert.escalation_owner == owner:
            alert.escalation_owner = None
            alert.escalation_heartbeat_at = None

    async def save_position(
        self, alert_id, state, level=None, channel=None, owner=None
    ) -> bool:
        if self.fail_saves:
            raise db_error()
        alert = self.alerts[alert_id]
        if owner is not None:
            if alert.escalation_owner != owner:
                return False
            alert.escalation_heartbeat_at = datetime.now(UTC)
        alert.escalation_state = state
        if level is not None:
            alert.escalation_level = level
        if channel is not None:
            alert.escalation_channel = channel.value
        self.positions.append((state, level, channel))
        return True

    # Collaborator-side mutations

    def acknowledge(self, alert_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        latest = self._latest(alert_id, user_id)
        if latest is None:
            return False
        if latest.responded_at is None:
            latest.responded_at = datetime.now(UTC)
        return True

    def resolve(self, alert_id: uuid.UUID) -> None:
        self.alerts[alert_id].status = AlertStatus.RESOLVED


class FakeChainResolver:
    def __init__(self, chains: dict | None = None, error: Exception | None = None):
        self.chains = chains or {}
        self.error = error
        self.calls: list[uuid.UUID] = []

    async def resolve(self, service_id: uuid.UUID) -> list[ChainMember]:
        self.calls.append(service_id)
        if self.error is not None:
            raise self.error
        return list(self.chains.get(service_id, []))


class FakeChannel(BaseNotificationChannel):
    """Records every send; optionally fails or runs a hook per send."""

    def __init__(self, fail: bool = False, on_send=None):
        self.fail = fail
        self.on_send = on_send
        self.sent: list[tuple[NotificationChannel, str, str]] = []

    async def send(self, channel: NotificationChannel, to: str, message: str) -> bool:
        self.sent.append((channel, to, message))
        if self.on_send is not None:
            self.on_send(len(self.sent), channel, to)
        if self.fail:
            raise NotificationError("carrier unavailable")
        return True
