"""Alert model.

One open incident for a service. Alerts are never deleted; resolved
alerts remain as history. The escalation_* columns record the position
of the alert's escalation run so an interrupted run can be resumed.
"""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from service_monitor.models.base import Base, TimestampMixin


class AlertStatus(str, enum.Enum):
    """Operator-visible lifecycle of an alert."""

    ACTIVE = "active"
    RESOLVED = "resolved"


class VerificationStatus(str, enum.Enum):
    """Whether a human confirmed the incident was real."""

    PENDING = "pending"
    VERIFIED = "verified"


class EscalationState(str, enum.Enum):
    """Progress of the alert's escalation run."""

    PENDING = "pending"
    RUNNING = "running"
    ACKNOWLEDGED = "acknowledged"
    EXHAUSTED = "exhausted"
    NO_CHAIN = "no_chain"
    CANCELLED = "cancelled"
    FAILED = "failed"


# States from which a run is still expected to make progress
OPEN_ESCALATION_STATES = (EscalationState.PENDING, EscalationState.RUNNING)


class Alert(Base, TimestampMixin):
    """An incident raised when a service fails its health check.

    Invariant: resolved_at is set if and only if status is RESOLVED.
    A service has at most one ACTIVE alert.
    """

    __tablename__ = "alerts"
    __table_args__ = (
        Index(
            "uq_alerts_one_active_per_service",
            "service_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    service_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[AlertStatus] = mapped_column(
        Enum(
            AlertStatus,
            name="alertstatus",
            create_type=False,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=AlertStatus.ACTIVE,
    )

    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(
            VerificationStatus,
            name="verificationstatus",
            create_type=False,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=VerificationStatus.PENDING,
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Escalation run position
    escalation_state: Mapped[EscalationState] = mapped_column(
        Enum(
            EscalationState,
            name="escalationstate",
            create_type=False,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=EscalationState.PENDING,
    )

    # Chain level and channel of the last issued attempt
    escalation_level: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    escalation_channel: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    escalation_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Process holding the run; the lease lapses when the heartbeat goes stale
    escalation_owner: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    escalation_heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    service = relationship("Service", back_populates="alerts")
    notifications = relationship(
        "AlertNotification",
        back_populates="alert",
        order_by="AlertNotification.sent_at",
    )

    def __repr__(self) -> str:
        return (
            f"<Alert(service={self.service_id}, "
            f"status={self.status.value}, "
            f"escalation={self.escalation_state.value})>"
        )
