"""Alert notification model.

One row per delivery attempt. The newest row (by sent_at) for an
(alert, user) pair decides whether that user has acknowledged.
"""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from service_monitor.models.base import Base


class NotificationChannel(str, enum.Enum):
    """Medium used for a notification attempt."""

    SMS = "sms"
    VOICE = "voice"
    EMAIL = "email"


class NotificationStatus(str, enum.Enum):
    """State of a notification attempt."""

    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"


class AlertNotification(Base):
    """A single attempt to page a user about an alert.

    responded_at is written once, by the acknowledgment path, and never
    cleared afterwards.
    """

    __tablename__ = "alert_notifications"
    __table_args__ = (
        Index(
            "ix_alert_notifications_alert_user_sent",
            "alert_id",
            "user_id",
            "sent_at",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    alert_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("alerts.id", ondelete="CASCADE"),
        nullable=False,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    channel: Mapped[NotificationChannel] = mapped_column(
        Enum(
            NotificationChannel,
            name="notificationchannel",
            create_type=False,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )

    status: Mapped[NotificationStatus] = mapped_column(
        Enum(
            NotificationStatus,
            name="notificationstatus",
            create_type=False,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=NotificationStatus.SENT,
    )

    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    alert = relationship("Alert", back_populates="notifications")
    user = relationship("User")

    def __repr__(self) -> str:
        return (
            f"<AlertNotification(alert={self.alert_id}, user={self.user_id}, "
            f"channel={self.channel.value}, status={self.status.value})>"
        )
