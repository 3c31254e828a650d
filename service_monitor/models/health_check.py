"""Health check result model.

Each probe of a service is stored as one row; the newest row is the
service's current health.
"""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from service_monitor.models.base import Base


class HealthStatus(str, enum.Enum):
    """Outcome of a single probe."""

    UP = "up"
    DOWN = "down"


class HealthCheck(Base):
    """Result of probing a service once."""

    __tablename__ = "health_checks"

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

    status: Mapped[HealthStatus] = mapped_column(
        Enum(
            HealthStatus,
            name="healthstatus",
            create_type=False,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )

    # Milliseconds; 0 when the request never completed
    response_time: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<HealthCheck(service={self.service_id}, status={self.status.value})>"
