"""Monitored service model.

Services are created and edited by the CRUD collaborator; the monitor
only reads them to probe health and to label alert messages.
"""

import enum
import uuid

from sqlalchemy import Enum, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from service_monitor.models.base import Base, TimestampMixin


class ServiceType(str, enum.Enum):
    """How a service is probed."""

    HTTP = "http"
    TCP = "tcp"
    ICMP = "icmp"
    CUSTOM = "custom"


class Service(Base, TimestampMixin):
    """An external service under monitoring."""

    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    service_type: Mapped[ServiceType] = mapped_column(
        "type",
        Enum(
            ServiceType,
            name="servicetype",
            create_type=False,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=ServiceType.HTTP,
    )

    url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    # Relationships
    escalation_chain = relationship(
        "EscalationChainEntry",
        back_populates="service",
        order_by="EscalationChainEntry.level",
    )
    alerts = relationship("Alert", back_populates="service")

    def __repr__(self) -> str:
        return f"<Service(name={self.name}, url={self.url})>"
