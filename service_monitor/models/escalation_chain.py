"""Escalation chain model.

One row per rung of a service's on-call ladder. Levels are unique per
service and walked in ascending order.
"""

import uuid

from sqlalchemy import ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from service_monitor.models.base import Base, TimestampMixin


class EscalationChainEntry(Base, TimestampMixin):
    """A single level of a service's escalation chain."""

    __tablename__ = "escalation_chains"
    __table_args__ = (
        UniqueConstraint("service_id", "level", name="uq_escalation_chains_level"),
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

    level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Advisory only; the engine's response timeout governs waiting
    wait_time: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=5,
    )

    # Relationships
    service = relationship("Service", back_populates="escalation_chain")
    user = relationship("User")

    def __repr__(self) -> str:
        return (
            f"<EscalationChainEntry(service={self.service_id}, "
            f"level={self.level}, user={self.user_id})>"
        )
