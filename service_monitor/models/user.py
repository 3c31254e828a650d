"""On-call user model.

Owned by the user CRUD collaborator. The escalation engine reads the
phone number for notification addressing.
"""

import uuid

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from service_monitor.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """A person who can be paged.

    Attributes:
        id: Unique user identifier (UUID)
        name: Display name
        email: Email address (unique)
        phone: E.164 phone number used for SMS and voice
        role: Free-form role label (e.g. "admin", "engineer")
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    phone: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="engineer",
    )

    def __repr__(self) -> str:
        return f"<User(name={self.name}, phone={self.phone})>"
