"""Escalation chain resolution.

Reads a service's on-call ladder: ordered (level, user) pairs with the
phone number used for paging. Pure read, no side effects.
"""

import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from service_monitor.models.escalation_chain import EscalationChainEntry
from service_monitor.models.user import User


@dataclass(frozen=True)
class ChainMember:
    """One rung of an escalation chain, joined with its user."""

    level: int
    user_id: uuid.UUID
    name: str
    phone: str


async def get_escalation_chain(
    db: AsyncSession,
    service_id: uuid.UUID,
) -> list[ChainMember]:
    """Get the escalation chain for a service.

    Args:
        db: Database session.
        service_id: Service UUID.

    Returns:
        Chain members in ascending level order; empty if none configured.
    """
    result = await db.execute(
        select(
            EscalationChainEntry.level,
            User.id,
            User.name,
            User.phone,
        )
        .join(User, User.id == EscalationChainEntry.user_id)
        .where(EscalationChainEntry.service_id == service_id)
        .order_by(EscalationChainEntry.level.asc())
    )
    return [
        ChainMember(level=level, user_id=user_id, name=name, phone=phone)
        for level, user_id, name, phone in result.all()
    ]


class SqlChainResolver:
    """Chain resolver backed by the escalation_chains table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def resolve(self, service_id: uuid.UUID) -> list[ChainMember]:
        async with self._session_maker() as db:
            return await get_escalation_chain(db, service_id)
