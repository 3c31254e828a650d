"""Tests for escalation chain resolution and migration config."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from service_monitor.core.migrations import get_alembic_config
from service_monitor.services.escalation_chain import (
    ChainMember,
    SqlChainResolver,
    get_escalation_chain,
)


def _mock_db(rows):
    db = AsyncMock()
    result = MagicMock()
    result.all.return_value = rows
    db.execute = AsyncMock(return_value=result)
    return db


class TestGetEscalationChain:
    @pytest.mark.asyncio
    async def test_rows_become_chain_members(self):
        first, second = uuid.uuid4(), uuid.uuid4()
        db = _mock_db(
            [
                (1, first, "Ada", "+15550000001"),
                (2, second, "Grace", "+15550000002"),
            ]
        )

        chain = await get_escalation_chain(db, uuid.uuid4())

        assert chain == [
            ChainMember(level=1, user_id=first, name="Ada", phone="+15550000001"),
            ChainMember(level=2, user_id=second, name="Grace", phone="+15550000002"),
        ]
        sql = str(db.execute.call_args[0][0].compile(dialect=postgresql.dialect()))
        assert "ORDER BY escalation_chains.level ASC" in sql

    @pytest.mark.asyncio
    async def test_unconfigured_service_has_empty_chain(self):
        assert await get_escalation_chain(_mock_db([]), uuid.uuid4()) == []

    @pytest.mark.asyncio
    async def test_resolver_uses_its_own_session(self):
        db = _mock_db([])
        maker = MagicMock()
        maker.return_value.__aenter__ = AsyncMock(return_value=db)
        maker.return_value.__aexit__ = AsyncMock(return_value=False)

        await SqlChainResolver(maker).resolve(uuid.uuid4())

        maker.assert_called_once_with()
        db.execute.assert_awaited_once()


class TestAlembicConfig:
    def test_points_at_project_migrations(self):
        config = get_alembic_config()

        assert config.get_main_option("script_location").endswith("migrations")
