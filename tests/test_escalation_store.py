"""Tests for escalation persistence queries."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from service_monitor.models.alert import AlertStatus, EscalationState
from service_monitor.models.alert_notification import (
    AlertNotification,
    NotificationChannel,
    NotificationStatus,
)
from service_monitor.services.escalation_store import (
    AlertSnapshot,
    SqlEscalationStore,
    fetch_alert_snapshot,
    latest_notification_acknowledged,
)


def _mock_db(first=None, scalar=None):
    db = AsyncMock()
    db.add = MagicMock()
    result = MagicMock()
    result.first.return_value = first
    result.scalar_one_or_none.return_value = scalar
    db.execute = AsyncMock(return_value=result)
    return db


def _session_maker(db):
    maker = MagicMock()
    maker.return_value.__aenter__ = AsyncMock(return_value=db)
    maker.return_value.__aexit__ = AsyncMock(return_value=False)
    return maker


def _sql(db) -> str:
    statement = db.execute.call_args[0][0]
    return str(statement.compile(dialect=postgresql.dialect()))


class TestLatestNotificationAcknowledged:
    @pytest.mark.asyncio
    async def test_orders_by_sent_at_newest_first(self):
        db = _mock_db(first=None)

        await latest_notification_acknowledged(db, uuid.uuid4(), uuid.uuid4())

        sql = _sql(db)
        assert "ORDER BY alert_notifications.sent_at DESC" in sql
        assert "LIMIT" in sql

    @pytest.mark.asyncio
    async def test_no_notification_is_not_acknowledged(self):
        db = _mock_db(first=None)

        assert await latest_notification_acknowledged(db, uuid.uuid4(), uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_unanswered_latest_is_not_acknowledged(self):
        db = _mock_db(first=(None,))

        assert await latest_notification_acknowledged(db, uuid.uuid4(), uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_answered_latest_is_acknowledged(self):
        db = _mock_db(first=(datetime.now(UTC),))

        assert await latest_notification_acknowledged(db, uuid.uuid4(), uuid.uuid4()) is True


class TestFetchAlertSnapshot:
    @pytest.mark.asyncio
    async def test_builds_snapshot_with_service_name(self):
        alert_id, service_id = uuid.uuid4(), uuid.uuid4()
        row = (
            alert_id,
            service_id,
            "billing",
            AlertStatus.ACTIVE,
            EscalationState.RUNNING,
            2,
            "voice",
        )
        db = _mock_db(first=row)

        snapshot = await fetch_alert_snapshot(db, alert_id)

        assert snapshot == AlertSnapshot(
            id=alert_id,
            service_id=service_id,
            service_name="billing",
            status=AlertStatus.ACTIVE,
            escalation_state=EscalationState.RUNNING,
            escalation_level=2,
            escalation_channel="voice",
        )
        assert "LEFT OUTER JOIN services" in _sql(db)

    @pytest.mark.asyncio
    async def test_missing_alert_returns_none(self):
        db = _mock_db(first=None)

        assert await fetch_alert_snapshot(db, uuid.uuid4()) is None


class TestSqlEscalationStore:
    @pytest.mark.asyncio
    async def test_record_notification_inserts_sent_row(self):
        db = _mock_db()
        store = SqlEscalationStore(_session_maker(db))
        alert_id, user_id = uuid.uuid4(), uuid.uuid4()

        await store.record_notification(alert_id, user_id, NotificationChannel.VOICE)

        notification = db.add.call_args[0][0]
        assert isinstance(notification, AlertNotification)
        assert notification.alert_id == alert_id
        assert notification.user_id == user_id
        assert notification.channel == NotificationChannel.VOICE
        assert notification.status == NotificationStatus.SENT
        assert notification.responded_at is None
        assert notification.sent_at is not None
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_is_resolved(self):
        db = _mock_db(scalar=AlertStatus.RESOLVED)
        store = SqlEscalationStore(_session_maker(db))

        assert await store.is_resolved(uuid.uuid4()) is True

    @pytest.mark.asyncio
    async def test_missing_alert_is_not_resolved(self):
        db = _mock_db(scalar=None)
        store = SqlEscalationStore(_session_maker(db))

        assert await store.is_resolved(uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_save_position_writes_level_and_channel(self):
        db = _mock_db()
        store = SqlEscalationStore(_session_maker(db))

        await store.save_position(
            uuid.uuid4(), EscalationState.RUNNING, 2, NotificationChannel.SMS
        )

        params = db.execute.call_args[0][0].compile().params
        assert params["escalation_level"] == 2
        assert params["escalation_channel"] == "sms"
        assert params["escalation_updated_at"] is not None
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_position_without_step_keeps_stored_position(self):
        db = _mock_db()
        store = SqlEscalationStore(_session_maker(db))

        await store.save_position(uuid.uuid4(), EscalationState.EXHAUSTED)

        params = db.execute.call_args[0][0].compile().params
        assert "escalation_level" not in params
        assert "escalation_channel" not in params

    @pytest.mark.asyncio
    async def test_save_position_with_owner_only_writes_while_owned(self):
        db = _mock_db(first=None)
        store = SqlEscalationStore(_session_maker(db))

        saved = await store.save_position(
            uuid.uuid4(),
            EscalationState.RUNNING,
            1,
            NotificationChannel.SMS,
            owner="worker-a",
        )

        assert saved is False
        statement = db.execute.call_args[0][0]
        assert "alerts.escalation_owner = %(escalation_owner_1)s" in _sql(db)
        params = statement.compile().params
        assert params["escalation_owner_1"] == "worker-a"
        assert params["escalation_heartbeat_at"] is not None


class TestLease:
    @pytest.mark.asyncio
    async def test_claim_is_a_single_conditional_update(self):
        alert_id = uuid.uuid4()
        db = _mock_db(first=(alert_id,))
        store = SqlEscalationStore(_session_maker(db))

        claimed = await store.claim(alert_id, "worker-a", 60)

        assert claimed is True
        sql = _sql(db)
        assert sql.startswith("UPDATE alerts SET")
        assert "alerts.escalation_owner IS NULL" in sql
        assert "alerts.escalation_heartbeat_at <" in sql
        assert "RETURNING alerts.id" in sql
        params = db.execute.call_args[0][0].compile().params
        assert params["escalation_owner"] == "worker-a"
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_claim_lost_when_no_row_matches(self):
        db = _mock_db(first=None)
        store = SqlEscalationStore(_session_maker(db))

        assert await store.claim(uuid.uuid4(), "worker-b", 60) is False

    @pytest.mark.asyncio
    async def test_claim_treats_heartbeat_older_than_lease_as_stale(self):
        db = _mock_db(first=None)
        store = SqlEscalationStore(_session_maker(db))

        before = datetime.now(UTC)
        await store.claim(uuid.uuid4(), "worker-a", 60)

        params = db.execute.call_args[0][0].compile().params
        stale_before = params["escalation_heartbeat_at_1"]
        assert before - timedelta(seconds=61) < stale_before
        assert stale_before <= datetime.now(UTC) - timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_renew_lease_reports_takeover(self):
        db = _mock_db(first=None)
        store = SqlEscalationStore(_session_maker(db))

        assert await store.renew_lease(uuid.uuid4(), "worker-a") is False
        assert "alerts.escalation_owner = " in _sql(db)

    @pytest.mark.asyncio
    async def test_release_clears_only_own_lease(self):
        db = _mock_db()
        store = SqlEscalationStore(_session_maker(db))

        await store.release(uuid.uuid4(), "worker-a")

        params = db.execute.call_args[0][0].compile().params
        assert params["escalation_owner"] is None
        assert params["escalation_owner_1"] == "worker-a"
        db.commit.assert_awaited_once()
