"""Tests for alert lifecycle operations."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from service_monitor.models.alert import (
    Alert,
    AlertStatus,
    EscalationState,
    VerificationStatus,
)
from service_monitor.models.alert_notification import (
    NotificationChannel,
    NotificationStatus,
)
from service_monitor.services.alerts import (
    acknowledge_notification,
    create_alert,
    list_alerts,
    resolve_alert,
    verify_alert,
)


def _mock_db(scalar=None):
    db = AsyncMock()
    db.add = MagicMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalars.return_value.all.return_value = []
    db.execute = AsyncMock(return_value=result)
    return db


def _mock_alert(status=AlertStatus.ACTIVE, resolved_at=None):
    alert = MagicMock()
    alert.id = uuid.uuid4()
    alert.status = status
    alert.resolved_at = resolved_at
    alert.verification_status = VerificationStatus.PENDING
    return alert


def _mock_notification(responded_at=None):
    notification = MagicMock()
    notification.id = uuid.uuid4()
    notification.channel = NotificationChannel.SMS
    notification.status = NotificationStatus.SENT
    notification.responded_at = responded_at
    return notification


class TestCreateAlert:
    @pytest.mark.asyncio
    async def test_new_alert_is_active_and_pending_escalation(self):
        db = _mock_db()
        service_id = uuid.uuid4()

        alert = await create_alert(db, service_id)

        assert isinstance(alert, Alert)
        assert alert.service_id == service_id
        assert alert.status == AlertStatus.ACTIVE
        assert alert.verification_status == VerificationStatus.PENDING
        assert alert.escalation_state == EscalationState.PENDING
        assert alert.resolved_at is None
        db.add.assert_called_once_with(alert)
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_active_alert_returns_none(self):
        db = _mock_db()
        db.commit.side_effect = IntegrityError(
            "INSERT INTO alerts", {}, Exception("uq_alerts_one_active_per_service")
        )

        alert = await create_alert(db, uuid.uuid4())

        assert alert is None
        db.rollback.assert_awaited_once()
        db.refresh.assert_not_awaited()

    def test_one_active_alert_per_service_index(self):
        index = next(
            index
            for index in Alert.__table__.indexes
            if index.name == "uq_alerts_one_active_per_service"
        )

        assert index.unique is True
        assert [column.name for column in index.columns] == ["service_id"]
        where = index.dialect_options["postgresql"]["where"]
        assert str(where) == "status = 'active'"


class TestResolveAlert:
    @pytest.mark.asyncio
    async def test_resolve_sets_status_and_timestamp(self):
        alert = _mock_alert()
        db = _mock_db(scalar=alert)

        result = await resolve_alert(db, alert.id)

        assert result is alert
        assert alert.status == AlertStatus.RESOLVED
        assert alert.resolved_at is not None
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_re_resolve_keeps_original_timestamp(self):
        original = datetime.now(UTC) - timedelta(hours=1)
        alert = _mock_alert(status=AlertStatus.RESOLVED, resolved_at=original)
        db = _mock_db(scalar=alert)

        await resolve_alert(db, alert.id)

        assert alert.resolved_at == original
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_alert_returns_none(self):
        db = _mock_db(scalar=None)

        assert await resolve_alert(db, uuid.uuid4()) is None


class TestVerifyAlert:
    @pytest.mark.asyncio
    async def test_verify_marks_verified(self):
        alert = _mock_alert()
        db = _mock_db(scalar=alert)

        await verify_alert(db, alert.id)

        assert alert.verification_status == VerificationStatus.VERIFIED
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_verify_does_not_touch_resolution(self):
        alert = _mock_alert()
        db = _mock_db(scalar=alert)

        await verify_alert(db, alert.id)

        assert alert.status == AlertStatus.ACTIVE
        assert alert.resolved_at is None


class TestAcknowledgeNotification:
    @pytest.mark.asyncio
    async def test_stamps_latest_notification(self):
        notification = _mock_notification()
        db = _mock_db(scalar=notification)

        result = await acknowledge_notification(db, uuid.uuid4(), uuid.uuid4())

        assert result is notification
        assert notification.responded_at is not None
        assert notification.status == NotificationStatus.ACKNOWLEDGED
        db.commit.assert_awaited_once()
        sql = str(db.execute.call_args[0][0].compile(dialect=postgresql.dialect()))
        assert "ORDER BY alert_notifications.sent_at DESC" in sql

    @pytest.mark.asyncio
    async def test_repeat_acknowledgment_keeps_first_response_time(self):
        first_response = datetime.now(UTC) - timedelta(minutes=3)
        notification = _mock_notification(responded_at=first_response)
        db = _mock_db(scalar=notification)

        await acknowledge_notification(db, uuid.uuid4(), uuid.uuid4())

        assert notification.responded_at == first_response
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_user_never_notified_returns_none(self):
        db = _mock_db(scalar=None)

        assert await acknowledge_notification(db, uuid.uuid4(), uuid.uuid4()) is None


class TestListAlerts:
    @pytest.mark.asyncio
    async def test_filters_by_status_newest_first(self):
        db = _mock_db()

        await list_alerts(db, status=AlertStatus.ACTIVE, limit=10)

        sql = str(db.execute.call_args[0][0].compile(dialect=postgresql.dialect()))
        assert "WHERE alerts.status" in sql
        assert "ORDER BY alerts.started_at DESC" in sql
