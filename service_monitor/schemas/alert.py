"""Alert API schemas.

Response schemas for alert and notification data returned by the API,
plus the acknowledgment request body.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AlertResponse(BaseModel):
    """Single alert response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    service_id: uuid.UUID
    status: str
    verification_status: str
    started_at: datetime
    resolved_at: datetime | None
    escalation_state: str
    escalation_level: int | None
    escalation_channel: str | None
    created_at: datetime
    updated_at: datetime


class AlertListResponse(BaseModel):
    """Response for listing alerts."""

    alerts: list[AlertResponse]
    count: int


class AlertNotificationResponse(BaseModel):
    """Single notification attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    alert_id: uuid.UUID
    user_id: uuid.UUID
    channel: str
    status: str
    sent_at: datetime
    responded_at: datetime | None


class AlertNotificationHistoryResponse(BaseModel):
    """Notification history for an alert, oldest first."""

    alert_id: uuid.UUID
    notifications: list[AlertNotificationResponse]
    count: int


class AlertAcknowledgeRequest(BaseModel):
    """Acknowledgment reported by the reply webhook or UI."""

    user_id: uuid.UUID = Field(..., description="User who responded to the page")
