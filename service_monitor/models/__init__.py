# Database Models
from service_monitor.models.alert import (
    OPEN_ESCALATION_STATES,
    Alert,
    AlertStatus,
    EscalationState,
    VerificationStatus,
)
from service_monitor.models.alert_notification import (
    AlertNotification,
    NotificationChannel,
    NotificationStatus,
)
from service_monitor.models.base import Base, TimestampMixin
from service_monitor.models.escalation_chain import EscalationChainEntry
from service_monitor.models.health_check import HealthCheck, HealthStatus
from service_monitor.models.service import Service, ServiceType
from service_monitor.models.user import User

__all__ = [
    "OPEN_ESCALATION_STATES",
    "Alert",
    "AlertNotification",
    "AlertStatus",
    "Base",
    "EscalationChainEntry",
    "EscalationState",
    "HealthCheck",
    "HealthStatus",
    "NotificationChannel",
    "NotificationStatus",
    "Service",
    "ServiceType",
    "TimestampMixin",
    "User",
    "VerificationStatus",
]
