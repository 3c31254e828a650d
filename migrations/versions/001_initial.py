"""Create monitoring, escalation and alert tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None

_ENUM_TYPES = {
    "servicetype": ("http", "tcp", "icmp", "custom"),
    "healthstatus": ("up", "down"),
    "alertstatus": ("active", "resolved"),
    "verificationstatus": ("pending", "verified"),
    "escalationstate": (
        "pending",
        "running",
        "acknowledged",
        "exhausted",
        "no_chain",
        "cancelled",
        "failed",
    ),
    "notificationchannel": ("sms", "voice", "email"),
    "notificationstatus": ("sent", "acknowledged"),
}


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(name=name, create_type=False)


def upgrade() -> None:
    # Create enum types using raw SQL to avoid checkfirst issues with asyncpg
    for name, values in _ENUM_TYPES.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(sa.text(
            "DO $$ BEGIN "
            f"CREATE TYPE {name} AS ENUM ({labels}); "
            "EXCEPTION WHEN duplicate_object THEN NULL; "
            "END $$"
        ))

    op.create_table(
        "services",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", _enum("servicetype"), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("role", sa.String(50), nullable=False, server_default="engineer"),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "escalation_chains",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "service_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("services.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("wait_time", sa.Integer(), nullable=False, server_default="5"),
        *_timestamps(),
        sa.UniqueConstraint("service_id", "level", name="uq_escalation_chains_level"),
        sa.CheckConstraint("level > 0", name="ck_escalation_chains_level_positive"),
    )
    op.create_index(
        "ix_escalation_chains_service_id", "escalation_chains", ["service_id"]
    )

    op.create_table(
        "health_checks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "service_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("services.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", _enum("healthstatus"), nullable=False),
        sa.Column("response_time", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "checked_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_health_checks_service_id", "health_checks", ["service_id"])

    op.create_table(
        "alerts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "service_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("services.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "status", _enum("alertstatus"), nullable=False, server_default="active"
        ),
        sa.Column(
            "verification_status",
            _enum("verificationstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "escalation_state",
            _enum("escalationstate"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("escalation_level", sa.Integer(), nullable=True),
        sa.Column("escalation_channel", sa.String(20), nullable=True),
        sa.Column("escalation_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalation_owner", sa.String(64), nullable=True),
        sa.Column("escalation_heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "(status = 'resolved') = (resolved_at IS NOT NULL)",
            name="ck_alerts_resolved_at_matches_status",
        ),
    )
    op.create_index("ix_alerts_service_id", "alerts", ["service_id"])
    op.create_index(
        "ix_alerts_status_escalation_state",
        "alerts",
        ["status", "escalation_state"],
    )
    op.create_index(
        "uq_alerts_one_active_per_service",
        "alerts",
        ["service_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "alert_notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "alert_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("alerts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("channel", _enum("notificationchannel"), nullable=False),
        sa.Column(
            "status", _enum("notificationstatus"), nullable=False, server_default="sent"
        ),
        sa.Column(
            "sent_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_alert_notifications_alert_user_sent",
        "alert_notifications",
        ["alert_id", "user_id", "sent_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_alert_notifications_alert_user_sent")
    op.drop_table("alert_notifications")
    op.drop_index("uq_alerts_one_active_per_service")
    op.drop_index("ix_alerts_status_escalation_state")
    op.drop_index("ix_alerts_service_id")
    op.drop_table("alerts")
    op.drop_index("ix_health_checks_service_id")
    op.drop_table("health_checks")
    op.drop_index("ix_escalation_chains_service_id")
    op.drop_table("escalation_chains")
    op.drop_index("ix_users_email")
    op.drop_table("users")
    op.drop_table("services")

    for name in reversed(list(_ENUM_TYPES)):
        op.execute(sa.text(f"DROP TYPE IF EXISTS {name}"))
