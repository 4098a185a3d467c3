"""Initial internship programme schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = postgresql.ENUM(
    "intern",
    "attachee",
    "hr",
    "mentor",
    "county_liaison",
    name="user_role",
    create_type=False,
)
contract_type = postgresql.ENUM(
    "monthly",
    "yearly",
    "early",
    name="contract_type",
    create_type=False,
)
timesheet_status = postgresql.ENUM(
    "pending",
    "mentor-approved",
    "approved",
    "rejected",
    name="timesheet_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "USER",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def _profile_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("user_id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("mentor_id", sa.Integer(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contract_type", contract_type, nullable=True),
        sa.Column("contract_start_date", sa.Date(), nullable=True),
        sa.Column("contract_end_date", sa.Date(), nullable=True),
        sa.Column("contract_duration", sa.Integer(), nullable=True),
        sa.Column("contract_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contract_updated_by", sa.Integer(), nullable=True),
        sa.Column("contract_terminated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("termination_reason", sa.Text(), nullable=True),
        sa.Column("terminated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("terminated_by", sa.Integer(), nullable=True),
        sa.Column(
            "checklist_progress",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "form_data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "documents",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("expiry_notice_threshold", sa.Integer(), nullable=True),
        sa.Column("expiry_notice_end_date", sa.Date(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["mentor_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(f"ix_{name}_mentor_id", name, ["mentor_id"], unique=False)
    op.create_index(f"ix_{name}_contract_end_date", name, ["contract_end_date"], unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    user_role.create(bind, checkfirst=True)
    contract_type.create(bind, checkfirst=True)
    timesheet_status.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("county_code", sa.Integer(), nullable=True),
        sa.Column("institution", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_by", sa.Integer(), nullable=True),
        sa.Column("reactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reactivated_by", sa.Integer(), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_department", "users", ["department"], unique=False)
    op.create_index("ix_users_county_code", "users", ["county_code"], unique=False)

    _profile_table("intern_profiles")
    _profile_table("attachee_profiles")

    op.create_table(
        "checklists",
        sa.Column("key", sa.String(length=100), primary_key=True, nullable=False),
        sa.Column(
            "items",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "timesheets",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("submitter_id", sa.Integer(), nullable=False),
        sa.Column("submitter_role", user_role, nullable=False),
        sa.Column("mentor_id", sa.Integer(), nullable=False),
        sa.Column("week", sa.String(length=16), nullable=False),
        sa.Column(
            "daily_descriptions",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("hours_worked", sa.Float(), nullable=True),
        sa.Column("status", timesheet_status, nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mentor_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mentor_approved_by", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("approved_by_role", sa.String(length=32), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.Integer(), nullable=True),
        sa.Column("rejected_by_role", sa.String(length=32), nullable=True),
        sa.Column("mentor_feedback", sa.Text(), nullable=True),
        sa.Column("hr_feedback", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["submitter_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["mentor_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("submitter_id", "week", name="uq_timesheets_submitter_week"),
    )
    op.create_index("ix_timesheets_submitter_id", "timesheets", ["submitter_id"], unique=False)
    op.create_index("ix_timesheets_mentor_id", "timesheets", ["mentor_id"], unique=False)
    op.create_index("ix_timesheets_status", "timesheets", ["status"], unique=False)
    op.create_index("ix_timesheets_submitted_at", "timesheets", ["submitted_at"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("related_user_id", sa.Integer(), nullable=True),
        sa.Column("related_user_role", sa.String(length=32), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)

    op.create_table(
        "notification_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("recipient", sa.String(length=320), nullable=False),
        sa.Column("template", sa.String(length=64), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("scheduled_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("sent_at_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_notification_jobs_user_id", "notification_jobs", ["user_id"], unique=False)
    op.create_index("ix_notification_jobs_status", "notification_jobs", ["status"], unique=False)
    op.create_index(
        "ix_notification_jobs_scheduled_at_utc",
        "notification_jobs",
        ["scheduled_at_utc"],
        unique=False,
    )
    op.create_index(
        "ix_notification_jobs_idempotency_key",
        "notification_jobs",
        ["idempotency_key"],
        unique=True,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_notification_jobs_idempotency_key", table_name="notification_jobs")
    op.drop_index("ix_notification_jobs_scheduled_at_utc", table_name="notification_jobs")
    op.drop_index("ix_notification_jobs_status", table_name="notification_jobs")
    op.drop_index("ix_notification_jobs_user_id", table_name="notification_jobs")
    op.drop_table("notification_jobs")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_timesheets_submitted_at", table_name="timesheets")
    op.drop_index("ix_timesheets_status", table_name="timesheets")
    op.drop_index("ix_timesheets_mentor_id", table_name="timesheets")
    op.drop_index("ix_timesheets_submitter_id", table_name="timesheets")
    op.drop_table("timesheets")
    op.drop_table("checklists")
    for name in ("attachee_profiles", "intern_profiles"):
        op.drop_index(f"ix_{name}_contract_end_date", table_name=name)
        op.drop_index(f"ix_{name}_mentor_id", table_name=name)
        op.drop_table(name)
    op.drop_index("ix_users_county_code", table_name="users")
    op.drop_index("ix_users_department", table_name="users")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    timesheet_status.drop(bind, checkfirst=True)
    contract_type.drop(bind, checkfirst=True)
    user_role.drop(bind, checkfirst=True)
