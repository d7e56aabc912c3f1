"""create gate pass tables

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "app_users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("department", sa.String(length=64), nullable=True),
        sa.Column("mentor_id", sa.String(length=36), nullable=True),
        sa.Column("email", sa.String(length=256), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_app_users_id", "app_users", ["id"])
    op.create_index("ix_app_users_role", "app_users", ["role"])
    op.create_index("ix_app_users_department", "app_users", ["department"])

    op.create_table(
        "gate_passes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("pass_code", sa.String(length=40), nullable=False),
        sa.Column("unique_token", sa.String(length=36), nullable=False),
        sa.Column("student_id", sa.String(length=36), nullable=False),
        sa.Column("mentor_id", sa.String(length=36), nullable=False),
        sa.Column("hod_id", sa.String(length=36), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=False),
        sa.Column("destination", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("emergency_contact", sa.JSON(), nullable=True),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("return_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mentor_status", sa.String(length=16), nullable=False),
        sa.Column("mentor_decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mentor_comments", sa.String(length=300), nullable=True),
        sa.Column("mentor_decided_by", sa.String(length=36), nullable=True),
        sa.Column("hod_status", sa.String(length=16), nullable=False),
        sa.Column("hod_decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hod_comments", sa.String(length=300), nullable=True),
        sa.Column("hod_decided_by", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_by", sa.String(length=36), nullable=True),
        sa.Column("entry_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("security_code", sa.String(length=16), nullable=True),
        sa.Column("qr_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiry_warning_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("overdue_alerted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mentor_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hod_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_gate_passes_pass_code", "gate_passes", ["pass_code"], unique=True)
    op.create_index("ix_gate_passes_unique_token", "gate_passes", ["unique_token"], unique=True)
    op.create_index("ix_gate_passes_student_id", "gate_passes", ["student_id"])
    op.create_index("ix_gate_passes_mentor_id", "gate_passes", ["mentor_id"])
    op.create_index("ix_gate_passes_hod_id", "gate_passes", ["hod_id"])
    op.create_index("ix_gate_passes_status", "gate_passes", ["status"])
    op.create_index("ix_gate_passes_expires_at", "gate_passes", ["expires_at"])
    op.create_index("ix_gate_passes_student_status", "gate_passes", ["student_id", "status"])
    op.create_index("ix_gate_passes_mentor_status", "gate_passes", ["mentor_id", "mentor_status"])
    op.create_index("ix_gate_passes_hod_status", "gate_passes", ["hod_id", "hod_status"])

    op.create_table(
        "gate_pass_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("pass_id", sa.String(length=36), sa.ForeignKey("gate_passes.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("comments", sa.String(length=300), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("pass_id", "seq", name="uq_gate_pass_history_pass_seq"),
    )
    op.create_index("ix_gate_pass_history_pass_id", "gate_pass_history", ["pass_id"])

    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("recipient_id", sa.String(length=36), nullable=False),
        sa.Column("pass_id", sa.String(length=36), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("target", sa.String(length=256), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notification_outbox_recipient_id", "notification_outbox", ["recipient_id"])
    op.create_index("ix_notification_outbox_pass_id", "notification_outbox", ["pass_id"])
    op.create_index("ix_notification_outbox_status_next_retry", "notification_outbox", ["status", "next_retry_at"])
    op.create_index("ix_notification_outbox_recipient_created", "notification_outbox", ["recipient_id", "created_at"])

    op.create_table(
        "pass_artifacts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("pass_id", sa.String(length=36), sa.ForeignKey("gate_passes.id"), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("pass_id", "kind", name="uq_pass_artifacts_pass_kind"),
    )
    op.create_index("ix_pass_artifacts_pass_id", "pass_artifacts", ["pass_id"])


def downgrade() -> None:
    op.drop_index("ix_pass_artifacts_pass_id", table_name="pass_artifacts")
    op.drop_table("pass_artifacts")
    op.drop_index("ix_notification_outbox_recipient_created", table_name="notification_outbox")
    op.drop_index("ix_notification_outbox_status_next_retry", table_name="notification_outbox")
    op.drop_index("ix_notification_outbox_pass_id", table_name="notification_outbox")
    op.drop_index("ix_notification_outbox_recipient_id", table_name="notification_outbox")
    op.drop_table("notification_outbox")
    op.drop_index("ix_gate_pass_history_pass_id", table_name="gate_pass_history")
    op.drop_table("gate_pass_history")
    for name in (
        "ix_gate_passes_hod_status",
        "ix_gate_passes_mentor_status",
        "ix_gate_passes_student_status",
        "ix_gate_passes_expires_at",
        "ix_gate_passes_status",
        "ix_gate_passes_hod_id",
        "ix_gate_passes_mentor_id",
        "ix_gate_passes_student_id",
        "ix_gate_passes_unique_token",
        "ix_gate_passes_pass_code",
    ):
        op.drop_index(name, table_name="gate_passes")
    op.drop_table("gate_passes")
    op.drop_index("ix_app_users_department", table_name="app_users")
    op.drop_index("ix_app_users_role", table_name="app_users")
    op.drop_index("ix_app_users_id", table_name="app_users")
    op.drop_table("app_users")
