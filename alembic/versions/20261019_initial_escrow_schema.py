"""initial milestone escrow schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None

MILESTONE_STATUSES = (
    "pending",
    "in_progress",
    "submitted",
    "approved",
    "disputed",
    "refunded",
    "partially_refunded",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    job_status = sa.Enum("open", "in_progress", "completed", "cancelled", name="jobstatus")
    milestone_status = sa.Enum(*MILESTONE_STATUSES, name="milestonestatus")
    resolution_action = sa.Enum("approve", "reject", "partial", name="resolutionaction")
    earning_status = sa.Enum("completed", "disputed", "refunded", name="earningstatus")
    adjustment_kind = sa.Enum(
        "payment", "dispute_opened", "partial_refund", "full_refund", "dispute_rejected", name="adjustmentkind"
    )
    message_author = sa.Enum("system", "user", name="messageauthor")
    api_scope = sa.Enum("user", "admin", name="apiscope")

    op.create_table(
        "users",
        *_timestamps(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "jobs",
        *_timestamps(),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("freelancer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("status", job_status, nullable=False, server_default="open"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_client_id", "jobs", ["client_id"])
    op.create_index("ix_jobs_freelancer_id", "jobs", ["freelancer_id"])

    op.create_table(
        "milestones",
        *_timestamps(),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", milestone_status, nullable=False, server_default="pending"),
        sa.Column("submission_url", sa.String(length=2048), nullable=True),
        sa.Column("submission_note", sa.Text(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("auto_release_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disputed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),
        sa.CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_milestone_rating_range"),
    )
    op.create_index("ix_milestones_job_id", "milestones", ["job_id"])
    op.create_index("ix_milestones_status", "milestones", ["status"])
    op.create_index("ix_milestones_job_sort", "milestones", ["job_id", "sort_order"])

    op.create_table(
        "milestone_disputes",
        *_timestamps(),
        sa.Column("milestone_id", sa.Integer(), sa.ForeignKey("milestones.id"), nullable=False),
        sa.Column("requested_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("requested_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("evidence", sa.JSON(), nullable=False),
        sa.Column("previous_status", milestone_status, nullable=False),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_action", resolution_action, nullable=True),
        sa.Column("resolved_by_role", sa.String(length=20), nullable=True),
        sa.Column("resolved_by_id", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.CheckConstraint("requested_amount > 0", name="ck_dispute_positive_requested_amount"),
        sa.CheckConstraint(
            "resolved_amount IS NULL OR (resolved_amount >= 0 AND resolved_amount <= requested_amount)",
            name="ck_dispute_resolved_within_requested",
        ),
    )
    op.create_index("ix_milestone_disputes_milestone_id", "milestone_disputes", ["milestone_id"])

    op.create_table(
        "earnings",
        *_timestamps(),
        sa.Column("freelancer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("milestone_id", sa.Integer(), sa.ForeignKey("milestones.id"), nullable=False, unique=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("status", earning_status, nullable=False, server_default="completed"),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.CheckConstraint("amount >= 0", name="ck_earning_non_negative_amount"),
    )
    op.create_index("ix_earnings_status", "earnings", ["status"])
    op.create_index("ix_earnings_freelancer_id", "earnings", ["freelancer_id"])
    op.create_index("ix_earnings_job_id", "earnings", ["job_id"])

    op.create_table(
        "earning_adjustments",
        *_timestamps(),
        sa.Column("earning_id", sa.Integer(), sa.ForeignKey("earnings.id"), nullable=False),
        sa.Column("kind", adjustment_kind, nullable=False),
        sa.Column("amount_delta", sa.Numeric(18, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(18, 2), nullable=False),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_earning_adjustments_earning_id", "earning_adjustments", ["earning_id"])

    op.create_table(
        "milestone_messages",
        *_timestamps(),
        sa.Column("milestone_id", sa.Integer(), sa.ForeignKey("milestones.id"), nullable=False),
        sa.Column("author_kind", message_author, nullable=False, server_default="system"),
        sa.Column("author_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(length=30), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
    )
    op.create_index("ix_milestone_messages_milestone_id", "milestone_messages", ["milestone_id"])

    op.create_table(
        "audit_logs",
        *_timestamps(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])

    op.create_table(
        "alerts",
        *_timestamps(),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("message", sa.String(length=255), nullable=False),
        sa.Column("milestone_id", sa.Integer(), sa.ForeignKey("milestones.id"), nullable=True),
        sa.Column("payload_json", sa.JSON(), nullable=False),
    )
    op.create_index("ix_alerts_created_at", "alerts", ["created_at"])
    op.create_index("ix_alerts_type", "alerts", ["type"])
    op.create_index("ix_alerts_milestone_id", "alerts", ["milestone_id"])

    op.create_table(
        "api_keys",
        *_timestamps(),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False, unique=True),
        sa.Column("scope", api_scope, nullable=False, server_default="user"),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_api_keys_prefix", "api_keys", ["prefix"])
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    op.create_table(
        "scheduler_locks",
        *_timestamps(),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("scheduler_locks")
    op.drop_index("ix_api_keys_user_id", table_name="api_keys")
    op.drop_index("ix_api_keys_prefix", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_index("ix_alerts_milestone_id", table_name="alerts")
    op.drop_index("ix_alerts_type", table_name="alerts")
    op.drop_index("ix_alerts_created_at", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_milestone_messages_milestone_id", table_name="milestone_messages")
    op.drop_table("milestone_messages")
    op.drop_index("ix_earning_adjustments_earning_id", table_name="earning_adjustments")
    op.drop_table("earning_adjustments")
    op.drop_index("ix_earnings_job_id", table_name="earnings")
    op.drop_index("ix_earnings_freelancer_id", table_name="earnings")
    op.drop_index("ix_earnings_status", table_name="earnings")
    op.drop_table("earnings")
    op.drop_index("ix_milestone_disputes_milestone_id", table_name="milestone_disputes")
    op.drop_table("milestone_disputes")
    op.drop_index("ix_milestones_job_sort", table_name="milestones")
    op.drop_index("ix_milestones_status", table_name="milestones")
    op.drop_index("ix_milestones_job_id", table_name="milestones")
    op.drop_table("milestones")
    op.drop_index("ix_jobs_freelancer_id", table_name="jobs")
    op.drop_index("ix_jobs_client_id", table_name="jobs")
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_name in (
        "apiscope",
        "messageauthor",
        "adjustmentkind",
        "earningstatus",
        "resolutionaction",
        "milestonestatus",
        "jobstatus",
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
