"""grading pipeline schema

Revision ID: 0001_grading_pipeline
Revises: None
Create Date: 2026-10-18 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_grading_pipeline"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(120), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "settings",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("org_id", sa.Integer, nullable=False, index=True),
        sa.Column("key", sa.String(128), nullable=False, index=True),
        sa.Column("value", sa.Text),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "key", name="uq_settings_org_key"),
    )

    op.create_table(
        "templates",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("org_id", sa.Integer, nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("scoring_method", sa.String(30), nullable=False, server_default="weighted"),
        sa.Column("pass_threshold", sa.Float, nullable=False, server_default="70"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft", index=True),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("settings", sa.JSON),
        *_timestamps(),
    )

    op.create_table(
        "criteria_groups",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("template_id", sa.Integer, sa.ForeignKey("templates.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("weight", sa.Float, nullable=False, server_default="0"),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "criteria",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("template_id", sa.Integer, sa.ForeignKey("templates.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("group_id", sa.Integer, sa.ForeignKey("criteria_groups.id", ondelete="SET NULL")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("criteria_type", sa.String(30), nullable=False),
        sa.Column("config", sa.JSON),
        sa.Column("weight", sa.Float, nullable=False, server_default="0"),
        sa.Column("max_score", sa.Float, nullable=False, server_default="100"),
        sa.Column("is_required", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_auto_fail", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("auto_fail_threshold", sa.Float),
        sa.Column("scoring_guide", sa.Text),
        sa.Column("keywords", sa.JSON),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "calls",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("org_id", sa.Integer, nullable=False, index=True),
        sa.Column("agent_id", sa.Integer),
        sa.Column("source", sa.String(30)),
        sa.Column("title", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("transcript_text", sa.Text),
        sa.Column("template_id", sa.Integer, sa.ForeignKey("templates.id")),
        sa.Column("last_error", sa.Text),
        sa.Column("analyzed_at", sa.DateTime),
        sa.Column("call_timestamp", sa.DateTime),
        sa.Column("duration_sec", sa.Integer),
        sa.Column("call_metadata", sa.JSON),
        *_timestamps(),
    )

    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("org_id", sa.Integer, nullable=False, index=True),
        sa.Column("template_id", sa.Integer, sa.ForeignKey("templates.id"), nullable=False),
        sa.Column("template_version", sa.Integer, nullable=False),
        sa.Column("template_snapshot", sa.JSON, nullable=False),
        sa.Column("call_id", sa.Integer, sa.ForeignKey("calls.id"), index=True),
        sa.Column("agent_id", sa.Integer),
        sa.Column("coach_id", sa.Integer),
        sa.Column("source", sa.String(20)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("total_score", sa.Float),
        sa.Column("total_possible", sa.Float),
        sa.Column("percentage_score", sa.Float),
        sa.Column("pass_status", sa.String(20)),
        sa.Column("has_auto_fail", sa.Boolean),
        sa.Column("auto_fail_criteria_ids", sa.JSON),
        sa.Column("started_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("reviewed_at", sa.DateTime),
        sa.Column("reviewed_by", sa.String(120)),
        sa.Column("reviewer_notes", sa.Text),
        sa.Column("cancelled_at", sa.DateTime),
        sa.Column("cancelled_by", sa.String(120)),
        sa.Column("cancellation_reason", sa.Text),
        sa.Column("disputed_at", sa.DateTime),
        sa.Column("disputed_by", sa.String(120)),
        sa.Column("dispute_reason", sa.Text),
        *_timestamps(),
    )

    op.create_table(
        "scores",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("session_id", sa.Integer, sa.ForeignKey("sessions.id"), nullable=False, index=True),
        sa.Column("criterion_id", sa.Integer, nullable=False),
        sa.Column("criteria_group_id", sa.Integer),
        sa.Column("value", sa.JSON),
        sa.Column("is_na", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("raw_score", sa.Float),
        sa.Column("normalized_score", sa.Float),
        sa.Column("weighted_score", sa.Float),
        sa.Column("is_auto_fail_triggered", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_invalid", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("validation_error", sa.Text),
        sa.Column("comment", sa.Text),
        sa.Column("scored_by", sa.String(120)),
        sa.Column("scored_at", sa.DateTime),
        sa.Column("criterion_snapshot", sa.JSON),
        sa.Column("dispute_note", sa.Text),
        *_timestamps(),
        sa.UniqueConstraint("session_id", "criterion_id", name="uq_scores_session_criterion"),
    )

    op.create_table(
        "processing_queue",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("org_id", sa.Integer, nullable=False, index=True),
        sa.Column("call_id", sa.Integer, sa.ForeignKey("calls.id"), nullable=False, index=True),
        sa.Column("session_id", sa.Integer, sa.ForeignKey("sessions.id")),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text),
        sa.Column("scheduled_at", sa.DateTime, nullable=False),
        sa.Column("started_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        *_timestamps(),
    )
    op.create_index("ix_processing_queue_eligible", "processing_queue", ["status", "priority", "scheduled_at"])

    op.create_table(
        "reports",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("org_id", sa.Integer, nullable=False, index=True),
        sa.Column("session_id", sa.Integer, sa.ForeignKey("sessions.id"), nullable=False, unique=True),
        sa.Column("call_id", sa.Integer, sa.ForeignKey("calls.id"), index=True),
        sa.Column("percentage_score", sa.Float),
        sa.Column("pass_status", sa.String(20)),
        sa.Column("has_auto_fail", sa.Boolean),
        sa.Column("summary", sa.Text),
        sa.Column("strengths", sa.JSON),
        sa.Column("improvements", sa.JSON),
        sa.Column("action_items", sa.JSON),
        sa.Column("objections", sa.JSON),
        sa.Column("sentiment", sa.JSON),
        sa.Column("talk_ratio", sa.Float),
        sa.Column("competitor_mentions", sa.JSON),
        sa.Column("missing_criteria_ids", sa.JSON),
        sa.Column("model_used", sa.String(80)),
        sa.Column("processing_time_ms", sa.Integer),
        sa.Column("token_usage", sa.JSON),
        *_timestamps(),
    )

    op.create_table(
        "session_audit_log",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("session_id", sa.Integer, sa.ForeignKey("sessions.id"), nullable=False, index=True),
        sa.Column("actor", sa.String(120), nullable=False),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("details", sa.JSON),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )


def downgrade():
    op.drop_table("session_audit_log")
    op.drop_table("reports")
    op.drop_index("ix_processing_queue_eligible", table_name="processing_queue")
    op.drop_table("processing_queue")
    op.drop_table("scores")
    op.drop_table("sessions")
    op.drop_table("calls")
    op.drop_table("criteria")
    op.drop_table("criteria_groups")
    op.drop_table("templates")
    op.drop_table("settings")
    op.drop_table("organizations")
