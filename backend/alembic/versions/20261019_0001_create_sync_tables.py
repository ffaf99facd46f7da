"""create sync tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

Initial schema: judges with their positions, courts, judge/court assignments,
decisions, the sync job queue and the webhook idempotency store.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _base_columns():
    return [
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "judges",
        *_base_columns(),
        sa.Column("remote_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("name_first", sa.Text(), nullable=True),
        sa.Column("name_middle", sa.Text(), nullable=True),
        sa.Column("name_last", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("education", sa.JSON(), nullable=True),
        sa.Column("remote_modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_judges_remote_id", "judges", ["remote_id"], unique=True)
    op.create_index("ix_judges_status", "judges", ["status"])

    op.create_table(
        "judge_positions",
        *_base_columns(),
        sa.Column("judge_id", UUID(as_uuid=True), sa.ForeignKey("judges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("remote_id", sa.Text(), nullable=True),
        sa.Column("court_name", sa.Text(), nullable=False),
        sa.Column("court_remote_id", sa.Text(), nullable=True),
        sa.Column("position_type", sa.Text(), nullable=False, server_default="Judge"),
        sa.Column("date_start", sa.Date(), nullable=True),
        sa.Column("date_termination", sa.Date(), nullable=True),
    )
    op.create_index("ix_judge_positions_judge_id", "judge_positions", ["judge_id"])

    op.create_table(
        "courts",
        *_base_columns(),
        sa.Column("remote_id", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("short_name", sa.Text(), nullable=True),
        sa.Column("jurisdiction", sa.Text(), nullable=True),
        sa.Column("court_type", sa.Text(), nullable=False, server_default="state"),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("courthouse_metadata", sa.JSON(), nullable=True),
        sa.Column("remote_modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_courts_remote_id", "courts", ["remote_id"], unique=True)
    op.create_index("ix_courts_name", "courts", ["name"])

    op.create_table(
        "court_assignments",
        *_base_columns(),
        sa.Column("judge_id", UUID(as_uuid=True), sa.ForeignKey("judges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("court_id", UUID(as_uuid=True), sa.ForeignKey("courts.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "position_id",
            UUID(as_uuid=True),
            sa.ForeignKey("judge_positions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assignment_type", sa.Text(), nullable=False, server_default="Judge"),
        sa.Column("source", sa.Text(), nullable=False, server_default="sync"),
        sa.UniqueConstraint("judge_id", "court_id", name="uq_court_assignment_judge_court"),
    )
    op.create_index("ix_court_assignments_judge_id", "court_assignments", ["judge_id"])
    op.create_index("ix_court_assignments_court_id", "court_assignments", ["court_id"])

    op.create_table(
        "decisions",
        *_base_columns(),
        sa.Column("remote_id", sa.Text(), nullable=False),
        sa.Column("case_name", sa.Text(), nullable=True),
        sa.Column("judge_id", UUID(as_uuid=True), sa.ForeignKey("judges.id", ondelete="SET NULL"), nullable=True),
        sa.Column("author_remote_id", sa.Text(), nullable=True),
        sa.Column("court_remote_id", sa.Text(), nullable=True),
        sa.Column("date_filed", sa.Date(), nullable=True),
        sa.Column("disposition", sa.Text(), nullable=True),
        sa.Column("precedential_status", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="published"),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("text_hash", sa.Text(), nullable=True),
        sa.Column("text_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remote_modified_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_decisions_remote_id", "decisions", ["remote_id"], unique=True)
    op.create_index("ix_decisions_judge_id", "decisions", ["judge_id"])

    op.create_table(
        "sync_jobs",
        *_base_columns(),
        sa.Column("job_type", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("options", sa.JSON(), nullable=False),
        sa.Column("state", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("source", sa.Text(), nullable=False, server_default="manual"),
        sa.Column("run_after", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
    )
    op.create_index("ix_sync_jobs_job_type", "sync_jobs", ["job_type"])
    op.create_index("ix_sync_jobs_state", "sync_jobs", ["state"])
    op.create_index("ix_sync_jobs_claim_order", "sync_jobs", ["state", "priority", "created_at"])

    op.create_table(
        "processed_webhooks",
        *_base_columns(),
        sa.Column("webhook_id", sa.Text(), nullable=False),
        sa.Column("event", sa.Text(), nullable=False),
        sa.Column("outcome", sa.Text(), nullable=False, server_default="enqueued"),
        sa.Column("job_id", UUID(as_uuid=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_processed_webhooks_webhook_id", "processed_webhooks", ["webhook_id"], unique=True)
    op.create_index("ix_processed_webhooks_processed_at", "processed_webhooks", ["processed_at"])


def downgrade() -> None:
    op.drop_table("processed_webhooks")
    op.drop_table("sync_jobs")
    op.drop_table("decisions")
    op.drop_table("court_assignments")
    op.drop_table("courts")
    op.drop_table("judge_positions")
    op.drop_table("judges")
