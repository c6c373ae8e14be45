"""Prescreen schema: programs, batches, leads, results, hard pulls, audit log

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


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


def upgrade() -> None:
    # Programs mirrored from the bureau gateway
    op.create_table(
        "prescreen_programs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("bureau_program_id", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("tier_1_min", sa.Integer, nullable=False, server_default="620"),
        sa.Column("tier_2_min", sa.Integer, nullable=False, server_default="580"),
        sa.Column("tier_3_min", sa.Integer, nullable=False, server_default="500"),
        sa.Column("min_score", sa.Integer, nullable=True),
        sa.Column("max_score", sa.Integer, nullable=True),
        sa.Column("eq_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("ex_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("tu_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    # Batches
    op.create_table(
        "prescreen_batches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("program_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("total_records", sa.Integer, nullable=False, server_default="0"),
        sa.Column("qualified_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("submitted_by_id", sa.String(64), nullable=True),
        sa.Column("submitted_by_email", sa.String(255), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["program_id"], ["prescreen_programs.id"]),
    )
    op.create_index("idx_batch_status", "prescreen_batches", ["status"])
    op.create_index("idx_batch_program", "prescreen_batches", ["program_id"])

    # Leads
    op.create_table(
        "prescreen_leads",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("program_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("batch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("middle_name", sa.String(100), nullable=True),
        sa.Column("street", sa.String(255), nullable=False),
        sa.Column("street2", sa.String(255), nullable=True),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("state", sa.String(2), nullable=False),
        sa.Column("zip", sa.String(10), nullable=False),
        sa.Column("ssn_encrypted", sa.Text, nullable=True),
        sa.Column("ssn_last_four", sa.String(4), nullable=True),
        sa.Column("dob", sa.String(10), nullable=True),
        sa.Column("dob_encrypted", sa.Text, nullable=True),
        sa.Column("middle_score", sa.Integer, nullable=True),
        sa.Column("tier", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("is_qualified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("match_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("segment_name", sa.String(255), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("retry_queued", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("firm_offer_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("firm_offer_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("firm_offer_method", sa.String(50), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["program_id"], ["prescreen_programs.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["prescreen_batches.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_lead_program", "prescreen_leads", ["program_id"])
    op.create_index("idx_lead_batch", "prescreen_leads", ["batch_id"])
    op.create_index(
        "idx_lead_selection", "prescreen_leads", ["status", "match_status", "retry_queued"]
    )
    op.create_index("idx_lead_tier", "prescreen_leads", ["tier"])

    # Bureau results (append-only)
    op.create_table(
        "prescreen_results",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("lead_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("batch_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("bureau", sa.String(20), nullable=False),
        sa.Column("credit_score", sa.Integer, nullable=True),
        sa.Column("is_hit", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("raw_output", postgresql.JSONB, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["lead_id"], ["prescreen_leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["batch_id"], ["prescreen_batches.id"]),
    )
    op.create_index("idx_result_lead", "prescreen_results", ["lead_id"])
    op.create_index("idx_result_batch", "prescreen_results", ["batch_id"])

    # Hard pulls
    op.create_table(
        "prescreen_hard_pulls",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("lead_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("pull_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("agency", sa.String(50), nullable=True),
        sa.Column("lender", sa.String(255), nullable=True),
        sa.Column("eq_score", sa.Integer, nullable=True),
        sa.Column("tu_score", sa.Integer, nullable=True),
        sa.Column("ex_score", sa.Integer, nullable=True),
        sa.Column("result", sa.String(50), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("performed_by_email", sa.String(255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["lead_id"], ["prescreen_leads.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_hard_pull_lead", "prescreen_hard_pulls", ["lead_id"])

    # Audit log (append-only; lead_id and batch_id are not foreign keys)
    op.create_table(
        "prescreen_audit_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("lead_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("batch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("actor_email", sa.String(255), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("details", postgresql.JSONB, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_audit_log_action", "prescreen_audit_log", ["action"])
    op.create_index("idx_audit_log_lead", "prescreen_audit_log", ["lead_id"])
    op.create_index("idx_audit_log_batch", "prescreen_audit_log", ["batch_id"])
    op.create_index("idx_audit_log_actor", "prescreen_audit_log", ["actor_id"])
    op.create_index("idx_audit_log_created", "prescreen_audit_log", ["created_at"])


def downgrade() -> None:
    op.drop_table("prescreen_audit_log")
    op.drop_table("prescreen_hard_pulls")
    op.drop_table("prescreen_results")
    op.drop_table("prescreen_leads")
    op.drop_table("prescreen_batches")
    op.drop_table("prescreen_programs")
