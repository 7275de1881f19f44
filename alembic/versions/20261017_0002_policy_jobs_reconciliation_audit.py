"""transfer policy, transfer jobs, reconciliation runs and audit logs

Revision ID: 20261017_0002
Revises: 20261017_0001
Create Date: 2026-10-17 09:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_0002"
down_revision: Union[str, None] = "20261017_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "transfer_policy_settings",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("enforce_transfer_sod", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("allow_creator_to_check", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("allow_creator_to_send", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("allow_checker_to_send", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("allow_creator_to_receive", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("allow_sender_to_receive", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("allow_verifier_to_complete", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("exempt_roles", sa.String(length=255), nullable=True),
        sa.Column("updated_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_transfer_policy_settings_business_id",
        "transfer_policy_settings",
        ["business_id"],
        unique=True,
    )

    op.create_table(
        "transfer_jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("stock_transfer_id", sa.String(length=36), nullable=False),
        sa.Column("job_type", sa.String(length=40), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=False),
        sa.Column("actor_claims_json", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.String(length=500), nullable=True),
        sa.Column("error_code", sa.String(length=60), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["stock_transfer_id"], ["stock_transfers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_transfer_jobs_business_id", "transfer_jobs", ["business_id"], unique=False)
    op.create_index("ix_transfer_jobs_stock_transfer_id", "transfer_jobs", ["stock_transfer_id"], unique=False)
    op.create_index(
        "ix_transfer_jobs_status_next_attempt_at",
        "transfer_jobs",
        ["status", "next_attempt_at"],
        unique=False,
    )
    op.create_index(
        "ix_transfer_jobs_business_created_at",
        "transfer_jobs",
        ["business_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "reconciliation_runs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("location_id", sa.String(length=36), nullable=True),
        sa.Column("mode", sa.String(length=20), nullable=False),
        sa.Column("triggered_by", sa.String(length=36), nullable=False),
        sa.Column("checked_pairs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("variance_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("corrections_written", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("variances_json", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reconciliation_runs_business_id", "reconciliation_runs", ["business_id"], unique=False)
    op.create_index(
        "ix_reconciliation_runs_business_created_at",
        "reconciliation_runs",
        ["business_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_ids", sa.JSON(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_business_id", "audit_logs", ["business_id"], unique=False)
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"], unique=False)
    op.create_index("ix_audit_logs_business_created_at", "audit_logs", ["business_id", "created_at"], unique=False)
    op.create_index(
        "ix_audit_logs_business_action_created_at",
        "audit_logs",
        ["business_id", "action", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_audit_logs_business_actor_created_at",
        "audit_logs",
        ["business_id", "actor_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("reconciliation_runs")
    op.drop_table("transfer_jobs")
    op.drop_table("transfer_policy_settings")
