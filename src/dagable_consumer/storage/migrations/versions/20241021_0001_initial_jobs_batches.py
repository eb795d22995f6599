"""Initial jobs and batches schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20241021_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("request_guid", sa.String(), nullable=False),
        sa.Column("user_guid", sa.String(), nullable=False),
        sa.Column("total_graphs", sa.Integer(), nullable=False),
        sa.Column("completed_graphs", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_jobs_request_guid", "jobs", ["request_guid"], unique=True)
    op.create_index("ix_jobs_user_guid", "jobs", ["user_guid"])

    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.Integer(), nullable=False),
        sa.Column("compressed_data", sa.LargeBinary(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("job_id", "batch_number", name="uq_batches_job_batch_number"),
    )
    op.create_index("ix_batches_job_id", "batches", ["job_id"])


def downgrade() -> None:
    op.drop_table("batches")
    op.drop_table("jobs")
