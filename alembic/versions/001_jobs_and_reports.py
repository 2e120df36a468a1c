"""Processing jobs and quality reports.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

FlexJSON = JSONB().with_variant(sa.JSON(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "processing_jobs",
        sa.Column("job_id", sa.Uuid, primary_key=True),
        sa.Column("region_id", sa.String(255), nullable=False),
        sa.Column("job_type", sa.String(50), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("progress", sa.Float, nullable=False, server_default="0"),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("version", sa.String(100), nullable=True),
        sa.Column("cancel_requested", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_processing_jobs_region_created", "processing_jobs", ["region_id", "created_at"],
    )

    op.create_table(
        "quality_reports",
        sa.Column("report_id", sa.Uuid, primary_key=True),
        sa.Column("region_id", sa.String(255), nullable=False),
        sa.Column("version", sa.String(100), nullable=False),
        sa.Column("report_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completeness_score", sa.Float, nullable=False),
        sa.Column("accuracy_score", sa.Float, nullable=False),
        sa.Column("freshness_score", sa.Float, nullable=False),
        sa.Column("overall_score", sa.Float, nullable=False),
        sa.Column("issues", FlexJSON, nullable=False),
        sa.Column("metrics", FlexJSON, nullable=False),
        sa.Column("recommendations", FlexJSON, nullable=False),
        sa.Column("summary", sa.Text, nullable=False, server_default=""),
    )
    op.create_index(
        "ix_quality_reports_region_version", "quality_reports", ["region_id", "version"],
    )


def downgrade() -> None:
    op.drop_index("ix_quality_reports_region_version", table_name="quality_reports")
    op.drop_table("quality_reports")
    op.drop_index("ix_processing_jobs_region_created", table_name="processing_jobs")
    op.drop_table("processing_jobs")
