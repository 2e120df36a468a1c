"""SQLAlchemy ORM table models for RieMap.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for nested report parts.

- OPERATIONAL: ProcessingJob (status updates allowed)
- IMMUTABLE: QualityReport (append-only)
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Float, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from riemap.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


class ProcessingJobRow(Base):
    __tablename__ = "processing_jobs"
    __table_args__ = (Index("ix_processing_jobs_region_created", "region_id", "created_at"),)

    job_id: Mapped[UUID] = mapped_column(primary_key=True)
    region_id: Mapped[str] = mapped_column(String(255), nullable=False)
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    progress: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class QualityReportRow(Base):
    __tablename__ = "quality_reports"
    __table_args__ = (Index("ix_quality_reports_region_version", "region_id", "version"),)

    report_id: Mapped[UUID] = mapped_column(primary_key=True)
    region_id: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(100), nullable=False)
    report_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completeness_score: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy_score: Mapped[float] = mapped_column(Float, nullable=False)
    freshness_score: Mapped[float] = mapped_column(Float, nullable=False)
    overall_score: Mapped[float] = mapped_column(Float, nullable=False)
    issues = mapped_column(FlexJSON, nullable=False)
    metrics = mapped_column(FlexJSON, nullable=False)
    recommendations = mapped_column(FlexJSON, nullable=False)
    summary: Mapped[str] = mapped_column(Text, default="", nullable=False)
