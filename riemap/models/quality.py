"""Quality metrics and report models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from riemap.models.common import RiemapBase, Score, UTCTimestamp, UUIDv7, new_uuid7, utc_now


class IssueSeverity(StrEnum):
    """How badly an issue affects usability, lowest first."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class QualityIssue(RiemapBase):
    """One problem found in an artifact, with a suggested fix."""

    issue_type: str
    severity: IssueSeverity
    description: str
    fix_suggestion: str | None = None


class QualityMetrics(RiemapBase):
    """Raw counts and error tallies for one decoded artifact."""

    total_nodes: int = 0
    total_ways: int = 0
    total_relations: int = 0
    tagged_nodes: int = 0
    tagged_ways: int = 0
    tagged_relations: int = 0
    completeness_score: Score = 0.0
    geometry_errors: int = 0
    tag_errors: int = 0
    topology_errors: int = 0
    feature_distribution: dict[str, int] = Field(default_factory=dict)
    custom_metrics: dict[str, float] = Field(default_factory=dict)

    @property
    def total_features(self) -> int:
        return self.total_nodes + self.total_ways + self.total_relations

    @property
    def tagged_features(self) -> int:
        return self.tagged_nodes + self.tagged_ways + self.tagged_relations


class IssueSummary(RiemapBase):
    """Issue counts surfaced on a quality report, plus the itemised issues."""

    missing_tags: int = 0
    geometry_errors: int = 0
    topology_issues: int = 0
    tag_errors: int = 0
    outdated_data: int = 0
    items: list[QualityIssue] = Field(default_factory=list)

    def severity_counts(self) -> dict[IssueSeverity, int]:
        """Count of items per severity, most severe first, zeros omitted."""
        counts: dict[IssueSeverity, int] = {}
        for severity in reversed(IssueSeverity):
            n = sum(1 for item in self.items if item.severity == severity)
            if n:
                counts[severity] = n
        return counts


class QualityReport(RiemapBase, frozen=True):
    """Immutable scored assessment of one artifact version."""

    report_id: UUIDv7 = Field(default_factory=new_uuid7)
    region_id: str
    version: str
    report_date: UTCTimestamp = Field(default_factory=utc_now)
    source_timestamp: datetime | None = None
    completeness_score: Score
    accuracy_score: Score
    freshness_score: Score
    overall_score: Score
    issues: IssueSummary = Field(default_factory=IssueSummary)
    metrics: QualityMetrics = Field(default_factory=QualityMetrics)
    recommendations: list[str] = Field(default_factory=list)
    summary: str = ""

    @property
    def quality_issues(self) -> list[QualityIssue]:
        return self.issues.items
