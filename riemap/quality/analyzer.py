"""Quality analyzer: turns a DecodedDataset into a QualityReport."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from riemap.ingestion.decoders.dataset import DecodedDataset
from riemap.models.common import ensure_utc, utc_now
from riemap.models.quality import IssueSummary, QualityMetrics, QualityReport
from riemap.models.region import Region
from riemap.quality.config import QualityScoringConfig
from riemap.quality.rules import DEFAULT_RULES, RecommendationRule, RuleContext, evaluate_rules

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86_400.0


def _clamp(value: float) -> float:
    return round(min(100.0, max(0.0, value)), 2)


class QualityAnalyzer:
    """Scores completeness, accuracy, freshness and overall quality.

    Each score is exposed as its own method so callers and tests can check
    one dimension in isolation; ``analyze`` composes them into a report.
    """

    def __init__(
        self,
        config: QualityScoringConfig | None = None,
        rules: Sequence[RecommendationRule] = DEFAULT_RULES,
    ) -> None:
        self._config = config or QualityScoringConfig()
        self._rules = tuple(rules)

    @property
    def config(self) -> QualityScoringConfig:
        return self._config

    # ---------------------------------------------------------------
    # Scores
    # ---------------------------------------------------------------

    def completeness(self, dataset: DecodedDataset) -> float:
        total = dataset.total_features
        if total == 0:
            return 0.0
        return _clamp(100.0 * dataset.tagged_features / total)

    def accuracy(self, dataset: DecodedDataset) -> float:
        """100 minus weighted geometry/topology errors per 1000 features."""
        total = dataset.total_features
        if total == 0:
            return 100.0
        cfg = self._config
        weighted = (
            cfg.geometry_error_weight * dataset.geometry_errors
            + cfg.topology_error_weight * dataset.topology_errors
        )
        return _clamp(100.0 - cfg.accuracy_penalty * 1000.0 * weighted / total)

    def freshness(self, age_days: float) -> float:
        """Linear decay to the floor at the staleness threshold."""
        cfg = self._config
        if age_days <= 0:
            return 100.0
        ratio = min(1.0, age_days / cfg.staleness_threshold_days)
        return _clamp(100.0 - (100.0 - cfg.freshness_floor) * ratio)

    def overall(self, completeness: float, accuracy: float, freshness: float) -> float:
        weights = self._config.score_weights
        total_weight = sum(weights.values())
        combined = (
            weights["completeness"] * completeness
            + weights["accuracy"] * accuracy
            + weights["freshness"] * freshness
        )
        return _clamp(combined / total_weight)

    def outdated_features(self, dataset: DecodedDataset, reference: datetime) -> int:
        """Features whose last edit year is older than the configured age."""
        cutoff = reference.year - self._config.outdated_feature_age_years
        return sum(count for year, count in dataset.edit_years.items() if year < cutoff)

    # ---------------------------------------------------------------
    # Report
    # ---------------------------------------------------------------

    def analyze(
        self,
        dataset: DecodedDataset,
        region: Region,
        *,
        version: str,
        captured_at: datetime,
        reference_date: datetime | None = None,
    ) -> QualityReport:
        """Score one decoded artifact.

        ``captured_at`` is when the source data was extracted (replication
        timestamp, upstream Last-Modified, or fetch time). ``reference_date``
        defaults to now and only exists to make ages reproducible.
        """
        reference = ensure_utc(reference_date) if reference_date else utc_now()
        captured = ensure_utc(captured_at)
        age_days = max(0.0, (reference - captured).total_seconds() / _SECONDS_PER_DAY)

        completeness = self.completeness(dataset)
        accuracy = self.accuracy(dataset)
        freshness = self.freshness(age_days)
        overall = self.overall(completeness, accuracy, freshness)

        outdated = self.outdated_features(dataset, reference)
        stale = age_days >= self._config.staleness_threshold_days
        metrics = QualityMetrics(
            total_nodes=dataset.total_nodes,
            total_ways=dataset.total_ways,
            total_relations=dataset.total_relations,
            tagged_nodes=dataset.tagged_nodes,
            tagged_ways=dataset.tagged_ways,
            tagged_relations=dataset.tagged_relations,
            completeness_score=completeness,
            geometry_errors=dataset.geometry_errors,
            tag_errors=dataset.tag_errors,
            topology_errors=dataset.topology_errors,
            feature_distribution=dict(dataset.feature_distribution),
            custom_metrics={
                "malformed_blocks": float(dataset.malformed_blocks),
                "outdated_features": float(outdated),
                "extract_age_days": round(age_days, 2),
            },
        )
        issues = IssueSummary(
            missing_tags=dataset.total_features - dataset.tagged_features,
            geometry_errors=dataset.geometry_errors,
            topology_issues=dataset.topology_errors,
            tag_errors=dataset.tag_errors,
            outdated_data=outdated + int(stale),
        )

        context = RuleContext(
            metrics=metrics,
            issues=issues,
            completeness=completeness,
            accuracy=accuracy,
            freshness=freshness,
            age_days=age_days,
            outdated_features=outdated,
            config=self._config,
        )
        recommendations, found = evaluate_rules(context, self._rules)
        issues = issues.model_copy(update={"items": found})

        report = QualityReport(
            region_id=region.region_id,
            version=version,
            report_date=reference,
            source_timestamp=captured,
            completeness_score=completeness,
            accuracy_score=accuracy,
            freshness_score=freshness,
            overall_score=overall,
            issues=issues,
            metrics=metrics,
            recommendations=recommendations,
            summary=_summary(region, metrics, overall, issues),
        )
        logger.info(
            "Quality report for %s %s: overall %.1f (%d issues)",
            region.region_id, version, overall, len(found),
        )
        return report


def _summary(region: Region, metrics: QualityMetrics, overall: float, issues: IssueSummary) -> str:
    head = (
        f"{region.name}: {metrics.total_features:,} features "
        f"({metrics.total_nodes:,} nodes, {metrics.total_ways:,} ways, "
        f"{metrics.total_relations:,} relations), overall score {overall:.1f}/100."
    )
    if not issues.items:
        return f"{head} No issues found."
    severities = ", ".join(
        f"{n} {severity.lower()}" for severity, n in issues.severity_counts().items()
    )
    names = ", ".join(item.issue_type for item in issues.items)
    return f"{head} {len(issues.items)} issue(s) found ({severities}): {names}."
