"""Ordered recommendation rules.

Every rule whose predicate holds contributes an issue and a recommendation,
in table order. The recommendation is the issue description joined to its
fix. The fallback message is used only when no rule fires.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from riemap.models.quality import IssueSeverity, IssueSummary, QualityIssue, QualityMetrics
from riemap.quality.config import QualityScoringConfig

FALLBACK_RECOMMENDATION = "Data quality looks good! Continue maintaining current standards."


@dataclass(frozen=True)
class RuleContext:
    """Everything a rule may inspect."""

    metrics: QualityMetrics
    issues: IssueSummary
    completeness: float
    accuracy: float
    freshness: float
    age_days: float
    outdated_features: int
    config: QualityScoringConfig

    @property
    def total(self) -> int:
        return self.metrics.total_features

    @property
    def tagging_pct(self) -> float:
        return 100.0 * self.metrics.tagged_features / self.total if self.total else 0.0


@dataclass(frozen=True)
class RecommendationRule:
    name: str
    severity: IssueSeverity
    predicate: Callable[[RuleContext], bool]
    describe: Callable[[RuleContext], str]
    fix: str = ""

    def issue(self, context: RuleContext) -> QualityIssue:
        return QualityIssue(
            issue_type=self.name,
            severity=self.severity,
            description=self.describe(context),
            fix_suggestion=self.fix or None,
        )

    def message(self, context: RuleContext) -> str:
        text = self.describe(context)
        return f"{text}: {self.fix}" if self.fix else text


DEFAULT_RULES: tuple[RecommendationRule, ...] = (
    RecommendationRule(
        "empty_extract",
        IssueSeverity.CRITICAL,
        lambda c: c.total == 0,
        lambda c: "Extract contains no features",
        "verify the upstream source and region boundaries",
    ),
    RecommendationRule(
        "very_low_tagging",
        IssueSeverity.HIGH,
        lambda c: c.total > 0 and c.tagging_pct < c.config.very_low_tagging_pct,
        lambda c: f"Very low tagging rate ({c.tagging_pct:.1f}%)",
        "increase feature tagging to improve data usability",
    ),
    RecommendationRule(
        "low_completeness",
        IssueSeverity.MEDIUM,
        lambda c: c.total > 0 and c.completeness < c.config.completeness_warning,
        lambda c: f"High missing-tag rate ({c.issues.missing_tags} untagged features)",
        "consider a tag-completion pass",
    ),
    RecommendationRule(
        "geometry_errors",
        IssueSeverity.HIGH,
        lambda c: c.metrics.geometry_errors > 0,
        lambda c: f"{c.metrics.geometry_errors} geometry errors found",
        "review and fix invalid or missing coordinates",
    ),
    RecommendationRule(
        "topology_errors",
        IssueSeverity.HIGH,
        lambda c: c.metrics.topology_errors > 0,
        lambda c: f"{c.metrics.topology_errors} topology errors found",
        "check that ways have at least 2 nodes and relations have members",
    ),
    RecommendationRule(
        "tag_errors",
        IssueSeverity.LOW,
        lambda c: c.metrics.tag_errors > 0,
        lambda c: f"{c.metrics.tag_errors} malformed tags found",
        "remove empty keys or values and shorten values over 255 characters",
    ),
    RecommendationRule(
        "low_way_density",
        IssueSeverity.MEDIUM,
        lambda c: c.metrics.total_ways < c.metrics.total_nodes // c.config.way_density_ratio,
        lambda c: "Unusually few ways compared to nodes",
        "verify that linear features (roads, paths) are properly mapped",
    ),
    RecommendationRule(
        "high_relation_ratio",
        IssueSeverity.MEDIUM,
        lambda c: c.metrics.total_relations > c.metrics.total_ways,
        lambda c: "More relations than ways",
        "review relation usage and ensure they are necessary",
    ),
    RecommendationRule(
        "stale_extract",
        IssueSeverity.MEDIUM,
        lambda c: c.age_days >= c.config.staleness_threshold_days,
        lambda c: f"Source data is {c.age_days:.0f} days old",
        "schedule a fresh extract",
    ),
    RecommendationRule(
        "outdated_features",
        IssueSeverity.LOW,
        lambda c: (
            c.total > 0
            and 100.0 * c.outdated_features / c.total >= c.config.outdated_share_warning_pct
        ),
        lambda c: (
            f"{c.outdated_features} features not edited in over "
            f"{c.config.outdated_feature_age_years} years"
        ),
        "consider a resurvey",
    ),
)


def evaluate_rules(
    context: RuleContext,
    rules: Sequence[RecommendationRule] = DEFAULT_RULES,
) -> tuple[list[str], list[QualityIssue]]:
    """Return (messages, issues of fired rules); fallback when nothing fires."""
    fired = [rule for rule in rules if rule.predicate(context)]
    if not fired:
        return [FALLBACK_RECOMMENDATION], []
    return [rule.message(context) for rule in fired], [rule.issue(context) for rule in fired]
