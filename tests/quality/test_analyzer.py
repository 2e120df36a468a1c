"""Tests for QualityAnalyzer scores, recommendation rules and configuration."""

from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from riemap.ingestion.decoders.dataset import DecodedDataset
from riemap.models.artifact import DataFormat
from riemap.models.quality import IssueSeverity
from riemap.quality.analyzer import QualityAnalyzer
from riemap.quality.config import QualityScoringConfig
from riemap.quality.rules import FALLBACK_RECOMMENDATION, DEFAULT_RULES, RecommendationRule

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _dataset(
    nodes: int = 900,
    ways: int = 90,
    relations: int = 10,
    *,
    tagged_ratio: float = 1.0,
    geometry_errors: int = 0,
    topology_errors: int = 0,
    tag_errors: int = 0,
    edit_years: dict[int, int] | None = None,
) -> DecodedDataset:
    return DecodedDataset(
        data_format=DataFormat.PACKED_BINARY,
        total_nodes=nodes,
        total_ways=ways,
        total_relations=relations,
        tagged_nodes=round(nodes * tagged_ratio),
        tagged_ways=round(ways * tagged_ratio),
        tagged_relations=round(relations * tagged_ratio),
        geometry_errors=geometry_errors,
        topology_errors=topology_errors,
        tag_errors=tag_errors,
        feature_distribution=Counter({"roads": ways, "other": nodes + relations}),
        edit_years=Counter(edit_years or {}),
    )


def _analyze(analyzer, dataset, catalog, *, age_days: float = 0.0):
    return analyzer.analyze(
        dataset,
        catalog.resolve("testland"),
        version="2024-06-01",
        captured_at=NOW - timedelta(days=age_days),
        reference_date=NOW,
    )


# ===================================================================
# Individual scores
# ===================================================================


class TestScores:
    def test_completeness(self) -> None:
        analyzer = QualityAnalyzer()
        assert analyzer.completeness(_dataset(tagged_ratio=0.8)) == pytest.approx(80.0)
        assert analyzer.completeness(_dataset(0, 0, 0)) == 0.0

    def test_accuracy_weighted_per_thousand(self) -> None:
        analyzer = QualityAnalyzer()
        dataset = _dataset(geometry_errors=5, topology_errors=4)
        # 5 * 1.0 + 4 * 0.75 = 8 weighted errors over 1000 features
        assert analyzer.accuracy(dataset) == pytest.approx(92.0)

    def test_accuracy_never_negative(self) -> None:
        assert QualityAnalyzer().accuracy(_dataset(geometry_errors=5000)) == 0.0

    def test_accuracy_of_empty_dataset(self) -> None:
        assert QualityAnalyzer().accuracy(_dataset(0, 0, 0)) == 100.0

    @pytest.mark.parametrize(
        ("age_days", "expected"),
        [(0, 100.0), (182.5, 55.0), (365, 10.0), (3650, 10.0)],
    )
    def test_freshness_decay(self, age_days, expected) -> None:
        assert QualityAnalyzer().freshness(age_days) == pytest.approx(expected)

    def test_overall_weighted_mean(self) -> None:
        assert QualityAnalyzer().overall(80.0, 92.0, 100.0) == pytest.approx(88.8)

    def test_custom_weights(self) -> None:
        config = QualityScoringConfig(
            score_weights={"completeness": 1.0, "accuracy": 0.0, "freshness": 0.0},
        )
        assert QualityAnalyzer(config).overall(40.0, 100.0, 100.0) == pytest.approx(40.0)


# ===================================================================
# Reports
# ===================================================================


class TestAnalyze:
    def test_clean_fresh_extract(self, catalog) -> None:
        report = _analyze(QualityAnalyzer(), _dataset(), catalog)

        assert report.completeness_score == 100.0
        assert report.accuracy_score == 100.0
        assert report.freshness_score == 100.0
        assert report.overall_score == 100.0
        assert report.recommendations == [FALLBACK_RECOMMENDATION]
        assert report.region_id == "testland"
        assert report.version == "2024-06-01"
        assert report.metrics.total_features == 1000
        assert report.metrics.feature_distribution == {"roads": 90, "other": 910}
        assert "No issues found" in report.summary

    def test_scores_stay_in_bounds(self, catalog) -> None:
        dataset = _dataset(tagged_ratio=0.0, geometry_errors=10_000, topology_errors=10_000)
        report = _analyze(QualityAnalyzer(), dataset, catalog, age_days=10_000)
        for score in (
            report.completeness_score,
            report.accuracy_score,
            report.freshness_score,
            report.overall_score,
        ):
            assert 0.0 <= score <= 100.0

    def test_issue_counts(self, catalog) -> None:
        dataset = _dataset(tagged_ratio=0.5, geometry_errors=3, topology_errors=2, tag_errors=7)
        report = _analyze(QualityAnalyzer(), dataset, catalog)

        assert report.issues.missing_tags == 500
        assert report.issues.geometry_errors == 3
        assert report.issues.topology_issues == 2
        assert report.issues.tag_errors == 7
        assert report.issues.outdated_data == 0

    def test_outdated_features_and_stale_extract(self, catalog) -> None:
        dataset = _dataset(edit_years={2010: 300, 2023: 700})
        report = _analyze(QualityAnalyzer(), dataset, catalog, age_days=400)

        assert report.metrics.custom_metrics["outdated_features"] == 300
        assert report.metrics.custom_metrics["extract_age_days"] == pytest.approx(400.0)
        # 300 old features plus the stale extract itself
        assert report.issues.outdated_data == 301
        assert report.freshness_score == pytest.approx(10.0)
        assert any("300 features not edited" in r for r in report.recommendations)
        assert any("400 days old" in r for r in report.recommendations)

    def test_source_timestamp_recorded(self, catalog) -> None:
        report = _analyze(QualityAnalyzer(), _dataset(), catalog, age_days=30)
        assert report.source_timestamp == NOW - timedelta(days=30)
        assert report.report_date == NOW


# ===================================================================
# Recommendation rules
# ===================================================================


class TestRecommendations:
    def test_empty_extract(self, catalog) -> None:
        report = _analyze(QualityAnalyzer(), _dataset(0, 0, 0), catalog)
        assert len(report.recommendations) == 1
        assert "no features" in report.recommendations[0]

    def test_rules_fire_in_table_order(self, catalog) -> None:
        dataset = _dataset(
            tagged_ratio=0.05, geometry_errors=1, topology_errors=1, tag_errors=1,
        )
        report = _analyze(QualityAnalyzer(), dataset, catalog)
        texts = report.recommendations

        assert texts[0].startswith("Very low tagging rate")
        assert texts[1].startswith("High missing-tag rate")
        assert "geometry errors" in texts[2]
        assert "topology errors" in texts[3]
        assert "malformed tags" in texts[4]
        assert FALLBACK_RECOMMENDATION not in texts

    def test_way_density_and_relation_ratio(self, catalog) -> None:
        report = _analyze(QualityAnalyzer(), _dataset(nodes=10_000, ways=5, relations=50), catalog)
        assert any("few ways" in r for r in report.recommendations)
        assert any("More relations than ways" in r for r in report.recommendations)

    def test_clean_extract_has_no_issues(self, catalog) -> None:
        report = _analyze(QualityAnalyzer(), _dataset(), catalog)
        assert report.quality_issues == []
        assert report.issues.severity_counts() == {}

    def test_fired_rules_become_issues(self, catalog) -> None:
        dataset = _dataset(
            tagged_ratio=0.05, geometry_errors=1, topology_errors=1, tag_errors=1,
        )
        report = _analyze(QualityAnalyzer(), dataset, catalog)
        issues = report.quality_issues

        assert [i.issue_type for i in issues] == [
            "very_low_tagging", "low_completeness", "geometry_errors",
            "topology_errors", "tag_errors",
        ]
        assert issues[0].severity is IssueSeverity.HIGH
        assert issues[0].description == "Very low tagging rate (4.9%)"
        assert issues[0].fix_suggestion == "increase feature tagging to improve data usability"
        assert report.recommendations[0] == (
            f"{issues[0].description}: {issues[0].fix_suggestion}"
        )

    def test_summary_counts_severities(self, catalog) -> None:
        dataset = _dataset(
            tagged_ratio=0.05, geometry_errors=1, topology_errors=1, tag_errors=1,
        )
        report = _analyze(QualityAnalyzer(), dataset, catalog)

        assert report.issues.severity_counts() == {
            IssueSeverity.HIGH: 3, IssueSeverity.MEDIUM: 1, IssueSeverity.LOW: 1,
        }
        assert "5 issue(s) found (3 high, 1 medium, 1 low)" in report.summary

    def test_empty_extract_is_critical(self, catalog) -> None:
        report = _analyze(QualityAnalyzer(), _dataset(0, 0, 0), catalog)
        assert [i.severity for i in report.quality_issues] == [IssueSeverity.CRITICAL]
        assert "(1 critical)" in report.summary

    def test_custom_rule_table(self, catalog) -> None:
        rules = (*DEFAULT_RULES, RecommendationRule(
            "always", IssueSeverity.LOW, lambda c: True, lambda c: "Custom advice",
        ))
        report = _analyze(QualityAnalyzer(rules=rules), _dataset(), catalog)
        assert report.recommendations == ["Custom advice"]
        assert "always" in report.summary


# ===================================================================
# Configuration
# ===================================================================


class TestScoringConfig:
    def test_defaults(self) -> None:
        config = QualityScoringConfig()
        assert config.score_weights == {"completeness": 0.4, "accuracy": 0.4, "freshness": 0.2}
        assert config.staleness_threshold_days == 365.0

    def test_missing_weight_key(self) -> None:
        with pytest.raises(ValidationError):
            QualityScoringConfig(score_weights={"completeness": 1.0, "accuracy": 1.0})

    def test_zero_weights(self) -> None:
        with pytest.raises(ValidationError):
            QualityScoringConfig(
                score_weights={"completeness": 0.0, "accuracy": 0.0, "freshness": 0.0},
            )
