"""Quality scoring configuration.

Weights, penalty factors and thresholds for the analyzer. Defaults are
documented here rather than buried in the scoring code, and any of them can
be overridden per deployment.
"""

from __future__ import annotations

from pydantic import Field, model_validator

from riemap.models.common import RiemapBase


class QualityScoringConfig(RiemapBase):
    """Configuration for the quality analyzer.

    Scores:
        completeness = 100 * tagged / total
        accuracy = 100 - accuracy_penalty * weighted errors per 1000 features
        freshness = linear decay from 100 at age 0 to ``freshness_floor`` at
            ``staleness_threshold_days``, flat afterwards
        overall = weighted mean of the three using ``score_weights``
    """

    score_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "completeness": 0.4,
            "accuracy": 0.4,
            "freshness": 0.2,
        },
    )

    geometry_error_weight: float = Field(default=1.0, ge=0.0)
    topology_error_weight: float = Field(default=0.75, ge=0.0)
    accuracy_penalty: float = Field(
        default=1.0,
        ge=0.0,
        description="Accuracy points lost per weighted error per 1000 features.",
    )

    staleness_threshold_days: float = Field(default=365.0, gt=0.0)
    freshness_floor: float = Field(default=10.0, ge=0.0, le=100.0)

    completeness_warning: float = Field(default=70.0, ge=0.0, le=100.0)
    very_low_tagging_pct: float = Field(default=10.0, ge=0.0, le=100.0)
    way_density_ratio: int = Field(
        default=100,
        gt=0,
        description="Flag when there are fewer than one way per this many nodes.",
    )
    outdated_feature_age_years: int = Field(default=5, gt=0)
    outdated_share_warning_pct: float = Field(default=25.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def _check_weights(self) -> QualityScoringConfig:
        expected = {"completeness", "accuracy", "freshness"}
        if set(self.score_weights) != expected:
            msg = f"score_weights must have exactly the keys {sorted(expected)}"
            raise ValueError(msg)
        if any(w < 0 for w in self.score_weights.values()) or not sum(self.score_weights.values()):
            msg = "score_weights must be non-negative with a positive sum"
            raise ValueError(msg)
        return self
