"""Closed feature classification by dominant tag key."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class FeatureCategory(StrEnum):
    """Feature categories used for distributions and version comparisons."""

    ROADS = "roads"
    BUILDINGS = "buildings"
    POINTS_OF_INTEREST = "points_of_interest"
    WATER_FEATURES = "water_features"
    NATURAL_FEATURES = "natural_features"
    BOUNDARIES = "boundaries"
    OTHER = "other"


# Priority order: the first key present on a feature decides its category.
CATEGORY_KEYS: tuple[tuple[str, FeatureCategory], ...] = (
    ("highway", FeatureCategory.ROADS),
    ("building", FeatureCategory.BUILDINGS),
    ("amenity", FeatureCategory.POINTS_OF_INTEREST),
    ("shop", FeatureCategory.POINTS_OF_INTEREST),
    ("tourism", FeatureCategory.POINTS_OF_INTEREST),
    ("leisure", FeatureCategory.POINTS_OF_INTEREST),
    ("office", FeatureCategory.POINTS_OF_INTEREST),
    ("craft", FeatureCategory.POINTS_OF_INTEREST),
    ("waterway", FeatureCategory.WATER_FEATURES),
    ("water", FeatureCategory.WATER_FEATURES),
    ("natural", FeatureCategory.NATURAL_FEATURES),
    ("landuse", FeatureCategory.NATURAL_FEATURES),
    ("boundary", FeatureCategory.BOUNDARIES),
)

# Keys that carry bookkeeping rather than meaning.
NON_SEMANTIC_KEYS = frozenset({
    "created_by",
    "source",
    "note",
    "fixme",
    "FIXME",
    "comment",
})


def classify(tags: Mapping[str, str]) -> FeatureCategory:
    """Return the category for a tag set; anything unmatched is OTHER."""
    if tags:
        for key, category in CATEGORY_KEYS:
            if key in tags:
                return category
    return FeatureCategory.OTHER


def has_semantic_tags(tags: Mapping[str, str]) -> bool:
    """True when at least one tag is not pure bookkeeping."""
    return any(key not in NON_SEMANTIC_KEYS for key in tags)
