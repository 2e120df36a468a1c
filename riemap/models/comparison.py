"""Version comparison models."""

from __future__ import annotations

from pydantic import Field

from riemap.models.common import RiemapBase, UTCTimestamp, utc_now


class CategoryChange(RiemapBase):
    """Added / modified / deleted tally for one feature category.

    Conservation: ``total_from + added == total_to + deleted``.
    """

    category: str
    total_from: int = 0
    total_to: int = 0
    added: int = 0
    modified: int = 0
    deleted: int = 0


class RegionComparison(RiemapBase):
    """Directional comparison between two published versions of a region."""

    region_id: str
    from_version: str
    to_version: str
    comparison_date: UTCTimestamp = Field(default_factory=utc_now)
    categories: list[CategoryChange] = Field(default_factory=list)
    total_from: int = 0
    total_to: int = 0
    added: int = 0
    modified: int = 0
    deleted: int = 0
    recategorized: int = Field(
        default=0,
        description="Features present in both versions whose category changed.",
    )
    file_size_change: int = 0
    quality_score_change: float | None = None
    summary: str = ""

    def category(self, name: str) -> CategoryChange | None:
        for change in self.categories:
            if change.category == name:
                return change
        return None
