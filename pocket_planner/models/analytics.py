"""
Analytics Report Models

Output of the AnalyticsAggregator. Pure data - no behaviour beyond
convenience lookups for the presentation layer.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


FALLBACK_CATEGORY_NAME = "Uncategorized"
FALLBACK_CATEGORY_ICON = "❔"
FALLBACK_CATEGORY_COLOR = "#A3A3A3"


class Window(str, Enum):
    """Rolling lookback interval for analytics."""
    WEEK = "week"     # 7 days
    MONTH = "month"   # 1 calendar month
    YEAR = "year"     # 1 calendar year


class DailyTotal(BaseModel):
    """
    Spend for one calendar day.

    `by_category` has a key for every registry category (0 when nothing
    was spent) so charts get continuous series.
    """

    day: date
    total: Decimal = Field(ge=0)
    by_category: dict[str, Decimal] = Field(default_factory=dict)


class CategoryBreakdown(BaseModel):
    """One row of the category breakdown."""

    category_id: str
    name: str
    icon: str
    color: str
    total: Decimal = Field(ge=0)
    percentage: Decimal = Field(
        ge=0,
        le=100,
        description="Share of the window total, 2 dp"
    )
    is_orphan: bool = Field(
        default=False,
        description="Category is referenced by entries but no longer in the registry"
    )


class Report(BaseModel):
    """Time-windowed rollup of the expense log."""

    window: Window
    start: datetime = Field(..., description="Inclusive lower bound on entry timestamps")
    end: datetime = Field(..., description="The 'now' the report was computed for")
    window_total: Decimal = Field(ge=0)
    entry_count: int = Field(ge=0)
    daily: list[DailyTotal] = Field(default_factory=list)
    categories: list[CategoryBreakdown] = Field(default_factory=list)
    orphan_category_ids: list[str] = Field(default_factory=list)

    @property
    def category_totals(self) -> dict[str, Decimal]:
        return {row.category_id: row.total for row in self.categories}

    @property
    def percentages(self) -> dict[str, Decimal]:
        return {row.category_id: row.percentage for row in self.categories}

    def breakdown_for(self, category_id: str) -> Optional[CategoryBreakdown]:
        for row in self.categories:
            if row.category_id == category_id:
                return row
        return None
