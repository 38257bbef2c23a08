"""
Analytics Aggregator

Pure transform: (entries, categories, window, now) -> Report.

No I/O, no logging, no clock. Callers pass in a snapshot and "now";
the same inputs always give the same report.

Entries whose category has been removed from the registry are NOT
dropped. They are reported under a fallback label and their ids are
listed in Report.orphan_category_ids so the caller can log the
inconsistency.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from dateutil.relativedelta import relativedelta

from pocket_planner.models.analytics import (
    FALLBACK_CATEGORY_COLOR,
    FALLBACK_CATEGORY_ICON,
    FALLBACK_CATEGORY_NAME,
    CategoryBreakdown,
    DailyTotal,
    Report,
    Window,
)
from pocket_planner.models.ledger import ZERO, CategoryDefinition, ExpenseEntry


HUNDRED = Decimal("100")
PERCENT_PLACES = Decimal("0.01")

_LOOKBACK = {
    Window.WEEK: timedelta(days=7),
    Window.MONTH: relativedelta(months=1),
    Window.YEAR: relativedelta(years=1),
}


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def window_start(window: Window, now: datetime) -> datetime:
    """
    Inclusive lower bound of `window` ending at `now`.

    Month and year are calendar steps, clamped to the end of a shorter
    month (Mar 31 - 1 month = Feb 28/29).
    """
    return _as_utc(now) - _LOOKBACK[Window(window)]


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100 to 2 dp. 0 when whole is 0."""
    if whole == 0:
        return ZERO
    return (part / whole * HUNDRED).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def aggregate(
    entries: Iterable[ExpenseEntry],
    categories: Mapping[str, CategoryDefinition],
    window: Window,
    now: datetime,
) -> Report:
    """
    Roll the expense log up for one lookback window.

    Args:
        entries: Expense log snapshot (any order)
        categories: Registry snapshot, id -> definition
        window: Lookback interval
        now: End of the window

    Returns:
        Report with per-day rows (ascending, days with spend only),
        per-category totals and percentages
    """
    window = Window(window)
    end = _as_utc(now)
    start = window_start(window, end)

    in_window = [e for e in entries if _as_utc(e.timestamp) >= start]

    category_ids = list(categories)
    orphan_ids = sorted({e.category_id for e in in_window} - set(categories))
    all_ids = category_ids + orphan_ids

    by_day: dict[date, dict[str, Decimal]] = defaultdict(dict)
    totals = {category_id: ZERO for category_id in all_ids}
    for entry in in_window:
        day = _as_utc(entry.timestamp).date()
        spent = by_day[day]
        spent[entry.category_id] = spent.get(entry.category_id, ZERO) + entry.amount
        totals[entry.category_id] += entry.amount

    daily = []
    for day in sorted(by_day):
        spent = by_day[day]
        daily.append(DailyTotal(
            day=day,
            total=sum(spent.values(), ZERO),
            by_category={category_id: spent.get(category_id, ZERO) for category_id in all_ids},
        ))

    window_total = sum(totals.values(), ZERO)

    rows = []
    for category_id in all_ids:
        definition = categories.get(category_id)
        rows.append(CategoryBreakdown(
            category_id=category_id,
            name=definition.name if definition else FALLBACK_CATEGORY_NAME,
            icon=definition.icon if definition else FALLBACK_CATEGORY_ICON,
            color=definition.color if definition else FALLBACK_CATEGORY_COLOR,
            total=totals[category_id],
            percentage=percentage(totals[category_id], window_total),
            is_orphan=definition is None,
        ))

    return Report(
        window=window,
        start=start,
        end=end,
        window_total=window_total,
        entry_count=len(in_window),
        daily=daily,
        categories=rows,
        orphan_category_ids=orphan_ids,
    )
