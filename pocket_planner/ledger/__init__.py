"""Ledger core: categories and expense commits."""

from pocket_planner.ledger.coordinator import (
    TransactionCoordinator,
    overage_for,
    parse_amount,
)
from pocket_planner.ledger.registry import (
    DEFAULT_CATEGORIES,
    CategoryRegistry,
    random_color,
    slugify,
)

__all__ = [
    "DEFAULT_CATEGORIES",
    "CategoryRegistry",
    "TransactionCoordinator",
    "overage_for",
    "parse_amount",
    "random_color",
    "slugify",
]
