"""
Core Ledger Models for Pocket Planner

These models define the strict schemas for everything the ledger persists.
They are designed to:
1. Enforce type safety at runtime
2. Serialize to the camelCase JSON layout used by the store
3. Keep money in Decimal end to end (no float drift in aggregates)

Persisted layout (per user):
    budgets/{period}          -> BudgetAggregate
    expenses/{entryId}        -> ExpenseEntry
    categories/{categoryId}   -> CategoryDefinition
    commits/{requestId}       -> CommitRecord

DESIGN DECISION: Record ids live in the path, not in the stored value.
`from_store()` / `to_store()` handle that split.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

ZERO = Decimal("0")


def period_for(moment: datetime) -> str:
    """
    Period key ("YYYY-MM") for the calendar month containing `moment`.

    Naive datetimes are treated as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


def current_period(now: Optional[datetime] = None) -> str:
    """Period key for now (UTC)."""
    return period_for(now or datetime.now(tz=timezone.utc))


def validate_period(period: str) -> str:
    """Raise ValueError unless `period` looks like YYYY-MM."""
    if not PERIOD_PATTERN.match(period):
        raise ValueError(f"Invalid period {period!r}, expected YYYY-MM")
    return period


class StoreModel(BaseModel):
    """Base for models persisted in the ledger store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_store(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        """JSON-safe dict with camelCase keys, as written to the store."""
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)


# =============================================================================
# BUDGET AGGREGATE
# =============================================================================

class BudgetAggregate(StoreModel):
    """
    Per-period summary of allocation and spend.

    Invariant (after every successful commit):
        spent_total == sum(spent_by_category.values())

    spent_total <= total_budget is only enforced at commit time.
    """

    total_budget: Decimal = Field(
        default=ZERO,
        ge=0,
        description="Allocation for the period"
    )
    spent_total: Decimal = Field(
        default=ZERO,
        ge=0,
        description="Sum of all committed expenses in the period"
    )
    spent_by_category: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Spend per category id"
    )

    @property
    def remaining(self) -> Decimal:
        """What is left of the allocation. Negative only if overrun."""
        return self.total_budget - self.spent_total

    @property
    def utilization(self) -> Decimal:
        """Percentage of the budget spent, 0 when there is no budget."""
        if self.total_budget == 0:
            return ZERO
        return self.spent_total / self.total_budget * 100

    @property
    def is_consistent(self) -> bool:
        return self.spent_total == sum(self.spent_by_category.values(), ZERO)

    def spent_in(self, category_id: str) -> Decimal:
        return self.spent_by_category.get(category_id, ZERO)

    def with_expense(self, category_id: str, amount: Decimal) -> "BudgetAggregate":
        """Next aggregate after charging `amount` to `category_id`."""
        by_category = dict(self.spent_by_category)
        by_category[category_id] = by_category.get(category_id, ZERO) + amount
        return self.model_copy(update={
            "spent_total": self.spent_total + amount,
            "spent_by_category": by_category,
        })


# =============================================================================
# EXPENSES
# =============================================================================

class ExpenseRequest(StoreModel):
    """
    What the UI submits. NOT validated here.

    Amount checks belong to the TransactionCoordinator so that every
    rejection surfaces as a ledger error, not a schema error.
    Non-finite amounts are therefore allowed through.
    """

    amount: Decimal = Field(
        ...,
        allow_inf_nan=True,
        description="Requested amount"
    )
    category_id: str = Field(
        ...,
        description="Category to charge"
    )
    description: str = Field(
        default="",
        max_length=500,
    )
    # Retrying the same request object re-sends the same token
    request_id: str = Field(
        default_factory=lambda: str(uuid4()),
        min_length=1,
        max_length=128,
        description="Idempotency token for this commit"
    )


class ExpenseEntry(StoreModel):
    """
    One recorded expense. Immutable once created.

    `id` and `timestamp` are assigned by the store.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Store-assigned id"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Amount charged"
    )
    category_id: str = Field(
        ...,
        description="Non-owning reference to a CategoryDefinition"
    )
    description: str = ""
    timestamp: datetime = Field(
        ...,
        description="Server-assigned instant"
    )
    period: Optional[str] = Field(
        default=None,
        description="Budget period this entry was charged to"
    )
    request_id: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @classmethod
    def from_store(cls, entry_id: str, value: dict[str, Any]) -> "ExpenseEntry":
        return cls.model_validate({**value, "id": entry_id})


class CommitRecord(StoreModel):
    """Marks a request id as applied. Written with the entry it produced."""

    entry_id: str
    period: str
    committed_at: datetime


# =============================================================================
# CATEGORIES
# =============================================================================

class CategoryDefinition(StoreModel):
    """A spending category shown to the user."""

    id: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    icon: str = Field(
        default="📦",
        max_length=16,
        description="Glyph (usually an emoji)"
    )
    color: str = Field(
        ...,
        pattern=r"^#[0-9A-Fa-f]{3,8}$",
        description="Display color"
    )

    @classmethod
    def from_store(cls, category_id: str, value: dict[str, Any]) -> "CategoryDefinition":
        return cls.model_validate({**value, "id": category_id})

    def to_store(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        return super().to_store(exclude={"id"} | (exclude or set()))
