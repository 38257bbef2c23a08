"""
Ledger Error Taxonomy

Every failure in the ledger core is raised at the operation boundary
for the caller to present. Nothing here is process-fatal.

- ValidationError: bad request data (amount, category). Recoverable.
- BudgetExceeded: business-rule rejection. Carries the overage.
- CommitFailed: storage/transport fault. No partial state is left behind.
- InconsistentReference: a category id that no longer exists.
  This one is a SOFT failure - it is logged and rendered with a
  fallback label, never raised by the core.
"""

from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base exception for the ledger core."""

    user_message = "Something went wrong. Please try again."


class NotAuthenticated(LedgerError):
    """No current user is available."""

    user_message = "User not authenticated"


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(LedgerError):
    """Request data failed a local check. No write was attempted."""

    user_message = "Please check the details you entered."

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidAmount(ValidationError):
    """Amount is not a finite number in the allowed range."""

    user_message = "Please enter a valid amount"

    def __init__(self, amount, message: Optional[str] = None):
        super().__init__(message or f"Invalid amount: {amount!r}", field="amount")
        self.amount = amount


class InvalidBudget(InvalidAmount):
    """Total budget is not a finite number >= 0."""

    user_message = "Please enter a valid number for your budget."


class InvalidPeriod(ValidationError):
    """Period key is not a YYYY-MM calendar month."""

    user_message = "Please choose a valid month"

    def __init__(self, period):
        super().__init__(f"Invalid period {period!r}, expected YYYY-MM", field="period")
        self.period = period


class UnknownCategory(ValidationError):
    """Category id is not in the registry."""

    user_message = "Please select a category"

    def __init__(self, category_id: str):
        super().__init__(f"Unknown category: {category_id!r}", field="category_id")
        self.category_id = category_id


class InvalidCategoryName(ValidationError):
    """Category name is blank after trimming."""

    user_message = "Please enter a category name"

    def __init__(self, name: str):
        super().__init__(f"Invalid category name: {name!r}", field="name")
        self.name = name


class DuplicateCategory(ValidationError):
    """A category with the same id already exists."""

    user_message = "A category with this name already exists"

    def __init__(self, category_id: str):
        super().__init__(f"Category already exists: {category_id!r}", field="name")
        self.category_id = category_id


# =============================================================================
# BUSINESS RULES
# =============================================================================

class BudgetExceeded(LedgerError):
    """
    The expense does not fit in the remaining budget.

    `overage` is rounded to 2 decimals for display.
    """

    def __init__(
        self,
        requested: Decimal,
        remaining: Decimal,
        overage: Decimal,
        currency_symbol: str = "$",
    ):
        super().__init__(
            f"Expense of {requested} exceeds remaining budget {remaining} by {overage}"
        )
        self.requested = requested
        self.remaining = remaining
        self.overage = overage
        self.currency_symbol = currency_symbol

    @property
    def user_message(self) -> str:
        return f"This expense exceeds your remaining budget by {self.currency_symbol}{self.overage:.2f}"


# =============================================================================
# STORAGE
# =============================================================================

class CommitFailed(LedgerError):
    """The atomic write did not go through. Nothing was persisted."""

    user_message = "Failed to save expense. Please try again."


class InconsistentReference(LedgerError):
    """
    An entry or aggregate key points to a category that is gone.

    Analytics render these under a fallback label.
    """

    def __init__(self, category_id: str, entry_ids: Optional[list[str]] = None):
        super().__init__(f"Category no longer in registry: {category_id!r}")
        self.category_id = category_id
        self.entry_ids = entry_ids or []
