"""
Main Orchestrator for Pocket Planner

This module ties together all the components for one signed-in user
and defines the flows the front end calls:
1. Expense (raw input → parse → commit → notify)
2. Budget (raw input → set total → notify)
3. Categories (add / remove → notify)
4. Analytics (snapshot → aggregate → report)

DESIGN DECISION: The flows are the presentation boundary.
- Ledger errors are turned into notifications and an outcome, never raised
- Every mutation is audited by the core; flows only add the soft failures
- The core components stay usable on their own (tests, scripts)
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from pocket_planner.analytics import aggregate
from pocket_planner.audit import AuditLogger
from pocket_planner.config import Settings, get_settings
from pocket_planner.errors import CommitFailed, LedgerError, NotAuthenticated, ValidationError
from pocket_planner.ledger import CategoryRegistry, TransactionCoordinator, parse_amount
from pocket_planner.models.analytics import Report, Window
from pocket_planner.models.ledger import (
    BudgetAggregate,
    CategoryDefinition,
    ExpenseEntry,
    ExpenseRequest,
)
from pocket_planner.notifications import NotificationQueue, NotificationSeverity
from pocket_planner.services.auth import AuthProvider, StaticAuthProvider
from pocket_planner.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryLedgerStore,
    LedgerStoreInterface,
)


logger = structlog.get_logger(__name__)

EXPENSE_SAVED = "Expense saved successfully!"
BUDGET_SAVED = "Budget updated successfully"
CATEGORY_ADDED = "Category added successfully"
CATEGORY_DELETED = "Category deleted successfully"


class FlowOutcome(BaseModel):
    """What a flow reports back to the front end."""

    success: bool
    message: str
    error_type: Optional[str] = None
    field: Optional[str] = None
    entry: Optional[ExpenseEntry] = None
    aggregate: Optional[BudgetAggregate] = None
    category: Optional[CategoryDefinition] = None


def _failure(
    notifications: NotificationQueue,
    error: LedgerError,
    now: Optional[datetime],
    message: Optional[str] = None,
) -> FlowOutcome:
    """Queue an error notification and describe the failure."""
    if message is None:
        notification = notifications.push_error(error, now)
    else:
        notification = notifications.push(NotificationSeverity.ERROR, message, now)
    return FlowOutcome(
        success=False,
        message=notification.message,
        error_type=type(error).__name__,
        field=getattr(error, "field", None),
    )


class ExpenseFlow:
    """
    Orchestrates adding an expense.

    Flow:
    1. Parse the raw amount
    2. Commit through the TransactionCoordinator
    3. Queue a success or error notification
    """

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        notifications: NotificationQueue,
    ):
        self._coordinator = coordinator
        self._notifications = notifications

    async def submit(
        self,
        raw_amount: Any,
        category_id: Optional[str],
        description: str = "",
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> FlowOutcome:
        """
        Submit an expense from form input.

        Pass the same `request_id` when retrying after a failure so the
        expense is recorded at most once.
        """
        fields = {
            "category_id": category_id or "",
            "description": description or "",
        }
        if request_id:
            fields["request_id"] = request_id

        try:
            fields["amount"] = parse_amount(raw_amount)
            try:
                request = ExpenseRequest(**fields)
            except SchemaError as e:
                raise ValidationError(f"Invalid expense: {e}", field="description") from e
            entry = await self._coordinator.commit(request)
        except LedgerError as e:
            return _failure(self._notifications, e, now)

        notification = self._notifications.push(NotificationSeverity.SUCCESS, EXPENSE_SAVED, now)
        return FlowOutcome(success=True, message=notification.message, entry=entry)


class BudgetFlow:
    """Orchestrates setting the period's total budget."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        notifications: NotificationQueue,
    ):
        self._coordinator = coordinator
        self._notifications = notifications

    async def set_total(
        self,
        raw_amount: Any,
        period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> FlowOutcome:
        try:
            updated = await self._coordinator.set_total_budget(raw_amount, period)
        except CommitFailed as e:
            return _failure(
                self._notifications, e, now, "Failed to update budget. Please try again."
            )
        except LedgerError as e:
            return _failure(self._notifications, e, now)

        notification = self._notifications.push(NotificationSeverity.SUCCESS, BUDGET_SAVED, now)
        return FlowOutcome(success=True, message=notification.message, aggregate=updated)


class CategoryFlow:
    """Orchestrates adding and removing categories."""

    def __init__(
        self,
        registry: CategoryRegistry,
        notifications: NotificationQueue,
    ):
        self._registry = registry
        self._notifications = notifications

    async def add(
        self,
        name: str,
        icon: Optional[str] = None,
        color: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> FlowOutcome:
        try:
            category = await self._registry.add(name, icon=icon, color=color)
        except CommitFailed as e:
            return _failure(
                self._notifications, e, now, "Failed to add category. Please try again."
            )
        except LedgerError as e:
            return _failure(self._notifications, e, now)

        notification = self._notifications.push(NotificationSeverity.SUCCESS, CATEGORY_ADDED, now)
        return FlowOutcome(success=True, message=notification.message, category=category)

    async def remove(self, category_id: str, now: Optional[datetime] = None) -> FlowOutcome:
        try:
            await self._registry.remove(category_id)
        except CommitFailed as e:
            return _failure(
                self._notifications, e, now, "Failed to delete category. Please try again."
            )
        except LedgerError as e:
            return _failure(self._notifications, e, now)

        notification = self._notifications.push(NotificationSeverity.SUCCESS, CATEGORY_DELETED, now)
        return FlowOutcome(success=True, message=notification.message)


class AnalyticsFlow:
    """
    Builds reports from a store snapshot.

    The aggregator itself is pure; this is where orphaned category
    references are noticed and logged.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    async def report(self, window: Window, now: Optional[datetime] = None) -> Report:
        entries = await self._store.list_entries()
        categories = await self._store.list_categories()
        report = aggregate(entries, categories, window, now or self._clock())

        if report.orphan_category_ids and self._audit_logger:
            for category_id in report.orphan_category_ids:
                count = sum(
                    1 for e in entries
                    if e.category_id == category_id and e.timestamp >= report.start
                )
                await self._audit_logger.log_inconsistent_reference(category_id, count)
        return report


@dataclass
class AppComponents:
    """Everything the front end needs for one signed-in user."""

    user_id: str
    store: LedgerStoreInterface
    audit_logger: AuditLogger
    registry: CategoryRegistry
    coordinator: TransactionCoordinator
    notifications: NotificationQueue
    expenses: ExpenseFlow
    budget: BudgetFlow
    categories: CategoryFlow
    analytics: AnalyticsFlow

    async def start(self) -> bool:
        """Seed default categories if needed. Returns True if seeded now."""
        return await self.registry.ensure_seeded()

    async def snapshot(
        self,
        period: Optional[str] = None,
    ) -> tuple[BudgetAggregate, list[ExpenseEntry], dict[str, CategoryDefinition]]:
        """(aggregate, entries, categories) for rendering."""
        period = period or self.coordinator.current_period()
        return (
            await self.store.get_aggregate(period),
            await self.store.list_entries(),
            await self.store.list_categories(),
        )

    async def remaining_budget(self) -> Decimal:
        return await self.coordinator.remaining_budget()


def _build_store(
    user_id: str,
    settings: Settings,
    clock: Optional[Callable[[], datetime]] = None,
) -> tuple[LedgerStoreInterface, Optional[AuditStorageInterface]]:
    """Ledger store and audit storage for the configured backend."""
    if settings.ledger.backend == "google_sheets":
        sheets_client = GoogleSheetsClient()
        return (
            GoogleSheetsLedgerStore(user_id, sheets_client, clock=clock),
            GoogleSheetsAuditStorage(sheets_client),
        )
    return InMemoryLedgerStore(clock=clock), None


def create_app_components(
    user_id: Optional[str] = None,
    auth: Optional[AuthProvider] = None,
    store: Optional[LedgerStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> AppComponents:
    """
    Factory function to create all application components for one user.

    Args:
        user_id: Signed-in user (shortcut for a StaticAuthProvider)
        auth: Auth provider to ask for the current user
        store: Ledger store to use instead of the configured backend
        audit_storage: Audit storage to use with an explicit store
        settings: Settings to use instead of the environment
        clock: "Now" shared by every component (defaults to the wall clock)

    Raises:
        NotAuthenticated: No current user
    """
    settings = settings or get_settings()
    auth = auth or StaticAuthProvider(user_id or settings.app.default_user_id)
    try:
        resolved_user = auth.require_user_id()
    except NotAuthenticated:
        logger.warning("app_components_without_user")
        raise

    if store is None:
        store, audit_storage = _build_store(resolved_user, settings, clock)

    ledger_settings = settings.ledger
    audit_logger = AuditLogger(audit_storage, user_id=resolved_user)
    registry = CategoryRegistry(store, audit_logger, settings=ledger_settings, clock=clock)
    coordinator = TransactionCoordinator(
        store, registry, audit_logger, settings=ledger_settings, clock=clock
    )
    notifications = NotificationQueue(settings.notifications, clock=clock)

    return AppComponents(
        user_id=resolved_user,
        store=store,
        audit_logger=audit_logger,
        registry=registry,
        coordinator=coordinator,
        notifications=notifications,
        expenses=ExpenseFlow(coordinator, notifications),
        budget=BudgetFlow(coordinator, notifications),
        categories=CategoryFlow(registry, notifications),
        analytics=AnalyticsFlow(store, audit_logger, clock=clock),
    )
