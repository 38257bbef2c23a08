"""
Tests for the orchestrator flows.

These run the full stack (flows → coordinator/registry → in-memory store)
the way the front end uses it.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from pocket_planner.config import Settings, validate_all_settings
from pocket_planner.errors import NotAuthenticated
from pocket_planner.models.analytics import Window
from pocket_planner.models.audit import AuditEventType
from pocket_planner.notifications import NotificationSeverity
from pocket_planner.orchestrator import AppComponents, create_app_components
from pocket_planner.services.auth import StaticAuthProvider
from pocket_planner.services.storage import InMemoryAuditStorage, InMemoryLedgerStore

from tests.conftest import NOW, PERIOD


@pytest.fixture
def components(clock, monkeypatch) -> AppComponents:
    monkeypatch.delenv("LEDGER_BACKEND", raising=False)
    return create_app_components(
        user_id="user-1",
        store=InMemoryLedgerStore(clock=clock),
        audit_storage=InMemoryAuditStorage(),
        clock=clock,
    )


async def started(components: AppComponents, budget: str = "500") -> AppComponents:
    await components.start()
    await components.coordinator.set_total_budget(budget)
    return components


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_requires_a_user(self):
        """Test that no session is built without a user."""
        with pytest.raises(NotAuthenticated):
            create_app_components(auth=StaticAuthProvider(None))

    def test_signed_out_user_is_rejected(self):
        """Test that the auth provider is asked, not cached."""
        auth = StaticAuthProvider("user-1")
        auth.sign_out()
        with pytest.raises(NotAuthenticated) as exc_info:
            create_app_components(auth=auth)
        assert exc_info.value.user_message == "User not authenticated"

    def test_memory_backend_by_default(self, monkeypatch):
        """Test the default backend."""
        monkeypatch.delenv("LEDGER_BACKEND", raising=False)
        components = create_app_components(user_id="user-1", settings=Settings())
        assert components.user_id == "user-1"
        assert isinstance(components.store, InMemoryLedgerStore)

    @pytest.mark.asyncio
    async def test_start_seeds_once(self, components):
        """Test that starting twice seeds once."""
        assert await components.start() is True
        assert await components.start() is False
        assert len(await components.registry.list_categories()) == 6


class TestExpenseFlow:
    """Tests for submitting expenses from form input."""

    @pytest.mark.asyncio
    async def test_submit_success(self, components):
        """Test a successful submit."""
        await started(components)

        outcome = await components.expenses.submit("120", "groceries", "Weekly shop", now=NOW)

        assert outcome.success
        assert outcome.message == "Expense saved successfully!"
        assert outcome.entry.amount == Decimal("120")
        assert await components.remaining_budget() == Decimal("380")

        active = components.notifications.active(NOW)
        assert [n.severity for n in active] == [NotificationSeverity.SUCCESS]
        assert components.notifications.active(NOW + timedelta(seconds=2)) == []

    @pytest.mark.asyncio
    async def test_submit_invalid_amount(self, components):
        """Test unparsable input."""
        await started(components)

        outcome = await components.expenses.submit("twelve", "groceries", now=NOW)

        assert not outcome.success
        assert outcome.error_type == "InvalidAmount"
        assert outcome.field == "amount"
        assert outcome.message == "Please enter a valid amount"
        # Errors stay until dismissed
        assert len(components.notifications.active(NOW + timedelta(hours=1))) == 1

    @pytest.mark.asyncio
    async def test_submit_without_category(self, components):
        """Test a missing category."""
        await started(components)
        outcome = await components.expenses.submit("10", None, now=NOW)
        assert outcome.message == "Please select a category"

    @pytest.mark.asyncio
    async def test_submit_over_budget(self, components):
        """Test the overage message."""
        await started(components)
        await components.expenses.submit("120", "groceries", now=NOW)

        outcome = await components.expenses.submit("400", "groceries", now=NOW)

        assert outcome.error_type == "BudgetExceeded"
        assert outcome.message == "This expense exceeds your remaining budget by $20.00"

    @pytest.mark.asyncio
    async def test_submit_description_too_long(self, components):
        """Test that schema problems become a ledger validation error."""
        await started(components)
        outcome = await components.expenses.submit("10", "groceries", "x" * 501, now=NOW)

        assert not outcome.success
        assert outcome.field == "description"
        assert len(await components.store.list_entries()) == 0

    @pytest.mark.asyncio
    async def test_resubmit_with_same_request_id(self, components):
        """Test that a retried submit is recorded once."""
        await started(components)

        first = await components.expenses.submit("50", "rent", request_id="form-1", now=NOW)
        second = await components.expenses.submit("50", "rent", request_id="form-1", now=NOW)

        assert first.entry.id == second.entry.id
        assert len(await components.store.list_entries()) == 1


class TestBudgetAndCategoryFlows:
    """Tests for budget and category management."""

    @pytest.mark.asyncio
    async def test_set_budget(self, components):
        """Test setting the budget."""
        outcome = await components.budget.set_total("750", now=NOW)
        assert outcome.success
        assert outcome.aggregate.total_budget == Decimal("750")

    @pytest.mark.asyncio
    async def test_set_invalid_budget(self, components):
        """Test the invalid budget message."""
        outcome = await components.budget.set_total("lots", now=NOW)
        assert not outcome.success
        assert outcome.message == "Please enter a valid number for your budget."

    @pytest.mark.asyncio
    async def test_set_budget_invalid_period(self, components):
        """Test that a bad month is reported, not raised."""
        outcome = await components.budget.set_total("100", period="2024-13", now=NOW)

        assert not outcome.success
        assert outcome.error_type == "InvalidPeriod"
        assert outcome.field == "period"
        assert outcome.message == "Please choose a valid month"
        assert len(components.notifications.active(NOW)) == 1

    @pytest.mark.asyncio
    async def test_add_and_remove_category(self, components):
        """Test category add and delete messages."""
        added = await components.categories.add("Pets", icon="🐶", now=NOW)
        assert added.success
        assert added.category.id == "pets"

        duplicate = await components.categories.add("pets", now=NOW)
        assert duplicate.error_type == "DuplicateCategory"

        removed = await components.categories.remove("pets", now=NOW)
        assert removed.message == "Category deleted successfully"

    @pytest.mark.asyncio
    async def test_remove_unknown_category(self, components):
        """Test removing a missing category."""
        outcome = await components.categories.remove("nope", now=NOW)
        assert outcome.error_type == "UnknownCategory"

    @pytest.mark.asyncio
    async def test_snapshot(self, components):
        """Test the render snapshot."""
        await started(components)
        await components.expenses.submit("5", "rent", now=NOW)

        aggregate, entries, categories = await components.snapshot()
        assert aggregate.spent_total == Decimal("5")
        assert len(entries) == 1
        assert "rent" in categories

    @pytest.mark.asyncio
    async def test_snapshot_period_follows_injected_clock(self, components, clock):
        """Test that the snapshot reads the period the coordinator charges."""
        await started(components)
        await components.expenses.submit("5", "rent", now=NOW)
        clock.now = NOW.replace(year=2031)

        aggregate, _, _ = await components.snapshot()

        assert components.coordinator.current_period() == "2031-05"
        assert aggregate.spent_total == Decimal("0")
        assert (await components.snapshot(PERIOD))[0].spent_total == Decimal("5")


class TestAnalyticsFlow:
    """Tests for building reports."""

    @pytest.mark.asyncio
    async def test_report(self, components):
        """Test a report over committed expenses."""
        await started(components)
        await components.expenses.submit("30", "rent", now=NOW)
        await components.expenses.submit("10", "groceries", now=NOW)

        report = await components.analytics.report(Window.MONTH, now=NOW)

        assert report.window_total == Decimal("40")
        assert report.category_totals["rent"] == Decimal("30")
        assert report.percentages["groceries"] == Decimal("25")

    @pytest.mark.asyncio
    async def test_deleted_category_is_reported_and_logged(self, components):
        """Test the orphan path end to end."""
        await started(components)
        await components.expenses.submit("100", "rent", now=NOW)

        await components.categories.remove("rent", now=NOW)
        assert not await components.registry.contains("rent")

        report = await components.analytics.report(Window.MONTH, now=NOW)

        row = report.breakdown_for("rent")
        assert row.is_orphan
        assert row.name == "Uncategorized"
        assert row.total == Decimal("100")

        storage = components.audit_logger._storage
        events = await storage.get_recent_events(limit=1)
        assert events[0].event_type == AuditEventType.INCONSISTENT_REFERENCE
        assert events[0].details["entry_count"] == 1


class TestSettings:
    """Tests for configuration loading."""

    def test_ledger_settings_from_environment(self, monkeypatch):
        """Test env prefix handling."""
        monkeypatch.setenv("LEDGER_COMMIT_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("LEDGER_REJECT_DUPLICATE_CATEGORIES", "false")

        ledger = Settings().ledger
        assert ledger.commit_max_attempts == 5
        assert ledger.reject_duplicate_categories is False

    def test_validate_all_settings_reports_errors(self, monkeypatch):
        """Test the startup check."""
        monkeypatch.setenv("LEDGER_COMMIT_MAX_ATTEMPTS", "0")

        results = validate_all_settings()

        assert results["ledger"] is False
        assert "ledger_error" in results
        assert results["notifications"] is True
        assert "google_sheets" not in results
