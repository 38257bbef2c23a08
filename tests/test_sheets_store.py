"""
Tests for the Google Sheets backend.

A fake worksheet stands in for gspread so the row layout, versioning
and single-request writes can be checked without network access.
"""

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from pocket_planner.ledger import CategoryRegistry, TransactionCoordinator
from pocket_planner.models.audit import AuditEventBuilder, AuditEventType
from pocket_planner.models.ledger import ExpenseRequest
from pocket_planner.services.storage import (
    SERVER_TIMESTAMP,
    TOMBSTONE,
    ConflictError,
    GoogleSheetsAuditStorage,
    GoogleSheetsLedgerStore,
    StorageError,
)
from pocket_planner.services.storage.google_sheets import AUDIT_COLUMNS, LEDGER_COLUMNS

from tests.conftest import NOW, PERIOD


_RANGE = re.compile(r"A(\d+):[A-Z]+(\d+)")


class FakeWorksheet:
    """The slice of gspread.Worksheet the backend uses."""

    def __init__(self, header: list[str], row_count: int = 4):
        self.rows: list[list[str]] = [list(header)]
        self.row_count = row_count
        self.batch_calls = 0
        self.fail_writes = False
        self.fail_reads = False
        self.break_reads_after_write = False

    def get_all_values(self) -> list[list[str]]:
        if self.fail_reads:
            raise RuntimeError("read timed out")
        return [list(row) for row in self.rows]

    def add_rows(self, rows: int) -> None:
        self.row_count += rows

    def batch_update(self, data, value_input_option=None) -> None:
        if self.fail_writes:
            raise RuntimeError("quota exceeded")
        self.batch_calls += 1
        for item in data:
            start, end = (int(n) for n in _RANGE.fullmatch(item["range"]).groups())
            assert start == end
            if start > self.row_count:
                raise RuntimeError(f"Row {start} exceeds grid limits")
            while len(self.rows) < start:
                self.rows.append([])
            self.rows[start - 1] = list(item["values"][0])
        if self.break_reads_after_write:
            self.fail_reads = True

    def append_row(self, values, value_input_option=None) -> None:
        self.rows.append(list(values))


class FakeSheetsClient:
    def __init__(self):
        self.ledger = FakeWorksheet(LEDGER_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS, row_count=5000)

    def get_ledger_sheet(self) -> FakeWorksheet:
        return self.ledger

    def get_audit_sheet(self) -> FakeWorksheet:
        return self.audit


@pytest.fixture
def client():
    return FakeSheetsClient()


@pytest.fixture
def sheets_store(client, clock):
    return GoogleSheetsLedgerStore("user-1", client, clock=clock)


def budget_value(total="500", spent="0"):
    return {"totalBudget": total, "spentTotal": spent, "spentByCategory": {}}


class TestSheetsLedgerWrites:
    """Tests for reads and atomic writes."""

    @pytest.mark.asyncio
    async def test_multi_path_update_is_one_request(self, sheets_store, client):
        """Test that an update spanning records is a single batch."""
        await sheets_store.atomic_update({
            f"budgets/{PERIOD}": budget_value(),
            "expenses/e1": {
                "amount": "10",
                "categoryId": "rent",
                "description": "",
                "timestamp": SERVER_TIMESTAMP,
            },
        })

        assert client.ledger.batch_calls == 1
        assert (await sheets_store.get_aggregate(PERIOD)).total_budget == 500
        entry = await sheets_store.get_entry("e1")
        assert entry.timestamp == NOW

    @pytest.mark.asyncio
    async def test_rows_are_namespaced_per_user(self, sheets_store, client, clock):
        """Test that users on one sheet do not see each other."""
        await sheets_store.atomic_update({"categories/rent": {"name": "Rent", "color": "#111111"}})

        paths = [row[0] for row in client.ledger.rows[1:]]
        assert "users/user-1/categories/rent" in paths
        assert "users/user-1" in paths

        other = GoogleSheetsLedgerStore("user-2", client, clock=clock)
        assert await other.list_categories() == {}

    @pytest.mark.asyncio
    async def test_nested_write_keeps_sibling_fields(self, sheets_store):
        """Test writing one field inside a record."""
        await sheets_store.atomic_update({f"budgets/{PERIOD}": budget_value()})
        await sheets_store.atomic_update({f"budgets/{PERIOD}/totalBudget": "750"})

        assert await sheets_store.get(f"budgets/{PERIOD}") == budget_value(total="750")

    @pytest.mark.asyncio
    async def test_tombstone_keeps_row(self, sheets_store, client):
        """Test that a delete empties the row instead of removing it."""
        await sheets_store.atomic_update({"categories/rent": {"name": "Rent", "color": "#111111"}})
        rows_before = len(client.ledger.rows)

        await sheets_store.atomic_update({"categories/rent": TOMBSTONE})

        assert await sheets_store.get("categories/rent") is None
        assert len(client.ledger.rows) == rows_before
        row = next(r for r in client.ledger.rows if r[0] == "users/user-1/categories/rent")
        assert row[1] == ""

    @pytest.mark.asyncio
    async def test_grows_the_sheet(self, sheets_store, client):
        """Test that missing rows are added before writing."""
        await sheets_store.atomic_update({
            f"expenses/e{n}": {"amount": "1", "categoryId": "rent", "timestamp": SERVER_TIMESTAMP}
            for n in range(5)
        })
        assert client.ledger.row_count >= len(client.ledger.rows)
        assert len(await sheets_store.list_entries()) == 5

    @pytest.mark.asyncio
    async def test_write_failure_is_storage_error(self, sheets_store, client):
        """Test that API failures surface as StorageError."""
        client.ledger.fail_writes = True
        with pytest.raises(StorageError):
            await sheets_store.atomic_update({f"budgets/{PERIOD}": budget_value()})
        assert await sheets_store.get(f"budgets/{PERIOD}") is None

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, sheets_store, client):
        """Test that a hand-edited row does not break reads."""
        client.ledger.rows.append(["users/user-1/categories/bad", "{not json", "1", ""])
        await sheets_store.atomic_update({"categories/rent": {"name": "Rent", "color": "#111111"}})
        assert set(await sheets_store.list_categories()) == {"rent"}


class TestSheetsLedgerVersions:
    """Tests for compare-and-swap on the sheet."""

    @pytest.mark.asyncio
    async def test_write_bumps_record_and_ancestors(self, sheets_store):
        """Test version bookkeeping."""
        await sheets_store.atomic_update({f"budgets/{PERIOD}/totalBudget": "100"})

        assert await sheets_store.version(f"budgets/{PERIOD}") == 1
        assert await sheets_store.version(f"budgets/{PERIOD}/totalBudget") == 1
        assert await sheets_store.version("budgets") == 1
        assert await sheets_store.version("expenses") == 0

        await sheets_store.atomic_update({f"budgets/{PERIOD}/spentTotal": "5"})
        assert await sheets_store.version(f"budgets/{PERIOD}") == 2

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, sheets_store, client):
        """Test that a stale expectation rejects the whole update."""
        path = f"budgets/{PERIOD}"
        version = await sheets_store.version(path)
        await sheets_store.atomic_update({path: budget_value()}, expected_versions={path: version})
        calls = client.ledger.batch_calls

        with pytest.raises(ConflictError):
            await sheets_store.atomic_update(
                {path: budget_value(total="1"), "expenses/e1": {"amount": "1"}},
                expected_versions={path: version},
            )

        assert client.ledger.batch_calls == calls
        assert await sheets_store.get("expenses/e1") is None


class TestSheetsLedgerSubscriptions:
    """Tests for change notification on the sheet."""

    @pytest.mark.asyncio
    async def test_subscriber_sees_own_writes(self, sheets_store):
        """Test initial snapshot then one call per write."""
        seen = []
        await sheets_store.subscribe(f"budgets/{PERIOD}", seen.append)
        await sheets_store.atomic_update({f"budgets/{PERIOD}": budget_value()})

        assert seen == [None, budget_value()]

    @pytest.mark.asyncio
    async def test_poll_picks_up_remote_changes(self, sheets_store, client, clock):
        """Test that another session's write reaches this session on poll."""
        seen = []
        await sheets_store.subscribe("categories", seen.append)

        remote = GoogleSheetsLedgerStore("user-1", client, clock=clock)
        await remote.atomic_update({"categories/rent": {"name": "Rent", "color": "#111111"}})

        assert await sheets_store.poll() == 1
        assert seen[-1] == {"rent": {"name": "Rent", "color": "#111111"}}
        assert await sheets_store.poll() == 0


class TestSheetsReadFailureAfterWrite:
    """Tests for a sheet that stops answering reads once a batch has landed."""

    @pytest.mark.asyncio
    async def test_write_reports_success_and_notifies(self, sheets_store, client):
        """Test that subscribers get the written value without a re-read."""
        seen = []
        await sheets_store.subscribe(f"budgets/{PERIOD}", seen.append)
        client.ledger.break_reads_after_write = True

        written_at = await sheets_store.atomic_update({f"budgets/{PERIOD}": budget_value()})

        assert written_at == NOW
        assert seen == [None, budget_value()]
        with pytest.raises(StorageError):
            await sheets_store.get(f"budgets/{PERIOD}")

    @pytest.mark.asyncio
    async def test_commit_is_not_reported_failed(self, sheets_store, client, clock, audit_logger, ledger_settings):
        """Test a coordinator commit whose write lands before reads start failing."""
        registry = CategoryRegistry(sheets_store, audit_logger, settings=ledger_settings, clock=clock)
        coordinator = TransactionCoordinator(
            sheets_store, registry, audit_logger, settings=ledger_settings, clock=clock
        )
        await registry.ensure_seeded()
        await coordinator.set_total_budget("500")
        seen = []
        await sheets_store.subscribe(f"budgets/{PERIOD}", seen.append)
        client.ledger.break_reads_after_write = True

        entry = await coordinator.commit(ExpenseRequest(amount=Decimal("120"), category_id="rent"))

        assert entry.amount == Decimal("120")
        assert entry.timestamp == NOW
        assert entry.period == PERIOD
        assert seen[-1]["spentTotal"] == "120"

        client.ledger.break_reads_after_write = False
        client.ledger.fail_reads = False
        assert await sheets_store.get_entry(entry.id) == entry
        assert (await sheets_store.get_aggregate(PERIOD)).spent_total == Decimal("120")


class TestSheetsAuditStorage:
    """Tests for the audit sheet."""

    @pytest.mark.asyncio
    async def test_append_and_read_back(self, client):
        """Test that events survive the row format."""
        storage = GoogleSheetsAuditStorage(client)
        correlation_id = uuid4()
        event = AuditEventBuilder.commit_conflict("r1", 2, correlation_id)

        assert await storage.append_event(event) is True

        events = await storage.get_events_by_correlation_id(correlation_id)
        assert len(events) == 1
        assert events[0].event_id == event.event_id
        assert events[0].event_type == AuditEventType.COMMIT_CONFLICT
        assert events[0].details == event.details

    @pytest.mark.asyncio
    async def test_recent_events_newest_first(self, client):
        """Test ordering by timestamp."""
        storage = GoogleSheetsAuditStorage(client)
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        for minutes in (2, 0, 1):
            event = AuditEventBuilder.budget_set(PERIOD, "0", str(minutes))
            await storage.append_event(event.model_copy(update={"timestamp": base + timedelta(minutes=minutes)}))

        recent = await storage.get_recent_events(limit=2)
        assert [e.details["total_budget"] for e in recent] == ["2", "1"]

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, client):
        """Test that a broken row does not hide the rest."""
        storage = GoogleSheetsAuditStorage(client)
        client.audit.rows.append(["not-a-uuid", "yesterday"])
        await storage.append_event(AuditEventBuilder.budget_set(PERIOD, "0", "5"))

        assert len(await storage.get_recent_events()) == 1
