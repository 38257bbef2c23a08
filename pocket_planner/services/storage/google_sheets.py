"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as the durable backend because:
1. Users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Layout: one worksheet, one row per record:

    path                                 | value_json | version | updated_at
    users/u1                             |            | 12      | ...
    users/u1/budgets                     |            | 4       | ...
    users/u1/budgets/2024-05             | {...}      | 4       | ...
    users/u1/expenses/0190f3a1b2c3d4e5   | {...}      | 1       | ...

Collection and namespace rows carry only a version.
A deleted record keeps its row (empty value, bumped version).

ATOMICITY: every atomic_update is sent as ONE values.batchUpdate request,
so the sheet never holds half of an update. Version checks happen on a
fresh read just before that request; two clients racing between the
read and the write are not detected (single-writer assumption).

Versions are tracked per record, so a write deep inside a record bumps
the record's version. That is coarser than the in-memory store: it can
only cause extra conflicts, never missed ones.
"""

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from pocket_planner.config import get_settings
from pocket_planner.models.audit import AuditEvent, AuditEventType, AuditSeverity
from pocket_planner.services.storage.interface import (
    TOMBSTONE,
    AuditStorageInterface,
    Callback,
    ConflictError,
    ConnectionError,
    LedgerStoreInterface,
    StorageError,
    Unsubscribe,
    split_path,
)
from pocket_planner.services.storage.subscriptions import SubscriptionHub
from pocket_planner.services.storage.tree import (
    normalize_updates,
    read_at,
    resolve_value,
    write_at,
)


logger = structlog.get_logger(__name__)


# Column mappings for Ledger sheet
LEDGER_COLUMNS = [
    "path",
    "value_json",
    "version",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

_LAST_LEDGER_COLUMN = chr(ord("A") + len(LEDGER_COLUMNS) - 1)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_ledger_sheet(self) -> gspread.Worksheet:
        """Get or create the Ledger worksheet."""
        return self._get_or_create_sheet(
            self._settings.ledger_sheet_name, LEDGER_COLUMNS, rows=1000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


@dataclass
class _Row:
    number: int               # 1-based sheet row
    value: Any                # None when the record is deleted
    version: int


@dataclass
class _SheetState:
    rows: dict[str, _Row] = field(default_factory=dict)   # namespace-relative key
    next_row: int = 2

    def version_of(self, key: str) -> int:
        row = self.rows.get(key)
        return row.version if row else 0

    def tree(self) -> dict:
        root: dict = {}
        for key, row in self.rows.items():
            segments = split_path(key)
            if len(segments) == 2 and row.value is not None:
                write_at(root, segments, row.value)
        return root


def _version_key(path: str) -> str:
    """Row that carries the version for `path` (record-level granularity)."""
    return "/".join(split_path(path)[:2])


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger store.

    One instance serves one user; rows are namespaced under users/{user_id}.
    Remote changes are picked up by poll().
    """

    def __init__(
        self,
        user_id: str,
        client: Optional[GoogleSheetsClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._namespace = "/".join(["users", *split_path(user_id)])
        self._client = client or GoogleSheetsClient()
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._hub = SubscriptionHub()
        self._seen_versions: dict[str, int] = {}

    # ─── Sheet I/O ────────────────────────────────────────────────────────────

    def _load(self) -> _SheetState:
        """Read this user's rows (skipping the header and other users)."""
        try:
            all_rows = self._client.get_ledger_sheet().get_all_values()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read ledger: {e}")

        state = _SheetState(next_row=max(len(all_rows), 1) + 1)
        prefix = self._namespace
        for number, row in enumerate(all_rows[1:], start=2):
            if not row or not row[0]:
                continue
            path = row[0]
            if path == prefix:
                key = ""
            elif path.startswith(prefix + "/"):
                key = path[len(prefix) + 1:]
            else:
                continue

            value_json = row[1] if len(row) > 1 else ""
            try:
                value = json.loads(value_json) if value_json else None
                version = int(row[2]) if len(row) > 2 and row[2] else 0
            except ValueError as e:
                logger.warning("malformed_ledger_row_skipped", row=number, error=str(e))
                continue
            state.rows[key] = _Row(number=number, value=value, version=version)
        return state

    def _full_path(self, key: str) -> str:
        return f"{self._namespace}/{key}" if key else self._namespace

    # ─── LedgerStoreInterface ────────────────────────────────────────────────

    async def get(self, path: str) -> Any:
        return read_at(self._load().tree(), split_path(path))

    async def version(self, path: str) -> int:
        return self._load().version_of(_version_key(path))

    async def atomic_update(
        self,
        updates: Mapping[str, Any],
        expected_versions: Optional[Mapping[str, int]] = None,
    ) -> datetime:
        normalized = normalize_updates(updates)
        if not normalized:
            return self._clock()

        state = self._load()
        for path, expected in (expected_versions or {}).items():
            actual = state.version_of(_version_key(path))
            if actual != expected:
                raise ConflictError(path, expected, actual)

        written_at = self._clock()
        timestamp = written_at.isoformat()
        records = self._stage_records(state, normalized, timestamp)

        # Version rows: every touched record, its collection, the namespace
        bumped = set(records)
        bumped.update(key.split("/")[0] for key in records)
        bumped.add("")

        data = []
        written: dict[str, _Row] = {}
        next_row = state.next_row
        for key in sorted(bumped):
            row = state.rows.get(key)
            if row is None:
                number, next_row = next_row, next_row + 1
                version = 1
            else:
                number, version = row.number, row.version + 1
            value = records.get(key)
            value_json = "" if value in (None, TOMBSTONE) else json.dumps(value, ensure_ascii=False)
            written[key] = _Row(number=number, value=None if value is TOMBSTONE else value, version=version)
            data.append({
                "range": f"A{number}:{_LAST_LEDGER_COLUMN}{number}",
                "values": [[self._full_path(key), value_json, str(version), timestamp]],
            })

        try:
            sheet = self._client.get_ledger_sheet()
            missing = next_row - 1 - sheet.row_count
            if missing > 0:
                sheet.add_rows(missing)
            # The single request that makes this update atomic
            sheet.batch_update(data, value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write ledger update: {e}")

        # The batch has landed: notify from what was written, not a re-read
        state.rows.update(written)
        self._remember_versions(state)
        tree = state.tree()
        self._hub.notify(list(normalized), lambda p: read_at(tree, split_path(p)))
        return written_at

    async def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        state = self._load()
        self._remember_versions(state)
        callback(read_at(state.tree(), split_path(path)))
        return self._hub.add(path, callback)

    def new_key(self, collection: str) -> str:
        millis = int(self._clock().timestamp() * 1000)
        return f"{millis:012x}{uuid4().hex[:8]}"

    async def poll(self) -> int:
        """
        Re-read the sheet and notify subscribers of records changed remotely.

        Returns:
            Number of changed records
        """
        state = self._load()
        changed = [
            key for key in state.rows
            if len(split_path(key)) == 2
            and state.version_of(key) != self._seen_versions.get(key, 0)
        ]
        self._remember_versions(state)
        if changed:
            tree = state.tree()
            self._hub.notify(changed, lambda p: read_at(tree, split_path(p)))
        return len(changed)

    # ─── Helpers ─────────────────────────────────────────────────────────────

    def _stage_records(
        self,
        state: _SheetState,
        normalized: Mapping[str, Any],
        timestamp: str,
    ) -> dict[str, Any]:
        """New value (or TOMBSTONE) of every record the update touches."""
        records: dict[str, Any] = {}

        def current(key: str) -> Any:
            if key in records:
                return None if records[key] is TOMBSTONE else records[key]
            row = state.rows.get(key)
            return row.value if row else None

        for path, raw in normalized.items():
            segments = split_path(path)
            value = resolve_value(raw, timestamp)

            if not segments:
                raise StorageError("Writing the namespace root is not supported")

            if len(segments) == 1:
                # Collection write: replace every record in it
                collection = segments[0]
                for key in state.rows:
                    if key.startswith(collection + "/"):
                        records[key] = TOMBSTONE
                if value is not TOMBSTONE:
                    if not isinstance(value, dict):
                        raise StorageError(f"Collection {collection!r} must be a mapping")
                    for child, child_value in value.items():
                        records[f"{collection}/{child}"] = child_value
                continue

            key = "/".join(segments[:2])
            existing = current(key)
            holder = {} if existing is None else {"record": copy.deepcopy(existing)}
            write_at(holder, ["record", *segments[2:]], value)
            records[key] = holder.get("record", TOMBSTONE)

        return records

    def _remember_versions(self, state: _SheetState) -> None:
        self._seen_versions = {key: row.version for key, row in state.rows.items()}


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            user_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        try:
            all_rows = self._client.get_audit_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.warning("malformed_audit_row_skipped", error=str(e))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events, newest first."""
        events = self._read_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
