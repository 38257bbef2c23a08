"""
Abstract Storage Interface

DESIGN DECISION: The ledger talks to storage through a small path-based
interface modelled on a realtime key-value tree:

    get(path)                          -> snapshot of the value at path
    subscribe(path, callback)          -> unsubscribe handle
    atomic_update({path: value, ...})  -> all-or-nothing multi-path write

This allows us to:
1. Keep a Google Sheets backend for durable, user-visible data
2. Use in-memory storage for testing and local sessions
3. Keep business logic decoupled from storage implementation

Typed helpers (get_aggregate, list_entries, ...) are implemented once
here on top of those primitives.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Mapping, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as SchemaError

from pocket_planner.models.audit import AuditEvent
from pocket_planner.models.ledger import (
    BudgetAggregate,
    CategoryDefinition,
    CommitRecord,
    ExpenseEntry,
    validate_period,
)


logger = structlog.get_logger(__name__)


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name


# Deletes the path it is written to
TOMBSTONE = _Sentinel("TOMBSTONE")

# Replaced by the store's clock (ISO-8601, UTC) at write time
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")

Callback = Callable[[Any], None]
Unsubscribe = Callable[[], None]

BUDGETS = "budgets"
EXPENSES = "expenses"
CATEGORIES = "categories"
COMMITS = "commits"

_FORBIDDEN_KEY_CHARS = set(".#$[]/")


# =============================================================================
# PATHS
# =============================================================================

def split_path(path: str) -> list[str]:
    """
    Split a slash-separated path into segments.

    "" (or "/") is the root. Empty segments and reserved characters
    are rejected.
    """
    stripped = path.strip("/")
    if not stripped:
        return []
    segments = stripped.split("/")
    for segment in segments:
        if not segment or _FORBIDDEN_KEY_CHARS & set(segment):
            raise ValueError(f"Invalid path segment {segment!r} in {path!r}")
    return segments


def join_path(*parts: str) -> str:
    return "/".join(split_path("/".join(parts)))


def paths_overlap(a: str, b: str) -> bool:
    """True if one path is equal to, or an ancestor of, the other."""
    if a == b or not a or not b:
        return True
    return a.startswith(b + "/") or b.startswith(a + "/")


def budget_path(period: str) -> str:
    return join_path(BUDGETS, validate_period(period))


def expense_path(entry_id: str) -> str:
    return join_path(EXPENSES, entry_id)


def category_path(category_id: str) -> str:
    return join_path(CATEGORIES, category_id)


def commit_path(request_id: str) -> str:
    return join_path(COMMITS, request_id)


# =============================================================================
# SNAPSHOT PARSING
# =============================================================================

def aggregate_from_value(value: Any) -> BudgetAggregate:
    """Zero-valued aggregate when nothing is stored yet."""
    if not value:
        return BudgetAggregate()
    return BudgetAggregate.model_validate(value)


def entries_from_value(value: Any) -> list[ExpenseEntry]:
    """All entries under `expenses`, oldest first."""
    entries = []
    for entry_id, data in (value or {}).items():
        try:
            entries.append(ExpenseEntry.from_store(entry_id, data))
        except (SchemaError, TypeError) as e:
            logger.warning("malformed_entry_skipped", entry_id=entry_id, error=str(e))
    entries.sort(key=lambda entry: (entry.timestamp, entry.id))
    return entries


def categories_from_value(value: Any) -> dict[str, CategoryDefinition]:
    categories = {}
    for category_id, data in (value or {}).items():
        try:
            categories[category_id] = CategoryDefinition.from_store(category_id, data)
        except (SchemaError, TypeError) as e:
            logger.warning("malformed_category_skipped", category_id=category_id, error=str(e))
    return categories


class LedgerStoreInterface(ABC):
    """
    Abstract interface for ledger storage.

    One instance serves one user's namespace. Implementations must
    guarantee that subscribers observe either the pre-write or the
    fully-post-write state of an atomic_update, never a mix.
    """

    @abstractmethod
    async def get(self, path: str) -> Any:
        """
        Snapshot of the value at `path`.

        Returns:
            A JSON-like value (dicts, lists, strings, numbers), or None
            if nothing is stored there. Callers may mutate it freely.
        """
        pass

    @abstractmethod
    async def version(self, path: str) -> int:
        """
        Revision counter for `path`.

        Bumped by every write to the path, one of its ancestors, or
        one of its descendants. 0 if never written.
        """
        pass

    @abstractmethod
    async def atomic_update(
        self,
        updates: Mapping[str, Any],
        expected_versions: Optional[Mapping[str, int]] = None,
    ) -> datetime:
        """
        Apply all path writes as one unit.

        Args:
            updates: {path: value}. TOMBSTONE (or None) deletes the path.
                     SERVER_TIMESTAMP anywhere in a value is replaced
                     with the store clock.
            expected_versions: {path: version} that must still hold,
                     otherwise nothing is written.

        Returns:
            The store instant SERVER_TIMESTAMP resolved to

        Raises:
            ConflictError: An expected version no longer matches
            StorageError: The write failed (nothing was applied)
        """
        pass

    @abstractmethod
    async def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        """
        Call `callback(snapshot)` now and after every change under `path`.

        Returns:
            A function that removes the subscription
        """
        pass

    @abstractmethod
    def new_key(self, collection: str) -> str:
        """Generate a unique, roughly chronological key for a new child."""
        pass

    # ─── Typed reads ─────────────────────────────────────────────────────────

    async def get_aggregate(self, period: str) -> BudgetAggregate:
        return aggregate_from_value(await self.get(budget_path(period)))

    async def list_entries(self) -> list[ExpenseEntry]:
        return entries_from_value(await self.get(EXPENSES))

    async def get_entry(self, entry_id: str) -> Optional[ExpenseEntry]:
        value = await self.get(expense_path(entry_id))
        if value is None:
            return None
        return ExpenseEntry.from_store(entry_id, value)

    async def list_categories(self) -> dict[str, CategoryDefinition]:
        return categories_from_value(await self.get(CATEGORIES))

    async def get_commit(self, request_id: str) -> Optional[CommitRecord]:
        value = await self.get(commit_path(request_id))
        if value is None:
            return None
        return CommitRecord.model_validate(value)

    # ─── Typed subscriptions ─────────────────────────────────────────────────

    async def subscribe_aggregate(
        self,
        period: str,
        callback: Callable[[BudgetAggregate], None],
    ) -> Unsubscribe:
        return await self.subscribe(
            budget_path(period),
            lambda value: callback(aggregate_from_value(value)),
        )

    async def subscribe_entries(
        self,
        callback: Callable[[list[ExpenseEntry]], None],
    ) -> Unsubscribe:
        return await self.subscribe(
            EXPENSES,
            lambda value: callback(entries_from_value(value)),
        )

    async def subscribe_categories(
        self,
        callback: Callable[[dict[str, CategoryDefinition]], None],
    ) -> Unsubscribe:
        return await self.subscribe(
            CATEGORIES,
            lambda value: callback(categories_from_value(value)),
        )


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one commit and its retries).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConflictError(StorageError):
    """An expected version did not match; the write was not applied."""

    def __init__(self, path: str, expected: int, actual: int):
        super().__init__(f"Version conflict at {path!r}: expected {expected}, found {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
