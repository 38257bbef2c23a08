"""
In-Memory Storage Implementation

DESIGN DECISION: The in-memory store is a full implementation of the
ledger contract, not a mock. It is what tests run against and what a
local single-user session uses.

- Data is a nested dict tree (one user namespace per instance)
- Writes are serialised by an asyncio.Lock
- An update is applied to a staged copy and swapped in whole,
  so a failure part-way leaves the previous state untouched
- Subscribers are notified after the swap

State is lost when the process exits.
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional
from uuid import UUID, uuid4

from pocket_planner.models.audit import AuditEvent
from pocket_planner.services.storage.interface import (
    AuditStorageInterface,
    Callback,
    ConflictError,
    LedgerStoreInterface,
    Unsubscribe,
    join_path,
    paths_overlap,
    split_path,
)
from pocket_planner.services.storage.subscriptions import SubscriptionHub
from pocket_planner.services.storage.tree import (
    normalize_updates,
    read_at,
    resolve_value,
    write_at,
)


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class InMemoryLedgerStore(LedgerStoreInterface):
    """
    In-process ledger store.

    Args:
        clock: Source of server timestamps (defaults to UTC now).
        initial: Optional tree to start from (copied).
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        initial: Optional[dict] = None,
    ):
        self._root: dict = copy.deepcopy(initial) if initial else {}
        self._versions: dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._hub = SubscriptionHub()
        self._clock = clock or _utc_now
        self.write_count = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._hub)

    def snapshot(self) -> dict:
        """Deep copy of the whole tree (for inspection and debugging)."""
        return copy.deepcopy(self._root)

    async def get(self, path: str) -> Any:
        return read_at(self._root, split_path(path))

    async def version(self, path: str) -> int:
        return self._versions.get(join_path(path), 0)

    async def atomic_update(
        self,
        updates: Mapping[str, Any],
        expected_versions: Optional[Mapping[str, int]] = None,
    ) -> datetime:
        normalized = normalize_updates(updates)
        if not normalized:
            return self._clock()

        async with self._lock:
            for path, expected in (expected_versions or {}).items():
                actual = self._versions.get(join_path(path), 0)
                if actual != expected:
                    raise ConflictError(path, expected, actual)

            written_at = self._clock()
            timestamp = written_at.isoformat()
            staged = copy.deepcopy(self._root)
            for path, value in normalized.items():
                write_at(staged, split_path(path), resolve_value(value, timestamp))

            # Commit point
            self._root = staged
            self._bump_versions(normalized)
            self.write_count += 1

            self._hub.notify(normalized, lambda path: read_at(self._root, split_path(path)))
        return written_at

    async def subscribe(self, path: str, callback: Callback) -> Unsubscribe:
        async with self._lock:
            callback(read_at(self._root, split_path(path)))
            return self._hub.add(path, callback)

    def new_key(self, collection: str) -> str:
        millis = int(self._clock().timestamp() * 1000)
        return f"{millis:012x}{uuid4().hex[:8]}"

    def _bump_versions(self, written: Mapping[str, Any]) -> None:
        touched = set()
        for path in written:
            segments = split_path(path)
            # The path and all of its ancestors
            for depth in range(len(segments) + 1):
                touched.add("/".join(segments[:depth]))
            # Tracked descendants were replaced too
            touched.update(
                tracked for tracked in self._versions
                if tracked and paths_overlap(tracked, path)
            )
        for path in touched:
            self._versions[path] = self._versions.get(path, 0) + 1


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        # Appended in order, so newest is last
        return list(reversed(self._events))[:limit]
