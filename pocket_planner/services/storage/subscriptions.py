"""
Subscriber bookkeeping shared by the store backends.

Callbacks are plain functions. They are invoked after a write has been
applied in full, so a callback only ever sees a complete state.
"""

from itertools import count
from typing import Any, Callable, Iterable

import structlog

from pocket_planner.services.storage.interface import (
    Callback,
    Unsubscribe,
    paths_overlap,
    split_path,
)


logger = structlog.get_logger(__name__)


class SubscriptionHub:
    """Maps subscribed paths to callbacks and fans out change notifications."""

    def __init__(self):
        self._ids = count(1)
        self._subscribers: dict[int, tuple[str, Callback]] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    def add(self, path: str, callback: Callback) -> Unsubscribe:
        path = "/".join(split_path(path))
        subscription_id = next(self._ids)
        self._subscribers[subscription_id] = (path, callback)

        def unsubscribe() -> None:
            self._subscribers.pop(subscription_id, None)

        return unsubscribe

    def notify(
        self,
        changed_paths: Iterable[str],
        read: Callable[[str], Any],
    ) -> int:
        """
        Call every subscriber whose path overlaps a changed path.

        `read(path)` must return the post-write snapshot for `path`.
        A failing callback is logged and does not stop the others.

        Returns:
            Number of callbacks invoked
        """
        changed = list(changed_paths)
        invoked = 0
        # Copy: callbacks may unsubscribe while we iterate
        for path, callback in list(self._subscribers.values()):
            if not any(paths_overlap(path, other) for other in changed):
                continue
            invoked += 1
            try:
                callback(read(path))
            except Exception:
                logger.exception("subscriber_callback_failed", path=path)
        return invoked
