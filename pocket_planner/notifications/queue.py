"""
Notification Queue

User-facing messages with an explicit expiry policy.

DESIGN DECISION: The queue is pure state. It never sleeps, renders or
schedules anything; callers pass "now" and ask what is still visible.
How long a message stays up depends only on its severity:

    success   2 s
    info      4 s
    warning   6 s
    error     sticky until dismissed

(all configurable via NOTIFY_* settings)
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from pocket_planner.config import NotificationSettings, get_settings
from pocket_planner.errors import LedgerError


class NotificationSeverity(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """One message shown to the user."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    severity: NotificationSeverity
    message: str
    created_at: datetime
    expires_at: Optional[datetime] = Field(
        default=None,
        description="None means sticky"
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def notification_for_error(exc: BaseException) -> tuple[NotificationSeverity, str]:
    """Severity and message to show for a failed operation."""
    if isinstance(exc, LedgerError):
        return NotificationSeverity.ERROR, exc.user_message
    return NotificationSeverity.ERROR, LedgerError.user_message


class NotificationQueue:
    """
    Ordered set of live notifications, oldest first.

    Args:
        settings: Per-severity durations (defaults to environment)
        clock: Used when a method is called without `now`
    """

    def __init__(
        self,
        settings: Optional[NotificationSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._settings = settings or get_settings().notifications
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._items: list[Notification] = []

    def __len__(self) -> int:
        return len(self._items)

    def duration_for(self, severity: NotificationSeverity) -> Optional[timedelta]:
        seconds = {
            NotificationSeverity.SUCCESS: self._settings.success_seconds,
            NotificationSeverity.INFO: self._settings.info_seconds,
            NotificationSeverity.WARNING: self._settings.warning_seconds,
            NotificationSeverity.ERROR: self._settings.error_seconds,
        }[NotificationSeverity(severity)]
        if seconds is None:
            return None
        return timedelta(seconds=seconds)

    def push(
        self,
        severity: NotificationSeverity,
        message: str,
        now: Optional[datetime] = None,
    ) -> Notification:
        now = now or self._clock()
        duration = self.duration_for(severity)
        notification = Notification(
            severity=severity,
            message=message,
            created_at=now,
            expires_at=now + duration if duration is not None else None,
        )
        self._items.append(notification)
        return notification

    def push_error(self, exc: BaseException, now: Optional[datetime] = None) -> Notification:
        severity, message = notification_for_error(exc)
        return self.push(severity, message, now)

    def active(self, now: Optional[datetime] = None) -> list[Notification]:
        """Notifications still visible at `now`. Does not remove anything."""
        now = now or self._clock()
        return [n for n in self._items if not n.is_expired(now)]

    def expire(self, now: Optional[datetime] = None) -> list[Notification]:
        """Drop expired notifications and return them."""
        now = now or self._clock()
        expired = [n for n in self._items if n.is_expired(now)]
        self._items = [n for n in self._items if not n.is_expired(now)]
        return expired

    def dismiss(self, notification_id: str) -> bool:
        """Remove one notification. Returns False if it was not queued."""
        before = len(self._items)
        self._items = [n for n in self._items if n.id != notification_id]
        return len(self._items) != before

    def clear(self) -> None:
        self._items = []
