"""User-facing notifications with per-severity expiry."""

from pocket_planner.notifications.queue import (
    Notification,
    NotificationQueue,
    NotificationSeverity,
    notification_for_error,
)

__all__ = [
    "Notification",
    "NotificationQueue",
    "NotificationSeverity",
    "notification_for_error",
]
