"""Services package."""

from pocket_planner.services.auth import AuthProvider, StaticAuthProvider
from pocket_planner.services.storage import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Auth
    "AuthProvider",
    "StaticAuthProvider",
    # Storage services
    "AuditStorageInterface",
    "ConflictError",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerStoreInterface",
    "NotFoundError",
    "StorageError",
]
