"""
Storage Services Package

Provides the ledger store interface and its implementations:
in-memory (tests, local sessions) and Google Sheets (durable).
"""

from pocket_planner.services.storage.interface import (
    BUDGETS,
    CATEGORIES,
    COMMITS,
    EXPENSES,
    SERVER_TIMESTAMP,
    TOMBSTONE,
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    budget_path,
    category_path,
    commit_path,
    expense_path,
)
from pocket_planner.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from pocket_planner.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStoreInterface",
    # Paths and sentinels
    "BUDGETS",
    "CATEGORIES",
    "COMMITS",
    "EXPENSES",
    "SERVER_TIMESTAMP",
    "TOMBSTONE",
    "budget_path",
    "category_path",
    "commit_path",
    "expense_path",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]
