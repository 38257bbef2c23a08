"""
Data Models Package

This package contains all Pydantic models used in Pocket Planner.
All data flowing through the ledger must conform to these schemas.
"""

from pocket_planner.models.ledger import (
    BudgetAggregate,
    CategoryDefinition,
    CommitRecord,
    ExpenseEntry,
    ExpenseRequest,
    current_period,
    period_for,
    validate_period,
)
from pocket_planner.models.analytics import (
    CategoryBreakdown,
    DailyTotal,
    Report,
    Window,
)
from pocket_planner.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BudgetAggregate",
    "CategoryDefinition",
    "CommitRecord",
    "ExpenseEntry",
    "ExpenseRequest",
    "current_period",
    "period_for",
    "validate_period",
    # Analytics models
    "CategoryBreakdown",
    "DailyTotal",
    "Report",
    "Window",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
