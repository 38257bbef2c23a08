"""
Audit Models for Pocket Planner

Every ledger mutation and every rejected attempt is logged.
This provides:
1. Complete traceability of what changed the budget
2. Debugging information when a commit fails
3. A record of requests that were refused (and why)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Expenses
    EXPENSE_COMMITTED = "expense_committed"
    EXPENSE_REJECTED = "expense_rejected"
    BUDGET_EXCEEDED = "budget_exceeded"
    COMMIT_CONFLICT = "commit_conflict"
    COMMIT_FAILED = "commit_failed"
    DUPLICATE_COMMIT_IGNORED = "duplicate_commit_ignored"

    # Budget
    BUDGET_SET = "budget_set"

    # Categories
    CATEGORIES_SEEDED = "categories_seeded"
    CATEGORY_ADDED = "category_added"
    CATEGORY_REMOVED = "category_removed"
    INCONSISTENT_REFERENCE = "inconsistent_reference"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    One entry in the ledger's audit trail.

    `correlation_id` groups the events of a single commit (its conflicts,
    retries and final outcome).
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc),
        description="UTC instant the event was recorded"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Which ledger and which record
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the ledger"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="'expense', 'expense_request', 'category' or 'budget'"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Entry id, request id, category id or period"
    )
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Amounts (as strings), attempt numbers and similar"
    )
    error_message: Optional[str] = None
    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """Flat, JSON-safe dict for structlog."""
        return self.model_dump(mode="json")

    def to_sheets_row(self) -> list:
        """
        Row for the audit worksheet, in AUDIT_COLUMNS order:

        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id or ""),
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_committed(entry_id, ...)
        event = AuditEventBuilder.category_removed(category_id, ...)
    """

    @staticmethod
    def expense_committed(
        entry_id: str,
        category_id: str,
        amount: str,
        period: str,
        attempts: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_COMMITTED,
            entity_type="expense",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Expense committed: {amount} to {category_id} ({period})",
            details={
                "category_id": category_id,
                "amount": amount,
                "period": period,
                "attempts": attempts,
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_rejected(
        request_id: str,
        reason: str,
        field: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="expense_request",
            entity_id=request_id,
            correlation_id=correlation_id,
            description=f"Expense rejected: {reason}",
            details={
                "field": field,
            },
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def budget_exceeded(
        request_id: str,
        requested: str,
        remaining: str,
        overage: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_EXCEEDED,
            severity=AuditSeverity.WARNING,
            entity_type="expense_request",
            entity_id=request_id,
            correlation_id=correlation_id,
            description=f"Expense of {requested} exceeds remaining {remaining} by {overage}",
            details={
                "requested": requested,
                "remaining": remaining,
                "overage": overage,
            },
            is_user_action=True,
        )

    @staticmethod
    def commit_conflict(
        request_id: str,
        attempt: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMIT_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type="expense_request",
            entity_id=request_id,
            correlation_id=correlation_id,
            description=f"Aggregate changed during commit (attempt {attempt}), retrying",
            details={
                "attempt": attempt,
            },
        )

    @staticmethod
    def commit_failed(
        request_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMIT_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="expense_request",
            entity_id=request_id,
            correlation_id=correlation_id,
            description="Expense commit failed",
            error_message=error_message,
        )

    @staticmethod
    def duplicate_commit_ignored(
        request_id: str,
        entry_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_COMMIT_IGNORED,
            entity_type="expense",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Request {request_id} was already applied",
            details={
                "request_id": request_id,
            },
        )

    @staticmethod
    def budget_set(
        period: str,
        previous: str,
        total_budget: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_SET,
            entity_type="budget",
            entity_id=period,
            description=f"Budget for {period} set to {total_budget}",
            details={
                "previous": previous,
                "total_budget": total_budget,
            },
            is_user_action=True,
        )

    @staticmethod
    def categories_seeded(category_ids: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORIES_SEEDED,
            entity_type="category",
            description=f"Installed {len(category_ids)} default categories",
            details={
                "category_ids": category_ids,
            },
        )

    @staticmethod
    def category_added(
        category_id: str,
        name: str,
        overwritten: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_ADDED,
            severity=AuditSeverity.WARNING if overwritten else AuditSeverity.INFO,
            entity_type="category",
            entity_id=category_id,
            description=f"Category added: {name}",
            details={
                "name": name,
                "overwritten": overwritten,
            },
            is_user_action=True,
        )

    @staticmethod
    def category_removed(category_id: str, period: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_REMOVED,
            entity_type="category",
            entity_id=category_id,
            description=f"Category removed: {category_id}",
            details={
                "period": period,
            },
            is_user_action=True,
        )

    @staticmethod
    def inconsistent_reference(category_id: str, entry_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INCONSISTENT_REFERENCE,
            severity=AuditSeverity.WARNING,
            entity_type="category",
            entity_id=category_id,
            description=f"{entry_count} entries reference missing category {category_id}",
            details={
                "entry_count": entry_count,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
