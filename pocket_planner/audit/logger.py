"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every refused request is logged.
This provides:
1. Complete traceability of budget changes
2. Debugging capability when commits fail or conflict
3. A record of every refused expense and why

The audit logger:
- Is async to match the store API
- Gracefully handles failures (a broken audit sink never fails a commit)
- Supports correlation IDs to trace a commit across its retries
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from pocket_planner.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from pocket_planner.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when configured (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
        user_id: Optional[str] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            user_id: Stamped on every event that doesn't carry one.
        """
        self._storage = storage
        self._user_id = user_id
        self._logger = structlog.get_logger("pocket_planner.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event: always to the local log, then to storage if any.

        A storage failure is logged and reported as False. It never
        propagates into the ledger operation being audited.
        """
        if event.user_id is None and self._user_id is not None:
            event = event.model_copy(update={"user_id": self._user_id})

        emit = {
            AuditSeverity.ERROR: self._logger.error,
            AuditSeverity.WARNING: self._logger.warning,
        }.get(event.severity, self._logger.info)
        emit("audit_event", **event.to_log_dict())

        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )
            return False

    async def log_expense_committed(
        self,
        entry_id: str,
        category_id: str,
        amount: str,
        period: str,
        attempts: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a successful commit."""
        await self.log(AuditEventBuilder.expense_committed(
            entry_id=entry_id,
            category_id=category_id,
            amount=amount,
            period=period,
            attempts=attempts,
            correlation_id=correlation_id,
        ))

    async def log_expense_rejected(
        self,
        request_id: str,
        reason: str,
        field: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a validation rejection."""
        await self.log(AuditEventBuilder.expense_rejected(
            request_id=request_id,
            reason=reason,
            field=field,
            correlation_id=correlation_id,
        ))

    async def log_budget_exceeded(
        self,
        request_id: str,
        requested: str,
        remaining: str,
        overage: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a budget rejection."""
        await self.log(AuditEventBuilder.budget_exceeded(
            request_id=request_id,
            requested=requested,
            remaining=remaining,
            overage=overage,
            correlation_id=correlation_id,
        ))

    async def log_commit_conflict(
        self,
        request_id: str,
        attempt: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.commit_conflict(
            request_id=request_id,
            attempt=attempt,
            correlation_id=correlation_id,
        ))

    async def log_commit_failed(
        self,
        request_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.commit_failed(
            request_id=request_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_duplicate_commit(
        self,
        request_id: str,
        entry_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.duplicate_commit_ignored(
            request_id=request_id,
            entry_id=entry_id,
            correlation_id=correlation_id,
        ))

    async def log_budget_set(self, period: str, previous: str, total_budget: str) -> None:
        await self.log(AuditEventBuilder.budget_set(
            period=period,
            previous=previous,
            total_budget=total_budget,
        ))

    async def log_categories_seeded(self, category_ids: list[str]) -> None:
        await self.log(AuditEventBuilder.categories_seeded(category_ids))

    async def log_category_added(self, category_id: str, name: str, overwritten: bool) -> None:
        await self.log(AuditEventBuilder.category_added(
            category_id=category_id,
            name=name,
            overwritten=overwritten,
        ))

    async def log_category_removed(self, category_id: str, period: str) -> None:
        await self.log(AuditEventBuilder.category_removed(category_id, period))

    async def log_inconsistent_reference(self, category_id: str, entry_count: int) -> None:
        """Soft failure: entries point at a category that was removed."""
        await self.log(AuditEventBuilder.inconsistent_reference(category_id, entry_count))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (e.g., one expense commit)
    and pass it through the retries.
    """
    return uuid4()
