"""
Transaction Coordinator

The only writer of expenses and budget aggregates.

A commit is validated against a snapshot of the current period's
aggregate and the category registry, then applied as ONE atomic write:

    budgets/{period}        <- aggregate with the amount added
    expenses/{newId}        <- the entry (server timestamp)
    commits/{requestId}     <- idempotency record

DESIGN DECISION: Optimistic concurrency. The write carries the aggregate
version that was read. If another writer got there first the store
raises ConflictError and we re-read, re-validate (budget included) and
try again. Two racing commits can therefore never jointly overrun the
budget.

DESIGN DECISION: Idempotency. A request id that already has a commit
record returns the entry it produced. Nothing is written twice.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Optional
from uuid import UUID

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from pocket_planner.audit import AuditLogger, create_correlation_id
from pocket_planner.config import LedgerSettings, get_settings
from pocket_planner.errors import (
    BudgetExceeded,
    CommitFailed,
    InvalidAmount,
    InvalidBudget,
    InvalidPeriod,
    UnknownCategory,
    ValidationError,
)
from pocket_planner.ledger.registry import CategoryRegistry
from pocket_planner.models.ledger import (
    BudgetAggregate,
    ExpenseEntry,
    ExpenseRequest,
    current_period,
    validate_period,
)
from pocket_planner.services.storage import (
    EXPENSES,
    SERVER_TIMESTAMP,
    ConflictError,
    LedgerStoreInterface,
    StorageError,
    budget_path,
    commit_path,
    expense_path,
)


CENT = Decimal("0.01")


def parse_amount(raw: Any) -> Decimal:
    """
    Convert user input (text or number) to a finite Decimal.

    Sign is not checked here.

    Raises:
        InvalidAmount: Empty, unparsable or non-finite input
    """
    if isinstance(raw, bool) or raw is None:
        raise InvalidAmount(raw)

    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)):
        # str() first so 0.1 stays 0.1
        value = Decimal(str(raw))
    elif isinstance(raw, str):
        try:
            value = Decimal(raw.strip())
        except InvalidOperation:
            raise InvalidAmount(raw)
    else:
        raise InvalidAmount(raw)

    if not value.is_finite():
        raise InvalidAmount(raw)
    return value


def overage_for(amount: Decimal, remaining: Decimal) -> Decimal:
    """How far `amount` overshoots `remaining`, rounded half-up to cents."""
    return (amount - remaining).quantize(CENT, rounding=ROUND_HALF_UP)


class TransactionCoordinator:
    """
    Validates and commits expenses for one user.

    Args:
        store: The user's ledger store
        registry: The user's categories
        audit_logger: Optional audit sink
        settings: Ledger settings (defaults to environment)
        clock: "Now" for picking the current period
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        registry: CategoryRegistry,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._registry = registry
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().ledger
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    parse_amount = staticmethod(parse_amount)

    async def commit(self, request: ExpenseRequest) -> ExpenseEntry:
        """
        Record an expense against the current period.

        Validation order: amount, then category, then budget.

        Returns:
            The committed entry (or the earlier entry for a repeated request id)

        Raises:
            InvalidAmount: Amount not finite or not > 0
            UnknownCategory: Category id not in the registry
            BudgetExceeded: Amount larger than what is left
            CommitFailed: Storage fault, or conflicts on every attempt
        """
        correlation_id = create_correlation_id()
        period = self.current_period()

        try:
            if not request.amount.is_finite() or request.amount <= 0:
                raise InvalidAmount(request.amount, "Amount must be a positive number")

            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.commit_max_attempts),
                retry=retry_if_exception_type(ConflictError),
                reraise=True,
            ):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    try:
                        entry, duplicate = await self._commit_once(request, period)
                    except ConflictError:
                        if self._audit_logger:
                            await self._audit_logger.log_commit_conflict(
                                request.request_id, number, correlation_id
                            )
                        raise

        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_expense_rejected(
                    request.request_id, str(e), e.field, correlation_id
                )
            raise
        except BudgetExceeded as e:
            if self._audit_logger:
                await self._audit_logger.log_budget_exceeded(
                    request.request_id,
                    requested=str(e.requested),
                    remaining=str(e.remaining),
                    overage=str(e.overage),
                    correlation_id=correlation_id,
                )
            raise
        except StorageError as e:
            await self._fail(request.request_id, str(e), correlation_id)
            raise CommitFailed(f"Commit of request {request.request_id} failed: {e}") from e

        await self._audit_success(request.request_id, entry, duplicate, number, correlation_id)
        return entry

    async def set_total_budget(
        self,
        amount: Any,
        period: Optional[str] = None,
    ) -> BudgetAggregate:
        """
        Set the allocation for a period (default: current).

        Spend already recorded is left alone, even if it now exceeds
        the new total.

        Raises:
            InvalidBudget: Not a finite number >= 0
            InvalidPeriod: `period` is not YYYY-MM
            CommitFailed: Storage fault
        """
        try:
            value = parse_amount(amount)
        except InvalidAmount:
            raise InvalidBudget(amount)
        if value < 0:
            raise InvalidBudget(amount, "Budget must be zero or more")

        period = self._resolve_period(period)

        try:
            previous = await self._store.get_aggregate(period)
            await self._store.atomic_update({
                f"{budget_path(period)}/totalBudget": str(value),
            })
        except StorageError as e:
            raise CommitFailed(f"Failed to set budget for {period}: {e}") from e

        if self._audit_logger:
            await self._audit_logger.log_budget_set(period, str(previous.total_budget), str(value))
        return previous.model_copy(update={"total_budget": value})

    async def remaining_budget(self, period: Optional[str] = None) -> Decimal:
        period = self._resolve_period(period)
        return (await self._store.get_aggregate(period)).remaining

    def current_period(self) -> str:
        """Period new expenses are charged to."""
        return current_period(self._clock())

    # ─── Internals ───────────────────────────────────────────────────────────

    def _resolve_period(self, period: Optional[str]) -> str:
        if period is None:
            return self.current_period()
        try:
            return validate_period(period)
        except (TypeError, ValueError):
            raise InvalidPeriod(period)

    async def _commit_once(
        self,
        request: ExpenseRequest,
        period: str,
    ) -> tuple[ExpenseEntry, bool]:
        """One read-validate-write attempt. Returns (entry, was_duplicate)."""
        record = await self._store.get_commit(request.request_id)
        if record is not None:
            entry = await self._store.get_entry(record.entry_id)
            if entry is None:
                raise StorageError(
                    f"Commit record {request.request_id} points at missing entry {record.entry_id}"
                )
            return entry, True

        if not await self._registry.contains(request.category_id):
            raise UnknownCategory(request.category_id)

        aggregate_path = budget_path(period)
        record_path = commit_path(request.request_id)
        aggregate_version = await self._store.version(aggregate_path)
        record_version = await self._store.version(record_path)
        aggregate = await self._store.get_aggregate(period)

        remaining = aggregate.remaining
        if request.amount > remaining:
            raise BudgetExceeded(
                requested=request.amount,
                remaining=remaining,
                overage=overage_for(request.amount, remaining),
                currency_symbol=self._settings.currency_symbol,
            )

        entry_id = self._store.new_key(EXPENSES)
        updated = aggregate.with_expense(request.category_id, request.amount)

        written_at = await self._store.atomic_update(
            {
                aggregate_path: updated.to_store(),
                expense_path(entry_id): {
                    "amount": str(request.amount),
                    "categoryId": request.category_id,
                    "description": request.description,
                    "timestamp": SERVER_TIMESTAMP,
                    "period": period,
                    "requestId": request.request_id,
                },
                record_path: {
                    "entryId": entry_id,
                    "period": period,
                    "committedAt": SERVER_TIMESTAMP,
                },
            },
            expected_versions={
                aggregate_path: aggregate_version,
                record_path: record_version,
            },
        )

        # The write is durable: build the result from it instead of reading back
        entry = ExpenseEntry(
            id=entry_id,
            amount=request.amount,
            category_id=request.category_id,
            description=request.description,
            timestamp=written_at,
            period=period,
            request_id=request.request_id,
        )
        return entry, False

    async def _audit_success(
        self,
        request_id: str,
        entry: ExpenseEntry,
        duplicate: bool,
        attempts: int,
        correlation_id: UUID,
    ) -> None:
        if not self._audit_logger:
            return
        if duplicate:
            await self._audit_logger.log_duplicate_commit(
                request_id, entry.id, correlation_id
            )
        else:
            await self._audit_logger.log_expense_committed(
                entry_id=entry.id,
                category_id=entry.category_id,
                amount=str(entry.amount),
                period=entry.period or "",
                attempts=attempts,
                correlation_id=correlation_id,
            )

    async def _fail(self, request_id: str, message: str, correlation_id: UUID) -> None:
        if self._audit_logger:
            await self._audit_logger.log_commit_failed(request_id, message, correlation_id)
