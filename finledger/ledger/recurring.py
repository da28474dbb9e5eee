"""
Recurring Schedule Engine

Turns recurring definitions into ledger entries on schedule.

One execution is a unit of work, serialized per definition:
    1. check eligibility (active, not paused, not past end_date, under
       max_executions, due; the manual path skips only the due check)
    2. check the template's accounts
    3. apply balance/budget deltas         (overdraft rejected, nothing changed)
    4. save the advanced definition        (cursor, counter, deactivation)
    5. append the materialized entry       (commit point)
Failures in 4 or 5 undo the earlier steps in reverse order, so a retry can
never materialize the same run twice.

DESIGN DECISION: Month-based schedules clamp to the end of shorter months
(Jan 31 -> Feb 28 -> Mar 31 when day_of_month is 31) instead of overflowing
into the next month.
"""

import calendar
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from finledger.audit import AuditLogger, create_correlation_id
from finledger.config import get_settings
from finledger.errors import LedgerError, NotFoundError, ValidationError, parse_payload
from finledger.ledger.locks import KeyedLocks, definition_key
from finledger.ledger.mutator import AccountLedgerMutator
from finledger.models.audit import AuditEventType
from finledger.models.common import ValidationIssue, utcnow
from finledger.models.recurring import (
    DAYS_PER_STEP,
    MONTHS_PER_STEP,
    RECURRING_UPDATABLE_FIELDS,
    SCHEDULE_FIELDS,
    ExecutionFailure,
    ExecutionResult,
    Frequency,
    RecurringPayload,
    RecurringTransaction,
    TickReport,
    UpcomingSchedule,
)
from finledger.models.transaction import Transaction, TransactionType
from finledger.services.storage.interface import (
    RecurringStorageInterface,
    TransactionStorageInterface,
)
from finledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)


def _clamped(year: int, month: int, day: int) -> int:
    return min(day, calendar.monthrange(year, month)[1])


def add_months(value: datetime, months: int, day_of_month: Optional[int] = None) -> datetime:
    """Step a date by whole months, clamping the day to the target month."""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = _clamped(year, month, day_of_month or value.day)
    return value.replace(year=year, month=month, day=day)


def advance(
    next_run_date: datetime,
    frequency: Frequency,
    day_of_month: Optional[int] = None,
) -> datetime:
    """Next run after next_run_date for the given frequency."""
    if frequency in DAYS_PER_STEP:
        return next_run_date + timedelta(days=DAYS_PER_STEP[frequency])
    return add_months(next_run_date, MONTHS_PER_STEP[frequency], day_of_month)


def initial_run_date(
    start_date: datetime,
    frequency: Frequency,
    day_of_month: Optional[int] = None,
    day_of_week: Optional[int] = None,
) -> datetime:
    """
    First run on or after start_date that matches the preferred day.

    day_of_week counts from 0 = Sunday and applies to weekly schedules;
    day_of_month applies to month-based schedules.
    """
    if frequency == Frequency.WEEKLY and day_of_week is not None:
        sunday_based = (start_date.weekday() + 1) % 7
        return start_date + timedelta(days=(day_of_week - sunday_based) % 7)

    if frequency in MONTHS_PER_STEP and day_of_month is not None:
        candidate = start_date.replace(
            day=_clamped(start_date.year, start_date.month, day_of_month)
        )
        if candidate.day < start_date.day:
            candidate = add_months(candidate, 1, day_of_month)
        return candidate

    return start_date


def should_execute(
    definition: RecurringTransaction,
    now: datetime,
    ignore_schedule: bool = False,
) -> tuple[bool, str]:
    """
    Decide whether a definition may run at now.

    Args:
        ignore_schedule: Skip only the "is it due yet" check (manual runs)

    Returns: (eligible, reason)
    """
    if not definition.is_active:
        return False, "Recurring transaction is not active"
    if definition.is_paused:
        return False, "Recurring transaction is paused"
    if definition.end_date and now > definition.end_date:
        return False, "Recurring transaction has ended"
    if (
        definition.max_executions is not None
        and definition.total_executions >= definition.max_executions
    ):
        return False, "Maximum number of executions reached"
    if not ignore_schedule and now < definition.next_run_date:
        return False, f"Not due until {definition.next_run_date.isoformat()}"
    return True, "Due"


def advance_state(definition: RecurringTransaction, now: datetime) -> RecurringTransaction:
    """The definition after one successful run at now."""
    total = definition.total_executions + 1
    is_active = definition.is_active
    if definition.max_executions is not None and total >= definition.max_executions:
        is_active = False

    return definition.model_copy(update={
        "last_run_date": now,
        "next_run_date": advance(
            definition.next_run_date, definition.frequency, definition.day_of_month
        ),
        "total_executions": total,
        "is_active": is_active,
        "updated_at": now,
    })


class RecurringScheduleEngine:
    """
    Manages recurring definitions and materializes them into the ledger.
    """

    def __init__(
        self,
        definitions: RecurringStorageInterface,
        transactions: TransactionStorageInterface,
        mutator: AccountLedgerMutator,
        validator: TransactionValidator,
        audit_logger: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._definitions = definitions
        self._transactions = transactions
        self._mutator = mutator
        self._validator = validator
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or KeyedLocks()
        self._clock = clock
        self._settings = get_settings().ledger

    # =========================================================================
    # Definitions
    # =========================================================================

    async def create_definition(
        self,
        user_id: UUID,
        payload: Union[RecurringPayload, dict],
    ) -> RecurringTransaction:
        """
        Store a new definition with its first run aligned to the preferred day.

        Account references are checked when the definition runs, not here.
        """
        payload = parse_payload(RecurringPayload, payload, "recurring transaction")
        now = self._clock()
        start = payload.start_date or now

        data = payload.model_dump()
        data["start_date"] = start
        definition = RecurringTransaction(
            user_id=user_id,
            next_run_date=initial_run_date(
                start, payload.frequency, payload.day_of_month, payload.day_of_week
            ),
            created_at=now,
            updated_at=now,
            **data,
        )
        await self._definitions.save_definition(definition)

        logger.info(
            "recurring_created",
            definition_id=str(definition.id),
            frequency=definition.frequency.value,
            next_run_date=definition.next_run_date.isoformat(),
        )
        await self._audit.log_recurring_changed(
            AuditEventType.RECURRING_CREATED,
            definition.id,
            user_id,
            definition.name,
            details={"next_run_date": definition.next_run_date.isoformat()},
        )
        return definition

    async def get_definition(self, user_id: UUID, definition_id: UUID) -> RecurringTransaction:
        definition = await self._definitions.get_definition(definition_id)
        if definition is None or definition.user_id != user_id:
            raise NotFoundError("Recurring transaction", definition_id)
        return definition

    async def list_definitions(
        self,
        user_id: UUID,
        is_active: Optional[bool] = None,
        frequency: Optional[Frequency] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[RecurringTransaction]:
        return await self._definitions.list_definitions(
            user_id,
            is_active=is_active,
            frequency=frequency,
            transaction_type=transaction_type,
        )

    async def update_definition(
        self,
        user_id: UUID,
        definition_id: UUID,
        changes: dict[str, Any],
    ) -> RecurringTransaction:
        """
        Change a definition's template or schedule.

        The cursor, counters and identity are not editable. Changing the
        schedule re-aligns next_run_date: from start_date if the definition
        never ran, otherwise from the current cursor.
        """
        forbidden = sorted(set(changes) - RECURRING_UPDATABLE_FIELDS)
        if forbidden:
            issues = [
                ValidationIssue(field=f, issue_type="not_allowed", message=f"{f} cannot be changed")
                for f in forbidden
            ]
            raise ValidationError(f"Cannot change: {', '.join(forbidden)}", issues)

        async with self._locks.hold(definition_key(definition_id)):
            current = await self.get_definition(user_id, definition_id)
            data = current.model_dump()
            data.update(changes)
            data["updated_at"] = self._clock()
            updated = parse_payload(RecurringTransaction, data, "recurring transaction")

            if updated.end_date and updated.end_date < updated.start_date:
                raise ValidationError("end_date must not be before start_date")

            if SCHEDULE_FIELDS & set(changes):
                base = updated.start_date if updated.total_executions == 0 else current.next_run_date
                updated = updated.model_copy(update={
                    "next_run_date": initial_run_date(
                        base, updated.frequency, updated.day_of_month, updated.day_of_week
                    ),
                })

            await self._definitions.save_definition(updated)

        await self._audit.log_recurring_changed(
            AuditEventType.RECURRING_UPDATED,
            updated.id,
            user_id,
            updated.name,
            details={"changed_fields": sorted(changes)},
        )
        return updated

    async def delete_definition(self, user_id: UUID, definition_id: UUID) -> None:
        """Remove a definition. Entries it already produced stay in the ledger."""
        async with self._locks.hold(definition_key(definition_id)):
            definition = await self.get_definition(user_id, definition_id)
            await self._definitions.delete_definition(definition_id)

        await self._audit.log_recurring_changed(
            AuditEventType.RECURRING_DELETED,
            definition.id,
            user_id,
            definition.name,
        )

    async def toggle_pause(self, user_id: UUID, definition_id: UUID) -> RecurringTransaction:
        """Flip is_paused. next_run_date is left alone."""
        async with self._locks.hold(definition_key(definition_id)):
            definition = await self.get_definition(user_id, definition_id)
            updated = definition.model_copy(update={
                "is_paused": not definition.is_paused,
                "updated_at": self._clock(),
            })
            await self._definitions.save_definition(updated)

        event_type = (
            AuditEventType.RECURRING_PAUSED if updated.is_paused
            else AuditEventType.RECURRING_RESUMED
        )
        await self._audit.log_recurring_changed(event_type, updated.id, user_id, updated.name)
        return updated

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(
        self,
        user_id: UUID,
        definition_id: UUID,
        manual: bool = False,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ExecutionResult:
        """
        Run a definition once.

        Ineligible definitions are reported with executed=False rather than
        raised, so a caller can show why nothing happened.

        Raises:
            ConfigurationError: The template lacks an account its type needs
            InsufficientFundsError: The debit would overdraw; nothing changed
            NotFoundError: Unknown definition or account
            ValidationError: The template does not make a valid ledger entry
        """
        now = now or self._clock()

        async with self._locks.hold(definition_key(definition_id)):
            definition = await self.get_definition(user_id, definition_id)

            eligible, reason = should_execute(definition, now, ignore_schedule=manual)
            if not eligible:
                logger.info(
                    "recurring_skipped",
                    definition_id=str(definition_id),
                    reason=reason,
                    manual=manual,
                )
                return ExecutionResult(
                    definition_id=definition_id,
                    executed=False,
                    reason=reason,
                    definition=definition,
                )

            await self._validator.validate_definition(definition)
            transaction = self.materialize(definition, now)
            advanced = advance_state(definition, now)
            await self._commit_execution(definition, advanced, transaction, now)

        logger.info(
            "recurring_executed",
            definition_id=str(definition_id),
            transaction_id=str(transaction.id),
            next_run_date=advanced.next_run_date.isoformat(),
            total_executions=advanced.total_executions,
            manual=manual,
        )
        await self._audit.log_recurring_executed(
            definition_id=definition_id,
            user_id=user_id,
            transaction_id=transaction.id,
            next_run_date=advanced.next_run_date,
            manual=manual,
            correlation_id=correlation_id,
        )
        await self._audit.log_transaction_created(
            transaction_id=transaction.id,
            user_id=user_id,
            transaction_type=transaction.type.value,
            amount=str(transaction.amount),
            source="recurring",
            correlation_id=correlation_id,
        )
        return ExecutionResult(
            definition_id=definition_id,
            executed=True,
            reason="Executed manually" if manual else reason,
            transaction=transaction,
            definition=advanced,
        )

    async def _commit_execution(
        self,
        original: RecurringTransaction,
        advanced: RecurringTransaction,
        transaction: Transaction,
        now: datetime,
    ) -> None:
        async with self._mutator.lock_accounts(transaction.from_account, transaction.to_account):
            effect = await self._mutator.apply_transaction_effect(transaction, at=now)
            try:
                await self._definitions.save_definition(advanced)
                try:
                    await self._transactions.append_transaction(transaction)
                except Exception:
                    await self._definitions.save_definition(original)
                    raise
            except Exception:
                logger.error(
                    "recurring_execution_rolled_back",
                    definition_id=str(original.id),
                    exc_info=True,
                )
                await self._mutator.revert(effect)
                raise

    @staticmethod
    def materialize(definition: RecurringTransaction, now: datetime) -> Transaction:
        """
        Build the ledger entry for one run of a definition.

        Raises:
            ValidationError: The template does not make a valid entry
        """
        try:
            return Transaction(
                user_id=definition.user_id,
                type=definition.type,
                from_account=definition.from_account,
                to_account=definition.to_account,
                amount=definition.amount,
                category=definition.category,
                payment_mode=definition.payment_mode,
                note=definition.materialized_note(),
                transaction_date=now,
                tags=list(definition.tags),
                created_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, f"entry for recurring transaction {definition.id}") from e

    async def run_due(self, now: Optional[datetime] = None) -> TickReport:
        """
        Scheduler tick: execute every due definition once.

        A definition that fails is logged, audited and reported; the tick
        carries on with the rest. Storage failures are not caught.
        """
        now = now or self._clock()
        correlation_id = create_correlation_id()
        due = await self._definitions.list_due(now)
        report = TickReport(ran_at=now, due_count=len(due))

        for definition in due:
            try:
                result = await self.execute(
                    definition.user_id,
                    definition.id,
                    manual=False,
                    now=now,
                    correlation_id=correlation_id,
                )
            except LedgerError as e:
                logger.warning(
                    "recurring_failed",
                    definition_id=str(definition.id),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                await self._audit.log_recurring_failed(
                    definition.id, definition.user_id, e, correlation_id=correlation_id
                )
                report.failures.append(ExecutionFailure(
                    definition_id=definition.id,
                    user_id=definition.user_id,
                    error_type=type(e).__name__,
                    message=str(e),
                ))
                continue

            if result.executed:
                report.executed.append(result)
            else:
                report.skipped.append(result)

        logger.info(
            "scheduler_tick_completed",
            due=report.due_count,
            executed=report.executed_count,
            failed=report.failure_count,
        )
        await self._audit.log_tick_completed(
            due=report.due_count,
            executed=report.executed_count,
            failed=report.failure_count,
            correlation_id=correlation_id,
        )
        return report

    # =========================================================================
    # Read models
    # =========================================================================

    async def get_upcoming(
        self,
        user_id: UUID,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> UpcomingSchedule:
        """Active, unpaused definitions due within the next `days` days."""
        days = days or self._settings.upcoming_window_days
        now = now or self._clock()
        horizon = now + timedelta(days=days)

        definitions = await self._definitions.list_definitions(user_id, is_active=True)
        items = [
            d for d in definitions
            if not d.is_paused and d.next_run_date <= horizon
        ]
        items.sort(key=lambda d: d.next_run_date)

        by_date: dict[str, list[RecurringTransaction]] = defaultdict(list)
        for item in items:
            by_date[item.next_run_date.date().isoformat()].append(item)

        return UpcomingSchedule(window_days=days, items=items, by_date=dict(by_date))

    async def get_execution_history(
        self,
        user_id: UUID,
        definition_id: UUID,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """Entries this definition produced, newest first."""
        definition = await self.get_definition(user_id, definition_id)
        return await self._transactions.list_transactions(
            user_id,
            note_contains=definition.note_marker,
            limit=limit or self._settings.execution_history_limit,
        )
