"""
Transaction Service

Records new ledger entries and amends existing ones.

A new entry is one unit of work:
    1. validate (structure, then account references)
    2. apply balance/budget deltas   (overdraft rejected here, nothing changed)
    3. append to the ledger          (commit point)
If step 3 fails, step 2 is reverted.

An amendment is one unit of work, serialized per entry:
    1. apply the amount difference (if the amount changed)
    2. replace the entry (was_edited = True)
    3. append the TransactionLog
If step 3 fails the old entry is restored, and if 2 or 3 fails the
deltas are reverted. The error always propagates: an amended entry without
its log must never be visible.

There is deliberately no delete.
"""

from datetime import datetime
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from finledger.audit import AuditLogger
from finledger.errors import (
    LedgerError,
    NotFoundError,
    ValidationError,
    parse_payload,
)
from finledger.ledger.locks import KeyedLocks, transaction_key
from finledger.ledger.mutator import AccountLedgerMutator
from finledger.models.common import ValidationIssue, utcnow
from finledger.models.transaction import (
    AMENDABLE_FIELDS,
    IDENTITY_FIELDS,
    Transaction,
    TransactionDetail,
    TransactionLog,
    TransactionPayload,
    TransactionType,
)
from finledger.services.storage.interface import (
    TransactionLogStorageInterface,
    TransactionStorageInterface,
)
from finledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)

MAX_REASON_LENGTH = 300


class TransactionService:
    """
    The only writer of the ledger.
    """

    def __init__(
        self,
        transactions: TransactionStorageInterface,
        logs: TransactionLogStorageInterface,
        mutator: AccountLedgerMutator,
        validator: TransactionValidator,
        audit_logger: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._transactions = transactions
        self._logs = logs
        self._mutator = mutator
        self._validator = validator
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or KeyedLocks()
        self._clock = clock

    async def create_transaction(
        self,
        user_id: UUID,
        payload: Union[TransactionPayload, dict],
    ) -> Transaction:
        """
        Record a new ledger entry and apply its balance effects.

        Raises:
            ValidationError: Malformed payload, wrong accounts for the type,
                             deleted or locked account
            NotFoundError: Unknown account
            InsufficientFundsError: The debit would overdraw; nothing recorded
        """
        try:
            payload = parse_payload(TransactionPayload, payload, "transaction")
            now = self._clock()
            await self._validator.validate_payload(user_id, payload, now)
            transaction = self._build(user_id, payload, now)
            await self.record(transaction, at=now)
        except LedgerError as e:
            logger.warning(
                "transaction_rejected",
                user_id=str(user_id),
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._audit.log_transaction_rejected(user_id, e)
            raise

        await self._audit.log_transaction_created(
            transaction_id=transaction.id,
            user_id=user_id,
            transaction_type=transaction.type.value,
            amount=str(transaction.amount),
        )
        return transaction

    async def record(self, transaction: Transaction, at: datetime) -> Transaction:
        """
        Apply balance effects and append an already-validated entry.

        Holds the locks of both accounts for the whole unit of work.
        """
        async with self._mutator.lock_accounts(transaction.from_account, transaction.to_account):
            effect = await self._mutator.apply_transaction_effect(transaction, at=at)
            try:
                await self._transactions.append_transaction(transaction)
            except Exception:
                logger.error(
                    "ledger_append_failed",
                    transaction_id=str(transaction.id),
                    exc_info=True,
                )
                await self._mutator.revert(effect)
                raise

        logger.info(
            "transaction_recorded",
            transaction_id=str(transaction.id),
            type=transaction.type.value,
            amount=str(transaction.amount),
        )
        return transaction

    async def get_transaction(self, user_id: UUID, transaction_id: UUID) -> Transaction:
        transaction = await self._transactions.get_transaction(transaction_id)
        if transaction is None or transaction.user_id != user_id:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    async def get_transaction_detail(self, user_id: UUID, transaction_id: UUID) -> TransactionDetail:
        """The entry plus its amendment history, newest first."""
        transaction = await self.get_transaction(user_id, transaction_id)
        history = await self._logs.list_logs(transaction_id)
        return TransactionDetail(transaction=transaction, history=history)

    async def list_transactions(self, user_id: UUID, **filters: Any) -> list[Transaction]:
        """List entries; filters are passed through to the ledger store."""
        return await self._transactions.list_transactions(user_id, **filters)

    async def list_recent_amendments(self, user_id: UUID, limit: int = 50) -> list[TransactionLog]:
        return await self._logs.list_user_logs(user_id, limit=limit)

    async def amend_transaction(
        self,
        user_id: UUID,
        transaction_id: UUID,
        changes: dict[str, Any],
        reason: Optional[str],
    ) -> Transaction:
        """
        Amend a ledger entry through the audited path.

        Args:
            changes: New values for any of amount, category, payment_mode,
                     note, transaction_date, tags
            reason: Why the entry is being changed (required)

        Returns:
            The amended entry

        Raises:
            ValidationError: Missing reason, forbidden or invalid changes
            NotFoundError: Unknown entry
            InsufficientFundsError: The new amount would overdraw an account
        """
        try:
            reason = self._check_reason(reason)
            self._check_changes(changes)

            async with self._locks.hold(transaction_key(transaction_id)):
                current = await self.get_transaction(user_id, transaction_id)
                amended = self._apply_changes(current, changes)
                log = await self._commit_amendment(current, amended, reason)
        except LedgerError as e:
            logger.warning(
                "amendment_rejected",
                transaction_id=str(transaction_id),
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._audit.log_transaction_rejected(
                user_id, e, details={"transaction_id": str(transaction_id)}
            )
            raise

        await self._audit.log_transaction_amended(
            transaction_id=transaction_id,
            user_id=user_id,
            log_id=log.id,
            changed_fields=log.changed_fields(),
            reason=reason,
        )
        return amended

    async def _commit_amendment(
        self,
        current: Transaction,
        amended: Transaction,
        reason: str,
    ) -> TransactionLog:
        async with self._mutator.lock_accounts(current.from_account, current.to_account):
            effect = await self._mutator.apply_amount_change(current, amended)
            try:
                await self._transactions.replace_transaction(amended)
                try:
                    log = TransactionLog(
                        transaction_id=current.id,
                        user_id=current.user_id,
                        old_data=current.snapshot(),
                        new_data=amended.snapshot(),
                        reason=reason,
                        modified_at=self._clock(),
                    )
                    await self._logs.append_log(log)
                except Exception:
                    await self._transactions.replace_transaction(current)
                    raise
            except Exception:
                logger.error(
                    "amendment_rolled_back",
                    transaction_id=str(current.id),
                    exc_info=True,
                )
                await self._mutator.revert(effect)
                raise

        logger.info(
            "transaction_amended",
            transaction_id=str(current.id),
            log_id=str(log.id),
            amount_changed=current.amount != amended.amount,
        )
        return log

    def _build(self, user_id: UUID, payload: TransactionPayload, now: datetime) -> Transaction:
        data = payload.model_dump()
        if payload.type == TransactionType.TRANSFER and payload.has_conversion:
            data["converted_amount"] = payload.credited_amount()
        data["transaction_date"] = payload.transaction_date or now
        return Transaction(user_id=user_id, created_at=now, **data)

    @staticmethod
    def _check_reason(reason: Optional[str]) -> str:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(
                "A reason is required to edit a transaction",
                [ValidationIssue(field="reason", issue_type="missing", message="Reason is required")],
            )
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(
                f"Reason cannot exceed {MAX_REASON_LENGTH} characters",
                [ValidationIssue(field="reason", issue_type="invalid_value", message="Reason is too long")],
            )
        return reason

    @staticmethod
    def _check_changes(changes: dict[str, Any]) -> None:
        issues = []
        for field in changes:
            if field in IDENTITY_FIELDS:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="not_allowed",
                    message=f"{field} cannot be changed after a transaction is recorded",
                ))
            elif field not in AMENDABLE_FIELDS:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="not_allowed",
                    message=f"{field} is not an editable transaction field",
                ))
        if not changes:
            issues.append(ValidationIssue(
                field="changes",
                issue_type="missing",
                message="No changes given",
            ))
        if issues:
            raise ValidationError(TransactionValidator.summarize(issues), issues)

    @staticmethod
    def _apply_changes(current: Transaction, changes: dict[str, Any]) -> Transaction:
        data = current.model_dump()
        data.update(changes)
        data["was_edited"] = True
        amended = parse_payload(Transaction, data, "amendment")
        if amended.amount != current.amount:
            amended = amended.model_copy(
                update={"converted_amount": current.converted_for(amended.amount)}
            )
        return amended
