"""
Savings Goal Service

Goals are targets the user saves towards. A contribution moves real money:
it is recorded as an expense entry from the funding account (by default
the user's savings account) in the goal category, so the ledger explains
every balance change.

A contribution is one unit of work, serialized per goal:
    1. apply the debit               (overdraft rejected, nothing changed)
    2. save the goal                 (saved_amount, completion)
    3. append the ledger entry       (commit point)
Failures in 2 or 3 undo the earlier steps in reverse order.
"""

from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from finledger.audit import AuditLogger
from finledger.config import get_settings
from finledger.errors import NotFoundError, ValidationError, parse_payload
from finledger.ledger.locks import KeyedLocks, goal_key
from finledger.ledger.mutator import AccountLedgerMutator
from finledger.models.audit import AuditEventType
from finledger.models.common import ZERO, ValidationIssue, utcnow
from finledger.models.goal import (
    GOAL_UPDATABLE_FIELDS,
    Goal,
    GoalContribution,
    GoalPayload,
    GoalStatus,
    GoalSummary,
)
from finledger.models.transaction import (
    PaymentMode,
    Transaction,
    TransactionPayload,
    TransactionType,
)
from finledger.services.storage.interface import (
    AccountStorageInterface,
    GoalStorageInterface,
    TransactionStorageInterface,
)
from finledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)


def goal_note_marker(goal_name: str) -> str:
    return f"[Goal: {goal_name}]"


class GoalService:
    """
    Creates, funds and tracks savings goals.
    """

    def __init__(
        self,
        goals: GoalStorageInterface,
        accounts: AccountStorageInterface,
        transactions: TransactionStorageInterface,
        mutator: AccountLedgerMutator,
        validator: TransactionValidator,
        audit_logger: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._goals = goals
        self._accounts = accounts
        self._transactions = transactions
        self._mutator = mutator
        self._validator = validator
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or KeyedLocks()
        self._clock = clock
        self._settings = get_settings().ledger

    async def create_goal(
        self,
        user_id: UUID,
        payload: Union[GoalPayload, dict],
    ) -> Goal:
        payload = parse_payload(GoalPayload, payload, "goal")
        goal = Goal(user_id=user_id, created_at=self._clock(), **payload.model_dump())
        await self._goals.save_goal(goal)

        await self._audit.log_entity_changed(
            AuditEventType.GOAL_CREATED,
            "goal",
            goal.id,
            user_id,
            f"Goal created: {goal.goal_name}",
            details={"target_amount": str(goal.target_amount)},
        )
        return goal

    async def get_goal(self, user_id: UUID, goal_id: UUID) -> Goal:
        goal = await self._goals.get_goal(goal_id)
        if goal is None or goal.user_id != user_id:
            raise NotFoundError("Goal", goal_id)
        return goal

    async def list_goals(
        self,
        user_id: UUID,
        status: Optional[GoalStatus] = None,
    ) -> list[Goal]:
        return await self._goals.list_goals(user_id, status=status)

    async def update_goal(
        self,
        user_id: UUID,
        goal_id: UUID,
        changes: dict[str, Any],
    ) -> Goal:
        """
        Edit a goal. A goal whose target is met after the edit is completed.

        saved_amount cannot be edited; it only grows through add_to_goal.
        """
        forbidden = sorted(set(changes) - GOAL_UPDATABLE_FIELDS)
        if forbidden:
            issues = [
                ValidationIssue(
                    field=f,
                    issue_type="not_allowed",
                    message=(
                        "Saved amount only changes through contributions"
                        if f == "saved_amount"
                        else f"{f} cannot be changed on a goal"
                    ),
                )
                for f in forbidden
            ]
            raise ValidationError("; ".join(i.message for i in issues), issues)

        async with self._locks.hold(goal_key(goal_id)):
            current = await self.get_goal(user_id, goal_id)
            now = self._clock()
            data = current.model_dump()
            data.update(changes)
            updated = parse_payload(Goal, data, "goal")

            if updated.status == GoalStatus.COMPLETED and updated.completed_at is None:
                updated = updated.model_copy(update={"completed_at": now})
            elif updated.status != GoalStatus.COMPLETED:
                updated = updated.model_copy(update={"completed_at": None})
            updated = updated.completed_if_reached(now)

            await self._goals.save_goal(updated)

        await self._audit.log_entity_changed(
            AuditEventType.GOAL_UPDATED,
            "goal",
            goal_id,
            user_id,
            f"Goal updated: {updated.goal_name}",
            details={"changed_fields": sorted(changes), "status": updated.status.value},
        )
        return updated

    async def delete_goal(self, user_id: UUID, goal_id: UUID) -> None:
        """Remove a goal. Its contributions stay in the ledger."""
        async with self._locks.hold(goal_key(goal_id)):
            goal = await self.get_goal(user_id, goal_id)
            await self._goals.delete_goal(goal_id)

        await self._audit.log_entity_changed(
            AuditEventType.GOAL_DELETED,
            "goal",
            goal_id,
            user_id,
            f"Goal deleted: {goal.goal_name}",
            details={"saved_amount": str(goal.saved_amount)},
        )

    async def add_to_goal(
        self,
        user_id: UUID,
        goal_id: UUID,
        amount: Decimal,
        account_id: Optional[UUID] = None,
    ) -> GoalContribution:
        """
        Move money from an account into a goal.

        Args:
            amount: How much to set aside (must be positive)
            account_id: Account to draw from; defaults to the user's first
                        account of the configured savings type

        Raises:
            ValidationError: Non-positive amount, goal not active, no usable
                             funding account
            NotFoundError: Unknown goal or account
            InsufficientFundsError: The account cannot cover the amount
        """
        if amount is None or amount <= 0:
            raise ValidationError(
                "Please provide a valid amount",
                [ValidationIssue(field="amount", issue_type="invalid_value", message="Amount must be positive")],
            )

        async with self._locks.hold(goal_key(goal_id)):
            goal = await self.get_goal(user_id, goal_id)
            if goal.status != GoalStatus.ACTIVE:
                raise ValidationError(f"Cannot add to a {goal.status.value} goal")

            now = self._clock()
            source_id = account_id or await self._default_funding_account(user_id)
            payload = parse_payload(TransactionPayload, {
                "type": TransactionType.EXPENSE,
                "from_account": source_id,
                "amount": amount,
                "category": self._settings.goal_category,
                "payment_mode": PaymentMode.BANK_TRANSFER,
                "note": goal_note_marker(goal.goal_name),
            }, "goal contribution")
            await self._validator.validate_payload(user_id, payload, now)

            data = payload.model_dump()
            data["transaction_date"] = now
            transaction = Transaction(user_id=user_id, created_at=now, **data)
            funded = goal.model_copy(update={"saved_amount": goal.saved_amount + amount})
            funded = funded.completed_if_reached(now)
            await self._commit_contribution(goal, funded, transaction, now)

        completed = funded.status == GoalStatus.COMPLETED
        logger.info(
            "goal_contribution",
            goal_id=str(goal_id),
            amount=str(amount),
            saved_amount=str(funded.saved_amount),
            completed=completed,
        )
        await self._audit.log_transaction_created(
            transaction_id=transaction.id,
            user_id=user_id,
            transaction_type=transaction.type.value,
            amount=str(amount),
            source="goal",
        )
        await self._audit.log_entity_changed(
            AuditEventType.GOAL_CONTRIBUTION,
            "goal",
            goal_id,
            user_id,
            f"Added {amount} to {funded.goal_name}",
            details={"transaction_id": str(transaction.id), "saved_amount": str(funded.saved_amount)},
        )
        if completed:
            await self._audit.log_entity_changed(
                AuditEventType.GOAL_COMPLETED,
                "goal",
                goal_id,
                user_id,
                f"Goal reached: {funded.goal_name}",
            )

        return GoalContribution(
            goal=funded,
            transaction_id=transaction.id,
            account_id=source_id,
            amount=amount,
            completed=completed,
        )

    async def _commit_contribution(
        self,
        original: Goal,
        funded: Goal,
        transaction: Transaction,
        now: datetime,
    ) -> None:
        async with self._mutator.lock_accounts(transaction.from_account):
            effect = await self._mutator.apply_transaction_effect(transaction, at=now)
            try:
                await self._goals.save_goal(funded)
                try:
                    await self._transactions.append_transaction(transaction)
                except Exception:
                    await self._goals.save_goal(original)
                    raise
            except Exception:
                logger.error(
                    "goal_contribution_rolled_back",
                    goal_id=str(original.id),
                    exc_info=True,
                )
                await self._mutator.revert(effect)
                raise

    async def _default_funding_account(self, user_id: UUID) -> UUID:
        source_type = self._settings.goal_source_account_type
        for account in await self._accounts.list_accounts(user_id):
            if account.account_type == source_type:
                return account.id
        raise ValidationError(
            f"No {source_type} account to fund the goal from",
            [ValidationIssue(
                field="account_id",
                issue_type="missing",
                message=f"No {source_type} account found",
                suggested_fix="Open a savings account or pass account_id",
            )],
        )

    async def get_summary(self, user_id: UUID) -> GoalSummary:
        """Counts per status plus target and saved totals across all goals."""
        goals = await self._goals.list_goals(user_id)
        by_status = Counter(g.status for g in goals)
        return GoalSummary(
            total=len(goals),
            active=by_status[GoalStatus.ACTIVE],
            completed=by_status[GoalStatus.COMPLETED],
            cancelled=by_status[GoalStatus.CANCELLED],
            total_target=sum((g.target_amount for g in goals), ZERO),
            total_saved=sum((g.saved_amount for g in goals), ZERO),
        )
