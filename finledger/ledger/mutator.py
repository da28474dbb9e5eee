"""
Account Ledger Mutator

Applies the balance and budget side effects of ledger entries.

Every change is recorded in an AppliedEffect so the caller can revert it if a
later step of its unit of work fails. The caller must hold the account locks
(see lock_accounts) for the whole unit of work; the mutator itself does not
lock, because asyncio locks are not re-entrant.

Balance rules per entry type:
    income      to_account   += amount
    expense     from_account -= amount   (+ budget current_spent += amount)
    transfer    from_account -= amount,  to_account += converted amount
    investment  from_account -= amount

Debits are applied before credits and use the store's conditional
increment, so an overdraft is rejected before anything else changes.
"""

from datetime import datetime
from decimal import Decimal
from typing import AsyncContextManager, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from finledger.ledger.locks import KeyedLocks, account_key
from finledger.models.common import ZERO
from finledger.models.transaction import Transaction, TransactionType
from finledger.services.storage.interface import (
    AccountStorageInterface,
    BudgetStorageInterface,
)


logger = structlog.get_logger(__name__)


class BalanceDelta(BaseModel):
    account_id: UUID
    amount: Decimal


class BudgetDelta(BaseModel):
    budget_id: UUID
    amount: Decimal


class AppliedEffect(BaseModel):
    """Deltas actually applied, in application order."""

    balance_deltas: list[BalanceDelta] = Field(default_factory=list)
    budget_deltas: list[BudgetDelta] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.balance_deltas and not self.budget_deltas


def balance_legs(
    transaction_type: TransactionType,
    from_account: Optional[UUID],
    to_account: Optional[UUID],
    debit: Decimal,
    credit: Decimal,
) -> list[tuple[UUID, Decimal]]:
    """
    Signed balance changes for an entry, debits first.

    debit is the amount leaving from_account, credit the amount arriving in
    to_account (they differ only for converted transfers).
    """
    legs: list[tuple[UUID, Decimal]] = []
    if transaction_type in (TransactionType.EXPENSE, TransactionType.TRANSFER, TransactionType.INVESTMENT):
        legs.append((from_account, -debit))
    if transaction_type in (TransactionType.INCOME, TransactionType.TRANSFER):
        legs.append((to_account, credit))
    # Debits first so an overdraft fails before any credit lands
    legs.sort(key=lambda leg: leg[1] >= 0)
    return legs


class AccountLedgerMutator:
    """Applies and reverts balance/budget deltas through the narrow store contracts."""

    def __init__(
        self,
        accounts: AccountStorageInterface,
        budgets: BudgetStorageInterface,
        locks: Optional[KeyedLocks] = None,
    ):
        self._accounts = accounts
        self._budgets = budgets
        self._locks = locks or KeyedLocks()

    def lock_accounts(self, *account_ids: Optional[UUID]) -> AsyncContextManager[None]:
        """Context manager holding the locks of every given account."""
        return self._locks.hold_many(account_key(a) for a in account_ids if a)

    async def apply_transaction_effect(
        self,
        transaction: Transaction,
        at: datetime,
    ) -> AppliedEffect:
        """
        Apply the effect of a new entry.

        Args:
            transaction: The entry about to be recorded
            at: When it is recorded; picks the budget month

        Returns:
            The applied deltas

        Raises:
            InsufficientFundsError: A debit would overdraw; nothing is applied
            NotFoundError: An account vanished; nothing is applied
        """
        legs = balance_legs(
            transaction.type,
            transaction.from_account,
            transaction.to_account,
            debit=transaction.amount,
            credit=transaction.credited_amount(),
        )
        effect = AppliedEffect()
        try:
            await self._apply_legs(legs, effect)
            if transaction.type == TransactionType.EXPENSE:
                await self._track_spend(
                    transaction.user_id, transaction.category, transaction.amount, at, effect
                )
        except Exception:
            await self.revert(effect)
            raise
        return effect

    async def apply_amount_change(
        self,
        original: Transaction,
        amended: Transaction,
    ) -> AppliedEffect:
        """
        Apply the difference between an entry's old and new amounts.

        Expense budgets are adjusted in the month the entry was created.
        A credit that shrinks is checked like a debit, so an amendment can
        never overdraw the receiving account either.
        """
        debit_diff = amended.amount - original.amount
        credit_diff = amended.credited_amount() - original.credited_amount()
        if debit_diff == 0 and credit_diff == 0:
            return AppliedEffect()

        legs = [
            leg for leg in balance_legs(
                original.type,
                original.from_account,
                original.to_account,
                debit=debit_diff,
                credit=credit_diff,
            )
            if leg[1] != 0
        ]
        effect = AppliedEffect()
        try:
            await self._apply_legs(legs, effect)
            if original.type == TransactionType.EXPENSE and debit_diff != 0:
                await self._track_spend(
                    original.user_id, original.category, debit_diff, original.created_at, effect
                )
        except Exception:
            await self.revert(effect)
            raise
        return effect

    async def revert(self, effect: AppliedEffect) -> None:
        """
        Undo an applied effect in reverse order.

        A reversal restores a balance that was valid before, so it skips the
        non-negative check.
        """
        for delta in reversed(effect.budget_deltas):
            await self._budgets.increment_spent(delta.budget_id, -delta.amount)
        for delta in reversed(effect.balance_deltas):
            await self._accounts.increment_balance(delta.account_id, -delta.amount, minimum=None)

        if not effect.is_empty:
            logger.info(
                "ledger_effect_reverted",
                balance_deltas=len(effect.balance_deltas),
                budget_deltas=len(effect.budget_deltas),
            )

    async def _apply_legs(
        self,
        legs: list[tuple[UUID, Decimal]],
        effect: AppliedEffect,
    ) -> None:
        for account_id, amount in legs:
            await self._accounts.increment_balance(account_id, amount, minimum=ZERO)
            effect.balance_deltas.append(BalanceDelta(account_id=account_id, amount=amount))

    async def _track_spend(
        self,
        user_id: UUID,
        category: str,
        amount: Decimal,
        at: datetime,
        effect: AppliedEffect,
    ) -> None:
        budget = await self._budgets.find_budget(user_id, category, at.month, at.year)
        if budget is None:
            return
        await self._budgets.increment_spent(budget.id, amount)
        effect.budget_deltas.append(BudgetDelta(budget_id=budget.id, amount=amount))
