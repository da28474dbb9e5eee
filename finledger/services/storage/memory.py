"""
In-Memory Storage

Dictionary-backed implementations of every storage interface. Used by the
test suite and as the default local backend.

Each method runs without awaiting anything, so on the event loop it is
atomic: increment_balance checks and applies a delta in one step. Records are
copied on the way in and out so callers can never mutate stored state.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from finledger.errors import DuplicateError, InsufficientFundsError, NotFoundError
from finledger.models.account import Account
from finledger.models.audit import AuditEvent
from finledger.models.budget import Budget
from finledger.models.goal import Goal, GoalStatus
from finledger.models.investment import Investment, InvestmentStatus, InvestmentType
from finledger.models.recurring import Frequency, RecurringTransaction
from finledger.models.transaction import Transaction, TransactionLog, TransactionType
from finledger.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    InvestmentStorageInterface,
    RecurringStorageInterface,
    TransactionLogStorageInterface,
    TransactionStorageInterface,
)


class InMemoryAccountStorage(AccountStorageInterface):

    def __init__(self):
        self._accounts: dict[UUID, Account] = {}

    async def save_account(self, account: Account) -> Account:
        existing = self._accounts.get(account.id)
        if existing is not None:
            account = account.model_copy(update={"balance": existing.balance})
        self._accounts[account.id] = account.model_copy(deep=True)
        return account.model_copy(deep=True)

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def list_accounts(
        self,
        user_id: UUID,
        include_deleted: bool = False,
    ) -> list[Account]:
        accounts = [
            a.model_copy(deep=True)
            for a in self._accounts.values()
            if a.user_id == user_id and (include_deleted or not a.is_deleted)
        ]
        return sorted(accounts, key=lambda a: a.created_at)

    async def increment_balance(
        self,
        account_id: UUID,
        delta: Decimal,
        minimum: Optional[Decimal] = Decimal("0"),
    ) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError("Account", account_id)

        new_balance = account.balance + delta
        if minimum is not None and new_balance < minimum:
            raise InsufficientFundsError(account_id, account.balance, -delta)

        updated = account.model_copy(update={"balance": new_balance})
        self._accounts[account_id] = updated
        return updated.model_copy(deep=True)


class InMemoryBudgetStorage(BudgetStorageInterface):

    def __init__(self):
        self._budgets: dict[UUID, Budget] = {}

    async def save_budget(self, budget: Budget) -> Budget:
        for other in self._budgets.values():
            if (
                other.id != budget.id
                and other.user_id == budget.user_id
                and other.category == budget.category
                and other.month == budget.month
                and other.year == budget.year
            ):
                raise DuplicateError(
                    f"Budget for {budget.category} {budget.month}/{budget.year} already exists"
                )

        existing = self._budgets.get(budget.id)
        if existing is not None:
            budget = budget.model_copy(update={"current_spent": existing.current_spent})
        self._budgets[budget.id] = budget.model_copy(deep=True)
        return budget.model_copy(deep=True)

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        budget = self._budgets.get(budget_id)
        return budget.model_copy(deep=True) if budget else None

    async def find_budget(
        self,
        user_id: UUID,
        category: str,
        month: int,
        year: int,
    ) -> Optional[Budget]:
        for budget in self._budgets.values():
            if (
                budget.user_id == user_id
                and budget.category == category
                and budget.month == month
                and budget.year == year
            ):
                return budget.model_copy(deep=True)
        return None

    async def list_budgets(
        self,
        user_id: UUID,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[Budget]:
        budgets = [
            b.model_copy(deep=True)
            for b in self._budgets.values()
            if b.user_id == user_id
            and (month is None or b.month == month)
            and (year is None or b.year == year)
        ]
        return sorted(budgets, key=lambda b: (b.year, b.month, b.category))

    async def increment_spent(self, budget_id: UUID, delta: Decimal) -> Budget:
        budget = self._budgets.get(budget_id)
        if budget is None:
            raise NotFoundError("Budget", budget_id)
        updated = budget.model_copy(update={"current_spent": budget.current_spent + delta})
        self._budgets[budget_id] = updated
        return updated.model_copy(deep=True)

    async def delete_budget(self, budget_id: UUID) -> bool:
        if budget_id not in self._budgets:
            raise NotFoundError("Budget", budget_id)
        del self._budgets[budget_id]
        return True


class InMemoryGoalStorage(GoalStorageInterface):

    def __init__(self):
        self._goals: dict[UUID, Goal] = {}

    async def save_goal(self, goal: Goal) -> bool:
        self._goals[goal.id] = goal.model_copy(deep=True)
        return True

    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        goal = self._goals.get(goal_id)
        return goal.model_copy(deep=True) if goal else None

    async def delete_goal(self, goal_id: UUID) -> bool:
        if goal_id not in self._goals:
            raise NotFoundError("Goal", goal_id)
        del self._goals[goal_id]
        return True

    async def list_goals(
        self,
        user_id: UUID,
        status: Optional[GoalStatus] = None,
    ) -> list[Goal]:
        goals = [
            g.model_copy(deep=True)
            for g in self._goals.values()
            if g.user_id == user_id and (status is None or g.status == status)
        ]
        return sorted(goals, key=lambda g: g.deadline)


class InMemoryTransactionStorage(TransactionStorageInterface):

    def __init__(self):
        self._transactions: dict[UUID, Transaction] = {}

    async def append_transaction(self, transaction: Transaction) -> bool:
        if transaction.id in self._transactions:
            raise DuplicateError(f"Transaction {transaction.id} already recorded")
        self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return True

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def replace_transaction(self, transaction: Transaction) -> bool:
        if transaction.id not in self._transactions:
            raise NotFoundError("Transaction", transaction.id)
        self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return True

    async def list_transactions(
        self,
        user_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        account_id: Optional[UUID] = None,
        tag: Optional[UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        note_contains: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        matches = []
        for txn in self._transactions.values():
            if txn.user_id != user_id:
                continue
            if transaction_type and txn.type != transaction_type:
                continue
            if category and txn.category != category:
                continue
            if account_id and not txn.touches_account(account_id):
                continue
            if tag and tag not in txn.tags:
                continue
            if date_from and txn.transaction_date < date_from:
                continue
            if date_to and txn.transaction_date > date_to:
                continue
            if note_contains and note_contains not in (txn.note or ""):
                continue
            matches.append(txn)

        matches.sort(key=lambda t: (t.transaction_date, t.created_at), reverse=True)
        end = offset + limit if limit is not None else None
        return [t.model_copy(deep=True) for t in matches[offset:end]]


class InMemoryTransactionLogStorage(TransactionLogStorageInterface):

    def __init__(self):
        self._logs: list[TransactionLog] = []

    async def append_log(self, log: TransactionLog) -> bool:
        self._logs.append(log.model_copy(deep=True))
        return True

    async def list_logs(self, transaction_id: UUID) -> list[TransactionLog]:
        logs = [entry for entry in self._logs if entry.transaction_id == transaction_id]
        return [entry.model_copy(deep=True) for entry in reversed(logs)]

    async def list_user_logs(self, user_id: UUID, limit: int = 50) -> list[TransactionLog]:
        logs = [entry for entry in self._logs if entry.user_id == user_id]
        return [entry.model_copy(deep=True) for entry in reversed(logs)][:limit]


class InMemoryRecurringStorage(RecurringStorageInterface):

    def __init__(self):
        self._definitions: dict[UUID, RecurringTransaction] = {}

    async def save_definition(self, definition: RecurringTransaction) -> bool:
        self._definitions[definition.id] = definition.model_copy(deep=True)
        return True

    async def get_definition(self, definition_id: UUID) -> Optional[RecurringTransaction]:
        definition = self._definitions.get(definition_id)
        return definition.model_copy(deep=True) if definition else None

    async def delete_definition(self, definition_id: UUID) -> bool:
        if definition_id not in self._definitions:
            raise NotFoundError("Recurring transaction", definition_id)
        del self._definitions[definition_id]
        return True

    async def list_definitions(
        self,
        user_id: UUID,
        is_active: Optional[bool] = None,
        frequency: Optional[Frequency] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[RecurringTransaction]:
        definitions = [
            d.model_copy(deep=True)
            for d in self._definitions.values()
            if d.user_id == user_id
            and (is_active is None or d.is_active == is_active)
            and (frequency is None or d.frequency == frequency)
            and (transaction_type is None or d.type == transaction_type)
        ]
        return sorted(definitions, key=lambda d: d.next_run_date)

    async def list_due(self, now: datetime) -> list[RecurringTransaction]:
        due = [
            d.model_copy(deep=True)
            for d in self._definitions.values()
            if d.is_active and not d.is_paused and d.next_run_date <= now
        ]
        return sorted(due, key=lambda d: d.next_run_date)


class InMemoryInvestmentStorage(InvestmentStorageInterface):

    def __init__(self):
        self._investments: dict[UUID, Investment] = {}

    async def save_investment(self, investment: Investment) -> bool:
        self._investments[investment.id] = investment.model_copy(deep=True)
        return True

    async def get_investment(self, investment_id: UUID) -> Optional[Investment]:
        investment = self._investments.get(investment_id)
        return investment.model_copy(deep=True) if investment else None

    async def list_investments(
        self,
        user_id: UUID,
        status: Optional[InvestmentStatus] = None,
        investment_type: Optional[InvestmentType] = None,
        account_id: Optional[UUID] = None,
    ) -> list[Investment]:
        investments = [
            i.model_copy(deep=True)
            for i in self._investments.values()
            if i.user_id == user_id
            and (status is None or i.status == status)
            and (investment_type is None or i.investment_type == investment_type)
            and (account_id is None or i.account_id == account_id)
        ]
        return sorted(investments, key=lambda i: i.purchase_date, reverse=True)

    async def delete_investment(self, investment_id: UUID) -> bool:
        if investment_id not in self._investments:
            raise NotFoundError("Investment", investment_id)
        del self._investments[investment_id]
        return True


class InMemoryAuditStorage(AuditStorageInterface):

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
