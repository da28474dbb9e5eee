"""
Abstract Storage Interface

DESIGN DECISION: The ledger core talks to storage only through these
narrow contracts. This allows us to:
1. Run everything in memory for tests and local use
2. Persist to Google Sheets (or a real database later)
3. Keep business logic decoupled from storage implementation

Two contracts carry the consistency guarantees the ledger relies on:
- AccountStorageInterface.increment_balance is a conditional atomic update.
  It either applies the whole delta or raises without changing anything.
- TransactionStorageInterface is append-only. replace_transaction exists
  solely for the audited amendment path.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from finledger.models.account import Account
from finledger.models.audit import AuditEvent
from finledger.models.budget import Budget
from finledger.models.goal import Goal, GoalStatus
from finledger.models.investment import Investment, InvestmentStatus, InvestmentType
from finledger.models.recurring import Frequency, RecurringTransaction
from finledger.models.transaction import Transaction, TransactionLog, TransactionType


class AccountStorageInterface(ABC):
    """
    Keyed store for accounts.
    """

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        """
        Insert a new account or update an existing account's metadata.

        The stored balance of an existing account is kept; balances only
        move through increment_balance.

        Returns:
            The account as stored
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        """
        Retrieve an account by its ID (including soft-deleted ones).

        Returns:
            The account if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_accounts(
        self,
        user_id: UUID,
        include_deleted: bool = False,
    ) -> list[Account]:
        """
        List a user's accounts, oldest first.
        """
        pass

    @abstractmethod
    async def increment_balance(
        self,
        account_id: UUID,
        delta: Decimal,
        minimum: Optional[Decimal] = Decimal("0"),
    ) -> Account:
        """
        Atomically add delta to an account balance.

        Args:
            account_id: Account to change
            delta: Signed amount to add
            minimum: Lowest balance allowed after the change, or None to
                     skip the check (used when reverting a prior change)

        Returns:
            The updated account

        Raises:
            NotFoundError: If the account doesn't exist
            InsufficientFundsError: If the result would be below minimum.
                                    The balance is left untouched.
        """
        pass


class BudgetStorageInterface(ABC):
    """
    Keyed store for budgets. Unique per (user, category, month, year).
    """

    @abstractmethod
    async def save_budget(self, budget: Budget) -> Budget:
        """
        Insert a budget or update an existing one's limit and threshold.

        The stored current_spent of an existing budget is kept.

        Raises:
            DuplicateError: If another budget already covers the same
                            user, category, month and year
        """
        pass

    @abstractmethod
    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def find_budget(
        self,
        user_id: UUID,
        category: str,
        month: int,
        year: int,
    ) -> Optional[Budget]:
        """
        Find the budget for a category in a given month, if there is one.
        """
        pass

    @abstractmethod
    async def list_budgets(
        self,
        user_id: UUID,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[Budget]:
        pass

    @abstractmethod
    async def increment_spent(self, budget_id: UUID, delta: Decimal) -> Budget:
        """
        Atomically add delta to a budget's current_spent.

        Raises:
            NotFoundError: If the budget doesn't exist
        """
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID) -> bool:
        """
        Remove a budget. Expenses it tracked stay in the ledger.

        Raises:
            NotFoundError: If the budget doesn't exist
        """
        pass


class GoalStorageInterface(ABC):
    """
    Keyed store for savings goals.
    """

    @abstractmethod
    async def save_goal(self, goal: Goal) -> bool:
        """
        Insert or overwrite a goal.
        """
        pass

    @abstractmethod
    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        pass

    @abstractmethod
    async def delete_goal(self, goal_id: UUID) -> bool:
        """
        Raises:
            NotFoundError: If the goal doesn't exist
        """
        pass

    @abstractmethod
    async def list_goals(
        self,
        user_id: UUID,
        status: Optional[GoalStatus] = None,
    ) -> list[Goal]:
        """
        List a user's goals, nearest deadline first.
        """
        pass


class TransactionStorageInterface(ABC):
    """
    Append-only ledger store.
    """

    @abstractmethod
    async def append_transaction(self, transaction: Transaction) -> bool:
        """
        Append a new entry to the ledger.

        Returns:
            True if appended successfully

        Raises:
            DuplicateError: If an entry with the same ID exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def replace_transaction(self, transaction: Transaction) -> bool:
        """
        Overwrite an existing entry. Only the amendment path calls this.

        Raises:
            NotFoundError: If the entry doesn't exist
        """
        pass

    @abstractmethod
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
        """
        List a user's entries with optional filters.

        Args:
            account_id: Entries where the account is either side
            date_from, date_to: Inclusive bounds on transaction_date
            note_contains: Case-sensitive substring of the note

        Returns:
            Entries ordered by transaction_date, newest first
        """
        pass


class TransactionLogStorageInterface(ABC):
    """
    Append-only store of amendment records.
    """

    @abstractmethod
    async def append_log(self, log: TransactionLog) -> bool:
        pass

    @abstractmethod
    async def list_logs(self, transaction_id: UUID) -> list[TransactionLog]:
        """
        Amendment history of one entry, newest first.
        """
        pass

    @abstractmethod
    async def list_user_logs(self, user_id: UUID, limit: int = 50) -> list[TransactionLog]:
        pass


class RecurringStorageInterface(ABC):
    """
    Keyed store for recurring definitions.
    """

    @abstractmethod
    async def save_definition(self, definition: RecurringTransaction) -> bool:
        """
        Insert or overwrite a definition.
        """
        pass

    @abstractmethod
    async def get_definition(self, definition_id: UUID) -> Optional[RecurringTransaction]:
        pass

    @abstractmethod
    async def delete_definition(self, definition_id: UUID) -> bool:
        """
        Remove a definition. Entries it already produced stay in the ledger.

        Raises:
            NotFoundError: If the definition doesn't exist
        """
        pass

    @abstractmethod
    async def list_definitions(
        self,
        user_id: UUID,
        is_active: Optional[bool] = None,
        frequency: Optional[Frequency] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[RecurringTransaction]:
        """
        List a user's definitions ordered by next_run_date.
        """
        pass

    @abstractmethod
    async def list_due(self, now: datetime) -> list[RecurringTransaction]:
        """
        Definitions of every user that are active, not paused and have
        next_run_date <= now, ordered by next_run_date.
        """
        pass


class InvestmentStorageInterface(ABC):
    """
    Keyed store for investments (each carries its own transaction list).
    """

    @abstractmethod
    async def save_investment(self, investment: Investment) -> bool:
        pass

    @abstractmethod
    async def get_investment(self, investment_id: UUID) -> Optional[Investment]:
        pass

    @abstractmethod
    async def list_investments(
        self,
        user_id: UUID,
        status: Optional[InvestmentStatus] = None,
        investment_type: Optional[InvestmentType] = None,
        account_id: Optional[UUID] = None,
    ) -> list[Investment]:
        """
        List a user's investments, most recently purchased first.
        """
        pass

    @abstractmethod
    async def delete_investment(self, investment_id: UUID) -> bool:
        """
        Remove an investment and its embedded history.

        Raises:
            NotFoundError: If the investment doesn't exist
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one scheduler tick).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
