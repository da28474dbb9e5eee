"""
Main Orchestrator for finledger

Wires the stores, the shared lock registry, the audit logger and the
ledger services together, and exposes the entry points a front end or a
scheduler calls:
1. Record / amend a transaction
2. Run a recurring definition now, or run every due one (scheduler tick)
3. Compute an investment's XIRR
4. Move money into a savings goal

DESIGN DECISION: Every service that moves money gets the SAME KeyedLocks
instance. Two services with separate registries could each believe they
hold an account exclusively, which is exactly the double-spend the locks
exist to prevent.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from finledger.analytics import LedgerAnalytics
from finledger.audit import AuditLogger
from finledger.config import get_settings
from finledger.ledger import (
    AccountLedgerMutator,
    AccountService,
    BudgetService,
    GoalService,
    InvestmentService,
    KeyedLocks,
    RecurringScheduleEngine,
    TransactionService,
)
from finledger.models.common import utcnow
from finledger.models.goal import GoalContribution
from finledger.models.investment import XirrResult
from finledger.models.recurring import ExecutionResult, TickReport
from finledger.models.transaction import Transaction, TransactionPayload
from finledger.services.storage import (
    AccountStorageInterface,
    AuditStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    GoogleSheetsAccountStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsGoalStorage,
    GoogleSheetsInvestmentStorage,
    GoogleSheetsRecurringStorage,
    GoogleSheetsTransactionLogStorage,
    GoogleSheetsTransactionStorage,
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryInvestmentStorage,
    InMemoryRecurringStorage,
    InMemoryTransactionLogStorage,
    InMemoryTransactionStorage,
    InvestmentStorageInterface,
    RecurringStorageInterface,
    TransactionLogStorageInterface,
    TransactionStorageInterface,
)
from finledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)


@dataclass
class StorageBundle:
    """One store per record kind, all on the same backend."""

    accounts: AccountStorageInterface
    budgets: BudgetStorageInterface
    transactions: TransactionStorageInterface
    transaction_logs: TransactionLogStorageInterface
    recurring: RecurringStorageInterface
    investments: InvestmentStorageInterface
    goals: GoalStorageInterface
    audit: Optional[AuditStorageInterface] = None


def in_memory_storage() -> StorageBundle:
    return StorageBundle(
        accounts=InMemoryAccountStorage(),
        budgets=InMemoryBudgetStorage(),
        transactions=InMemoryTransactionStorage(),
        transaction_logs=InMemoryTransactionLogStorage(),
        recurring=InMemoryRecurringStorage(),
        investments=InMemoryInvestmentStorage(),
        goals=InMemoryGoalStorage(),
        audit=InMemoryAuditStorage(),
    )


def google_sheets_storage(client: Optional[GoogleSheetsClient] = None) -> StorageBundle:
    client = client or GoogleSheetsClient()
    return StorageBundle(
        accounts=GoogleSheetsAccountStorage(client),
        budgets=GoogleSheetsBudgetStorage(client),
        transactions=GoogleSheetsTransactionStorage(client),
        transaction_logs=GoogleSheetsTransactionLogStorage(client),
        recurring=GoogleSheetsRecurringStorage(client),
        investments=GoogleSheetsInvestmentStorage(client),
        goals=GoogleSheetsGoalStorage(client),
        audit=GoogleSheetsAuditStorage(client),
    )


class FinanceLedger:
    """
    Facade over the ledger services.

    The services are exposed as attributes for everything beyond the
    headline operations (accounts, budgets, definitions, analytics).
    """

    def __init__(
        self,
        storage: StorageBundle,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.clock = clock
        self.locks = KeyedLocks()
        self.audit_logger = AuditLogger(storage.audit)

        self.mutator = AccountLedgerMutator(storage.accounts, storage.budgets, self.locks)
        self.validator = TransactionValidator(storage.accounts)

        self.accounts = AccountService(storage.accounts, self.audit_logger, self.locks, clock)
        self.budgets = BudgetService(storage.budgets, self.audit_logger, clock)
        self.transactions = TransactionService(
            storage.transactions,
            storage.transaction_logs,
            self.mutator,
            self.validator,
            self.audit_logger,
            self.locks,
            clock,
        )
        self.recurring = RecurringScheduleEngine(
            storage.recurring,
            storage.transactions,
            self.mutator,
            self.validator,
            self.audit_logger,
            self.locks,
            clock,
        )
        self.goals = GoalService(
            storage.goals,
            storage.accounts,
            storage.transactions,
            self.mutator,
            self.validator,
            self.audit_logger,
            self.locks,
            clock,
        )
        self.investments = InvestmentService(
            storage.investments,
            storage.accounts,
            self.audit_logger,
            self.locks,
            clock,
        )
        self.analytics = LedgerAnalytics(
            storage.transactions,
            storage.accounts,
            storage.budgets,
            storage.investments,
            clock,
        )

    async def create_transaction(
        self,
        user_id: UUID,
        payload: Union[TransactionPayload, dict],
    ) -> Transaction:
        return await self.transactions.create_transaction(user_id, payload)

    async def amend_transaction(
        self,
        user_id: UUID,
        transaction_id: UUID,
        changes: dict[str, Any],
        reason: Optional[str],
    ) -> Transaction:
        return await self.transactions.amend_transaction(user_id, transaction_id, changes, reason)

    async def execute_recurring(
        self,
        user_id: UUID,
        definition_id: UUID,
        manual: bool = True,
    ) -> ExecutionResult:
        """Run one definition now. Manual runs ignore the due date only."""
        return await self.recurring.execute(user_id, definition_id, manual=manual)

    async def run_scheduler_tick(self, now: Optional[datetime] = None) -> TickReport:
        return await self.recurring.run_due(now)

    async def compute_xirr(self, user_id: UUID, investment_id: UUID) -> XirrResult:
        return await self.investments.compute_xirr(user_id, investment_id)

    async def add_to_goal(
        self,
        user_id: UUID,
        goal_id: UUID,
        amount: Decimal,
        account_id: Optional[UUID] = None,
    ) -> GoalContribution:
        return await self.goals.add_to_goal(user_id, goal_id, amount, account_id)


def create_app_components(
    backend: Optional[str] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FinanceLedger:
    """
    Factory function to create all application components.

    Args:
        backend: "memory" or "google_sheets"; defaults to the configured
                 storage_backend.

    Returns:
        A FinanceLedger wired to the chosen backend
    """
    backend = backend or get_settings().app.storage_backend

    if backend == "google_sheets":
        storage = google_sheets_storage()
    elif backend == "memory":
        storage = in_memory_storage()
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    logger.info("ledger_initialized", backend=backend)
    return FinanceLedger(storage, clock)
