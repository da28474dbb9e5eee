"""
Ledger core: the services that move money and keep it consistent.
"""

from finledger.ledger.accounts import AccountService, BudgetService
from finledger.ledger.goals import GoalService
from finledger.ledger.investments import (
    InvestmentService,
    apply_investment_transaction,
    build_cash_flows,
    calculate_xirr,
)
from finledger.ledger.locks import KeyedLocks
from finledger.ledger.mutator import AccountLedgerMutator, AppliedEffect
from finledger.ledger.recurring import (
    RecurringScheduleEngine,
    add_months,
    advance,
    advance_state,
    initial_run_date,
    should_execute,
)
from finledger.ledger.transactions import TransactionService

__all__ = [
    "AccountService",
    "BudgetService",
    "GoalService",
    "InvestmentService",
    "apply_investment_transaction",
    "build_cash_flows",
    "calculate_xirr",
    "KeyedLocks",
    "AccountLedgerMutator",
    "AppliedEffect",
    "RecurringScheduleEngine",
    "add_months",
    "advance",
    "advance_state",
    "initial_run_date",
    "should_execute",
    "TransactionService",
]
