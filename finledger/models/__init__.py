"""
Data Models Package

This package contains all Pydantic models used by finledger.
All data flowing through the ledger must conform to these schemas.
"""

from finledger.models.common import ValidationIssue, utcnow
from finledger.models.account import (
    ACCOUNT_UPDATABLE_FIELDS,
    KNOWN_ACCOUNT_TYPES,
    Account,
    AccountPayload,
    AccountStatus,
    Currency,
    is_known_account_type,
    normalize_account_type,
)
from finledger.models.transaction import (
    AMENDABLE_FIELDS,
    IDENTITY_FIELDS,
    PaymentMode,
    Transaction,
    TransactionDetail,
    TransactionLog,
    TransactionPayload,
    TransactionType,
)
from finledger.models.recurring import (
    ExecutionFailure,
    ExecutionResult,
    Frequency,
    RecurringPayload,
    RecurringTransaction,
    TickReport,
    UpcomingSchedule,
)
from finledger.models.budget import Budget, BudgetPayload
from finledger.models.goal import (
    GOAL_UPDATABLE_FIELDS,
    Goal,
    GoalContribution,
    GoalPayload,
    GoalPriority,
    GoalStatus,
    GoalSummary,
)
from finledger.models.investment import (
    INVESTMENT_UPDATABLE_FIELDS,
    CashFlow,
    DividendFrequency,
    Investment,
    InvestmentPayload,
    InvestmentStatus,
    InvestmentTransaction,
    InvestmentTransactionType,
    InvestmentType,
    ValueSnapshot,
    XirrResult,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    "ValidationIssue",
    "utcnow",
    # Account models
    "ACCOUNT_UPDATABLE_FIELDS",
    "KNOWN_ACCOUNT_TYPES",
    "Account",
    "AccountPayload",
    "AccountStatus",
    "Currency",
    "is_known_account_type",
    "normalize_account_type",
    # Ledger models
    "AMENDABLE_FIELDS",
    "IDENTITY_FIELDS",
    "PaymentMode",
    "Transaction",
    "TransactionDetail",
    "TransactionLog",
    "TransactionPayload",
    "TransactionType",
    # Recurring models
    "ExecutionFailure",
    "ExecutionResult",
    "Frequency",
    "RecurringPayload",
    "RecurringTransaction",
    "TickReport",
    "UpcomingSchedule",
    # Budget models
    "Budget",
    "BudgetPayload",
    # Goal models
    "GOAL_UPDATABLE_FIELDS",
    "Goal",
    "GoalContribution",
    "GoalPayload",
    "GoalPriority",
    "GoalStatus",
    "GoalSummary",
    # Investment models
    "CashFlow",
    "DividendFrequency",
    "Investment",
    "InvestmentPayload",
    "INVESTMENT_UPDATABLE_FIELDS",
    "InvestmentStatus",
    "InvestmentTransaction",
    "InvestmentTransactionType",
    "InvestmentType",
    "ValueSnapshot",
    "XirrResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
