"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The in-memory backend serves tests and local use; Google Sheets persists.
"""

from finledger.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    InvestmentStorageInterface,
    RecurringStorageInterface,
    StorageConnectionError,
    StorageError,
    TransactionLogStorageInterface,
    TransactionStorageInterface,
)
from finledger.services.storage.memory import (
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryInvestmentStorage,
    InMemoryRecurringStorage,
    InMemoryTransactionLogStorage,
    InMemoryTransactionStorage,
)
from finledger.services.storage.google_sheets import (
    GoogleSheetsAccountStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsGoalStorage,
    GoogleSheetsInvestmentStorage,
    GoogleSheetsRecurringStorage,
    GoogleSheetsTransactionLogStorage,
    GoogleSheetsTransactionStorage,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "GoalStorageInterface",
    "InvestmentStorageInterface",
    "RecurringStorageInterface",
    "TransactionLogStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAccountStorage",
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    "InMemoryGoalStorage",
    "InMemoryInvestmentStorage",
    "InMemoryRecurringStorage",
    "InMemoryTransactionLogStorage",
    "InMemoryTransactionStorage",
    # Google Sheets implementation
    "GoogleSheetsAccountStorage",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "GoogleSheetsGoalStorage",
    "GoogleSheetsInvestmentStorage",
    "GoogleSheetsRecurringStorage",
    "GoogleSheetsTransactionLogStorage",
    "GoogleSheetsTransactionStorage",
]
