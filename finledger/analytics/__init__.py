"""
Read-only analytics derived from the ledger.
"""

from finledger.analytics.aggregator import (
    CategoryTotal,
    LedgerAnalytics,
    TransactionSummary,
    TypeTotal,
    month_bounds,
)

__all__ = [
    "CategoryTotal",
    "LedgerAnalytics",
    "TransactionSummary",
    "TypeTotal",
    "month_bounds",
]
