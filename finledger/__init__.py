"""
finledger - Source Package

The ledger core of a personal-finance tracker: accounts, an append-only
transaction ledger, budgets, investments and recurring schedules.

DESIGN PRINCIPLES:
1. The ledger is append-only - entries are amended with a reason, never deleted
2. A balance is never allowed to go negative
3. An operation applies completely or not at all
4. Every amendment is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "finledger Team"
