"""
Shared fixtures: an in-memory ledger driven by a controllable clock.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from finledger.orchestrator import FinanceLedger, in_memory_storage


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 15, 9, 0))


@pytest.fixture
def storage():
    return in_memory_storage()


@pytest.fixture
def ledger(storage, clock) -> FinanceLedger:
    return FinanceLedger(storage, clock)


@pytest.fixture
def user_id():
    return uuid4()


@pytest_asyncio.fixture
async def checking(ledger, user_id):
    """Bank account holding 1000."""
    return await ledger.accounts.create_account(user_id, {
        "account_name": "Checking",
        "account_type": "bank",
        "balance": Decimal("1000"),
    })


@pytest_asyncio.fixture
async def savings(ledger, user_id):
    """Empty savings account."""
    return await ledger.accounts.create_account(user_id, {
        "account_name": "Savings",
        "account_type": "savings",
    })


@pytest.fixture
def balance_of(ledger, user_id):
    """Current balance of one of the test user's accounts."""
    async def _balance(account_id) -> Decimal:
        account = await ledger.accounts.get_account(user_id, account_id)
        return account.balance
    return _balance
