"""
Tests for the storage backends.

The Google Sheets stores run against an in-process fake worksheet; no
network calls are made.
"""

from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from finledger.errors import DuplicateError, InsufficientFundsError, NotFoundError
from finledger.models import (
    Account,
    AuditEvent,
    AuditEventType,
    Budget,
    Goal,
    GoalStatus,
    Transaction,
    TransactionLog,
    TransactionType,
)
from finledger.services.storage import (
    GoogleSheetsAccountStorage,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsGoalStorage,
    GoogleSheetsTransactionLogStorage,
    GoogleSheetsTransactionStorage,
    InMemoryAccountStorage,
    InMemoryBudgetStorage,
    InMemoryTransactionStorage,
)


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the stores."""

    def __init__(self, header: list[str]):
        self.rows = [list(header)]
        self.fail_appends = False

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        if self.fail_appends:
            raise RuntimeError("quota exceeded")
        self.rows.append([str(v) for v in values])

    def update(self, range_name=None, values=None, value_input_option=None):
        row_number = int(range_name[1:])
        self.rows[row_number - 1] = [str(v) for v in values[0]]

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient: one FakeWorksheet per title."""

    def __init__(self):
        self.sheets: dict[str, FakeWorksheet] = {}
        self.settings = SimpleNamespace(
            accounts_sheet_name="Accounts",
            budgets_sheet_name="Budgets",
            transactions_sheet_name="Transactions",
            transaction_logs_sheet_name="TransactionLogs",
            recurring_sheet_name="Recurring",
            investments_sheet_name="Investments",
            goals_sheet_name="Goals",
            audit_sheet_name="AuditLog",
        )

    def get_sheet(self, title, columns, rows=1000):
        if title not in self.sheets:
            self.sheets[title] = FakeWorksheet(columns)
        return self.sheets[title]


def make_account(user_id, balance="100") -> Account:
    return Account(
        user_id=user_id,
        account_name="Wallet",
        account_type="cash",
        balance=Decimal(balance),
    )


def make_transaction(user_id, **overrides) -> Transaction:
    data = {
        "user_id": user_id,
        "type": TransactionType.EXPENSE,
        "from_account": uuid4(),
        "amount": Decimal("42.50"),
        "category": "Food",
        "note": "[Auto: Lunch] weekday",
        "transaction_date": datetime(2024, 1, 10, 12, 0),
        "tags": [uuid4()],
    }
    data.update(overrides)
    return Transaction(**data)


class TestInMemoryStorage:

    @pytest.mark.asyncio
    async def test_increment_balance_is_conditional(self):
        """A delta that would go below the minimum changes nothing."""
        store = InMemoryAccountStorage()
        account = await store.save_account(make_account(uuid4()))

        with pytest.raises(InsufficientFundsError):
            await store.increment_balance(account.id, Decimal("-100.01"))
        assert (await store.get_account(account.id)).balance == Decimal("100")

        reverted = await store.increment_balance(account.id, Decimal("-150"), minimum=None)
        assert reverted.balance == Decimal("-50")

    @pytest.mark.asyncio
    async def test_save_preserves_balance(self):
        """Metadata saves never overwrite the stored balance."""
        store = InMemoryAccountStorage()
        account = await store.save_account(make_account(uuid4()))
        await store.increment_balance(account.id, Decimal("50"))

        renamed = account.model_copy(update={"account_name": "Purse"})
        saved = await store.save_account(renamed)
        assert saved.balance == Decimal("150")
        assert saved.account_name == "Purse"

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        """Mutating a returned record does not touch the store."""
        store = InMemoryAccountStorage()
        account = await store.save_account(make_account(uuid4()))
        fetched = await store.get_account(account.id)
        fetched.account_name = "Changed"
        assert (await store.get_account(account.id)).account_name == "Wallet"

    @pytest.mark.asyncio
    async def test_duplicate_budget(self):
        """One budget per category and month."""
        store = InMemoryBudgetStorage()
        user_id = uuid4()
        await store.save_budget(Budget(user_id=user_id, category="Food", monthly_limit=Decimal("1"), month=1, year=2024))
        with pytest.raises(DuplicateError):
            await store.save_budget(Budget(user_id=user_id, category="Food", monthly_limit=Decimal("2"), month=1, year=2024))

    @pytest.mark.asyncio
    async def test_transaction_filters_and_order(self):
        """Filters combine; results come newest first."""
        store = InMemoryTransactionStorage()
        user_id = uuid4()
        account_id = uuid4()
        older = make_transaction(user_id, to_account=account_id, type=TransactionType.TRANSFER,
                                 transaction_date=datetime(2024, 1, 1))
        newer = make_transaction(user_id, from_account=account_id, transaction_date=datetime(2024, 1, 20))
        unrelated = make_transaction(user_id, note=None, transaction_date=datetime(2024, 2, 1))
        for txn in (older, newer, unrelated):
            await store.append_transaction(txn)

        by_account = await store.list_transactions(user_id, account_id=account_id)
        assert [t.id for t in by_account] == [newer.id, older.id]

        in_january = await store.list_transactions(
            user_id, date_from=datetime(2024, 1, 1), date_to=datetime(2024, 1, 31)
        )
        assert len(in_january) == 2

        marked = await store.list_transactions(user_id, note_contains="[Auto: Lunch]", limit=1)
        assert [t.id for t in marked] == [newer.id]

    @pytest.mark.asyncio
    async def test_append_is_append_only(self):
        """The same entry cannot be appended twice."""
        store = InMemoryTransactionStorage()
        txn = make_transaction(uuid4())
        await store.append_transaction(txn)
        with pytest.raises(DuplicateError):
            await store.append_transaction(txn)


class TestGoogleSheetsStorage:

    @pytest.mark.asyncio
    async def test_transaction_row_round_trip(self):
        """An entry written as a row reads back identical."""
        client = FakeSheetsClient()
        store = GoogleSheetsTransactionStorage(client)
        txn = make_transaction(uuid4(), conversion_rate=None)

        await store.append_transaction(txn)

        assert client.sheets["Transactions"].rows[1][0] == str(txn.id)
        assert await store.get_transaction(txn.id) == txn

    @pytest.mark.asyncio
    async def test_replace_transaction_rewrites_row(self):
        """An amendment overwrites the entry's row in place."""
        client = FakeSheetsClient()
        store = GoogleSheetsTransactionStorage(client)
        user_id = uuid4()
        first = make_transaction(user_id)
        second = make_transaction(user_id)
        await store.append_transaction(first)
        await store.append_transaction(second)

        amended = first.model_copy(update={"amount": Decimal("99"), "was_edited": True})
        await store.replace_transaction(amended)

        assert len(client.sheets["Transactions"].rows) == 3
        stored = await store.get_transaction(first.id)
        assert stored.amount == Decimal("99")
        assert stored.was_edited is True

    @pytest.mark.asyncio
    async def test_replace_unknown_transaction(self):
        """Only recorded entries can be replaced."""
        store = GoogleSheetsTransactionStorage(FakeSheetsClient())
        with pytest.raises(NotFoundError):
            await store.replace_transaction(make_transaction(uuid4()))

    @pytest.mark.asyncio
    async def test_account_documents(self):
        """Accounts persist as documents and increments stay conditional."""
        store = GoogleSheetsAccountStorage(FakeSheetsClient())
        user_id = uuid4()
        account = await store.save_account(make_account(user_id))

        updated = await store.increment_balance(account.id, Decimal("-40"))
        assert updated.balance == Decimal("60")
        with pytest.raises(InsufficientFundsError):
            await store.increment_balance(account.id, Decimal("-61"))

        accounts = await store.list_accounts(user_id)
        assert [a.balance for a in accounts] == [Decimal("60")]

    @pytest.mark.asyncio
    async def test_budget_duplicate_and_spend(self):
        """Budgets keep their spend across metadata saves."""
        store = GoogleSheetsBudgetStorage(FakeSheetsClient())
        user_id = uuid4()
        budget = await store.save_budget(
            Budget(user_id=user_id, category="Food", monthly_limit=Decimal("100"), month=1, year=2024)
        )
        await store.increment_spent(budget.id, Decimal("30"))
        raised = await store.save_budget(budget.model_copy(update={"monthly_limit": Decimal("200")}))

        assert raised.current_spent == Decimal("30")
        with pytest.raises(DuplicateError):
            await store.save_budget(
                Budget(user_id=user_id, category="Food", monthly_limit=Decimal("5"), month=1, year=2024)
            )

    @pytest.mark.asyncio
    async def test_logs_newest_first(self):
        """Amendment history reads back newest first."""
        store = GoogleSheetsTransactionLogStorage(FakeSheetsClient())
        txn_id, user_id = uuid4(), uuid4()
        for reason in ("first", "second"):
            await store.append_log(TransactionLog(
                transaction_id=txn_id,
                user_id=user_id,
                old_data={"amount": "1"},
                new_data={"amount": "2"},
                reason=reason,
            ))

        logs = await store.list_logs(txn_id)
        assert [log.reason for log in logs] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_audit_failure_is_not_raised(self):
        """A failed audit write reports False instead of raising."""
        client = FakeSheetsClient()
        store = GoogleSheetsAuditStorage(client)
        event = AuditEvent(event_type=AuditEventType.SYSTEM_ERROR, description="boom")

        assert await store.append_event(event) is True
        client.sheets["AuditLog"].fail_appends = True
        assert await store.append_event(event) is False

        recent = await store.get_recent_events()
        assert [e.event_id for e in recent] == [event.event_id]

    @pytest.mark.asyncio
    async def test_goal_documents(self):
        """Goals round-trip as documents, filter by status and can be deleted."""
        client = FakeSheetsClient()
        store = GoogleSheetsGoalStorage(client)
        user_id = uuid4()
        later = Goal(user_id=user_id, goal_name="Car", target_amount=Decimal("5000"), deadline=datetime(2025, 1, 1))
        sooner = Goal(
            user_id=user_id,
            goal_name="Phone",
            target_amount=Decimal("800"),
            saved_amount=Decimal("800"),
            deadline=datetime(2024, 6, 1),
            status=GoalStatus.COMPLETED,
        )
        await store.save_goal(later)
        await store.save_goal(sooner)
        await store.save_goal(later.model_copy(update={"saved_amount": Decimal("250")}))

        assert len(client.sheets["Goals"].rows) == 3
        assert [g.goal_name for g in await store.list_goals(user_id)] == ["Phone", "Car"]
        completed = await store.list_goals(user_id, status=GoalStatus.COMPLETED)
        assert [g.id for g in completed] == [sooner.id]
        assert (await store.get_goal(later.id)).saved_amount == Decimal("250")

        await store.delete_goal(sooner.id)
        assert await store.get_goal(sooner.id) is None
        with pytest.raises(NotFoundError):
            await store.delete_goal(sooner.id)

    @pytest.mark.asyncio
    async def test_delete_budget_row(self):
        """Deleting a budget removes its row and frees its month."""
        client = FakeSheetsClient()
        store = GoogleSheetsBudgetStorage(client)
        user_id = uuid4()
        budget = await store.save_budget(
            Budget(user_id=user_id, category="Food", monthly_limit=Decimal("100"), month=1, year=2024)
        )

        await store.delete_budget(budget.id)

        assert len(client.sheets["Budgets"].rows) == 1
        assert await store.find_budget(user_id, "Food", 1, 2024) is None
        with pytest.raises(NotFoundError):
            await store.delete_budget(budget.id)
