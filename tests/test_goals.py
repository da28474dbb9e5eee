"""
Tests for savings goals and their contributions.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from finledger.errors import InsufficientFundsError, NotFoundError, ValidationError
from finledger.models import AuditEventType, GoalStatus, TransactionType
from finledger.orchestrator import FinanceLedger, in_memory_storage
from finledger.services.storage import InMemoryTransactionStorage, StorageError


class FlakyTransactionStorage(InMemoryTransactionStorage):
    """Ledger store whose appends fail once `fail` is set."""

    def __init__(self):
        super().__init__()
        self.fail = False

    async def append_transaction(self, transaction):
        if self.fail:
            raise StorageError("ledger sheet unavailable")
        return await super().append_transaction(transaction)


@pytest_asyncio.fixture
async def funded_savings(ledger, user_id, savings):
    """The savings account with 500 in it."""
    await ledger.create_transaction(user_id, {
        "type": "income",
        "to_account": savings.id,
        "amount": Decimal("500"),
        "category": "Salary",
    })
    return savings


@pytest_asyncio.fixture
async def laptop(ledger, user_id):
    return await ledger.goals.create_goal(user_id, {
        "goal_name": "Laptop",
        "target_amount": Decimal("1000"),
        "deadline": datetime(2024, 12, 31),
        "priority": "high",
    })


class TestGoalModel:

    @pytest.mark.asyncio
    async def test_create_defaults(self, laptop):
        """New goals start active with nothing saved."""
        assert laptop.status == GoalStatus.ACTIVE
        assert laptop.saved_amount == Decimal("0")
        assert laptop.progress == 0
        assert laptop.remaining == Decimal("1000")

    @pytest.mark.asyncio
    async def test_target_must_be_at_least_one(self, ledger, user_id):
        """Targets below 1 are rejected."""
        with pytest.raises(ValidationError):
            await ledger.goals.create_goal(user_id, {
                "goal_name": "Nothing",
                "target_amount": Decimal("0.5"),
                "deadline": datetime(2024, 6, 1),
            })

    @pytest.mark.asyncio
    async def test_list_nearest_deadline_first(self, ledger, user_id, laptop):
        """Goals are listed by deadline and can be filtered by status."""
        trip = await ledger.goals.create_goal(user_id, {
            "goal_name": "Trip",
            "target_amount": Decimal("300"),
            "deadline": datetime(2024, 3, 1),
        })
        goals = await ledger.goals.list_goals(user_id)
        assert [g.id for g in goals] == [trip.id, laptop.id]
        assert await ledger.goals.list_goals(user_id, status=GoalStatus.COMPLETED) == []


class TestAddToGoal:

    @pytest.mark.asyncio
    async def test_contribution_debits_savings(self, ledger, user_id, funded_savings, laptop, balance_of):
        """Money leaves the savings account through a ledger entry."""
        result = await ledger.add_to_goal(user_id, laptop.id, Decimal("200"))

        assert result.account_id == funded_savings.id
        assert result.goal.saved_amount == Decimal("200")
        assert result.goal.progress == 20
        assert result.completed is False
        assert await balance_of(funded_savings.id) == Decimal("300")

        entry = await ledger.transactions.get_transaction(user_id, result.transaction_id)
        assert entry.type == TransactionType.EXPENSE
        assert entry.category == "Savings Goals"
        assert entry.note == "[Goal: Laptop]"

    @pytest.mark.asyncio
    async def test_explicit_account(self, ledger, user_id, checking, laptop, balance_of):
        """An explicit account_id overrides the savings default."""
        result = await ledger.add_to_goal(user_id, laptop.id, Decimal("150"), account_id=checking.id)
        assert result.account_id == checking.id
        assert await balance_of(checking.id) == Decimal("850")

    @pytest.mark.asyncio
    async def test_reaching_target_completes(self, ledger, storage, user_id, checking, laptop, clock):
        """The contribution that reaches the target completes the goal."""
        await ledger.add_to_goal(user_id, laptop.id, Decimal("600"), account_id=checking.id)
        result = await ledger.add_to_goal(user_id, laptop.id, Decimal("400"), account_id=checking.id)

        assert result.completed is True
        assert result.goal.status == GoalStatus.COMPLETED
        assert result.goal.completed_at == clock.now
        events = await storage.audit.get_events_by_entity("goal", laptop.id)
        assert events[-1].event_type == AuditEventType.GOAL_COMPLETED

        with pytest.raises(ValidationError):
            await ledger.add_to_goal(user_id, laptop.id, Decimal("1"), account_id=checking.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    async def test_non_positive_amount(self, ledger, user_id, funded_savings, laptop, amount, balance_of):
        """Zero and negative contributions are rejected."""
        with pytest.raises(ValidationError):
            await ledger.add_to_goal(user_id, laptop.id, amount)
        assert await balance_of(funded_savings.id) == Decimal("500")

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, ledger, user_id, funded_savings, laptop, balance_of):
        """A contribution larger than the balance changes nothing."""
        with pytest.raises(InsufficientFundsError):
            await ledger.add_to_goal(user_id, laptop.id, Decimal("500.01"))

        stored = await ledger.goals.get_goal(user_id, laptop.id)
        assert stored.saved_amount == Decimal("0")
        assert await balance_of(funded_savings.id) == Decimal("500")
        assert len(await ledger.transactions.list_transactions(user_id)) == 1

    @pytest.mark.asyncio
    async def test_no_savings_account(self, ledger, user_id, checking, laptop):
        """Without account_id the user needs a savings account."""
        with pytest.raises(ValidationError) as exc_info:
            await ledger.add_to_goal(user_id, laptop.id, Decimal("10"))
        assert exc_info.value.issues[0].field == "account_id"

    @pytest.mark.asyncio
    async def test_cancelled_goal_refuses_money(self, ledger, user_id, funded_savings, laptop):
        """Only active goals accept contributions."""
        await ledger.goals.update_goal(user_id, laptop.id, {"status": "cancelled"})
        with pytest.raises(ValidationError):
            await ledger.add_to_goal(user_id, laptop.id, Decimal("10"))

    @pytest.mark.asyncio
    async def test_unknown_goal(self, ledger, user_id, funded_savings, laptop):
        """Another user's goal is not found."""
        with pytest.raises(NotFoundError):
            await ledger.add_to_goal(uuid4(), laptop.id, Decimal("10"))

    @pytest.mark.asyncio
    async def test_ledger_failure_rolls_back(self, clock, user_id):
        """If the entry cannot be recorded, the goal and the balance are restored."""
        storage = in_memory_storage()
        storage.transactions = FlakyTransactionStorage()
        ledger = FinanceLedger(storage, clock)
        savings = await ledger.accounts.create_account(user_id, {
            "account_name": "Savings",
            "account_type": "savings",
            "balance": Decimal("300"),
        })
        goal = await ledger.goals.create_goal(user_id, {
            "goal_name": "Bike",
            "target_amount": Decimal("250"),
            "deadline": datetime(2024, 8, 1),
        })

        storage.transactions.fail = True
        with pytest.raises(StorageError):
            await ledger.add_to_goal(user_id, goal.id, Decimal("250"))

        stored = await ledger.goals.get_goal(user_id, goal.id)
        assert stored.saved_amount == Decimal("0")
        assert stored.status == GoalStatus.ACTIVE
        assert (await ledger.accounts.get_account(user_id, savings.id)).balance == Decimal("300")
        assert ledger.locks.active_count == 0


class TestGoalMaintenance:

    @pytest.mark.asyncio
    async def test_lowering_target_completes(self, ledger, user_id, checking, laptop, clock):
        """A goal whose new target is already met is completed by the edit."""
        await ledger.add_to_goal(user_id, laptop.id, Decimal("400"), account_id=checking.id)
        updated = await ledger.goals.update_goal(user_id, laptop.id, {"target_amount": Decimal("400")})

        assert updated.status == GoalStatus.COMPLETED
        assert updated.completed_at == clock.now

    @pytest.mark.asyncio
    async def test_saved_amount_not_editable(self, ledger, user_id, laptop):
        """Saved money only comes from contributions."""
        with pytest.raises(ValidationError) as exc_info:
            await ledger.goals.update_goal(user_id, laptop.id, {"saved_amount": Decimal("999")})
        assert exc_info.value.issues[0].message == "Saved amount only changes through contributions"

    @pytest.mark.asyncio
    async def test_delete_keeps_contributions(self, ledger, user_id, checking, laptop):
        """Deleting a goal leaves its ledger entries in place."""
        await ledger.add_to_goal(user_id, laptop.id, Decimal("100"), account_id=checking.id)
        await ledger.goals.delete_goal(user_id, laptop.id)

        assert await ledger.goals.list_goals(user_id) == []
        assert len(await ledger.transactions.list_transactions(user_id)) == 1

    @pytest.mark.asyncio
    async def test_summary(self, ledger, user_id, checking, laptop):
        """Counts per status and overall progress across goals."""
        trip = await ledger.goals.create_goal(user_id, {
            "goal_name": "Trip",
            "target_amount": Decimal("200"),
            "deadline": datetime(2024, 3, 1),
        })
        await ledger.add_to_goal(user_id, trip.id, Decimal("200"), account_id=checking.id)
        await ledger.add_to_goal(user_id, laptop.id, Decimal("100"), account_id=checking.id)

        summary = await ledger.goals.get_summary(user_id)
        assert (summary.total, summary.active, summary.completed, summary.cancelled) == (2, 1, 1, 0)
        assert summary.total_target == Decimal("1200")
        assert summary.total_saved == Decimal("300")
        assert summary.overall_progress == 25
