"""
Tests for the investment ledger and XIRR.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from finledger.errors import ConvergenceNotReached, NotFoundError, ValidationError
from finledger.ledger import apply_investment_transaction, build_cash_flows, calculate_xirr
from finledger.models import (
    AuditEventType,
    Investment,
    InvestmentStatus,
    InvestmentTransaction,
    InvestmentTransactionType,
)


def make_investment(**overrides) -> Investment:
    data = {
        "user_id": uuid4(),
        "account_id": uuid4(),
        "name": "Index Fund",
        "invested_amount": Decimal("1000"),
        "current_value": Decimal("1000"),
        "units": Decimal("10"),
        "buy_price": Decimal("100"),
        "current_price": Decimal("110"),
        "purchase_date": datetime(2023, 1, 1),
    }
    data.update(overrides)
    return Investment(**data)


class TestCalculateXirr:
    """The Newton-Raphson solver."""

    def test_ten_percent_over_one_year(self):
        """-1000 then +1100 a year later is a 10% return."""
        start = datetime(2023, 1, 1)
        rate, converged, iterations = calculate_xirr(
            [-1000.0, 1100.0], [start, start + timedelta(days=365)]
        )
        assert converged
        assert rate == pytest.approx(0.10, abs=1e-3)
        assert iterations > 0

    def test_loss(self):
        """Getting back less than was put in gives a negative rate."""
        start = datetime(2023, 1, 1)
        rate, converged, _ = calculate_xirr(
            [-1000.0, 800.0], [start, start + timedelta(days=365)]
        )
        assert converged
        assert rate == pytest.approx(-0.20, abs=1e-3)

    def test_single_flow(self):
        """Fewer than two flows have no rate."""
        assert calculate_xirr([-1000.0], [datetime(2023, 1, 1)]) == (0.0, True, 0)

    def test_no_sign_change_warns(self):
        """Flows that never change sign cannot converge; a warning is emitted."""
        start = datetime(2023, 1, 1)
        with pytest.warns(ConvergenceNotReached):
            _, converged, _ = calculate_xirr(
                [100.0, 100.0], [start, start + timedelta(days=365)]
            )
        assert not converged


class TestApplyInvestmentTransaction:
    """Position updates per transaction type."""

    def test_buy_averages_price(self):
        """A buy adds units and money and re-averages the buy price."""
        inv = apply_investment_transaction(make_investment(), InvestmentTransaction(
            type=InvestmentTransactionType.BUY,
            units=Decimal("5"),
            amount=Decimal("650"),
        ))
        assert inv.invested_amount == Decimal("1650")
        assert inv.units == Decimal("15")
        assert inv.buy_price == Decimal("110")
        assert len(inv.transactions) == 1

    def test_partial_sell(self):
        """Selling some units marks the position partially sold and revalues it."""
        inv = apply_investment_transaction(make_investment(), InvestmentTransaction(
            type=InvestmentTransactionType.SELL,
            units=Decimal("4"),
            amount=Decimal("440"),
        ))
        assert inv.status == InvestmentStatus.PARTIAL_SOLD
        assert inv.units == Decimal("6")
        assert inv.current_value == Decimal("660")

    def test_full_sell(self):
        """Selling every unit closes the position."""
        sold_on = datetime(2024, 1, 1)
        inv = apply_investment_transaction(make_investment(), InvestmentTransaction(
            type=InvestmentTransactionType.SELL,
            date=sold_on,
            units=Decimal("10"),
            amount=Decimal("1100"),
        ))
        assert inv.status == InvestmentStatus.SOLD
        assert inv.sold_date == sold_on

    def test_dividend(self):
        """Dividends accumulate and switch dividend tracking on."""
        inv = apply_investment_transaction(make_investment(), InvestmentTransaction(
            type=InvestmentTransactionType.DIVIDEND,
            amount=Decimal("25"),
        ))
        inv = apply_investment_transaction(inv, InvestmentTransaction(
            type=InvestmentTransactionType.DIVIDEND,
            amount=Decimal("30"),
        ))
        assert inv.total_dividends_received == Decimal("55")
        assert inv.last_dividend_amount == Decimal("30")
        assert inv.dividend_enabled

    def test_split(self):
        """A 2:1 split doubles units and halves the buy price."""
        inv = apply_investment_transaction(make_investment(), InvestmentTransaction(
            type=InvestmentTransactionType.SPLIT,
            units=Decimal("10"),
            amount=Decimal("0"),
        ))
        assert inv.units == Decimal("20")
        assert inv.buy_price == Decimal("50")
        assert inv.invested_amount == Decimal("1000")

    def test_input_not_modified(self):
        """The original investment is left untouched."""
        original = make_investment()
        apply_investment_transaction(original, InvestmentTransaction(
            type=InvestmentTransactionType.BUY,
            units=Decimal("1"),
            amount=Decimal("100"),
        ))
        assert original.units == Decimal("10")
        assert original.transactions == []


class TestCashFlows:
    """Building the XIRR series."""

    def test_open_position_adds_current_value(self):
        """An open position ends with its current value at now."""
        now = datetime(2024, 1, 1)
        inv = make_investment(transactions=[
            InvestmentTransaction(type="buy", date=datetime(2023, 1, 1), amount=Decimal("1000")),
            InvestmentTransaction(type="split", date=datetime(2023, 6, 1), units=Decimal("10"), amount=Decimal("0")),
        ])
        flows = build_cash_flows(inv, now)
        assert [(f.date, f.amount) for f in flows] == [
            (datetime(2023, 1, 1), -1000.0),
            (now, 1000.0),
        ]

    def test_sold_position_has_no_terminal_value(self):
        """A sold position's proceeds are already in its sell transactions."""
        inv = make_investment(
            status=InvestmentStatus.SOLD,
            transactions=[
                InvestmentTransaction(type="buy", date=datetime(2023, 1, 1), amount=Decimal("1000")),
                InvestmentTransaction(type="sell", date=datetime(2024, 1, 1), amount=Decimal("1200")),
            ],
        )
        flows = build_cash_flows(inv, datetime(2024, 6, 1))
        assert [f.amount for f in flows] == [-1000.0, 1200.0]


class TestInvestmentService:
    """Storage-backed investment operations."""

    @pytest.mark.asyncio
    async def test_create_records_initial_buy(self, ledger, user_id, checking):
        """Opening a position records the buy and the first value snapshot."""
        inv = await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Nifty ETF",
            "symbol": "nifty",
            "investment_type": "etf",
            "invested_amount": Decimal("1000"),
            "units": Decimal("8"),
        })

        assert inv.symbol == "NIFTY"
        assert inv.current_value == Decimal("1000")
        assert inv.current_price == Decimal("125")
        assert [t.type for t in inv.transactions] == [InvestmentTransactionType.BUY]
        assert len(inv.value_history) == 1

    @pytest.mark.asyncio
    async def test_create_requires_own_account(self, ledger, user_id):
        """The linked account must belong to the user."""
        with pytest.raises(NotFoundError):
            await ledger.investments.create_investment(user_id, {
                "account_id": uuid4(),
                "name": "Orphan",
                "invested_amount": Decimal("10"),
            })

    @pytest.mark.asyncio
    async def test_xirr_of_stored_investment(self, ledger, user_id, checking, clock):
        """1000 bought a year ago and now worth 1100 yields about 10%."""
        inv = await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Bond Fund",
            "investment_type": "bonds",
            "invested_amount": Decimal("1000"),
            "units": Decimal("10"),
            "purchase_date": clock.now - timedelta(days=365),
        })
        await ledger.investments.update_value(user_id, inv.id, Decimal("1100"))

        result = await ledger.compute_xirr(user_id, inv.id)
        assert result.converged
        assert result.xirr == pytest.approx(10.0, abs=0.1)
        assert len(result.cash_flows) == 2
        assert result.absolute_return == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_add_transaction_persists(self, ledger, user_id, checking):
        """Recorded transactions are appended to the stored position."""
        inv = await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Stock",
            "invested_amount": Decimal("500"),
            "units": Decimal("5"),
        })
        await ledger.investments.add_transaction(user_id, inv.id, {
            "type": "dividend",
            "amount": Decimal("12.50"),
        })

        stored = await ledger.investments.get_investment(user_id, inv.id)
        assert len(stored.transactions) == 2
        assert stored.total_dividends_received == Decimal("12.50")

    @pytest.mark.asyncio
    async def test_update_value_derives_price(self, ledger, user_id, checking):
        """Without an explicit price, the price is value / units."""
        inv = await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Stock",
            "invested_amount": Decimal("500"),
            "units": Decimal("5"),
        })
        updated = await ledger.investments.update_value(user_id, inv.id, Decimal("600"))

        assert updated.current_price == Decimal("120")
        assert len(updated.value_history) == 2

    @pytest.mark.asyncio
    async def test_update_descriptive_fields(self, ledger, user_id, checking):
        """Name, symbol and notes can be edited; the symbol is upper-cased."""
        inv = await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Stock",
            "invested_amount": Decimal("500"),
            "units": Decimal("5"),
        })
        updated = await ledger.investments.update_investment(
            user_id, inv.id, {"name": "Blue chip", "symbol": "abc", "notes": "long term"}
        )

        assert updated.name == "Blue chip"
        assert updated.symbol == "ABC"
        stored = await ledger.investments.get_investment(user_id, inv.id)
        assert stored.notes == "long term"
        assert stored.invested_amount == Decimal("500")

    @pytest.mark.asyncio
    async def test_update_rejects_amount_fields(self, ledger, user_id, checking):
        """Amounts only move through transactions and value updates."""
        inv = await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Stock",
            "invested_amount": Decimal("500"),
        })
        with pytest.raises(ValidationError) as exc_info:
            await ledger.investments.update_investment(
                user_id, inv.id, {"invested_amount": Decimal("1"), "units": Decimal("1")}
            )
        assert [i.field for i in exc_info.value.issues] == ["invested_amount", "units"]

    @pytest.mark.asyncio
    async def test_delete_investment(self, ledger, storage, user_id, checking):
        """A deleted investment is gone for its owner and the deletion is audited."""
        inv = await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Stock",
            "invested_amount": Decimal("500"),
        })
        with pytest.raises(NotFoundError):
            await ledger.investments.delete_investment(uuid4(), inv.id)

        await ledger.investments.delete_investment(user_id, inv.id)

        assert await ledger.investments.list_investments(user_id) == []
        with pytest.raises(NotFoundError):
            await ledger.investments.get_investment(user_id, inv.id)
        events = await storage.audit.get_events_by_entity("investment", inv.id)
        assert events[-1].event_type == AuditEventType.INVESTMENT_DELETED
