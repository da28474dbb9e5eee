"""
Tests for the read-only analytics.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from finledger.analytics import month_bounds
from finledger.models import TransactionType


@pytest_asyncio.fixture
async def january(ledger, user_id, checking, savings):
    """Salary, two expenses and a transfer in January 2024."""
    await ledger.create_transaction(user_id, {
        "type": "income",
        "to_account": checking.id,
        "amount": Decimal("5000"),
        "category": "Salary",
    })
    await ledger.create_transaction(user_id, {
        "type": "expense",
        "from_account": checking.id,
        "amount": Decimal("200"),
        "category": "Food",
    })
    await ledger.create_transaction(user_id, {
        "type": "expense",
        "from_account": checking.id,
        "amount": Decimal("1500"),
        "category": "Rent",
    })
    await ledger.create_transaction(user_id, {
        "type": "transfer",
        "from_account": checking.id,
        "to_account": savings.id,
        "amount": Decimal("1000"),
        "category": "Saving",
    })


class TestMonthBounds:

    def test_leap_february(self):
        """The last instant of February 2024 is on the 29th."""
        start, end = month_bounds(2024, 2)
        assert start == datetime(2024, 2, 1)
        assert end.date() == datetime(2024, 2, 29).date()
        assert end + timedelta(microseconds=1) == datetime(2024, 3, 1)


class TestTransactionAnalytics:

    @pytest.mark.asyncio
    async def test_summary_per_type(self, ledger, user_id, january):
        """Totals and counts per type, with net savings = income - expense."""
        summary = await ledger.analytics.transaction_summary(user_id, month=1, year=2024)

        assert summary.by_type["income"].total == Decimal("5000")
        assert summary.by_type["expense"].total == Decimal("1700")
        assert summary.by_type["expense"].count == 2
        assert summary.by_type["transfer"].count == 1
        assert summary.net_savings == Decimal("3300")

    @pytest.mark.asyncio
    async def test_summary_other_month_empty(self, ledger, user_id, january):
        """A month without entries sums to zero."""
        summary = await ledger.analytics.transaction_summary(user_id, month=2, year=2024)
        assert summary.by_type == {}
        assert summary.net_savings == Decimal("0")

    @pytest.mark.asyncio
    async def test_category_breakdown_sorted(self, ledger, user_id, january):
        """Categories are ordered by total, largest first."""
        breakdown = await ledger.analytics.category_breakdown(user_id, TransactionType.EXPENSE, 1, 2024)
        assert [c.category for c in breakdown] == ["Rent", "Food"]
        assert breakdown[0].total == Decimal("1500")

    @pytest.mark.asyncio
    async def test_yearly_analytics(self, ledger, user_id, january, clock):
        """Year totals, the January bucket and the daily trend for the current month."""
        data = await ledger.analytics.yearly_analytics(user_id, 2024)

        assert data["yearly_summary"]["savings"] == Decimal("3300")
        assert len(data["monthly_breakdown"]) == 12
        assert data["monthly_breakdown"][0]["income"] == Decimal("5000")
        assert data["monthly_breakdown"][1]["income"] == Decimal("0")
        assert data["yearly_history"] == [
            {"year": 2024, "income": Decimal("5000"), "expense": Decimal("1700"), "savings": Decimal("3300")}
        ]
        assert data["top_categories"][0]["category"] == "Rent"
        assert data["top_categories"][0]["avg_amount"] == Decimal("1500")

        trend = data["daily_trend"]
        assert len(trend) == 31
        assert trend[clock.now.day - 1]["expense"] == Decimal("1700")


class TestAccountAndBudgetAnalytics:

    @pytest.mark.asyncio
    async def test_account_overview(self, ledger, user_id, checking, savings, january):
        """Total balance covers only live accounts."""
        overview = await ledger.analytics.account_overview(user_id)
        assert overview["total_balance"] == Decimal("4300")
        assert overview["by_type"]["savings"] == Decimal("1000")

    @pytest.mark.asyncio
    async def test_budget_alerts(self, ledger, user_id, checking):
        """Budgets at or past their threshold are flagged; others are not."""
        await ledger.budgets.create_budget(user_id, {"category": "Food", "monthly_limit": Decimal("250")})
        await ledger.budgets.create_budget(user_id, {"category": "Fuel", "monthly_limit": Decimal("100")})
        await ledger.budgets.create_budget(user_id, {"category": "Books", "monthly_limit": Decimal("1000")})
        for category, amount in (("Food", "200"), ("Fuel", "120"), ("Books", "10")):
            await ledger.create_transaction(user_id, {
                "type": "expense",
                "from_account": checking.id,
                "amount": Decimal(amount),
                "category": category,
            })

        alerts = await ledger.analytics.budget_alerts(user_id)
        assert [(a["budget"].category, a["status"]) for a in alerts] == [
            ("Fuel", "over_budget"),
            ("Food", "near_limit"),
        ]
        assert alerts[1]["spent_percent"] == 80

    @pytest.mark.asyncio
    async def test_deleted_budget_leaves_expenses(self, ledger, user_id, checking):
        """Removing a budget clears its alert and frees the month; the expenses stay."""
        budget = await ledger.budgets.create_budget(user_id, {"category": "Fuel", "monthly_limit": Decimal("100")})
        await ledger.create_transaction(user_id, {
            "type": "expense",
            "from_account": checking.id,
            "amount": Decimal("120"),
            "category": "Fuel",
        })

        await ledger.budgets.delete_budget(user_id, budget.id)

        assert await ledger.analytics.budget_alerts(user_id) == []
        assert len(await ledger.transactions.list_transactions(user_id)) == 1
        replacement = await ledger.budgets.create_budget(
            user_id, {"category": "Fuel", "monthly_limit": Decimal("200")}
        )
        assert replacement.current_spent == Decimal("0")


class TestPortfolioAnalytics:

    @pytest.mark.asyncio
    async def test_portfolio_totals_and_allocation(self, ledger, user_id, checking, clock):
        """Totals, allocation percentages and performer ranking."""
        stock = await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Stock",
            "investment_type": "stocks",
            "invested_amount": Decimal("1000"),
            "current_value": Decimal("1500"),
        })
        await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Deposit",
            "investment_type": "fixed_deposit",
            "invested_amount": Decimal("500"),
            "maturity_date": clock.now + timedelta(days=30),
        })

        portfolio = await ledger.analytics.portfolio_analytics(user_id)

        assert portfolio["total_invested"] == Decimal("1500")
        assert portfolio["total_current_value"] == Decimal("2000")
        assert portfolio["allocation"]["stocks"]["percent"] == pytest.approx(75.0)
        assert portfolio["allocation"]["fixed_deposit"]["percent"] == pytest.approx(25.0)
        assert portfolio["top_performers"][0]["investment_id"] == stock.id
        assert [m["name"] for m in portfolio["upcoming_maturities"]] == ["Deposit"]
        assert portfolio["status_breakdown"] == {"active": 2}

    @pytest.mark.asyncio
    async def test_dividend_summary(self, ledger, user_id, checking, clock):
        """Dividends land in the bucket of the month they were received."""
        inv = await ledger.investments.create_investment(user_id, {
            "account_id": checking.id,
            "name": "Utility",
            "invested_amount": Decimal("1000"),
        })
        await ledger.investments.add_transaction(user_id, inv.id, {
            "type": "dividend",
            "amount": Decimal("40"),
            "date": clock.now,
        })

        summary = await ledger.analytics.dividend_summary(user_id)

        assert summary["total_dividends"] == Decimal("40")
        months = summary["monthly_dividends"]
        assert len(months) == 12
        assert months[-1] == {"month": "2024-01", "label": "Jan 2024", "amount": Decimal("40")}
        assert months[0]["month"] == "2023-02"
