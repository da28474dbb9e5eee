"""
Ledger Analytics

Derives summaries from the stores on demand. Nothing computed here is
persisted or cached.

DESIGN DECISION: Aggregation is DETERMINISTIC.
Every figure is a plain fold over the entries the stores return, done in
Decimal and only converted for presentation. Running the same query twice
against the same data gives the same answer.
"""

from calendar import monthrange
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from finledger.config import get_settings
from finledger.models.common import ZERO, utcnow
from finledger.models.investment import (
    Investment,
    InvestmentStatus,
    InvestmentTransactionType,
)
from finledger.models.transaction import Transaction, TransactionType
from finledger.services.storage.interface import (
    AccountStorageInterface,
    BudgetStorageInterface,
    InvestmentStorageInterface,
    TransactionStorageInterface,
)


logger = structlog.get_logger(__name__)

TOP_CATEGORY_LIMIT = 10
PERFORMER_LIMIT = 5
MATURITY_LIMIT = 10
DIVIDEND_MONTHS = 12


class TypeTotal(BaseModel):
    """Sum and count of entries of one type."""

    total: Decimal = ZERO
    count: int = 0


class TransactionSummary(BaseModel):
    """Per-type totals for a period."""

    month: Optional[int] = None
    year: Optional[int] = None
    by_type: dict[str, TypeTotal] = Field(default_factory=dict)
    net_savings: Decimal = ZERO

    def total_for(self, transaction_type: TransactionType) -> Decimal:
        entry = self.by_type.get(transaction_type.value)
        return entry.total if entry else ZERO


class CategoryTotal(BaseModel):
    category: str
    total: Decimal
    count: int

    @property
    def average(self) -> Decimal:
        return self.total / self.count if self.count else ZERO


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """First and last instant of a calendar month."""
    start = datetime(year, month, 1)
    end = datetime(year, month, monthrange(year, month)[1]) + timedelta(days=1) - timedelta(microseconds=1)
    return start, end


def _period_bounds(
    month: Optional[int],
    year: Optional[int],
) -> tuple[Optional[datetime], Optional[datetime]]:
    if year is None:
        return None, None
    if month is None:
        return datetime(year, 1, 1), datetime(year + 1, 1, 1) - timedelta(microseconds=1)
    return month_bounds(year, month)


def _group_by_category(transactions: list[Transaction]) -> list[CategoryTotal]:
    groups: dict[str, list[Decimal]] = defaultdict(list)
    for txn in transactions:
        groups[txn.category].append(txn.amount)

    totals = [
        CategoryTotal(category=category, total=sum(amounts, ZERO), count=len(amounts))
        for category, amounts in groups.items()
    ]
    # Ties broken by name so the order is stable
    return sorted(totals, key=lambda c: (-c.total, c.category))


def _percent(part: Decimal, whole: Decimal) -> float:
    if whole == 0:
        return 0.0
    return float(part / whole * 100)


class LedgerAnalytics:
    """
    Read-only aggregations over the ledger, accounts, budgets and investments.

    Usage:
        analytics = LedgerAnalytics(transactions, accounts, budgets, investments)
        summary = await analytics.transaction_summary(user_id, month=3, year=2024)
        print(summary.net_savings)
    """

    def __init__(
        self,
        transactions: TransactionStorageInterface,
        accounts: AccountStorageInterface,
        budgets: BudgetStorageInterface,
        investments: InvestmentStorageInterface,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._transactions = transactions
        self._accounts = accounts
        self._budgets = budgets
        self._investments = investments
        self._clock = clock
        self._settings = get_settings().ledger

    async def transaction_summary(
        self,
        user_id: UUID,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> TransactionSummary:
        """
        Total and count per transaction type.

        With only a year the whole year is summarized; with neither, all
        time. net_savings is income minus expense.
        """
        date_from, date_to = _period_bounds(month, year)
        transactions = await self._transactions.list_transactions(
            user_id, date_from=date_from, date_to=date_to
        )

        by_type: dict[str, TypeTotal] = {}
        for txn in transactions:
            entry = by_type.setdefault(txn.type.value, TypeTotal())
            entry.total += txn.amount
            entry.count += 1

        summary = TransactionSummary(month=month, year=year, by_type=by_type)
        summary.net_savings = (
            summary.total_for(TransactionType.INCOME) - summary.total_for(TransactionType.EXPENSE)
        )
        return summary

    async def category_breakdown(
        self,
        user_id: UUID,
        transaction_type: TransactionType = TransactionType.EXPENSE,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[CategoryTotal]:
        """Totals per category for one type, largest first."""
        date_from, date_to = _period_bounds(month, year)
        transactions = await self._transactions.list_transactions(
            user_id,
            transaction_type=transaction_type,
            date_from=date_from,
            date_to=date_to,
        )
        return _group_by_category(transactions)

    async def yearly_analytics(
        self,
        user_id: UUID,
        year: int,
        month: Optional[int] = None,
    ) -> dict:
        """
        Year overview.

        Returns a dict with:
            yearly_summary     income/expense/savings totals for the year
            monthly_breakdown  the same figures for each of the 12 months
            yearly_history     the same figures for every year with entries
            top_categories     top expense categories of the year with averages
            daily_trend        per-day income/expense for `month` (or the
                               current month when it falls in `year`)
        """
        everything = await self._transactions.list_transactions(user_id)
        this_year = [t for t in everything if t.transaction_date.year == year]

        monthly = {m: {"income": ZERO, "expense": ZERO} for m in range(1, 13)}
        history: dict[int, dict[str, Decimal]] = {}
        for txn in everything:
            if txn.type not in (TransactionType.INCOME, TransactionType.EXPENSE):
                continue
            key = txn.type.value
            bucket = history.setdefault(txn.transaction_date.year, {"income": ZERO, "expense": ZERO})
            bucket[key] += txn.amount
            if txn.transaction_date.year == year:
                monthly[txn.transaction_date.month][key] += txn.amount

        income = sum((m["income"] for m in monthly.values()), ZERO)
        expense = sum((m["expense"] for m in monthly.values()), ZERO)

        expenses = [t for t in this_year if t.type == TransactionType.EXPENSE]
        top_categories = [
            {
                "category": c.category,
                "total": c.total,
                "count": c.count,
                "avg_amount": c.average,
            }
            for c in _group_by_category(expenses)[:TOP_CATEGORY_LIMIT]
        ]

        if month is None:
            now = self._clock()
            month = now.month if now.year == year else None

        return {
            "year": year,
            "yearly_summary": {
                "income": income,
                "expense": expense,
                "savings": income - expense,
                "transaction_count": len(this_year),
            },
            "monthly_breakdown": [
                {
                    "month": m,
                    "income": figures["income"],
                    "expense": figures["expense"],
                    "savings": figures["income"] - figures["expense"],
                }
                for m, figures in monthly.items()
            ],
            "yearly_history": [
                {
                    "year": y,
                    "income": figures["income"],
                    "expense": figures["expense"],
                    "savings": figures["income"] - figures["expense"],
                }
                for y, figures in sorted(history.items())
            ],
            "top_categories": top_categories,
            "daily_trend": self._daily_trend(this_year, year, month) if month else [],
        }

    @staticmethod
    def _daily_trend(transactions: list[Transaction], year: int, month: int) -> list[dict]:
        days = monthrange(year, month)[1]
        trend = {d: {"income": ZERO, "expense": ZERO} for d in range(1, days + 1)}
        for txn in transactions:
            if txn.transaction_date.month != month:
                continue
            if txn.type in (TransactionType.INCOME, TransactionType.EXPENSE):
                trend[txn.transaction_date.day][txn.type.value] += txn.amount
        return [{"day": d, **figures} for d, figures in trend.items()]

    async def account_overview(self, user_id: UUID, include_deleted: bool = False) -> dict:
        """Accounts plus the total balance of the non-deleted ones, by type."""
        accounts = await self._accounts.list_accounts(user_id, include_deleted=include_deleted)
        live = [a for a in accounts if not a.is_deleted]

        by_type: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for account in live:
            by_type[account.account_type] += account.balance

        return {
            "accounts": accounts,
            "total_balance": sum((a.balance for a in live), ZERO),
            "account_count": len(live),
            "by_type": dict(by_type),
        }

    async def budget_alerts(self, user_id: UUID, now: Optional[datetime] = None) -> list[dict]:
        """Budgets of the current month that are near or over their limit."""
        now = now or self._clock()
        budgets = await self._budgets.list_budgets(user_id, month=now.month, year=now.year)

        alerts = []
        for budget in budgets:
            if not (budget.is_near_limit or budget.is_over_budget):
                continue
            alerts.append({
                "budget": budget,
                "spent_percent": budget.spent_percent,
                "remaining": budget.remaining,
                "status": "over_budget" if budget.is_over_budget else "near_limit",
            })

        logger.debug("budget_alerts_computed", user_id=str(user_id), alert_count=len(alerts))
        return sorted(alerts, key=lambda a: -a["spent_percent"])

    async def portfolio_analytics(self, user_id: UUID, now: Optional[datetime] = None) -> dict:
        """
        Portfolio overview of the active and partially sold positions.

        Allocation percentages are of total current value. Maturities look
        ahead maturity_window_days and only cover active positions.
        """
        now = now or self._clock()
        investments = await self._investments.list_investments(user_id)
        held = [
            i for i in investments
            if i.status in (InvestmentStatus.ACTIVE, InvestmentStatus.PARTIAL_SOLD)
        ]

        total_invested = sum((i.invested_amount for i in held), ZERO)
        total_value = sum((i.current_value for i in held), ZERO)
        total_dividends = sum((i.total_dividends_received for i in held), ZERO)
        total_returns = total_value + total_dividends - total_invested

        allocation: dict[str, dict] = {}
        for inv in held:
            entry = allocation.setdefault(
                inv.investment_type.value,
                {"invested": ZERO, "current_value": ZERO, "count": 0},
            )
            entry["invested"] += inv.invested_amount
            entry["current_value"] += inv.current_value
            entry["count"] += 1
        for entry in allocation.values():
            entry["percent"] = _percent(entry["current_value"], total_value)

        ranked = sorted(held, key=lambda i: i.profit_loss_percent, reverse=True)

        status_breakdown: dict[str, int] = defaultdict(int)
        for inv in investments:
            status_breakdown[inv.status.value] += 1

        horizon = now + timedelta(days=self._settings.maturity_window_days)
        maturing = sorted(
            (
                i for i in investments
                if i.status == InvestmentStatus.ACTIVE
                and i.maturity_date is not None
                and now <= i.maturity_date <= horizon
            ),
            key=lambda i: i.maturity_date,
        )

        return {
            "total_invested": total_invested,
            "total_current_value": total_value,
            "total_dividends": total_dividends,
            "total_returns": total_returns,
            "return_percent": _percent(total_returns, total_invested),
            "position_count": len(held),
            "allocation": allocation,
            "top_performers": [self._performance(i) for i in ranked[:PERFORMER_LIMIT]],
            "worst_performers": [
                self._performance(i) for i in list(reversed(ranked))[:PERFORMER_LIMIT]
            ],
            "status_breakdown": dict(status_breakdown),
            "upcoming_maturities": [
                {
                    "investment_id": i.id,
                    "name": i.name,
                    "maturity_date": i.maturity_date,
                    "current_value": i.current_value,
                }
                for i in maturing[:MATURITY_LIMIT]
            ],
        }

    @staticmethod
    def _performance(investment: Investment) -> dict:
        return {
            "investment_id": investment.id,
            "name": investment.name,
            "investment_type": investment.investment_type.value,
            "profit_loss": investment.profit_loss,
            "profit_loss_percent": investment.profit_loss_percent,
        }

    async def dividend_summary(self, user_id: UUID, now: Optional[datetime] = None) -> dict:
        """
        Dividend totals, dividend-paying positions and the last 12 months of
        dividend receipts bucketed by month (oldest first).
        """
        now = now or self._clock()
        investments = await self._investments.list_investments(user_id)
        paying = [i for i in investments if i.dividend_enabled]

        months = []
        year, month = now.year, now.month
        for _ in range(DIVIDEND_MONTHS):
            months.append((year, month))
            month -= 1
            if month == 0:
                year, month = year - 1, 12
        buckets = {key: ZERO for key in reversed(months)}

        for inv in paying:
            for txn in inv.transactions:
                key = (txn.date.year, txn.date.month)
                if txn.type == InvestmentTransactionType.DIVIDEND and key in buckets:
                    buckets[key] += txn.amount

        return {
            "total_dividends": sum((i.total_dividends_received for i in paying), ZERO),
            "dividend_investments": [
                {
                    "investment_id": i.id,
                    "name": i.name,
                    "investment_type": i.investment_type.value,
                    "total_dividends_received": i.total_dividends_received,
                    "last_dividend_date": i.last_dividend_date,
                    "last_dividend_amount": i.last_dividend_amount,
                    "dividend_frequency": i.dividend_frequency.value,
                    "dividend_yield": i.dividend_yield(now),
                }
                for i in paying
            ],
            "monthly_dividends": [
                {
                    "month": f"{y}-{m:02d}",
                    "label": datetime(y, m, 1).strftime("%b %Y"),
                    "amount": amount,
                }
                for (y, m), amount in buckets.items()
            ],
        }
