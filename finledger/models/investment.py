"""
Investment Models

An investment keeps its running position (units, invested amount, value)
together with the full list of its own transactions. The transaction list is
what XIRR is computed from, so entries are only ever appended.

Performance figures (profit/loss, CAGR, dividend yield) are derived on read.
Those that depend on how long the position has been held take an optional
``now`` so they can be evaluated at a fixed point in time.
"""

import math
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from finledger.models.common import ZERO, utcnow


class InvestmentType(str, Enum):
    STOCKS = "stocks"
    MUTUAL_FUNDS = "mutual_funds"
    BONDS = "bonds"
    ETF = "etf"
    CRYPTO = "crypto"
    REAL_ESTATE = "real_estate"
    GOLD = "gold"
    FIXED_DEPOSIT = "fixed_deposit"
    SIP = "sip"
    PPF = "ppf"
    NPS = "nps"
    OTHER = "other"


class InvestmentStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"
    MATURED = "matured"
    PARTIAL_SOLD = "partial_sold"


class DividendFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi-annually"
    ANNUALLY = "annually"
    IRREGULAR = "irregular"


class InvestmentTransactionType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"
    SPLIT = "split"
    BONUS = "bonus"


class InvestmentTransaction(BaseModel):
    """A buy, sell, dividend, split or bonus against one investment."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    type: InvestmentTransactionType
    date: datetime = Field(default_factory=utcnow)
    units: Decimal = Field(default=ZERO, ge=0)
    price_per_unit: Decimal = Field(default=ZERO, ge=0)
    amount: Decimal = Field(..., ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)


class ValueSnapshot(BaseModel):
    """Point in the investment's value history."""

    date: datetime = Field(default_factory=utcnow)
    value: Decimal
    units: Decimal = ZERO


class Investment(BaseModel):
    """A holding and its transaction history."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    account_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    symbol: Optional[str] = Field(default=None, max_length=20)
    investment_type: InvestmentType = InvestmentType.STOCKS

    invested_amount: Decimal = Field(default=ZERO, ge=0)
    current_value: Decimal = Field(default=ZERO, ge=0)
    units: Decimal = ZERO
    buy_price: Decimal = ZERO
    current_price: Decimal = ZERO

    purchase_date: datetime = Field(default_factory=utcnow)
    maturity_date: Optional[datetime] = None
    interest_rate: Decimal = Field(default=ZERO, ge=0)

    dividend_enabled: bool = False
    dividend_frequency: DividendFrequency = DividendFrequency.QUARTERLY
    total_dividends_received: Decimal = ZERO
    last_dividend_date: Optional[datetime] = None
    last_dividend_amount: Decimal = ZERO

    transactions: list[InvestmentTransaction] = Field(default_factory=list)
    value_history: list[ValueSnapshot] = Field(default_factory=list)

    notes: Optional[str] = Field(default=None, max_length=500)
    status: InvestmentStatus = InvestmentStatus.ACTIVE
    sold_date: Optional[datetime] = None
    sold_amount: Decimal = ZERO

    last_updated: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def realized_value(self) -> Decimal:
        """Sale proceeds once sold, otherwise the current value."""
        return self.sold_amount if self.status == InvestmentStatus.SOLD else self.current_value

    @property
    def profit_loss(self) -> Decimal:
        return self.realized_value + self.total_dividends_received - self.invested_amount

    @property
    def profit_loss_percent(self) -> float:
        if self.invested_amount == 0:
            return 0.0
        return float(self.profit_loss / self.invested_amount * 100)

    @property
    def absolute_return(self) -> float:
        return self.profit_loss_percent

    def days_held(self, now: Optional[datetime] = None) -> int:
        end = self.sold_date or now or utcnow()
        return math.floor((end - self.purchase_date).total_seconds() / 86400)

    def cagr(self, now: Optional[datetime] = None) -> float:
        """Compound annual growth rate in percent; 0 for very short holdings."""
        days = self.days_held(now)
        if self.invested_amount == 0 or days < 1:
            return 0.0
        years = days / 365
        if years < 0.1:
            return 0.0

        end_value = float(self.realized_value + self.total_dividends_received)
        try:
            rate = (math.pow(end_value / float(self.invested_amount), 1 / years) - 1) * 100
        except (ValueError, OverflowError):
            return 0.0
        return rate if math.isfinite(rate) else 0.0

    def dividend_yield(self, now: Optional[datetime] = None) -> float:
        """Average annual dividends as a percent of current value."""
        if self.current_value == 0 or self.total_dividends_received == 0:
            return 0.0
        years = max(self.days_held(now) / 365, 1)
        annual = float(self.total_dividends_received) / years
        return annual / float(self.current_value) * 100


class InvestmentPayload(BaseModel):
    """Input for opening an investment position."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    symbol: Optional[str] = Field(default=None, max_length=20)
    investment_type: InvestmentType = InvestmentType.STOCKS
    invested_amount: Decimal = Field(..., ge=0)
    current_value: Optional[Decimal] = Field(default=None, ge=0)
    units: Decimal = Field(default=ZERO, ge=0)
    buy_price: Decimal = Field(default=ZERO, ge=0)
    current_price: Decimal = Field(default=ZERO, ge=0)
    purchase_date: Optional[datetime] = None
    maturity_date: Optional[datetime] = None
    interest_rate: Decimal = Field(default=ZERO, ge=0)
    dividend_frequency: DividendFrequency = DividendFrequency.QUARTERLY
    notes: Optional[str] = Field(default=None, max_length=500)


# Descriptive fields update_investment may touch; amounts move through
# add_transaction and update_value
INVESTMENT_UPDATABLE_FIELDS = frozenset({
    "name",
    "symbol",
    "investment_type",
    "maturity_date",
    "interest_rate",
    "dividend_enabled",
    "dividend_frequency",
    "notes",
})


class CashFlow(BaseModel):
    """One dated flow in an XIRR series. Outflows are negative."""

    date: datetime
    amount: float


class XirrResult(BaseModel):
    """Annualized return of an investment's cash flows."""

    investment_id: UUID
    xirr: float = Field(
        ...,
        description="Annualized internal rate of return, in percent"
    )
    converged: bool
    iterations: int
    cash_flows: list[CashFlow] = Field(default_factory=list)
    cagr: float = 0.0
    absolute_return: float = 0.0
