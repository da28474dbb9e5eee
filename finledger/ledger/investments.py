"""
Investment Transaction Ledger

Each investment carries its own append-only transaction list, separate from
the main ledger. Applying a transaction updates the running position; the
list itself is what XIRR is computed from.

apply_investment_transaction and calculate_xirr are pure functions.
InvestmentService wraps them with storage, per-investment locking and audit.
"""

import math
import warnings
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence, Union
from uuid import UUID

import structlog

from finledger.audit import AuditLogger
from finledger.errors import ConvergenceNotReached, NotFoundError, ValidationError, parse_payload
from finledger.ledger.locks import KeyedLocks, investment_key
from finledger.models.audit import AuditEventType
from finledger.models.common import ValidationIssue, utcnow
from finledger.models.investment import (
    INVESTMENT_UPDATABLE_FIELDS,
    CashFlow,
    Investment,
    InvestmentPayload,
    InvestmentStatus,
    InvestmentTransaction,
    InvestmentTransactionType,
    InvestmentType,
    ValueSnapshot,
    XirrResult,
)
from finledger.services.storage.interface import (
    AccountStorageInterface,
    InvestmentStorageInterface,
)


logger = structlog.get_logger(__name__)

XIRR_INITIAL_GUESS = 0.1
XIRR_MAX_ITERATIONS = 100
XIRR_TOLERANCE = 1e-4
XIRR_MIN_RATE = -0.99
XIRR_MAX_RATE = 10.0

SECONDS_PER_YEAR = 365 * 24 * 60 * 60


def apply_investment_transaction(
    investment: Investment,
    txn: InvestmentTransaction,
) -> Investment:
    """
    Return the investment after applying txn. The input is not modified.

    buy       invested += amount, units += units, buy_price re-averaged
    sell      units -= units; sold when none left, else partial_sold
    dividend  dividend totals and last dividend updated
    split     units += units, buy_price re-averaged
    bonus     same as split
    """
    inv = investment.model_copy(deep=True)

    if txn.type == InvestmentTransactionType.BUY:
        inv.invested_amount += txn.amount
        inv.units += txn.units
        if inv.units > 0:
            inv.buy_price = inv.invested_amount / inv.units

    elif txn.type == InvestmentTransactionType.SELL:
        inv.units -= txn.units
        if inv.units <= 0:
            inv.status = InvestmentStatus.SOLD
            inv.sold_date = txn.date
            inv.sold_amount = inv.current_value + txn.amount
        else:
            inv.status = InvestmentStatus.PARTIAL_SOLD
            if inv.current_price > 0:
                inv.current_value = inv.units * inv.current_price

    elif txn.type == InvestmentTransactionType.DIVIDEND:
        inv.total_dividends_received += txn.amount
        inv.last_dividend_date = txn.date
        inv.last_dividend_amount = txn.amount
        inv.dividend_enabled = True

    elif txn.type in (InvestmentTransactionType.SPLIT, InvestmentTransactionType.BONUS):
        inv.units += txn.units
        if inv.units > 0:
            inv.buy_price = inv.invested_amount / inv.units

    inv.transactions.append(txn)
    return inv


def build_cash_flows(investment: Investment, now: datetime) -> list[CashFlow]:
    """
    Dated cash flows of an investment, oldest first.

    Buys are outflows, sells and dividends inflows; splits and bonuses move
    no money. Unless the position is sold, its current value is added as a
    final inflow at now.
    """
    flows = []
    for txn in sorted(investment.transactions, key=lambda t: t.date):
        if txn.type == InvestmentTransactionType.BUY:
            amount = -float(txn.amount)
        elif txn.type in (InvestmentTransactionType.SELL, InvestmentTransactionType.DIVIDEND):
            amount = float(txn.amount)
        else:
            continue
        if amount != 0:
            flows.append(CashFlow(date=txn.date, amount=amount))

    if investment.status != InvestmentStatus.SOLD:
        flows.append(CashFlow(date=now, amount=float(investment.current_value)))
    return flows


def calculate_xirr(
    cash_flows: Sequence[float],
    dates: Sequence[datetime],
) -> tuple[float, bool, int]:
    """
    Solve sum(cf / (1 + r) ** t) = 0 for r with Newton-Raphson.

    t is measured in 365-day years from the first date. Each step is clamped
    to [-0.99, 10] to keep the iteration from diverging.

    Returns: (rate as a fraction, converged, iterations used)

    Emits ConvergenceNotReached and returns the last guess when the
    tolerance is not met.
    """
    if len(cash_flows) < 2:
        return 0.0, True, 0

    first = dates[0]
    years = [(d - first).total_seconds() / SECONDS_PER_YEAR for d in dates]

    guess = XIRR_INITIAL_GUESS
    for iteration in range(1, XIRR_MAX_ITERATIONS + 1):
        npv = 0.0
        dnpv = 0.0
        try:
            for cf, t in zip(cash_flows, years):
                pv = cf / math.pow(1 + guess, t)
                npv += pv
                dnpv -= t * pv / (1 + guess)
        except (OverflowError, ZeroDivisionError):
            dnpv = 0.0

        if dnpv == 0:
            warnings.warn(
                f"XIRR iteration stalled at rate {guess:.4f}",
                ConvergenceNotReached,
                stacklevel=2,
            )
            return guess, False, iteration

        new_guess = guess - npv / dnpv
        if abs(new_guess - guess) < XIRR_TOLERANCE:
            return new_guess, True, iteration

        guess = min(max(new_guess, XIRR_MIN_RATE), XIRR_MAX_RATE)

    warnings.warn(
        f"XIRR did not converge in {XIRR_MAX_ITERATIONS} iterations (last rate {guess:.4f})",
        ConvergenceNotReached,
        stacklevel=2,
    )
    return guess, False, XIRR_MAX_ITERATIONS


class InvestmentService:
    """
    Stores investments and records their transactions.
    """

    def __init__(
        self,
        investments: InvestmentStorageInterface,
        accounts: AccountStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._investments = investments
        self._accounts = accounts
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or KeyedLocks()
        self._clock = clock

    async def create_investment(
        self,
        user_id: UUID,
        payload: Union[InvestmentPayload, dict],
    ) -> Investment:
        """
        Open a position with its initial buy and first value snapshot.

        Current value defaults to the invested amount and the current price
        is derived from units when not given.
        """
        payload = parse_payload(InvestmentPayload, payload, "investment")
        account = await self._accounts.get_account(payload.account_id)
        if account is None or account.user_id != user_id:
            raise NotFoundError("Account", payload.account_id)

        now = self._clock()
        purchase_date = payload.purchase_date or now
        current_value = payload.current_value or payload.invested_amount
        current_price = payload.current_price
        if not current_price and payload.units > 0 and current_value:
            current_price = current_value / payload.units

        investment = Investment(
            user_id=user_id,
            account_id=payload.account_id,
            name=payload.name,
            symbol=payload.symbol.upper() if payload.symbol else None,
            investment_type=payload.investment_type,
            invested_amount=payload.invested_amount,
            current_value=current_value,
            units=payload.units,
            buy_price=payload.buy_price,
            current_price=current_price,
            purchase_date=purchase_date,
            maturity_date=payload.maturity_date,
            interest_rate=payload.interest_rate,
            dividend_frequency=payload.dividend_frequency,
            notes=payload.notes,
            transactions=[InvestmentTransaction(
                type=InvestmentTransactionType.BUY,
                date=purchase_date,
                units=payload.units,
                price_per_unit=payload.buy_price,
                amount=payload.invested_amount,
                notes="Initial purchase",
            )],
            value_history=[ValueSnapshot(date=purchase_date, value=current_value, units=payload.units)],
            last_updated=now,
            created_at=now,
        )
        await self._investments.save_investment(investment)

        logger.info(
            "investment_created",
            investment_id=str(investment.id),
            type=investment.investment_type.value,
        )
        await self._audit.log_entity_changed(
            AuditEventType.INVESTMENT_CREATED,
            "investment",
            investment.id,
            user_id,
            f"Investment opened: {investment.name}",
            details={"invested_amount": str(investment.invested_amount)},
        )
        return investment

    async def get_investment(self, user_id: UUID, investment_id: UUID) -> Investment:
        investment = await self._investments.get_investment(investment_id)
        if investment is None or investment.user_id != user_id:
            raise NotFoundError("Investment", investment_id)
        return investment

    async def list_investments(
        self,
        user_id: UUID,
        status: Optional[InvestmentStatus] = None,
        investment_type: Optional[InvestmentType] = None,
    ) -> list[Investment]:
        return await self._investments.list_investments(
            user_id, status=status, investment_type=investment_type
        )

    async def add_transaction(
        self,
        user_id: UUID,
        investment_id: UUID,
        txn: Union[InvestmentTransaction, dict],
    ) -> Investment:
        """Apply and append a buy/sell/dividend/split/bonus."""
        txn = parse_payload(InvestmentTransaction, txn, "investment transaction")

        async with self._locks.hold(investment_key(investment_id)):
            investment = await self.get_investment(user_id, investment_id)
            updated = apply_investment_transaction(investment, txn)
            updated.last_updated = self._clock()
            await self._investments.save_investment(updated)

        logger.info(
            "investment_transaction_recorded",
            investment_id=str(investment_id),
            type=txn.type.value,
            amount=str(txn.amount),
            status=updated.status.value,
        )
        await self._audit.log_entity_changed(
            AuditEventType.INVESTMENT_TRANSACTION_RECORDED,
            "investment",
            investment_id,
            user_id,
            f"{txn.type.value.capitalize()} recorded for {updated.name}",
            details={"type": txn.type.value, "amount": str(txn.amount), "units": str(txn.units)},
        )
        return updated

    async def update_value(
        self,
        user_id: UUID,
        investment_id: UUID,
        current_value: Decimal,
        current_price: Optional[Decimal] = None,
    ) -> Investment:
        """Record a new market value and add it to the value history."""
        current_value = Decimal(str(current_value))
        if current_value < 0:
            raise ValidationError("Current value cannot be negative")

        async with self._locks.hold(investment_key(investment_id)):
            investment = await self.get_investment(user_id, investment_id)
            now = self._clock()

            investment.value_history.append(
                ValueSnapshot(date=now, value=current_value, units=investment.units)
            )
            investment.current_value = current_value
            if current_price:
                investment.current_price = Decimal(str(current_price))
            elif investment.units > 0:
                investment.current_price = current_value / investment.units
            investment.last_updated = now
            await self._investments.save_investment(investment)

        await self._audit.log_entity_changed(
            AuditEventType.INVESTMENT_VALUE_UPDATED,
            "investment",
            investment_id,
            user_id,
            f"Value of {investment.name} updated",
            details={"current_value": str(current_value)},
        )
        return investment

    async def update_investment(
        self,
        user_id: UUID,
        investment_id: UUID,
        changes: dict[str, Any],
    ) -> Investment:
        """
        Edit an investment's descriptive fields.

        Raises:
            ValidationError: A field outside INVESTMENT_UPDATABLE_FIELDS, or
                             an invalid value
        """
        forbidden = sorted(set(changes) - INVESTMENT_UPDATABLE_FIELDS)
        if forbidden:
            issues = [
                ValidationIssue(
                    field=f,
                    issue_type="not_allowed",
                    message=f"{f} cannot be changed directly",
                    suggested_fix="Record a transaction or a new value instead",
                )
                for f in forbidden
            ]
            raise ValidationError("; ".join(i.message for i in issues), issues)

        async with self._locks.hold(investment_key(investment_id)):
            current = await self.get_investment(user_id, investment_id)
            data = current.model_dump()
            data.update(changes)
            data["last_updated"] = self._clock()
            updated = parse_payload(Investment, data, "investment")
            if updated.symbol:
                updated.symbol = updated.symbol.upper()
            await self._investments.save_investment(updated)

        await self._audit.log_entity_changed(
            AuditEventType.INVESTMENT_UPDATED,
            "investment",
            investment_id,
            user_id,
            f"Investment updated: {updated.name}",
            details={"changed_fields": sorted(changes)},
        )
        return updated

    async def delete_investment(self, user_id: UUID, investment_id: UUID) -> None:
        """Remove an investment with its embedded history."""
        async with self._locks.hold(investment_key(investment_id)):
            investment = await self.get_investment(user_id, investment_id)
            await self._investments.delete_investment(investment_id)

        logger.info("investment_deleted", investment_id=str(investment_id))
        await self._audit.log_entity_changed(
            AuditEventType.INVESTMENT_DELETED,
            "investment",
            investment_id,
            user_id,
            f"Investment deleted: {investment.name}",
            details={"invested_amount": str(investment.invested_amount)},
        )

    async def compute_xirr(self, user_id: UUID, investment_id: UUID) -> XirrResult:
        """Annualized return of an investment, in percent."""
        investment = await self.get_investment(user_id, investment_id)
        now = self._clock()
        flows = build_cash_flows(investment, now)

        rate, converged, iterations = calculate_xirr(
            [f.amount for f in flows],
            [f.date for f in flows],
        )
        if not converged:
            logger.warning(
                "xirr_not_converged",
                investment_id=str(investment_id),
                last_rate=rate,
            )

        return XirrResult(
            investment_id=investment_id,
            xirr=rate * 100,
            converged=converged,
            iterations=iterations,
            cash_flows=flows,
            cagr=investment.cagr(now),
            absolute_return=investment.absolute_return,
        )
