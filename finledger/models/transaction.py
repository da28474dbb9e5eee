"""
Transaction Models

A transaction is one entry in the append-only ledger. Its type decides which
account references it needs:

    income      credits to_account
    expense     debits from_account (and counts against the category budget)
    transfer    debits from_account, credits to_account (optionally converted)
    investment  debits from_account

DESIGN DECISION: Entries are never deleted. The only way to change one is an
amendment, which records a TransactionLog with the before and after snapshots
and a mandatory reason.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from finledger.models.common import to_money, utcnow


class TransactionType(str, Enum):
    """Kind of ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    INVESTMENT = "investment"


class PaymentMode(str, Enum):
    """How the money moved."""
    CASH = "cash"
    UPI = "upi"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


# Account references each type requires, and which it must not carry.
REQUIRED_ACCOUNTS: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.INCOME: ("to_account",),
    TransactionType.EXPENSE: ("from_account",),
    TransactionType.TRANSFER: ("from_account", "to_account"),
    TransactionType.INVESTMENT: ("from_account",),
}

FORBIDDEN_ACCOUNTS: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.INCOME: ("from_account",),
    TransactionType.EXPENSE: ("to_account",),
    TransactionType.TRANSFER: (),
    TransactionType.INVESTMENT: ("to_account",),
}

NOTE_MAX_LENGTH = 500

# Fields an amendment may change
AMENDABLE_FIELDS = frozenset({
    "amount",
    "category",
    "payment_mode",
    "note",
    "transaction_date",
    "tags",
})

# Fields that identify an entry and can never be amended
IDENTITY_FIELDS = frozenset({
    "id",
    "user_id",
    "type",
    "from_account",
    "to_account",
    "created_at",
})


class TransactionPayload(BaseModel):
    """
    Input for recording a new transaction.

    The account references are checked against the type by the validator,
    not here, so a payload can be built before the accounts are resolved.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    from_account: Optional[UUID] = None
    to_account: Optional[UUID] = None
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Amount in the source account's currency"
    )
    category: str = Field(..., min_length=1, max_length=100)
    payment_mode: PaymentMode = Field(default=PaymentMode.CASH)
    note: Optional[str] = Field(default=None, max_length=NOTE_MAX_LENGTH)

    # Cross-currency transfers
    conversion_rate: Optional[Decimal] = Field(default=None, gt=0)
    converted_amount: Optional[Decimal] = Field(default=None, gt=0)
    from_currency: Optional[str] = Field(default=None, max_length=10)
    to_currency: Optional[str] = Field(default=None, max_length=10)

    transaction_date: Optional[datetime] = Field(
        default=None,
        description="When the money moved; defaults to now"
    )
    tags: list[UUID] = Field(default_factory=list)

    @property
    def has_conversion(self) -> bool:
        return self.conversion_rate is not None or self.converted_amount is not None

    def credited_amount(self) -> Decimal:
        """Amount landing in to_account."""
        if self.converted_amount is not None:
            return self.converted_amount
        if self.conversion_rate is not None:
            return to_money(self.amount * self.conversion_rate)
        return self.amount


class Transaction(BaseModel):
    """A recorded ledger entry."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    type: TransactionType
    from_account: Optional[UUID] = None
    to_account: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    payment_mode: PaymentMode = Field(default=PaymentMode.CASH)
    note: Optional[str] = Field(default=None, max_length=NOTE_MAX_LENGTH)

    conversion_rate: Optional[Decimal] = Field(default=None, gt=0)
    converted_amount: Optional[Decimal] = Field(default=None, gt=0)
    from_currency: Optional[str] = None
    to_currency: Optional[str] = None

    transaction_date: datetime = Field(default_factory=utcnow)
    tags: list[UUID] = Field(default_factory=list)
    was_edited: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    def credited_amount(self) -> Decimal:
        """Amount that was credited to to_account."""
        return self.converted_amount if self.converted_amount is not None else self.amount

    def converted_for(self, amount: Decimal) -> Optional[Decimal]:
        """
        Converted amount for a new source amount, at this entry's rate.

        When only converted_amount was recorded the implied rate is used.
        """
        if self.converted_amount is None:
            return None
        if self.conversion_rate is not None:
            return to_money(amount * self.conversion_rate)
        return to_money(amount * self.converted_amount / self.amount)

    def touches_account(self, account_id: UUID) -> bool:
        return account_id in (self.from_account, self.to_account)

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy of every field, used for amendment logs."""
        return self.model_dump(mode="json")


class TransactionLog(BaseModel):
    """Audit record of one amendment to a ledger entry."""

    id: UUID = Field(default_factory=uuid4)
    transaction_id: UUID
    user_id: UUID
    old_data: dict[str, Any] = Field(
        ...,
        description="Full snapshot before the amendment"
    )
    new_data: dict[str, Any] = Field(
        ...,
        description="Full snapshot after the amendment"
    )
    reason: str = Field(..., min_length=1, max_length=300)
    modified_at: datetime = Field(default_factory=utcnow)

    def changed_fields(self) -> list[str]:
        """Names of the fields whose value differs between the snapshots."""
        return sorted(
            key for key in set(self.old_data) | set(self.new_data)
            if key != "was_edited" and self.old_data.get(key) != self.new_data.get(key)
        )


class TransactionDetail(BaseModel):
    """A ledger entry together with its amendment history (newest first)."""

    transaction: Transaction
    history: list[TransactionLog] = Field(default_factory=list)

    @property
    def was_edited(self) -> bool:
        return self.transaction.was_edited
