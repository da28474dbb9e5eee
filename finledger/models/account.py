"""
Account Models

An account holds a balance in one currency. Account types are free-form
strings: users invent their own ("travel fund", "joint"), so we only
normalize them and keep a registry of the types we recognize.

DESIGN DECISION: The balance is never edited directly. It only moves through
the ledger (see finledger.ledger.mutator), which keeps it non-negative.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from finledger.config import get_settings
from finledger.models.common import ZERO, utcnow


# Types the UI offers out of the box. Anything else is still accepted.
KNOWN_ACCOUNT_TYPES = frozenset({
    "salary",
    "expense",
    "savings",
    "investment",
    "cash",
    "bank",
    "credit",
    "wallet",
    "other",
})


def normalize_account_type(value: str) -> str:
    """Lower-case and collapse whitespace in an account type."""
    normalized = " ".join(value.split()).lower()
    if not normalized:
        raise ValueError("Account type cannot be empty")
    return normalized


def is_known_account_type(value: str) -> bool:
    return normalize_account_type(value) in KNOWN_ACCOUNT_TYPES


class AccountStatus(str, Enum):
    """Lifecycle status. Locked accounts cannot be debited by new entries."""
    ACTIVE = "active"
    LOCKED = "locked"


class Currency(BaseModel):
    """Currency descriptor attached to an account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(..., min_length=1, max_length=10)
    symbol: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    locale: str = Field(default="en-US", max_length=20)

    @model_validator(mode="before")
    @classmethod
    def fill_from_code(cls, data: Any) -> Any:
        """A bare code is enough: symbol and name fall back to it."""
        if isinstance(data, dict) and data.get("code"):
            data = dict(data)
            code = str(data["code"]).strip().upper()
            data["code"] = code
            if not data.get("symbol"):
                data["symbol"] = code
            if not data.get("name"):
                data["name"] = code
            if not data.get("locale"):
                data["locale"] = "en-US"
        return data

    @classmethod
    def default(cls) -> "Currency":
        settings = get_settings().ledger
        return cls(
            code=settings.default_currency_code,
            symbol=settings.default_currency_symbol,
            name=settings.default_currency_name,
            locale=settings.default_currency_locale,
        )


class Account(BaseModel):
    """
    A user's account.

    Soft-deleted accounts stay addressable (old ledger entries point at
    them) but are hidden from default listings and balance totals.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique account ID"
    )
    user_id: UUID = Field(
        ...,
        description="Owner of the account"
    )
    account_name: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    account_type: str = Field(
        ...,
        description="Free-form account type, normalized to lower case"
    )
    balance: Decimal = Field(
        default=ZERO,
        ge=0,
        description="Current balance (never negative)"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=200,
    )
    currency: Currency = Field(default_factory=Currency.default)
    color: str = Field(default="#6366f1")
    icon: str = Field(default="💰")
    status: AccountStatus = Field(default=AccountStatus.ACTIVE)

    # Soft delete
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("account_type")
    @classmethod
    def validate_account_type(cls, v: str) -> str:
        return normalize_account_type(v)

    @property
    def is_locked(self) -> bool:
        return self.status == AccountStatus.LOCKED


class AccountPayload(BaseModel):
    """Fields a caller supplies to open an account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_name: str = Field(..., min_length=1, max_length=100)
    account_type: str
    balance: Decimal = Field(default=ZERO, ge=0, description="Opening balance")
    description: Optional[str] = Field(default=None, max_length=200)
    currency: Optional[Currency] = None
    color: str = "#6366f1"
    icon: str = "💰"

    @field_validator("account_type")
    @classmethod
    def validate_account_type(cls, v: str) -> str:
        return normalize_account_type(v)


# Fields update_account may touch. Balance is deliberately absent.
ACCOUNT_UPDATABLE_FIELDS = frozenset({
    "account_name",
    "account_type",
    "description",
    "status",
    "color",
    "icon",
    "currency",
})
