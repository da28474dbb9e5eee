"""
Budget Model

One budget per (user, category, month, year). current_spent is only moved by
expense entries through the ledger; everything else is derived on read.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from finledger.models.common import ZERO, utcnow


class Budget(BaseModel):
    """Monthly spending limit for a category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    category: str = Field(..., min_length=1, max_length=100)
    monthly_limit: Decimal = Field(..., ge=0)
    current_spent: Decimal = Field(
        default=ZERO,
        description="Running total of matching expenses"
    )
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970)
    alert_threshold: int = Field(
        default=80,
        ge=0,
        le=100,
        description="Percent spent at which the budget counts as near its limit"
    )
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def remaining(self) -> Decimal:
        return max(ZERO, self.monthly_limit - self.current_spent)

    @property
    def spent_percent(self) -> int:
        """Whole percent of the limit spent, rounded half up."""
        if self.monthly_limit == 0:
            return 0
        percent = self.current_spent / self.monthly_limit * 100
        return int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @property
    def is_over_budget(self) -> bool:
        return self.current_spent > self.monthly_limit

    @property
    def is_near_limit(self) -> bool:
        return self.spent_percent >= self.alert_threshold

    def covers(self, category: str, when: datetime) -> bool:
        return self.category == category and self.month == when.month and self.year == when.year


class BudgetPayload(BaseModel):
    """Input for creating a budget. Month and year default to the current ones."""
    model_config = ConfigDict(str_strip_whitespace=True)

    category: str = Field(..., min_length=1, max_length=100)
    monthly_limit: Decimal = Field(..., ge=0)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = Field(default=None, ge=1970)
    alert_threshold: Optional[int] = Field(default=None, ge=0, le=100)


BUDGET_UPDATABLE_FIELDS = frozenset({"monthly_limit", "alert_threshold"})
