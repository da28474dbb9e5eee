"""
Savings Goal Model

A goal earmarks money towards a target amount by a deadline. saved_amount
only grows through contributions, each of which is a ledger entry debiting
the funding account.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from finledger.models.common import ZERO, utcnow


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class GoalPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _whole_percent(part: Decimal, whole: Decimal) -> int:
    if whole <= 0:
        return 0
    return int((part / whole * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class Goal(BaseModel):
    """A savings target."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    goal_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=300)
    target_amount: Decimal = Field(..., ge=1)
    saved_amount: Decimal = Field(default=ZERO, ge=0)
    deadline: datetime
    priority: GoalPriority = GoalPriority.MEDIUM
    status: GoalStatus = GoalStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def progress(self) -> int:
        """Whole percent saved, capped at 100."""
        return min(100, _whole_percent(self.saved_amount, self.target_amount))

    @property
    def remaining(self) -> Decimal:
        return max(ZERO, self.target_amount - self.saved_amount)

    @property
    def is_reached(self) -> bool:
        return self.saved_amount >= self.target_amount

    def completed_if_reached(self, now: datetime) -> "Goal":
        """The goal marked completed when its target has been reached."""
        if self.status == GoalStatus.COMPLETED or not self.is_reached:
            return self
        return self.model_copy(update={"status": GoalStatus.COMPLETED, "completed_at": now})


class GoalPayload(BaseModel):
    """Input for creating a goal."""
    model_config = ConfigDict(str_strip_whitespace=True)

    goal_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=300)
    target_amount: Decimal = Field(..., ge=1)
    deadline: datetime
    priority: GoalPriority = GoalPriority.MEDIUM


class GoalContribution(BaseModel):
    """Outcome of add_to_goal."""

    goal: Goal
    transaction_id: UUID
    account_id: UUID
    amount: Decimal
    completed: bool = Field(
        default=False,
        description="This contribution reached the target"
    )


class GoalSummary(BaseModel):
    """Totals across a user's goals."""

    total: int = 0
    active: int = 0
    completed: int = 0
    cancelled: int = 0
    total_target: Decimal = ZERO
    total_saved: Decimal = ZERO

    @property
    def overall_progress(self) -> int:
        return _whole_percent(self.total_saved, self.total_target)


# saved_amount only moves through contributions
GOAL_UPDATABLE_FIELDS = frozenset({
    "goal_name",
    "description",
    "target_amount",
    "deadline",
    "priority",
    "status",
})
