"""
Recurring Transaction Models

A recurring definition is a template plus a schedule cursor (next_run_date).
Each execution materializes one ledger entry and advances the cursor.

The materialized entry's note starts with "[Auto: <name>]"; that marker is
how execution history is found again in the ledger.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from finledger.models.common import utcnow
from finledger.models.transaction import NOTE_MAX_LENGTH, PaymentMode, Transaction, TransactionType


class Frequency(str, Enum):
    """How often a definition runs."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# Frequencies that step by calendar months and honor day_of_month
MONTHS_PER_STEP: dict[Frequency, int] = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}

DAYS_PER_STEP: dict[Frequency, int] = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}


def auto_note_marker(name: str) -> str:
    return f"[Auto: {name}]"


class _ScheduleFields(BaseModel):
    """Template and schedule fields shared by definitions and their payloads."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    from_account: Optional[UUID] = None
    to_account: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    payment_mode: PaymentMode = Field(default=PaymentMode.BANK_TRANSFER)
    note: Optional[str] = Field(default=None, max_length=NOTE_MAX_LENGTH)

    frequency: Frequency
    day_of_month: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        description="Preferred day for month-based frequencies (clamped to month length)"
    )
    day_of_week: Optional[int] = Field(
        default=None,
        ge=0,
        le=6,
        description="Preferred weekday for weekly schedules, 0 = Sunday"
    )
    end_date: Optional[datetime] = None
    max_executions: Optional[int] = Field(default=None, ge=1)

    notify_before: int = Field(
        default=1,
        ge=0,
        description="Days of advance notice before a run"
    )
    notify_on_execution: bool = True
    tags: list[UUID] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_note_fits_marker(self):
        # The marker and a space are prepended to every materialized note
        limit = NOTE_MAX_LENGTH - len(auto_note_marker(self.name)) - 1
        if self.note and len(self.note) > limit:
            raise ValueError(f"note must be at most {limit} characters for a definition named {self.name!r}")
        return self


class RecurringPayload(_ScheduleFields):
    """Input for creating a recurring definition."""

    start_date: Optional[datetime] = Field(
        default=None,
        description="First eligible date; defaults to now"
    )

    @model_validator(mode="after")
    def check_end_after_start(self) -> "RecurringPayload":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class RecurringTransaction(_ScheduleFields):
    """A stored recurring definition with its schedule cursor."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID

    start_date: datetime
    next_run_date: datetime
    last_run_date: Optional[datetime] = None

    is_active: bool = True
    is_paused: bool = False
    total_executions: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def note_marker(self) -> str:
        return auto_note_marker(self.name)

    def materialized_note(self) -> str:
        return f"{self.note_marker} {self.note or ''}".strip()

    @property
    def executions_remaining(self) -> Optional[int]:
        if self.max_executions is None:
            return None
        return max(0, self.max_executions - self.total_executions)


# Fields update_definition may touch
RECURRING_UPDATABLE_FIELDS = frozenset({
    "name",
    "from_account",
    "to_account",
    "amount",
    "category",
    "payment_mode",
    "note",
    "frequency",
    "day_of_month",
    "day_of_week",
    "start_date",
    "end_date",
    "max_executions",
    "notify_before",
    "notify_on_execution",
    "tags",
    "is_active",
})

# Changing any of these re-aligns the schedule cursor
SCHEDULE_FIELDS = frozenset({"frequency", "day_of_month", "day_of_week", "start_date"})


class ExecutionResult(BaseModel):
    """Outcome of one execute() call."""

    definition_id: UUID
    executed: bool
    reason: str = Field(
        ...,
        description="Why the definition ran or was skipped"
    )
    transaction: Optional[Transaction] = None
    definition: Optional[RecurringTransaction] = Field(
        default=None,
        description="The definition after advancing"
    )


class ExecutionFailure(BaseModel):
    """A due definition that raised during a scheduler tick."""

    definition_id: UUID
    user_id: UUID
    error_type: str
    message: str


class TickReport(BaseModel):
    """Summary of one scheduler tick."""

    ran_at: datetime
    due_count: int = 0
    executed: list[ExecutionResult] = Field(default_factory=list)
    skipped: list[ExecutionResult] = Field(default_factory=list)
    failures: list[ExecutionFailure] = Field(default_factory=list)

    @property
    def executed_count(self) -> int:
        return len(self.executed)

    @property
    def failure_count(self) -> int:
        return len(self.failures)


class UpcomingSchedule(BaseModel):
    """Definitions due within a look-ahead window, grouped by calendar day."""

    window_days: int
    items: list[RecurringTransaction] = Field(default_factory=list)
    by_date: dict[str, list[RecurringTransaction]] = Field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.items)
