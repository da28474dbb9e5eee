"""
Audit Models for finledger

Every state-changing ledger operation emits an audit event. This is the
activity trail (who did what, and what went wrong); the per-entry amendment
history lives in TransactionLog.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finledger.models.common import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Grouped by the entity the event is about.
    """
    # Ledger entries
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_REJECTED = "transaction_rejected"
    TRANSACTION_AMENDED = "transaction_amended"

    # Recurring definitions
    RECURRING_CREATED = "recurring_created"
    RECURRING_UPDATED = "recurring_updated"
    RECURRING_DELETED = "recurring_deleted"
    RECURRING_PAUSED = "recurring_paused"
    RECURRING_RESUMED = "recurring_resumed"
    RECURRING_EXECUTED = "recurring_executed"
    RECURRING_FAILED = "recurring_failed"
    SCHEDULER_TICK_COMPLETED = "scheduler_tick_completed"

    # Accounts and budgets
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    ACCOUNT_RESTORED = "account_restored"
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"

    # Savings goals
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_CONTRIBUTION = "goal_contribution"
    GOAL_COMPLETED = "goal_completed"
    GOAL_DELETED = "goal_deleted"

    # Investments
    INVESTMENT_CREATED = "investment_created"
    INVESTMENT_TRANSACTION_RECORDED = "investment_transaction_recorded"
    INVESTMENT_VALUE_UPDATED = "investment_value_updated"
    INVESTMENT_UPDATED = "investment_updated"
    INVESTMENT_DELETED = "investment_deleted"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about, and whose is it?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'recurring')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    user_id: Optional[UUID] = Field(
        default=None,
        description="Owner of the entity"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., everything in one scheduler tick)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "user_id": str(self.user_id) if self.user_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         user_id, correlation_id, description, details_json, error_code,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.user_id) if self.user_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(txn_id, user_id, "expense", "250.00")
        event = AuditEventBuilder.recurring_failed(def_id, user_id, "InsufficientFundsError", msg)
    """

    @staticmethod
    def transaction_created(
        transaction_id: UUID,
        user_id: UUID,
        transaction_type: str,
        amount: str,
        source: str = "manual",
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Recorded {transaction_type} of {amount}",
            details={
                "type": transaction_type,
                "amount": amount,
                "source": source,
            },
            is_user_action=source == "manual",
        )

    @staticmethod
    def transaction_rejected(
        user_id: UUID,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction rejected: {error_type}",
            details=details or {},
            error_code=error_type,
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def transaction_amended(
        transaction_id: UUID,
        user_id: UUID,
        log_id: UUID,
        changed_fields: list[str],
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_AMENDED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction amended: {', '.join(changed_fields) or 'no field changes'}",
            details={
                "log_id": str(log_id),
                "changed_fields": changed_fields,
                "reason": reason,
            },
            is_user_action=True,
        )

    @staticmethod
    def recurring_changed(
        event_type: AuditEventType,
        definition_id: UUID,
        user_id: UUID,
        name: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        action = event_type.value.replace("recurring_", "")
        return AuditEvent(
            event_type=event_type,
            entity_type="recurring",
            entity_id=definition_id,
            user_id=user_id,
            description=f"Recurring transaction '{name}' {action}",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def recurring_executed(
        definition_id: UUID,
        user_id: UUID,
        transaction_id: UUID,
        next_run_date: datetime,
        manual: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_EXECUTED,
            entity_type="recurring",
            entity_id=definition_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Recurring transaction executed" + (" manually" if manual else ""),
            details={
                "transaction_id": str(transaction_id),
                "next_run_date": next_run_date.isoformat(),
                "manual": manual,
            },
            is_user_action=manual,
        )

    @staticmethod
    def recurring_failed(
        definition_id: UUID,
        user_id: UUID,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="recurring",
            entity_id=definition_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Recurring transaction failed: {error_type}",
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def scheduler_tick_completed(
        due: int,
        executed: int,
        failed: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULER_TICK_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="scheduler",
            correlation_id=correlation_id,
            description=f"Scheduler tick: {executed} of {due} due definitions executed",
            details={
                "due": due,
                "executed": executed,
                "failed": failed,
            },
        )

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        user_id: UUID,
        description: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        """Account, budget and investment lifecycle events."""
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            description=description,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
