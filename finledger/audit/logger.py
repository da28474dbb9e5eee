"""
Audit Logger

DESIGN DECISION: Every state-changing ledger operation is logged.
This provides:
1. Complete traceability of who moved which money
2. Debugging capability when a scheduled run fails
3. A user-visible activity history

The audit logger:
- Is async to match the storage layer
- Gracefully handles failures (a broken activity trail never blocks money movement)
- Supports correlation IDs to trace related events (e.g. one scheduler tick)

Note that amendment logs (TransactionLog) are NOT written here: those are part
of the ledger's own consistency and their failures always propagate.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finledger.config import get_settings
from finledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from finledger.services.storage.interface import AuditStorageInterface


logging.basicConfig(format="%(message)s", level=get_settings().app.log_level.upper())

# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_created(
        self,
        transaction_id: UUID,
        user_id: UUID,
        transaction_type: str,
        amount: str,
        source: str = "manual",
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a new ledger entry."""
        event = AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            user_id=user_id,
            transaction_type=transaction_type,
            amount=amount,
            source=source,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_rejected(
        self,
        user_id: UUID,
        error: Exception,
        details: Optional[dict] = None,
    ) -> None:
        """Log a refused ledger entry or amendment."""
        event = AuditEventBuilder.transaction_rejected(
            user_id=user_id,
            error_type=type(error).__name__,
            error_message=str(error),
            details=details,
        )
        await self.log(event)

    async def log_transaction_amended(
        self,
        transaction_id: UUID,
        user_id: UUID,
        log_id: UUID,
        changed_fields: list[str],
        reason: str,
    ) -> None:
        """Log an amendment."""
        event = AuditEventBuilder.transaction_amended(
            transaction_id=transaction_id,
            user_id=user_id,
            log_id=log_id,
            changed_fields=changed_fields,
            reason=reason,
        )
        await self.log(event)

    async def log_recurring_changed(
        self,
        event_type: AuditEventType,
        definition_id: UUID,
        user_id: UUID,
        name: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log a recurring definition lifecycle change."""
        event = AuditEventBuilder.recurring_changed(
            event_type=event_type,
            definition_id=definition_id,
            user_id=user_id,
            name=name,
            details=details,
        )
        await self.log(event)

    async def log_recurring_executed(
        self,
        definition_id: UUID,
        user_id: UUID,
        transaction_id: UUID,
        next_run_date: datetime,
        manual: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a materialized recurring entry."""
        event = AuditEventBuilder.recurring_executed(
            definition_id=definition_id,
            user_id=user_id,
            transaction_id=transaction_id,
            next_run_date=next_run_date,
            manual=manual,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recurring_failed(
        self,
        definition_id: UUID,
        user_id: UUID,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a recurring execution that raised."""
        event = AuditEventBuilder.recurring_failed(
            definition_id=definition_id,
            user_id=user_id,
            error_type=type(error).__name__,
            error_message=str(error),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_tick_completed(
        self,
        due: int,
        executed: int,
        failed: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.scheduler_tick_completed(
            due=due,
            executed=executed,
            failed=failed,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_entity_changed(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        user_id: UUID,
        description: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an account, budget, goal or investment change."""
        event = AuditEventBuilder.entity_changed(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            description=description,
            details=details,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a batch of work (e.g., a scheduler tick).
    Pass it through all subsequent operations.
    """
    return uuid4()
