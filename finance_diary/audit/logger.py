"""
Audit Logger

DESIGN DECISION: Every significant change to the diary is logged.
This provides:
1. Complete traceability of the transaction log
2. Debugging capability when balances look wrong
3. A visible record of blocked duplicates and integrity warnings

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a failing audit store never breaks a mutation)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_diary.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finance_diary.services.storage import AuditStorageInterface


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


def configure_logging(level: str = "INFO") -> None:
    """
    Route structured logs to stderr at the given level.

    Call once from the host application; library code only emits events.
    """
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (for persistence), when one is configured
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
        self._logger = structlog.get_logger("finance_diary.audit")

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
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
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

    async def log_transaction_added(
        self,
        transaction_id: str,
        day: str,
        kind: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
        is_user_action: bool = True,
    ) -> None:
        """Log a transaction accepted into the log."""
        await self.log(AuditEventBuilder.transaction_added(
            transaction_id=transaction_id,
            day=day,
            kind=kind,
            amount=amount,
            correlation_id=correlation_id,
            is_user_action=is_user_action,
        ))

    async def log_transaction_updated(
        self,
        transaction_id: str,
        old_date: str,
        new_date: str,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            old_date=old_date,
            new_date=new_date,
        ))

    async def log_transaction_deleted(
        self,
        transaction_id: str,
        day: str,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            day=day,
        ))

    async def log_duplicate_rejected(
        self,
        day: str,
        kind: str,
        description: str,
        duplicate_of: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a double submission that was blocked."""
        await self.log(AuditEventBuilder.duplicate_rejected(
            day=day,
            kind=kind,
            description=description,
            duplicate_of=duplicate_of,
            correlation_id=correlation_id,
        ))

    async def log_rule_event(
        self,
        event_type: AuditEventType,
        rule_id: str,
        description: str,
        details: Optional[dict] = None,
        is_user_action: bool = True,
    ) -> None:
        """Log creation, cancellation, deletion or deactivation of a rule."""
        await self.log(AuditEventBuilder.rule_changed(
            event_type=event_type,
            rule_id=rule_id,
            description=description,
            details=details,
            is_user_action=is_user_action,
        ))

    async def log_recurring_materialized(
        self,
        period: str,
        inserted: int,
        duplicates: int,
        deactivated: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_materialized(
            period=period,
            inserted=inserted,
            duplicates=duplicates,
            deactivated=deactivated,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a multi-step operation (e.g. a materialization
    run) and pass it through every event it produces.
    """
    return uuid4()
