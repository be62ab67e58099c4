"""
Audit Models for Finance Diary

Every significant action on the diary is logged for audit purposes.
This provides:
1. Traceability of every change to the transaction log
2. Debugging information when balances look wrong
3. A record of anomalies (rejected duplicates, integrity warnings)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from finance_diary.models.transaction import utc_now

DESCRIPTION_MAX_LENGTH = 500


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the mutation pipeline has its own event type.
    """
    # Transaction log
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    DUPLICATE_REJECTED = "duplicate_rejected"

    # Recurring rules
    RULE_CREATED = "rule_created"
    RULE_CANCELLED = "rule_cancelled"
    RULE_DELETED = "rule_deleted"
    RULE_DEACTIVATED = "rule_deactivated"
    RECURRING_MATERIALIZED = "recurring_materialized"

    # Ledger
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    RECALCULATION_OVERFLOW = "recalculation_overflow"

    # Diagnostics
    INTEGRITY_CHECK_COMPLETED = "integrity_check_completed"

    # Persistence
    STATE_LOADED = "state_loaded"
    STATE_LOAD_FAILED = "state_load_failed"
    STATE_CLEARED = "state_cleared"
    SAVE_FAILED = "save_failed"

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
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
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

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'rule', 'ledger')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one materialization run)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=DESCRIPTION_MAX_LENGTH,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    @field_validator("description", mode="before")
    @classmethod
    def clip_description(cls, v: Any) -> Any:
        """Descriptions quote user text; keep them within the column width."""
        if isinstance(v, str) and len(v) > DESCRIPTION_MAX_LENGTH:
            return v[:DESCRIPTION_MAX_LENGTH - 3] + "..."
        return v

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging and storage.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(transaction_id, "2025-01-05", "entrada", "100.00")
        event = AuditEventBuilder.duplicate_rejected("2025-01-05", "entrada", "Salary")
    """

    @staticmethod
    def transaction_added(
        transaction_id: str,
        day: str,
        kind: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
        is_user_action: bool = True,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction added: {kind} {amount} on {day}",
            details={
                "date": day,
                "type": kind,
                "amount": amount,
            },
            is_user_action=is_user_action,
        )

    @staticmethod
    def transaction_updated(
        transaction_id: str,
        old_date: str,
        new_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction updated ({old_date} -> {new_date})",
            details={
                "old_date": old_date,
                "new_date": new_date,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        day: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction deleted from {day}",
            details={"date": day},
            is_user_action=True,
        )

    @staticmethod
    def duplicate_rejected(
        day: str,
        kind: str,
        description: str,
        duplicate_of: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=duplicate_of,
            correlation_id=correlation_id,
            description=f"Duplicate blocked: {description!r} on {day}",
            details={
                "date": day,
                "type": kind,
                "description": description,
            },
        )

    @staticmethod
    def rule_changed(
        event_type: AuditEventType,
        rule_id: str,
        description: str,
        details: Optional[dict] = None,
        is_user_action: bool = True,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="rule",
            entity_id=rule_id,
            description=description,
            details=details or {},
            is_user_action=is_user_action,
        )

    @staticmethod
    def recurring_materialized(
        period: str,
        inserted: int,
        duplicates: int,
        deactivated: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_MATERIALIZED,
            entity_type="period",
            entity_id=period,
            correlation_id=correlation_id,
            description=f"Recurring rules for {period}: {inserted} added, {duplicates} duplicates blocked",
            details={
                "inserted": inserted,
                "duplicates": duplicates,
                "deactivated_rules": deactivated,
            },
        )

    @staticmethod
    def reconciliation_completed(
        dirty_from: Optional[str],
        entries: int,
        requests: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            severity=AuditSeverity.DEBUG,
            entity_type="ledger",
            description=f"Ledger reconciled from {dirty_from or 'no change'}",
            details={
                "dirty_from": dirty_from,
                "entries": entries,
                "coalesced_requests": requests,
            },
        )

    @staticmethod
    def recalculation_overflow(
        last_year: int,
        carry: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECALCULATION_OVERFLOW,
            severity=AuditSeverity.WARNING,
            entity_type="ledger",
            description=f"Balance still carrying {carry} after {last_year}; propagation stopped",
            details={
                "last_year": last_year,
                "carry": carry,
            },
        )

    @staticmethod
    def integrity_check_completed(
        is_valid: bool,
        error_count: int,
        warning_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTEGRITY_CHECK_COMPLETED,
            severity=AuditSeverity.INFO if is_valid else AuditSeverity.WARNING,
            entity_type="log",
            description=f"Integrity check: {error_count} errors, {warning_count} warnings",
            details={
                "is_valid": is_valid,
                "error_count": error_count,
                "warning_count": warning_count,
            },
        )

    @staticmethod
    def state_loaded(
        transactions: int,
        rules: int,
        skipped_records: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATE_LOADED,
            entity_type="storage",
            description=f"Loaded {transactions} transactions and {rules} recurring rules",
            details={
                "transactions": transactions,
                "rules": rules,
                "skipped_records": skipped_records,
            },
            is_user_action=False,
        )

    @staticmethod
    def state_cleared() -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATE_CLEARED,
            severity=AuditSeverity.WARNING,
            entity_type="storage",
            description="All diary data cleared",
            is_user_action=True,
        )

    @staticmethod
    def state_load_failed(
        key: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATE_LOAD_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="storage",
            entity_id=key,
            description=f"Stored state for {key!r} unreadable; starting empty",
            error_message=error_message,
        )

    @staticmethod
    def save_failed(
        key: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="storage",
            entity_id=key,
            description=f"Could not persist {key!r}",
            error_message=error_message,
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
