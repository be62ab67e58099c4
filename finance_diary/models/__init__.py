"""
Data Models Package

This package contains the pydantic models of the finance diary.
All data flowing through the engine must conform to these schemas.
"""

from finance_diary.models.transaction import (
    Fingerprint,
    Transaction,
    TransactionKind,
    normalize_description,
)
from finance_diary.models.ledger import (
    Ledger,
    LedgerEntry,
    days_in_month,
    is_leap_year,
)
from finance_diary.models.recurring import (
    FixedCount,
    MonthlyDuration,
    Period,
    RecurringRule,
    UntilCancelled,
)
from finance_diary.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Transaction models
    "Fingerprint",
    "Transaction",
    "TransactionKind",
    "normalize_description",
    # Ledger models
    "Ledger",
    "LedgerEntry",
    "days_in_month",
    "is_leap_year",
    # Recurring models
    "FixedCount",
    "MonthlyDuration",
    "Period",
    "RecurringRule",
    "UntilCancelled",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
