"""Integrity checks over the transaction log and ledger."""

from finance_diary.validation.integrity import (
    IntegrityChecker,
    IntegrityIssue,
    IntegrityReport,
    IntegrityStatistics,
)

__all__ = [
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityReport",
    "IntegrityStatistics",
]
