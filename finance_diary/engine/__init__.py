"""
Ledger engine: transaction log, cascade recalculation, reconciliation and
recurring materialization.
"""

from finance_diary.engine.cascade import (
    CascadeRecalculator,
    RecalculationOverflow,
    previous_balance,
    recalculate,
)
from finance_diary.engine.reconciler import Reconciler, aggregate, rebuild_ledger
from finance_diary.engine.recurring import (
    MaterializationResult,
    RecurringMaterializer,
    materialize,
    materialize_upcoming,
)
from finance_diary.engine.transaction_log import (
    InsertResult,
    RejectionReason,
    TransactionLog,
    TransactionNotFoundError,
    insert_transaction,
)

__all__ = [
    "CascadeRecalculator",
    "RecalculationOverflow",
    "previous_balance",
    "recalculate",
    "Reconciler",
    "aggregate",
    "rebuild_ledger",
    "MaterializationResult",
    "RecurringMaterializer",
    "materialize",
    "materialize_upcoming",
    "InsertResult",
    "RejectionReason",
    "TransactionLog",
    "TransactionNotFoundError",
    "insert_transaction",
]
