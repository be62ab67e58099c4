"""
Transaction Log

The ordered collection of transactions. This is the only source of truth:
the ledger is derived from it.

DESIGN DECISION: Double submissions are blocked at insert time.
A candidate whose fingerprint (date, kind, normalized description, amount)
matches an existing transaction is rejected, not raised. A duplicate is an
expected outcome of a double click, not an error.

The log keeps two indexes next to the ordered list:
- id -> position, for update/delete
- fingerprint -> ids, for duplicate detection
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

import structlog

from finance_diary.models.transaction import Fingerprint, Transaction

logger = structlog.get_logger(__name__)


class RejectionReason(str, Enum):
    """Why a candidate was not inserted."""
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class InsertResult:
    """
    Outcome of an insert.

    accepted=False is a normal outcome; `duplicate_of` names the existing
    transaction the candidate collided with.
    """
    accepted: bool
    transaction: Transaction
    reason: Optional[RejectionReason] = None
    duplicate_of: Optional[str] = None


class TransactionLog:
    """
    Ordered, indexed list of Transactions.
    """

    def __init__(self) -> None:
        self._transactions: list[Transaction] = []
        self._by_id: dict[str, Transaction] = {}
        self._by_fingerprint: dict[Fingerprint, list[str]] = defaultdict(list)

    @classmethod
    def from_transactions(cls, transactions: Iterable[Transaction]) -> "TransactionLog":
        """
        Build a log from stored transactions.

        Stored data is taken as-is: content duplicates already on disk are kept
        (the integrity checker reports them), only repeated ids are dropped.
        """
        log = cls()
        for transaction in transactions:
            if transaction.id in log._by_id:
                logger.warning("transaction_id_repeated", transaction_id=transaction.id)
                continue
            log._append(transaction)
        return log

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[Transaction]:
        return iter(self._transactions)

    def __len__(self) -> int:
        return len(self._transactions)

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._by_id

    def get(self, transaction_id: str) -> Optional[Transaction]:
        return self._by_id.get(transaction_id)

    def by_date(self, day: date) -> list[Transaction]:
        return [t for t in self._transactions if t.date == day]

    def find_duplicate(self, candidate: Transaction) -> Optional[Transaction]:
        """Existing transaction with the same fingerprint, if any."""
        for transaction_id in self._by_fingerprint.get(candidate.fingerprint, ()):
            if transaction_id != candidate.id:
                return self._by_id[transaction_id]
        return None

    def dates(self) -> set[date]:
        return {t.date for t in self._transactions}

    def copy(self) -> "TransactionLog":
        # Transactions are frozen, so sharing them is safe
        return TransactionLog.from_transactions(self._transactions)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _append(self, transaction: Transaction) -> None:
        self._transactions.append(transaction)
        self._by_id[transaction.id] = transaction
        self._by_fingerprint[transaction.fingerprint].append(transaction.id)

    def _unindex(self, transaction: Transaction) -> None:
        ids = self._by_fingerprint.get(transaction.fingerprint)
        if ids is not None:
            ids.remove(transaction.id)
            if not ids:
                del self._by_fingerprint[transaction.fingerprint]

    def insert(self, candidate: Transaction) -> InsertResult:
        """
        Append a transaction unless it duplicates an existing one.

        Returns:
            InsertResult with accepted=False and reason DUPLICATE when a
            transaction with the same fingerprint is already logged
        """
        existing = self.find_duplicate(candidate)
        if existing is not None:
            logger.info(
                "duplicate_rejected",
                date=candidate.date.isoformat(),
                kind=candidate.kind.value,
                duplicate_of=existing.id,
            )
            return InsertResult(
                accepted=False,
                transaction=candidate,
                reason=RejectionReason.DUPLICATE,
                duplicate_of=existing.id,
            )
        if candidate.id in self._by_id:
            raise ValueError(f"Transaction id already logged: {candidate.id}")

        self._append(candidate)
        logger.debug(
            "transaction_inserted",
            transaction_id=candidate.id,
            date=candidate.date.isoformat(),
            kind=candidate.kind.value,
        )
        return InsertResult(accepted=True, transaction=candidate)

    def update(self, transaction_id: str, **changes: Any) -> tuple[Transaction, Transaction]:
        """
        Replace a transaction's value, keeping its id.

        Returns:
            (old, new) so callers can mark both dates dirty

        Raises:
            TransactionNotFoundError: If the id is not logged
            ValueError: If the new value fails validation
        """
        old = self._by_id.get(transaction_id)
        if old is None:
            raise TransactionNotFoundError(transaction_id)

        new = old.replace(**changes)
        self._unindex(old)
        position = self._transactions.index(old)
        self._transactions[position] = new
        self._by_id[new.id] = new
        self._by_fingerprint[new.fingerprint].append(new.id)

        logger.debug(
            "transaction_updated",
            transaction_id=transaction_id,
            old_date=old.date.isoformat(),
            new_date=new.date.isoformat(),
        )
        return old, new

    def delete(self, transaction_id: str) -> Transaction:
        """
        Remove a transaction.

        Raises:
            TransactionNotFoundError: If the id is not logged
        """
        transaction = self._by_id.pop(transaction_id, None)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)

        self._unindex(transaction)
        self._transactions.remove(transaction)
        logger.debug(
            "transaction_deleted",
            transaction_id=transaction_id,
            date=transaction.date.isoformat(),
        )
        return transaction


def insert_transaction(log: TransactionLog, candidate: Transaction) -> InsertResult:
    """Deduplicating insert into a log."""
    return log.insert(candidate)


class TransactionNotFoundError(KeyError):
    """No transaction with the given id."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(transaction_id)

    def __str__(self) -> str:
        return f"Transaction not found: {self.transaction_id}"
