"""
Tests for the transaction log and its deduplicating insert.
"""

import pytest
from datetime import date
from decimal import Decimal

from finance_diary.engine.transaction_log import (
    RejectionReason,
    TransactionLog,
    TransactionNotFoundError,
    insert_transaction,
)
from finance_diary.models.transaction import Transaction, TransactionKind


def make_transaction(
    day: date = date(2025, 1, 5),
    kind: TransactionKind = TransactionKind.CREDIT,
    amount: str = "100.00",
    description: str = "Salary",
) -> Transaction:
    return Transaction(
        date=day,
        kind=kind,
        amount=Decimal(amount),
        description=description,
    )


class TestDeduplicatingInsert:
    """Tests for insert()."""

    def test_insert_accepts_new_transaction(self):
        """Test that a fresh transaction is appended."""
        log = TransactionLog()
        transaction = make_transaction()
        result = log.insert(transaction)

        assert result.accepted is True
        assert result.reason is None
        assert len(log) == 1
        assert log.get(transaction.id) == transaction

    def test_identical_insert_rejected(self):
        """Test that a second identical submission is rejected, not raised."""
        log = TransactionLog()
        first = make_transaction()
        log.insert(first)

        result = insert_transaction(log, make_transaction())

        assert result.accepted is False
        assert result.reason == RejectionReason.DUPLICATE
        assert result.duplicate_of == first.id
        assert len(log) == 1

    def test_duplicate_detection_is_case_and_space_insensitive(self):
        """Test normalization of the description."""
        log = TransactionLog()
        log.insert(make_transaction(description="Salary"))
        result = log.insert(make_transaction(description="  SALARY "))
        assert result.accepted is False

    @pytest.mark.parametrize("changes", [
        {"day": date(2025, 1, 6)},
        {"kind": TransactionKind.DEBIT},
        {"amount": "100.01"},
        {"description": "Bonus"},
    ])
    def test_any_fingerprint_difference_is_accepted(self, changes):
        """Test that changing any fingerprint component makes it distinct."""
        log = TransactionLog()
        log.insert(make_transaction())
        result = log.insert(make_transaction(**changes))
        assert result.accepted is True
        assert len(log) == 2

    def test_insert_keeps_order(self):
        """Test that the log preserves insertion order."""
        log = TransactionLog()
        a = make_transaction(description="a")
        b = make_transaction(day=date(2024, 1, 1), description="b")
        log.insert(a)
        log.insert(b)
        assert list(log) == [a, b]


class TestUpdateAndDelete:
    """Tests for update() and delete()."""

    def test_update_returns_old_and_new(self):
        """Test value replacement with the same id."""
        log = TransactionLog()
        original = make_transaction()
        log.insert(original)

        old, new = log.update(original.id, date=date(2025, 1, 10))

        assert old == original
        assert new.id == original.id
        assert log.get(original.id).date == date(2025, 1, 10)
        assert log.by_date(date(2025, 1, 5)) == []
        assert len(log) == 1

    def test_update_reindexes_fingerprint(self):
        """Test that the old fingerprint is free again after an update."""
        log = TransactionLog()
        original = make_transaction()
        log.insert(original)
        log.update(original.id, amount=Decimal("200.00"))

        assert log.insert(make_transaction()).accepted is True
        assert log.insert(make_transaction(amount="200.00")).accepted is False

    def test_update_invalid_value_leaves_log_untouched(self):
        """Test that a failed validation does not change the log."""
        log = TransactionLog()
        original = make_transaction()
        log.insert(original)

        with pytest.raises(ValueError):
            log.update(original.id, amount=Decimal("-5.00"))
        assert log.get(original.id) == original

    def test_delete_removes_transaction(self):
        """Test delete()."""
        log = TransactionLog()
        transaction = make_transaction()
        log.insert(transaction)

        removed = log.delete(transaction.id)

        assert removed == transaction
        assert len(log) == 0
        assert transaction.id not in log
        assert log.insert(make_transaction()).accepted is True

    def test_unknown_id_raises(self):
        """Test that update/delete of an unknown id raise TransactionNotFoundError."""
        log = TransactionLog()
        with pytest.raises(TransactionNotFoundError):
            log.update("missing", amount=Decimal("1.00"))
        with pytest.raises(TransactionNotFoundError, match="missing"):
            log.delete("missing")


class TestLoadingFromStorage:
    """Tests for building a log from stored transactions."""

    def test_stored_content_duplicates_are_kept(self):
        """Test that duplicates already on disk survive loading."""
        a = make_transaction()
        b = make_transaction()
        log = TransactionLog.from_transactions([a, b])
        assert len(log) == 2

    def test_repeated_ids_are_dropped(self):
        """Test that a repeated id is loaded once."""
        a = make_transaction()
        log = TransactionLog.from_transactions([a, a])
        assert len(log) == 1

    def test_copy_is_independent(self):
        """Test that mutating a copy leaves the original alone."""
        log = TransactionLog()
        log.insert(make_transaction())
        clone = log.copy()
        clone.insert(make_transaction(description="other"))
        assert len(log) == 1
        assert len(clone) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
