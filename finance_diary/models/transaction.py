"""
Transaction Models

A Transaction is one atomic money movement on a calendar day. The
transaction log is the only thing a person edits directly; everything in
the ledger is derived from these records.

DESIGN DECISION: Transactions are frozen pydantic models. An edit is a
value replacement with the same id, never an in-place mutation, so the
log can always tell which dates an edit touched.
"""

import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, NamedTuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from finance_diary.currency import MAX_AMOUNT_DIGITS, to_amount


# =============================================================================
# ENUMS
# =============================================================================

class TransactionKind(str, Enum):
    """
    Kind of money movement.

    Values are the keys used by the stored ledger and log.
    """
    CREDIT = "entrada"      # Money in
    DEBIT = "saida"         # Planned money out (bills, rent)
    INCIDENTAL = "diario"   # Day-to-day spend


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_transaction_id() -> str:
    """Create an opaque unique transaction id."""
    return uuid4().hex


# =============================================================================
# FINGERPRINT
# =============================================================================

class Fingerprint(NamedTuple):
    """
    Content-derived key used to detect double submissions.

    A structured tuple, so no separator inside a description can make two
    different transactions collide.
    """
    date: date
    kind: TransactionKind
    description: str
    amount: Decimal


def normalize_description(description: str) -> str:
    """Case-fold and trim a description for fingerprinting."""
    return description.strip().casefold()


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(BaseModel):
    """
    A single entry in the transaction log.

    CRITICAL: amount is never negative. The direction of the movement is
    carried by `kind`, never by the sign.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(
        default_factory=new_transaction_id,
        min_length=1,
        description="Opaque unique id"
    )
    date: dt.date = Field(
        ...,
        description="Day the money moved"
    )
    kind: TransactionKind = Field(
        ...,
        alias="type",
        description="Credit, debit or incidental"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        max_digits=MAX_AMOUNT_DIGITS,
        decimal_places=2,
        description="Non-negative amount"
    )
    description: str = Field(
        default="",
        max_length=500,
        description="Free text"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        alias="createdAt",
        description="When the transaction was recorded"
    )

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint(
            date=self.date,
            kind=self.kind,
            description=normalize_description(self.description),
            amount=to_amount(self.amount),
        )

    def is_recurring(self, tag: str) -> bool:
        """Was this produced by a recurring rule (description carries the tag)?"""
        return self.description.startswith(tag)

    def replace(self, **changes: Any) -> "Transaction":
        """
        Return a re-validated copy with some fields replaced.

        The id and creation timestamp are preserved.
        """
        data = self.model_dump()
        data.update(changes)
        data["id"] = self.id
        data["created_at"] = self.created_at
        return Transaction.model_validate(data)

    def to_storage_dict(self) -> dict:
        """Convert to the persisted JSON shape."""
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "type": self.kind.value,
            "amount": float(self.amount),
            "description": self.description,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_storage_dict(cls, record: Mapping[str, Any]) -> "Transaction":
        """
        Build a Transaction from the persisted JSON shape.

        Raises:
            ValueError: If the record is malformed
        """
        data = dict(record)
        if "amount" in data and data["amount"] is not None:
            data["amount"] = to_amount(data["amount"])
        if not data.get("createdAt"):
            data.pop("createdAt", None)
        return cls.model_validate(data)
