"""
Recurring Rule Models

A recurring rule produces one ordinary transaction per calendar month
(a Period) until its termination policy says stop.

Termination policies:
- UntilCancelled: no limit, stops only when the user cancels
- FixedCount: stops after `remaining` more materializations
- MonthlyDuration: stops after `remaining_months` more months

DESIGN DECISION: Rules are frozen. Every state change (counter decrement,
deactivation, processed period) returns a new rule, so the materializer can
hand back the full updated rule set without mutating its input.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from finance_diary.currency import MAX_AMOUNT_DIGITS, to_amount
from finance_diary.models.ledger import days_in_month
from finance_diary.models.transaction import (
    TransactionKind,
    new_transaction_id,
    utc_now,
)


# =============================================================================
# PERIOD
# =============================================================================

@dataclass(frozen=True, order=True)
class Period:
    """A calendar month. Orders chronologically."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be 1-12, got {self.month}")
        if not 1 <= self.year <= 9999:
            raise ValueError(f"Year out of range: {self.year}")

    @classmethod
    def of(cls, day: date) -> "Period":
        return cls(day.year, day.month)

    @classmethod
    def parse(cls, value: str) -> "Period":
        """Parse "YYYY-MM"."""
        year, _, month = value.partition("-")
        return cls(int(year), int(month))

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def length(self) -> int:
        return days_in_month(self.year, self.month)

    def clamp_day(self, day_of_month: int) -> date:
        """Date for a day of month, clamped to the month's last day."""
        return date(self.year, self.month, min(day_of_month, self.length))

    def next(self) -> "Period":
        if self.month == 12:
            return Period(self.year + 1, 1)
        return Period(self.year, self.month + 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


# =============================================================================
# TERMINATION POLICIES
# =============================================================================

class UntilCancelled(BaseModel):
    """Materialize every month until the user cancels the rule."""
    model_config = ConfigDict(frozen=True)

    frequency: Literal["until-cancelled"] = "until-cancelled"

    @property
    def exhausted(self) -> bool:
        return False

    def consume(self) -> "UntilCancelled":
        return self


class FixedCount(BaseModel):
    """Materialize a fixed number of times in total."""
    model_config = ConfigDict(frozen=True)

    frequency: Literal["fixed-count"] = "fixed-count"
    remaining: int = Field(..., ge=0)

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    def consume(self) -> "FixedCount":
        return FixedCount(remaining=max(0, self.remaining - 1))


class MonthlyDuration(BaseModel):
    """Materialize for a fixed number of distinct months."""
    model_config = ConfigDict(frozen=True)

    frequency: Literal["monthly-duration"] = "monthly-duration"
    total_months: int = Field(..., ge=0)
    remaining_months: int = Field(..., ge=0)

    @property
    def exhausted(self) -> bool:
        return self.remaining_months == 0

    def consume(self) -> "MonthlyDuration":
        return MonthlyDuration(
            total_months=self.total_months,
            remaining_months=max(0, self.remaining_months - 1),
        )


TerminationPolicy = Annotated[
    Union[UntilCancelled, FixedCount, MonthlyDuration],
    Field(discriminator="frequency"),
]


# =============================================================================
# RECURRING RULE
# =============================================================================

class RecurringRule(BaseModel):
    """
    A monthly credit or debit that materializes into the transaction log.

    CRITICAL: Once inactive, a rule is never reactivated automatically.
    Deleting a rule never removes the transactions it already produced.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=new_transaction_id,
        min_length=1,
    )
    kind: TransactionKind = Field(
        ...,
        description="Credit or debit (incidental spend never recurs)"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        max_digits=MAX_AMOUNT_DIGITS,
        decimal_places=2,
    )
    description: str = Field(
        default="",
        max_length=500,
    )
    day_of_month: int = Field(
        ...,
        ge=1,
        le=31,
        description="Target day; clamped to the last day in short months"
    )
    start_date: date = Field(
        ...,
        description="First day the rule may apply"
    )
    is_active: bool = True
    termination: TerminationPolicy = Field(
        default_factory=UntilCancelled,
    )
    created_at: datetime = Field(
        default_factory=utc_now,
    )
    materialized_periods: frozenset[str] = Field(
        default_factory=frozenset,
        description="Periods (YYYY-MM) already processed for this rule"
    )

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, v: TransactionKind) -> TransactionKind:
        """Only credits and debits can recur."""
        if v is TransactionKind.INCIDENTAL:
            raise ValueError("Recurring rules must be a credit or a debit")
        return v

    def is_eligible(self, period: Period) -> bool:
        """Active, started on or before the period's first day, not yet processed."""
        return (
            self.is_active
            and self.start_date <= period.first_day
            and not self.was_processed(period)
        )

    def was_processed(self, period: Period) -> bool:
        return str(period) in self.materialized_periods

    def deactivate(self) -> "RecurringRule":
        return self.model_copy(update={"is_active": False})

    def record_period(self, period: Period, inserted: bool) -> "RecurringRule":
        """
        Mark a period as processed.

        The termination counter is consumed only when a transaction was
        actually inserted; the rule deactivates when the counter hits 0.
        """
        termination = self.termination.consume() if inserted else self.termination
        return self.model_copy(update={
            "termination": termination,
            "is_active": self.is_active and not termination.exhausted,
            "materialized_periods": self.materialized_periods | {str(period)},
        })

    def to_storage_dict(self) -> dict:
        """Convert to the persisted JSON shape."""
        record = {
            "id": self.id,
            "type": self.kind.value,
            "amount": float(self.amount),
            "description": self.description,
            "dayOfMonth": self.day_of_month,
            "frequency": self.termination.frequency,
            "startDate": self.start_date.isoformat(),
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat(),
            "materializedPeriods": sorted(self.materialized_periods),
        }
        if isinstance(self.termination, FixedCount):
            record["remainingCount"] = self.termination.remaining
        elif isinstance(self.termination, MonthlyDuration):
            record["monthsDuration"] = self.termination.total_months
            record["remainingMonths"] = self.termination.remaining_months
        return record

    @classmethod
    def from_storage_dict(cls, record: Mapping[str, Any]) -> "RecurringRule":
        """
        Build a rule from the persisted JSON shape.

        Raises:
            ValueError: If the record is malformed
        """
        frequency = record.get("frequency", "until-cancelled")
        termination: Union[UntilCancelled, FixedCount, MonthlyDuration]
        if frequency == "until-cancelled":
            termination = UntilCancelled()
        elif frequency == "fixed-count":
            if record.get("remainingCount") is None:
                raise ValueError("fixed-count rule without remainingCount")
            termination = FixedCount(remaining=record["remainingCount"])
        elif frequency == "monthly-duration":
            total = record.get("monthsDuration")
            if total is None:
                raise ValueError("monthly-duration rule without monthsDuration")
            # remainingMonths is only written after the first materialization
            remaining = record.get("remainingMonths")
            termination = MonthlyDuration(
                total_months=total,
                remaining_months=total if remaining is None else remaining,
            )
        else:
            raise ValueError(f"Unknown frequency: {frequency!r}")

        data: dict[str, Any] = {
            "id": record.get("id"),
            "kind": record.get("type"),
            "amount": to_amount(record.get("amount")),
            "description": record.get("description") or "",
            "day_of_month": record.get("dayOfMonth"),
            "start_date": _parse_day(record.get("startDate")),
            "is_active": record.get("isActive", True),
            "termination": termination.model_dump(),
            "materialized_periods": frozenset(record.get("materializedPeriods") or ()),
        }
        if record.get("createdAt"):
            data["created_at"] = record["createdAt"]
        return cls.model_validate(data)


def _parse_day(value: Any) -> date:
    """Accept both "YYYY-MM-DD" and full ISO timestamps."""
    if not value:
        raise ValueError("startDate is required")
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
