"""
Integrity Checker

Diagnostics over the transaction log and the ledger.

Checks on the log (stored records or Transactions):
- Missing required fields (id, date, type, amount)          -> error
- Malformed dates, unknown types                            -> error
- Negative or non-finite amounts                            -> error
- Repeated ids                                              -> error
- Same content fingerprint under different ids              -> warning
- More than two decimal places                              -> warning

Checks on the ledger:
- Structure of the stored document (year/month/day keys, required fields)
- The balance formula for every present day

IMPORTANT: The checker NEVER repairs anything.
It reports issues for the user to review. `find_duplicate_ids` only
proposes a cleanup; deleting is an explicit user action.
"""

import re
from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Union

import structlog
from pydantic import BaseModel, Field

from finance_diary.currency import CENT, MAX_AMOUNT_DIGITS
from finance_diary.engine.cascade import previous_balance
from finance_diary.models.ledger import Ledger
from finance_diary.models.transaction import (
    Fingerprint,
    Transaction,
    TransactionKind,
    normalize_description,
)

logger = structlog.get_logger(__name__)

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
REQUIRED_TRANSACTION_FIELDS = ("id", "date", "type", "amount")
REQUIRED_LEDGER_FIELDS = ("entrada", "saida", "diario", "balance")
PLAUSIBLE_YEARS = (2020, 2100)


# =============================================================================
# REPORT MODELS
# =============================================================================

class IntegrityIssue(BaseModel):
    """A single integrity issue found."""

    field: str = Field(
        ...,
        description="Field or location with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_date', 'duplicate_id')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    transaction_id: Optional[str] = None


class IntegrityStatistics(BaseModel):
    total_transactions: int = 0
    unique_transactions: int = 0
    date_range: Optional[tuple[date, date]] = None


class IntegrityReport(BaseModel):
    """
    Result of an integrity check.

    `duplicates` holds the records flagged as duplicates in stored shape:
    every repeat of an id, and every member of a fingerprint group but the
    first.
    """

    is_valid: bool
    errors: list[IntegrityIssue] = Field(default_factory=list)
    warnings: list[IntegrityIssue] = Field(default_factory=list)
    duplicates: list[dict] = Field(default_factory=list)
    statistics: Optional[IntegrityStatistics] = None

    @property
    def issues(self) -> list[IntegrityIssue]:
        return self.errors + self.warnings


# =============================================================================
# CHECKER
# =============================================================================

TransactionRecord = Union[Transaction, Mapping[str, Any]]


class IntegrityChecker:
    """
    Validates transaction logs and ledgers.
    """

    def validate(self, records: Iterable[TransactionRecord]) -> IntegrityReport:
        """
        Check a transaction log.

        Args:
            records: Transactions or raw stored records (malformed ones too)

        Returns:
            IntegrityReport; is_valid is False when any error was found
        """
        errors: list[IntegrityIssue] = []
        warnings: list[IntegrityIssue] = []
        duplicates: list[dict] = []
        seen_ids: set[str] = set()
        groups: dict[Fingerprint, list[dict]] = defaultdict(list)
        valid_dates: list[date] = []
        total = 0

        for raw in records:
            total += 1
            record = raw.to_storage_dict() if isinstance(raw, Transaction) else raw
            if not isinstance(record, Mapping):
                errors.append(IntegrityIssue(
                    field="record",
                    issue_type="invalid_record",
                    message=f"Transaction record is not an object: {record!r}",
                    severity="error",
                ))
                continue

            record = dict(record)
            transaction_id = record.get("id")
            missing = [
                name for name in REQUIRED_TRANSACTION_FIELDS
                if record.get(name) is None or record.get(name) == ""
            ]
            if missing:
                errors.append(IntegrityIssue(
                    field=", ".join(missing),
                    issue_type="missing",
                    message=f"Transaction missing required fields {missing}: {record!r}",
                    severity="error",
                    transaction_id=transaction_id or None,
                ))
                continue

            transaction_id = str(transaction_id)
            day = self._check_date(record["date"], transaction_id, errors)
            kind = self._check_kind(record["type"], transaction_id, errors)
            amount = self._check_amount(record["amount"], transaction_id, errors, warnings)

            if transaction_id in seen_ids:
                errors.append(IntegrityIssue(
                    field="id",
                    issue_type="duplicate_id",
                    message=f"Duplicate transaction ID: {transaction_id}",
                    severity="error",
                    transaction_id=transaction_id,
                ))
                duplicates.append(record)
            else:
                seen_ids.add(transaction_id)

            if day is not None:
                valid_dates.append(day)
            if day is not None and kind is not None and amount is not None:
                fingerprint = Fingerprint(
                    date=day,
                    kind=kind,
                    description=normalize_description(str(record.get("description") or "")),
                    amount=amount.quantize(CENT, rounding=ROUND_HALF_UP),
                )
                groups[fingerprint].append(record)

        for fingerprint, group in groups.items():
            if len(group) < 2:
                continue
            warnings.append(IntegrityIssue(
                field="fingerprint",
                issue_type="duplicate_content",
                message=(
                    f"Potential duplicates on {fingerprint.date.isoformat()}: "
                    f"{fingerprint.kind.value} {fingerprint.amount} "
                    f"{fingerprint.description!r} x{len(group)}"
                ),
                severity="warning",
                transaction_id=str(group[1].get("id")),
            ))
            # Keep the first, flag the rest
            duplicates.extend(group[1:])

        valid_dates.sort()
        report = IntegrityReport(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            duplicates=duplicates,
            statistics=IntegrityStatistics(
                total_transactions=total,
                unique_transactions=len(seen_ids),
                date_range=(valid_dates[0], valid_dates[-1]) if valid_dates else None,
            ),
        )
        logger.info(
            "integrity_checked",
            transactions=total,
            errors=len(errors),
            warnings=len(warnings),
            duplicates=len(duplicates),
        )
        return report

    def _check_date(
        self,
        value: Any,
        transaction_id: str,
        errors: list[IntegrityIssue],
    ) -> Optional[date]:
        if isinstance(value, str) and _DATE_PATTERN.match(value):
            try:
                return date.fromisoformat(value)
            except ValueError:
                pass
        errors.append(IntegrityIssue(
            field="date",
            issue_type="invalid_date",
            message=f"Invalid date format: {value!r}",
            severity="error",
            transaction_id=transaction_id,
        ))
        return None

    def _check_kind(
        self,
        value: Any,
        transaction_id: str,
        errors: list[IntegrityIssue],
    ) -> Optional[TransactionKind]:
        try:
            return TransactionKind(value)
        except ValueError:
            errors.append(IntegrityIssue(
                field="type",
                issue_type="invalid_type",
                message=f"Unknown transaction type: {value!r}",
                severity="error",
                transaction_id=transaction_id,
            ))
            return None

    def _check_amount(
        self,
        value: Any,
        transaction_id: str,
        errors: list[IntegrityIssue],
        warnings: list[IntegrityIssue],
    ) -> Optional[Decimal]:
        amount: Optional[Decimal] = None
        if not isinstance(value, bool):
            try:
                amount = Decimal(str(value))
            except (InvalidOperation, ValueError):
                amount = None

        rounded: Optional[Decimal] = None
        if amount is not None and amount.is_finite() and amount >= 0:
            try:
                rounded = amount.quantize(CENT, rounding=ROUND_HALF_UP)
            except InvalidOperation:
                rounded = None
            if rounded is not None and len(rounded.as_tuple().digits) > MAX_AMOUNT_DIGITS:
                rounded = None

        if rounded is None:
            errors.append(IntegrityIssue(
                field="amount",
                issue_type="invalid_amount",
                message=f"Invalid amount: {value!r} for transaction {transaction_id}",
                severity="error",
                transaction_id=transaction_id,
            ))
            return None

        if amount != rounded:
            warnings.append(IntegrityIssue(
                field="amount",
                issue_type="precision",
                message=f"Amount {value!r} has more than two decimal places",
                severity="warning",
                transaction_id=transaction_id,
            ))
        return amount

    def validate_ledger(self, data: Any) -> IntegrityReport:
        """
        Check the structure of a stored ledger document.

        Month keys are 0-based. Out-of-range years are only a warning.
        """
        errors: list[IntegrityIssue] = []
        warnings: list[IntegrityIssue] = []

        def error(location: str, issue_type: str, message: str) -> None:
            errors.append(IntegrityIssue(
                field=location,
                issue_type=issue_type,
                message=message,
                severity="error",
            ))

        if not isinstance(data, Mapping):
            error("ledger", "invalid_structure", "Financial data is not an object")
            return IntegrityReport(is_valid=False, errors=errors)

        for year_key, months in data.items():
            year = _as_int(year_key)
            if year is None or not PLAUSIBLE_YEARS[0] <= year <= PLAUSIBLE_YEARS[1]:
                warnings.append(IntegrityIssue(
                    field=str(year_key),
                    issue_type="suspicious_year",
                    message=f"Suspicious year: {year_key}",
                    severity="warning",
                ))
            if not isinstance(months, Mapping):
                error(str(year_key), "invalid_structure", f"Invalid year data for {year_key}")
                continue

            for month_key, days in months.items():
                location = f"{year_key}-{month_key}"
                month = _as_int(month_key)
                if month is None or not 0 <= month <= 11:
                    error(location, "invalid_month", f"Invalid month: {month_key} in year {year_key}")
                    continue
                if not isinstance(days, Mapping):
                    error(location, "invalid_structure", f"Invalid month data for {location}")
                    continue

                for day_key, entry in days.items():
                    location = f"{year_key}-{month_key}-{day_key}"
                    day = _as_int(day_key)
                    if day is None or not 1 <= day <= 31:
                        error(location, "invalid_day", f"Invalid day: {day_key} in {year_key}-{month_key}")
                        continue
                    if not isinstance(entry, Mapping):
                        error(location, "invalid_structure", f"Invalid day data for {location}")
                        continue
                    for name in REQUIRED_LEDGER_FIELDS:
                        if name not in entry:
                            error(location, "missing", f"Missing field {name} in {location}")

        return IntegrityReport(is_valid=not errors, errors=errors, warnings=warnings)

    def check_balances(self, ledger: Ledger) -> IntegrityReport:
        """
        Verify balance(d) = carry into d + credit - debit - incidental
        for every present day.
        """
        errors = []
        for day, entry in ledger.items():
            expected = previous_balance(ledger, day) + entry.net
            if entry.balance != expected:
                errors.append(IntegrityIssue(
                    field=day.isoformat(),
                    issue_type="balance_mismatch",
                    message=f"Balance on {day.isoformat()} is {entry.balance}, expected {expected}",
                    severity="error",
                ))
        if errors:
            logger.warning("ledger_balance_mismatch", days=len(errors))
        return IntegrityReport(is_valid=not errors, errors=errors)

    def find_duplicate_ids(self, transactions: Iterable[Transaction]) -> list[str]:
        """
        Ids to delete to remove content duplicates, keeping the first
        transaction of each fingerprint group.
        """
        seen: set[Fingerprint] = set()
        to_delete = []
        for transaction in transactions:
            if transaction.fingerprint in seen:
                to_delete.append(transaction.id)
            else:
                seen.add(transaction.fingerprint)
        return to_delete


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
