"""
Tests for period totals over the ledger.
"""

import pytest
from datetime import date
from decimal import Decimal

from finance_diary.models.ledger import Ledger, LedgerEntry
from finance_diary.queries import LedgerTotals, monthly_totals, yearly_totals


@pytest.fixture
def ledger():
    ledger = Ledger()
    ledger.set(date(2025, 1, 5), LedgerEntry(credit=Decimal("1000.00"), balance=Decimal("1000.00")))
    ledger.set(date(2025, 1, 10), LedgerEntry(
        debit=Decimal("300.00"),
        incidental=Decimal("25.50"),
        balance=Decimal("674.50"),
    ))
    ledger.set(date(2025, 3, 2), LedgerEntry(incidental=Decimal("74.50"), balance=Decimal("600.00")))
    return ledger


class TestPeriodTotals:
    """Tests for monthly, yearly and ranged totals."""

    def test_monthly(self, ledger):
        """Test the totals of one month."""
        totals = monthly_totals(ledger, 2025, 1)

        assert totals.total_credit == Decimal("1000.00")
        assert totals.total_debit == Decimal("300.00")
        assert totals.total_incidental == Decimal("25.50")
        assert totals.closing_balance == Decimal("674.50")
        assert totals.net == Decimal("674.50")
        assert totals.days == 2
        assert totals.description == "in January 2025"

    def test_empty_month(self, ledger):
        """Test that a month without entries reports zeros."""
        totals = monthly_totals(ledger, 2025, 2)
        assert totals.data_found is False
        assert totals.closing_balance == Decimal("0")

    def test_yearly(self, ledger):
        """Test that the closing balance is the last present day of the year."""
        totals = yearly_totals(ledger, 2025)
        assert totals.total_incidental == Decimal("100.00")
        assert totals.closing_balance == Decimal("600.00")
        assert totals.days == 3

    def test_between(self, ledger):
        """Test an arbitrary inclusive range."""
        totals = LedgerTotals(ledger).between(date(2025, 1, 10), date(2025, 3, 31))
        assert totals.days == 2
        assert totals.total_credit == Decimal("0")
        assert totals.description == "from 10 Jan 2025 to 31 Mar 2025"

    def test_between_open_ended(self, ledger):
        """Test ranges without bounds."""
        totals = LedgerTotals(ledger)
        assert totals.between().description == "all time"
        assert totals.between().days == 3
        assert totals.between(date_to=date(2025, 1, 5)).days == 1

    def test_balance_on(self, ledger):
        """Test the balance of present and absent days."""
        totals = LedgerTotals(ledger)
        assert totals.balance_on(date(2025, 1, 10)) == Decimal("674.50")
        assert totals.balance_on(date(2025, 1, 11)) is None

    def test_display_dict(self, ledger):
        """Test currency formatting of a summary."""
        display = monthly_totals(ledger, 2025, 1).to_display_dict()
        assert display["entrada"] == "R$ 1.000,00"
        assert display["diario"] == "R$ 25,50"
        assert display["saldoFinal"] == "R$ 674,50"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
