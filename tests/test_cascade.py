"""
Tests for the cascade recalculator.
"""

import warnings

import pytest
from datetime import date
from decimal import Decimal

from finance_diary.config import LedgerSettings
from finance_diary.engine.cascade import (
    CascadeRecalculator,
    RecalculationOverflow,
    previous_balance,
    recalculate,
)
from finance_diary.models.ledger import Ledger, LedgerEntry


def make_ledger(entries: dict) -> Ledger:
    """Build a ledger from {date: (credit, debit, incidental)}."""
    ledger = Ledger()
    for day, (credit, debit, incidental) in entries.items():
        ledger.set(day, LedgerEntry(
            credit=Decimal(credit),
            debit=Decimal(debit),
            incidental=Decimal(incidental),
        ))
    return ledger


def balances(ledger: Ledger) -> dict:
    return {day: entry.balance for day, entry in ledger.items()}


@pytest.fixture
def recalculator():
    return CascadeRecalculator(LedgerSettings(max_lookahead_years=10))


class TestBalanceFormula:
    """Tests for balance(d) = carry + credit - debit - incidental."""

    def test_single_credit(self, recalculator):
        """Test the basic 2025-01-05 credit scenario."""
        ledger = make_ledger({date(2025, 1, 5): ("1000", "0", "0")})
        result = recalculator.recalculate(ledger, date(2025, 1, 1))

        assert result.get(date(2025, 1, 5)).balance == Decimal("1000")
        assert date(2025, 1, 6) not in result

    def test_later_day_inherits(self, recalculator):
        """Test that a later present day inherits the earlier balance."""
        ledger = make_ledger({
            date(2025, 1, 5): ("1000", "0", "0"),
            date(2025, 1, 9): ("0", "0", "0"),
            date(2025, 1, 20): ("0", "300", "50"),
        })
        result = recalculator.recalculate(ledger)

        assert balances(result) == {
            date(2025, 1, 5): Decimal("1000"),
            date(2025, 1, 9): Decimal("1000"),
            date(2025, 1, 20): Decimal("650"),
        }

    def test_month_boundary_uses_last_present_day(self, recalculator):
        """Test that the carry skips absent months within a year."""
        ledger = make_ledger({
            date(2025, 1, 10): ("500", "0", "0"),
            date(2025, 4, 1): ("0", "100", "0"),
        })
        result = recalculator.recalculate(ledger)
        assert result.get(date(2025, 4, 1)).balance == Decimal("400")

    def test_formula_holds_for_every_day(self, recalculator):
        """Test the balance formula against previous_balance for each entry."""
        ledger = make_ledger({
            date(2024, 11, 3): ("2000", "0", "0"),
            date(2024, 12, 15): ("0", "700", "30"),
            date(2025, 1, 2): ("0", "0", "12.50"),
            date(2025, 2, 28): ("100", "0", "0"),
        })
        result = recalculator.recalculate(ledger)
        for day, entry in result.items():
            assert entry.balance == previous_balance(result, day) + entry.net

    def test_balance_can_go_negative(self, recalculator):
        """Test that overspending yields a negative balance."""
        ledger = make_ledger({date(2025, 1, 1): ("0", "0", "10.00")})
        result = recalculator.recalculate(ledger)
        assert result.get(date(2025, 1, 1)).balance == Decimal("-10.00")


class TestYearBoundary:
    """Tests for carries across December -> January."""

    def test_december_carries_into_existing_january(self, recalculator):
        """Test that January 1st inherits the last December day."""
        ledger = make_ledger({
            date(2024, 12, 20): ("800", "0", "0"),
            date(2025, 1, 3): ("0", "100", "0"),
        })
        result = recalculator.recalculate(ledger)
        assert result.get(date(2025, 1, 3)).balance == Decimal("700")

    def test_next_year_is_created(self, recalculator):
        """Test the December 2025 -> 2026-01-01 scenario."""
        ledger = make_ledger({date(2025, 12, 10): ("500", "0", "0")})
        result = recalculator.recalculate(ledger)

        assert result.get(date(2026, 1, 1)).balance == Decimal("500")
        assert result.get(date(2026, 1, 1)).credit == Decimal("0")
        assert result.years() == [2025, 2026]

    def test_zero_carry_creates_nothing(self, recalculator):
        """Test that a zero December balance does not open the next year."""
        ledger = make_ledger({date(2025, 12, 10): ("500", "500", "0")})
        result = recalculator.recalculate(ledger)
        assert result.years() == [2025]

    def test_missing_december_breaks_chain(self, recalculator):
        """Test that a year without December carries nothing."""
        ledger = make_ledger({
            date(2024, 6, 1): ("1000", "0", "0"),
            date(2025, 1, 1): ("50", "0", "0"),
        })
        result = recalculator.recalculate(ledger)
        assert result.get(date(2025, 1, 1)).balance == Decimal("50")
        assert date(2025, 6, 1) not in result

    def test_gap_year_is_seeded_once(self, recalculator):
        """Test that an empty year between two populated years gets January 1st."""
        ledger = make_ledger({
            date(2023, 12, 31): ("300", "0", "0"),
            date(2025, 3, 1): ("10", "0", "0"),
        })
        result = recalculator.recalculate(ledger)

        assert result.get(date(2024, 1, 1)).balance == Decimal("300")
        # 2024 has no December, so 2025 starts from zero
        assert result.get(date(2025, 3, 1)).balance == Decimal("10")
        assert result.years() == [2023, 2024, 2025]

    def test_overflow_at_horizon(self):
        """Test RecalculationOverflow when the horizon is exhausted."""
        recalculator = CascadeRecalculator(LedgerSettings(max_lookahead_years=0))
        ledger = make_ledger({date(2025, 12, 10): ("500", "0", "0")})

        with pytest.warns(RecalculationOverflow):
            result = recalculator.recalculate(ledger)

        assert result.years() == [2025]
        assert result.get(date(2025, 12, 10)).balance == Decimal("500")

    def test_no_overflow_within_horizon(self, recalculator):
        """Test that normal propagation emits no warning."""
        ledger = make_ledger({date(2025, 12, 10): ("500", "0", "0")})
        with warnings.catch_warnings():
            warnings.simplefilter("error", RecalculationOverflow)
            recalculator.recalculate(ledger)


class TestLeapYears:
    """Tests for February in leap and common years."""

    @pytest.mark.parametrize("year,last_day", [
        (2024, 29),
        (2000, 29),
        (2023, 28),
        (1900, 28),
    ])
    def test_february_last_day_carries_into_march(self, recalculator, year, last_day):
        """Test that the last day of February carries into March 1st."""
        ledger = make_ledger({
            date(year, 2, last_day): ("100", "0", "0"),
            date(year, 3, 1): ("0", "40", "0"),
        })
        result = recalculator.recalculate(ledger)
        assert result.get(date(year, 3, 1)).balance == Decimal("60")


class TestRecalculationProperties:
    """Tests for idempotence, partial recalculation and non-mutation."""

    def test_idempotent(self, recalculator):
        """Test recalculate(recalculate(L, d), d) == recalculate(L, d)."""
        ledger = make_ledger({
            date(2024, 12, 31): ("1000", "0", "0"),
            date(2025, 1, 15): ("0", "200", "0"),
            date(2025, 12, 1): ("0", "0", "100"),
        })
        once = recalculator.recalculate(ledger, date(2024, 12, 1))
        twice = recalculator.recalculate(once, date(2024, 12, 1))
        assert once == twice

    def test_input_not_mutated(self, recalculator):
        """Test that the input ledger is left untouched."""
        ledger = make_ledger({date(2025, 12, 10): ("500", "0", "0")})
        before = ledger.copy()
        recalculator.recalculate(ledger)
        assert ledger == before
        assert ledger.get(date(2025, 12, 10)).balance == Decimal("0")

    def test_partial_recalculation_keeps_earlier_balances(self, recalculator):
        """Test that days before from_date are not recomputed."""
        ledger = make_ledger({
            date(2025, 1, 1): ("100", "0", "0"),
            date(2025, 1, 2): ("0", "10", "0"),
        })
        # Stale balance on the 1st is kept; the 2nd builds on it
        ledger.get(date(2025, 1, 1)).balance = Decimal("500")
        result = recalculator.recalculate(ledger, date(2025, 1, 2))

        assert result.get(date(2025, 1, 1)).balance == Decimal("500")
        assert result.get(date(2025, 1, 2)).balance == Decimal("490")

    def test_from_date_need_not_be_present(self, recalculator):
        """Test that recalculation starts at the first present day after from_date."""
        ledger = make_ledger({
            date(2025, 1, 1): ("100", "0", "0"),
            date(2025, 1, 20): ("0", "10", "0"),
        })
        result = recalculator.recalculate(ledger, date(2025, 1, 10))
        assert result.get(date(2025, 1, 1)).balance == Decimal("0")
        assert result.get(date(2025, 1, 20)).balance == Decimal("-10")

    def test_december_before_from_date_still_seeds(self, recalculator):
        """Test that a kept December close seeds the next year even when not recomputed."""
        ledger = make_ledger({date(2025, 12, 10): ("500", "0", "0")})
        ledger.get(date(2025, 12, 10)).balance = Decimal("500")

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            result = recalculator.recalculate(ledger, date.max)

        assert result.get(date(2026, 1, 1)).balance == Decimal("500")

    def test_empty_ledger(self, recalculator):
        """Test that an empty ledger stays empty."""
        assert len(recalculator.recalculate(Ledger())) == 0

    def test_module_function(self):
        """Test the recalculate() convenience function."""
        ledger = make_ledger({date(2025, 1, 5): ("1000", "0", "0")})
        result = recalculate(ledger, settings=LedgerSettings())
        assert result.get(date(2025, 1, 5)).balance == Decimal("1000")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
