"""
Tests for the recurring materializer.
"""

import pytest
from datetime import date
from decimal import Decimal

from finance_diary.config import LedgerSettings
from finance_diary.engine.recurring import (
    RecurringMaterializer,
    materialize,
    materialize_upcoming,
)
from finance_diary.engine.transaction_log import TransactionLog
from finance_diary.models.recurring import (
    FixedCount,
    MonthlyDuration,
    Period,
    RecurringRule,
    UntilCancelled,
)
from finance_diary.models.transaction import TransactionKind

TODAY = date(2025, 1, 15)


def make_rule(**overrides) -> RecurringRule:
    data = dict(
        kind=TransactionKind.DEBIT,
        amount=Decimal("1500.00"),
        description="Rent",
        day_of_month=5,
        start_date=date(2025, 1, 1),
    )
    data.update(overrides)
    return RecurringRule(**data)


@pytest.fixture
def materializer():
    return RecurringMaterializer(LedgerSettings())


def run_periods(materializer, rules, periods, log=None):
    log = log or TransactionLog()
    for period in periods:
        result = materializer.materialize(rules, period, log, TODAY)
        log, rules = result.log, result.rules
    return log, rules


def periods_from(start: Period, count: int) -> list[Period]:
    periods = [start]
    for _ in range(count - 1):
        periods.append(periods[-1].next())
    return periods


class TestMaterialize:
    """Tests for materializing one period."""

    def test_transaction_is_tagged_and_clamped(self, materializer):
        """Test the produced transaction."""
        rule = make_rule()
        result = materializer.materialize([rule], Period(2025, 2), TransactionLog(), TODAY)

        assert len(result.inserted) == 1
        transaction = result.inserted[0]
        assert transaction.date == date(2025, 2, 5)
        assert transaction.description == "🔄 Rent"
        assert transaction.kind == TransactionKind.DEBIT
        assert transaction.amount == Decimal("1500.00")
        assert result.rules[0].was_processed(Period(2025, 2))

    def test_inputs_not_mutated(self, materializer):
        """Test that the given log and rules are left alone."""
        rule = make_rule()
        log = TransactionLog()
        result = materializer.materialize([rule], Period(2025, 2), log, TODAY)

        assert len(log) == 0
        assert len(result.log) == 1
        assert not rule.was_processed(Period(2025, 2))

    @pytest.mark.parametrize("period,expected_day", [
        (Period(2025, 2), date(2025, 2, 28)),
        (Period(2028, 2), date(2028, 2, 29)),
        (Period(2025, 4), date(2025, 4, 30)),
        (Period(2025, 5), date(2025, 5, 31)),
    ])
    def test_day_31_clamps(self, materializer, period, expected_day):
        """Test dayOfMonth=31 in short months."""
        rule = make_rule(day_of_month=31)
        result = materializer.materialize([rule], period, TransactionLog(), TODAY)
        assert result.inserted[0].date == expected_day

    def test_past_period_skipped(self, materializer):
        """Test that periods before today's are never materialized."""
        rule = make_rule(start_date=date(2024, 1, 1))
        result = materializer.materialize([rule], Period(2024, 12), TransactionLog(), TODAY)

        assert result.skipped_past is True
        assert result.inserted == []
        assert result.rules == [rule]

    def test_mid_month_start_waits_for_next_period(self, materializer):
        """Test that startDate after the 1st skips its own month."""
        rule = make_rule(start_date=date(2025, 2, 10))
        log, rules = run_periods(materializer, [rule], [Period(2025, 2), Period(2025, 3)])

        assert [t.date for t in log] == [date(2025, 3, 5)]

    def test_inactive_rule_ignored(self, materializer):
        """Test that cancelled rules produce nothing."""
        rule = make_rule().deactivate()
        result = materializer.materialize([rule], Period(2025, 2), TransactionLog(), TODAY)
        assert result.inserted == []

    def test_same_period_twice_materializes_once(self, materializer):
        """Test that re-processing a period does nothing."""
        rule = make_rule(termination=FixedCount(remaining=5))
        log, rules = run_periods(materializer, [rule], [Period(2025, 2), Period(2025, 2)])

        assert len(log) == 1
        assert rules[0].termination.remaining == 4

    def test_duplicate_does_not_consume_counter(self, materializer):
        """Test that a blocked duplicate marks the period without decrementing."""
        rule = make_rule(termination=FixedCount(remaining=2))
        log = TransactionLog()
        log.insert(materializer.candidate_for(rule, Period(2025, 2)))

        result = materializer.materialize([rule], Period(2025, 2), log, TODAY)

        assert result.duplicates == 1
        assert result.inserted == []
        assert result.rules[0].termination.remaining == 2
        assert result.rules[0].was_processed(Period(2025, 2))

    def test_exhausted_rule_deactivated_without_materializing(self, materializer):
        """Test that a rule already at 0 is switched off."""
        rule = make_rule(termination=FixedCount(remaining=0))
        result = materializer.materialize([rule], Period(2025, 2), TransactionLog(), TODAY)

        assert result.inserted == []
        assert result.deactivated == [rule.id]
        assert result.rules[0].is_active is False


class TestTerminationPolicies:
    """Tests for the three termination policies across periods."""

    def test_fixed_count_two(self, materializer):
        """Test that FixedCount(2) materializes exactly twice then deactivates."""
        rule = make_rule(termination=FixedCount(remaining=2))
        log, rules = run_periods(materializer, [rule], periods_from(Period(2025, 1), 6))

        assert [t.date for t in log] == [date(2025, 1, 5), date(2025, 2, 5)]
        assert rules[0].is_active is False
        assert rules[0].termination.remaining == 0

    def test_monthly_duration_three(self, materializer):
        """Test that MonthlyDuration(3) covers exactly three periods."""
        rule = make_rule(termination=MonthlyDuration(total_months=3, remaining_months=3))
        log, rules = run_periods(materializer, [rule], periods_from(Period(2025, 1), 6))

        assert len(log) == 3
        assert {Period.of(t.date) for t in log} == {
            Period(2025, 1), Period(2025, 2), Period(2025, 3),
        }
        assert rules[0].is_active is False

    def test_until_cancelled_keeps_going(self, materializer):
        """Test that UntilCancelled never deactivates on its own."""
        rule = make_rule(termination=UntilCancelled())
        log, rules = run_periods(materializer, [rule], periods_from(Period(2025, 1), 12))

        assert len(log) == 12
        assert rules[0].is_active is True

    def test_deactivated_rule_never_reactivates(self, materializer):
        """Test that an exhausted rule stays inactive for later periods."""
        rule = make_rule(termination=FixedCount(remaining=1))
        log, rules = run_periods(materializer, [rule], periods_from(Period(2025, 1), 3))
        assert len(log) == 1
        assert rules[0].is_active is False


class TestMaterializeUpcoming:
    """Tests for the bounded look-ahead window."""

    def test_window_from_today(self):
        """Test materialize_upcoming over a short window."""
        rule = make_rule(start_date=date(2024, 6, 1))
        log, rules = materialize_upcoming([rule], TransactionLog(), TODAY, months_ahead=3)

        assert [t.date for t in log] == [
            date(2025, 1, 5), date(2025, 2, 5), date(2025, 3, 5),
        ]
        assert rules[0].materialized_periods == frozenset({"2025-01", "2025-02", "2025-03"})

    def test_window_is_idempotent(self):
        """Test that running the window twice adds nothing."""
        rule = make_rule(termination=FixedCount(remaining=10))
        log, rules = materialize_upcoming([rule], TransactionLog(), TODAY, months_ahead=4)
        log_again, rules_again = materialize_upcoming(rules, log, TODAY, months_ahead=4)

        assert len(log_again) == 4
        assert rules_again[0].termination.remaining == 6

    def test_stops_once_every_rule_is_inactive(self, materializer):
        """Test that the window stops early when nothing is left to do."""
        rule = make_rule(termination=FixedCount(remaining=1))
        results = materializer.materialize_upcoming([rule], TransactionLog(), TODAY, months_ahead=24)
        assert len(results) == 1

    def test_module_materialize(self):
        """Test the materialize() convenience function."""
        log, rules = materialize([make_rule()], Period(2025, 1), TransactionLog(), TODAY)
        assert len(log) == 1
        assert rules[0].was_processed(Period(2025, 1))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
