"""
Recurring Materializer

Expands active recurring rules into ordinary transactions, one per rule
per period.

For a target period, each rule is:
- left alone if inactive, not yet started (start_date after the period's
  first day) or already processed for the period
- deactivated without materializing if its counter is already exhausted
- otherwise materialized on min(day_of_month, days in month), tagged, and
  inserted through the deduplicating insert

CRITICAL: A termination counter is consumed exactly once per period, and
only when the insert was accepted. A rejected duplicate still marks the
period as processed so it is never retried.

Past periods (before today's) are never materialized.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

import structlog

from finance_diary.config import LedgerSettings, get_settings
from finance_diary.engine.transaction_log import TransactionLog
from finance_diary.models.recurring import Period, RecurringRule
from finance_diary.models.transaction import Transaction

logger = structlog.get_logger(__name__)


@dataclass
class MaterializationResult:
    """What one materialization run did."""

    period: Period
    log: TransactionLog
    rules: list[RecurringRule]
    inserted: list[Transaction] = field(default_factory=list)
    duplicates: int = 0
    deactivated: list[str] = field(default_factory=list)
    skipped_past: bool = False


class RecurringMaterializer:
    """
    Materializes recurring rules into a transaction log.

    Inputs are never mutated: the result carries a new log and the full,
    updated rule list (unchanged rules included).
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    @property
    def tag(self) -> str:
        return self._settings.recurring_tag

    def describe(self, rule: RecurringRule) -> str:
        """Description of a materialized transaction."""
        return f"{self.tag} {rule.description}"

    def candidate_for(self, rule: RecurringRule, period: Period) -> Transaction:
        return Transaction(
            date=period.clamp_day(rule.day_of_month),
            kind=rule.kind,
            amount=rule.amount,
            description=self.describe(rule),
        )

    def materialize(
        self,
        rules: Iterable[RecurringRule],
        target_period: Period,
        log: TransactionLog,
        today: date,
    ) -> MaterializationResult:
        """
        Materialize every eligible rule for one period.

        Args:
            rules: All rules (inactive ones are passed through)
            target_period: Period to materialize
            log: Current log; not mutated
            today: Reference day; periods before its month are skipped
        """
        rules = list(rules)
        result = MaterializationResult(
            period=target_period,
            log=log.copy(),
            rules=rules,
        )

        if target_period < Period.of(today):
            logger.debug("recurring_period_in_past", period=str(target_period))
            result.skipped_past = True
            return result

        updated = []
        for rule in rules:
            updated.append(self._apply(rule, target_period, result))
        result.rules = updated

        logger.info(
            "recurring_materialized",
            period=str(target_period),
            inserted=len(result.inserted),
            duplicates=result.duplicates,
            deactivated=len(result.deactivated),
        )
        return result

    def _apply(
        self,
        rule: RecurringRule,
        period: Period,
        result: MaterializationResult,
    ) -> RecurringRule:
        if not rule.is_active:
            return rule

        if rule.termination.exhausted:
            logger.info("recurring_rule_exhausted", rule_id=rule.id)
            result.deactivated.append(rule.id)
            return rule.deactivate()

        if not rule.is_eligible(period):
            return rule

        insert = result.log.insert(self.candidate_for(rule, period))
        if insert.accepted:
            result.inserted.append(insert.transaction)
        else:
            result.duplicates += 1

        updated = rule.record_period(period, inserted=insert.accepted)
        if not updated.is_active:
            result.deactivated.append(rule.id)
        return updated

    def materialize_upcoming(
        self,
        rules: Iterable[RecurringRule],
        log: TransactionLog,
        today: date,
        months_ahead: Optional[int] = None,
    ) -> list[MaterializationResult]:
        """
        Materialize every period from today's month forward.

        Each period sees the log and rules produced by the one before, so
        counters run down across the window. The last result holds the
        final log and rules.
        """
        if months_ahead is None:
            months_ahead = self._settings.recurring_months_ahead

        results = []
        period = Period.of(today)
        rules = list(rules)
        for _ in range(months_ahead):
            result = self.materialize(rules, period, log, today)
            results.append(result)
            log, rules = result.log, result.rules
            if not any(rule.is_active for rule in rules):
                break
            period = period.next()
        return results


def materialize(
    rules: Iterable[RecurringRule],
    target_period: Period,
    log: TransactionLog,
    today: date,
    settings: Optional[LedgerSettings] = None,
) -> tuple[TransactionLog, list[RecurringRule]]:
    """Materialize one period; returns (new log, updated rules)."""
    result = RecurringMaterializer(settings).materialize(rules, target_period, log, today)
    return result.log, result.rules


def materialize_upcoming(
    rules: Iterable[RecurringRule],
    log: TransactionLog,
    today: date,
    months_ahead: int = 24,
    settings: Optional[LedgerSettings] = None,
) -> tuple[TransactionLog, list[RecurringRule]]:
    """Materialize today's period and the following ones."""
    rules = list(rules)
    results = RecurringMaterializer(settings).materialize_upcoming(
        rules, log, today, months_ahead
    )
    if not results:
        return log.copy(), list(rules)
    return results[-1].log, results[-1].rules
