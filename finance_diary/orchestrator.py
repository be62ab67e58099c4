"""
Main Orchestrator for Finance Diary

This module ties together all the components and defines the
end-to-end flows for:
1. Editing the log (add/update/delete -> reconcile -> persist)
2. Recurring rules (create/cancel/delete -> materialize -> reconcile -> persist)
3. Reading (ledger, monthly/yearly totals, integrity reports)

DESIGN DECISION: The orchestrator is the single owner of the pipeline:
- Every mutation goes through the transaction log, never the ledger
- Every ledger change goes through the reconciler
- Persistence is fire-and-forget; a failed save is audited, never raised
- Every user-visible step is audited

Mutations return as soon as the log is updated. Reconciliation and saves
run in the background; `flush()` waits for them.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from finance_diary.audit import AuditLogger, configure_logging, create_correlation_id
from finance_diary.config import (
    LedgerSettings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)
from finance_diary.engine import (
    CascadeRecalculator,
    InsertResult,
    MaterializationResult,
    Reconciler,
    RecurringMaterializer,
    TransactionLog,
)
from finance_diary.models.audit import AuditEventBuilder, AuditEventType
from finance_diary.models.ledger import Ledger
from finance_diary.models.recurring import (
    FixedCount,
    MonthlyDuration,
    Period,
    RecurringRule,
    UntilCancelled,
)
from finance_diary.models.transaction import Transaction, TransactionKind
from finance_diary.queries import LedgerTotals, PeriodTotals
from finance_diary.services.storage import (
    DiaryState,
    DiaryStateRepository,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueAuditStorage,
    KeyValueStore,
)
from finance_diary.validation import IntegrityChecker, IntegrityReport

logger = structlog.get_logger(__name__)

Termination = Union[UntilCancelled, FixedCount, MonthlyDuration]


class FinanceDiary:
    """
    The diary: transaction log, derived ledger and recurring rules.

    Must be used from within a running event loop.
    """

    def __init__(
        self,
        repository: DiaryStateRepository,
        audit_logger: Optional[AuditLogger] = None,
        ledger_settings: Optional[LedgerSettings] = None,
        storage_settings: Optional[StorageSettings] = None,
        clock: Callable[[], date] = date.today,
    ):
        ledger_settings = ledger_settings or get_settings().ledger
        self._storage_settings = storage_settings or get_settings().storage

        self._repository = repository
        self._audit_logger = audit_logger or AuditLogger()
        self._clock = clock
        self._recalculator = CascadeRecalculator(ledger_settings)
        self._materializer = RecurringMaterializer(ledger_settings)
        self._checker = IntegrityChecker()
        self._debounce_ms = ledger_settings.reconcile_debounce_ms

        self._log = TransactionLog()
        self._rules: list[RecurringRule] = []
        self._reconciler = self._new_reconciler()
        self._ledger_future: Optional[asyncio.Future] = None
        self._background: set[asyncio.Task] = set()

    def _new_reconciler(self, ledger: Optional[Ledger] = None) -> Reconciler:
        return Reconciler(
            self._log,
            ledger=ledger,
            recalculator=self._recalculator,
            audit_logger=self._audit_logger,
            debounce_ms=self._debounce_ms,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def ledger(self) -> Ledger:
        """Ledger as of the last completed reconciliation pass."""
        return self._reconciler.ledger

    @property
    def transactions(self) -> list[Transaction]:
        return list(self._log)

    @property
    def rules(self) -> list[RecurringRule]:
        return list(self._rules)

    def get_rule(self, rule_id: str) -> RecurringRule:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        raise RuleNotFoundError(rule_id)

    def monthly_totals(self, year: int, month: int) -> PeriodTotals:
        return LedgerTotals(self._reconciler.ledger).monthly(year, month)

    def yearly_totals(self, year: int) -> PeriodTotals:
        return LedgerTotals(self._reconciler.ledger).yearly(year)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> DiaryState:
        """
        Load the diary from storage and rebuild the ledger.

        Never fails on bad data: unreadable documents start empty and
        malformed records are skipped (both are audited).
        """
        state = await self._repository.load_state()
        for key, error in state.load_errors.items():
            await self._audit_logger.log(AuditEventBuilder.state_load_failed(key, error))

        self._log = TransactionLog.from_transactions(state.transactions)
        self._rules = list(state.rules)
        self._reconciler = self._new_reconciler(state.ledger)
        # The stored ledger is only a cache; recompute every balance
        self._reconciler.reconcile(since=date.min)
        self._schedule_save(
            self._storage_settings.financial_data_key,
            lambda: self._repository.save_ledger(self._reconciler.ledger),
        )

        await self._audit_logger.log(AuditEventBuilder.state_loaded(
            transactions=len(self._log),
            rules=len(self._rules),
            skipped_records=state.skipped_records,
        ))
        return state

    # ------------------------------------------------------------------
    # Transaction log
    # ------------------------------------------------------------------

    async def add_transaction(
        self,
        day: date,
        kind: TransactionKind,
        amount: Union[Decimal, int, float, str],
        description: str = "",
    ) -> InsertResult:
        """
        Add a transaction unless it duplicates an existing one.

        Raises:
            ValueError: If the transaction is malformed
        """
        candidate = Transaction(
            date=day,
            kind=kind,
            amount=amount,
            description=description,
        )
        result = self._log.insert(candidate)

        if not result.accepted:
            await self._audit_logger.log_duplicate_rejected(
                day=day.isoformat(),
                kind=candidate.kind.value,
                description=description,
                duplicate_of=result.duplicate_of,
            )
            return result

        self._after_log_change(candidate.date)
        await self._audit_logger.log_transaction_added(
            transaction_id=candidate.id,
            day=candidate.date.isoformat(),
            kind=candidate.kind.value,
            amount=str(candidate.amount),
        )
        return result

    async def update_transaction(self, transaction_id: str, **changes: Any) -> Transaction:
        """
        Replace fields of a transaction (same id).

        Raises:
            TransactionNotFoundError: If the id is unknown
            ValueError: If the new value is malformed
        """
        old, new = self._log.update(transaction_id, **changes)
        # Both the old and the new day changed
        self._after_log_change(min(old.date, new.date))
        await self._audit_logger.log_transaction_updated(
            transaction_id=transaction_id,
            old_date=old.date.isoformat(),
            new_date=new.date.isoformat(),
        )
        return new

    async def delete_transaction(self, transaction_id: str) -> Transaction:
        """
        Remove a transaction.

        Raises:
            TransactionNotFoundError: If the id is unknown
        """
        removed = self._log.delete(transaction_id)
        self._after_log_change(removed.date)
        await self._audit_logger.log_transaction_deleted(
            transaction_id=transaction_id,
            day=removed.date.isoformat(),
        )
        return removed

    # ------------------------------------------------------------------
    # Recurring rules
    # ------------------------------------------------------------------

    async def add_recurring_rule(
        self,
        kind: TransactionKind,
        amount: Union[Decimal, int, float, str],
        description: str,
        day_of_month: int,
        start_date: Optional[date] = None,
        termination: Optional[Termination] = None,
    ) -> RecurringRule:
        """
        Create a rule and materialize it over the upcoming window.

        Raises:
            ValueError: If the rule is malformed
        """
        rule = RecurringRule(
            kind=kind,
            amount=amount,
            description=description,
            day_of_month=day_of_month,
            # Without an explicit start the rule covers the current month
            start_date=start_date or Period.of(self._clock()).first_day,
            termination=termination or UntilCancelled(),
        )
        self._rules.append(rule)
        await self.materialize_upcoming()
        await self._audit_logger.log_rule_event(
            event_type=AuditEventType.RULE_CREATED,
            rule_id=rule.id,
            description=f"Recurring rule created: {rule.description!r}",
            details={
                "description": rule.description,
                "type": rule.kind.value,
                "amount": str(rule.amount),
                "day_of_month": rule.day_of_month,
                "frequency": rule.termination.frequency,
            },
        )
        return self.get_rule(rule.id)

    async def cancel_recurring_rule(self, rule_id: str) -> RecurringRule:
        """
        Deactivate a rule for good. Its transactions stay in the log.

        Raises:
            RuleNotFoundError: If the id is unknown
        """
        rule = self.get_rule(rule_id).deactivate()
        self._replace_rule(rule)
        self._save_rules()
        await self._audit_logger.log_rule_event(
            event_type=AuditEventType.RULE_CANCELLED,
            rule_id=rule_id,
            description=f"Recurring rule cancelled: {rule.description!r}",
            details={"description": rule.description},
        )
        return rule

    async def delete_recurring_rule(self, rule_id: str) -> RecurringRule:
        """
        Remove a rule. Its transactions stay in the log.

        Raises:
            RuleNotFoundError: If the id is unknown
        """
        rule = self.get_rule(rule_id)
        self._rules = [r for r in self._rules if r.id != rule_id]
        self._save_rules()
        await self._audit_logger.log_rule_event(
            event_type=AuditEventType.RULE_DELETED,
            rule_id=rule_id,
            description=f"Recurring rule deleted: {rule.description!r}",
            details={"description": rule.description},
        )
        return rule

    async def process_recurring(
        self,
        period: Period,
        today: Optional[date] = None,
    ) -> MaterializationResult:
        """Materialize every eligible rule for one period."""
        result = self._materializer.materialize(
            self._rules, period, self._log, today or self._clock()
        )
        await self._apply_materialization([result])
        return result

    async def materialize_upcoming(
        self,
        today: Optional[date] = None,
        months_ahead: Optional[int] = None,
    ) -> list[MaterializationResult]:
        """Materialize today's period and the following ones."""
        results = self._materializer.materialize_upcoming(
            self._rules, self._log, today or self._clock(), months_ahead
        )
        await self._apply_materialization(results)
        return results

    async def _apply_materialization(self, results: list[MaterializationResult]) -> None:
        if not results:
            return
        correlation_id = create_correlation_id()
        final = results[-1]
        self._log = final.log
        self._reconciler.log = final.log
        self._rules = final.rules

        inserted_dates = []
        for result in results:
            inserted_dates.extend(t.date for t in result.inserted)
            if result.skipped_past:
                continue
            if result.inserted or result.duplicates or result.deactivated:
                await self._audit_logger.log_recurring_materialized(
                    period=str(result.period),
                    inserted=len(result.inserted),
                    duplicates=result.duplicates,
                    deactivated=result.deactivated,
                    correlation_id=correlation_id,
                )
            for rule_id in result.deactivated:
                await self._audit_logger.log_rule_event(
                    event_type=AuditEventType.RULE_DEACTIVATED,
                    rule_id=rule_id,
                    description="Recurring rule finished its termination policy",
                    is_user_action=False,
                )

        self._save_rules()
        if inserted_dates:
            self._after_log_change(min(inserted_dates))

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def check_integrity(self, stored: bool = False) -> IntegrityReport:
        """
        Run the integrity checker.

        Args:
            stored: Check the persisted records (malformed ones included)
                instead of the in-memory log

        The ledger's balances are checked as well; nothing is repaired.
        """
        if stored:
            records = await self._repository.load_raw_transactions()
            report = self._checker.validate(records)
        else:
            report = self._checker.validate(self._log)

        balances = self._checker.check_balances(self._reconciler.ledger)
        if balances.errors:
            report = report.model_copy(update={
                "is_valid": False,
                "errors": report.errors + balances.errors,
            })

        await self._audit_logger.log(AuditEventBuilder.integrity_check_completed(
            is_valid=report.is_valid,
            error_count=len(report.errors),
            warning_count=len(report.warnings),
        ))
        return report

    async def remove_duplicates(self) -> list[Transaction]:
        """
        Delete content duplicates, keeping the first of each group.

        Only ever run on explicit user request.
        """
        removed = []
        for transaction_id in self._checker.find_duplicate_ids(self._log):
            removed.append(await self.delete_transaction(transaction_id))
        logger.info("duplicates_removed", count=len(removed))
        return removed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def clear_all(self) -> None:
        """Drop every transaction, rule and ledger entry, in memory and in storage."""
        await self.flush()
        self._log = TransactionLog()
        self._rules = []
        self._reconciler = self._new_reconciler()
        self._ledger_future = None
        await self._repository.clear()
        await self._audit_logger.log(AuditEventBuilder.state_cleared())

    async def flush(self) -> Ledger:
        """Wait for pending reconciliation passes and saves."""
        while self._reconciler.busy or self._background:
            await self._reconciler.flush()
            if self._background:
                await asyncio.gather(*list(self._background))
        return self._reconciler.ledger

    # ------------------------------------------------------------------
    # Pipeline internals
    # ------------------------------------------------------------------

    def _replace_rule(self, rule: RecurringRule) -> None:
        self._rules = [rule if r.id == rule.id else r for r in self._rules]

    def _after_log_change(self, since: date) -> None:
        self._schedule_save(
            self._storage_settings.transactions_key,
            lambda: self._repository.save_transactions(list(self._log)),
        )
        future = self._reconciler.request(since)
        if future is not self._ledger_future:
            self._ledger_future = future
            future.add_done_callback(self._on_reconciled)

    def _on_reconciled(self, future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self._schedule_save(
            self._storage_settings.financial_data_key,
            lambda: self._repository.save_ledger(future.result()),
        )

    def _save_rules(self) -> None:
        rules = list(self._rules)
        self._schedule_save(
            self._storage_settings.recurring_key,
            lambda: self._repository.save_rules(rules),
        )

    def _schedule_save(self, key: str, save: Callable[[], Awaitable[None]]) -> None:
        task = asyncio.get_running_loop().create_task(self._save(key, save))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _save(self, key: str, save: Callable[[], Awaitable[None]]) -> None:
        try:
            await save()
        except Exception as e:
            # Log failure but don't raise
            logger.error("save_failed", key=key, error=str(e))
            await self._audit_logger.log(AuditEventBuilder.save_failed(key, str(e)))


def create_diary(
    data_dir: Optional[str] = None,
    store: Optional[KeyValueStore] = None,
    ledger_settings: Optional[LedgerSettings] = None,
    storage_settings: Optional[StorageSettings] = None,
    clock: Callable[[], date] = date.today,
) -> FinanceDiary:
    """
    Factory function to create a wired FinanceDiary.

    Args:
        data_dir: Directory for the JSON file store. Falls back to the
            configured data_dir, then to in-memory storage.
        store: Explicit key-value store (overrides data_dir)

    Call `await diary.load()` before use.
    """
    app_settings = get_settings().app
    configure_logging("DEBUG" if app_settings.debug_mode else app_settings.log_level)

    status = validate_all_settings()
    failed = [name for name, ok in status.items() if ok is False]
    if failed:
        logger.warning(
            "settings_invalid",
            failed=failed,
            errors={name: status.get(f"{name}_error") for name in failed},
        )

    storage_settings = storage_settings or get_settings().storage

    if store is None:
        directory = data_dir or storage_settings.data_dir
        if directory:
            store = JsonFileKeyValueStore(directory)
        else:
            logger.info("storage_in_memory")
            store = InMemoryKeyValueStore()

    audit_logger = AuditLogger(KeyValueAuditStorage(
        store,
        storage_settings.audit_key,
        max_events=storage_settings.audit_max_events,
    ))
    return FinanceDiary(
        repository=DiaryStateRepository(store, storage_settings),
        audit_logger=audit_logger,
        ledger_settings=ledger_settings,
        storage_settings=storage_settings,
        clock=clock,
    )


class RuleNotFoundError(KeyError):
    """No recurring rule with the given id."""

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(rule_id)

    def __str__(self) -> str:
        return f"Recurring rule not found: {self.rule_id}"
