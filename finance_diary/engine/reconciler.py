"""
Reconciler

Keeps the ledger consistent with the transaction log.

A pass:
1. Aggregates the log by (date, kind)
2. Builds a fresh ledger holding exactly the dates in the log. Dates no
   longer in the log are dropped, and so are stale January 1st seeds.
3. Keeps the previous balances before the earliest dirty date (the
   caller's hint or the first date whose aggregates changed) and
   recalculates from there, re-deriving year seeds

The result only depends on the log: an incremental pass equals a rebuild
from scratch.

A pass is idempotent: reconciling an already reconciled ledger returns an
equal ledger.

DESIGN DECISION: One pass in flight, requests coalesce.
Async callers use `request()`. A single worker task drains a one-slot
mailbox: every request made while a pass is pending (or running) is folded
into the next pass over the latest log state. Requests are never dropped,
and a debounce window lets bursts of edits share one pass.
"""

import asyncio
import warnings
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

import structlog

from finance_diary.audit import AuditLogger
from finance_diary.config import get_settings
from finance_diary.currency import ZERO
from finance_diary.engine.cascade import CascadeRecalculator, RecalculationOverflow
from finance_diary.engine.transaction_log import TransactionLog
from finance_diary.models.audit import AuditEventBuilder
from finance_diary.models.ledger import Ledger, LedgerEntry
from finance_diary.models.transaction import TransactionKind

logger = structlog.get_logger(__name__)


def aggregate(log: TransactionLog) -> dict[date, LedgerEntry]:
    """Per-day sums of the log by kind. Balances are left at zero."""
    sums: dict[date, dict[TransactionKind, Decimal]] = defaultdict(
        lambda: {kind: ZERO for kind in TransactionKind}
    )
    for transaction in log:
        sums[transaction.date][transaction.kind] += transaction.amount

    return {
        day: LedgerEntry(
            credit=totals[TransactionKind.CREDIT],
            debit=totals[TransactionKind.DEBIT],
            incidental=totals[TransactionKind.INCIDENTAL],
        )
        for day, totals in sums.items()
    }


def _earliest(*days: Optional[date]) -> Optional[date]:
    present = [d for d in days if d is not None]
    return min(present) if present else None


def rebuild_ledger(
    log: TransactionLog,
    previous: Optional[Ledger] = None,
    since: Optional[date] = None,
    recalculator: Optional[CascadeRecalculator] = None,
) -> tuple[Ledger, Optional[date]]:
    """
    Derive the ledger for `log`.

    Args:
        log: Source of truth
        previous: Ledger from the last pass (not mutated)
        since: Caller's dirty-date hint. For an update pass the earlier of
            the old and new dates. date.min forces a full recalculation.
        recalculator: Cascade recalculator to use

    Returns:
        (ledger, dirty_from). dirty_from is None when no balance changed.
    """
    recalculator = recalculator or CascadeRecalculator()
    previous = previous if previous is not None else Ledger()
    aggregates = aggregate(log)

    changed: Optional[date] = None
    for day, entry in previous.items():
        if day in aggregates:
            continue
        # Jan 1 seeds are re-derived by the cascade. A dropped December day
        # can move the close of its year.
        if entry.credit or entry.debit or entry.incidental or day.month == 12:
            changed = _earliest(changed, day)

    for day, totals in aggregates.items():
        entry = previous.get(day)
        if entry is None or not entry.same_aggregates(totals):
            changed = _earliest(changed, day)

    dirty_from = _earliest(changed, since)
    ledger = Ledger()
    for day, entry in aggregates.items():
        kept = previous.get(day)
        if kept is not None and (dirty_from is None or day < dirty_from):
            entry.balance = kept.balance
        ledger.set(day, entry)

    if not ledger:
        return ledger, dirty_from
    return recalculator.recalculate(ledger, dirty_from or date.max), dirty_from


class Reconciler:
    """
    Owner of the derived ledger.

    `reconcile()` runs a pass synchronously; `request()` schedules a
    coalesced pass on the running event loop.
    """

    def __init__(
        self,
        log: TransactionLog,
        ledger: Optional[Ledger] = None,
        recalculator: Optional[CascadeRecalculator] = None,
        audit_logger: Optional[AuditLogger] = None,
        debounce_ms: Optional[int] = None,
    ):
        self._log = log
        self._ledger = ledger.copy() if ledger is not None else Ledger()
        self._recalculator = recalculator or CascadeRecalculator()
        self._audit = audit_logger
        if debounce_ms is None:
            debounce_ms = get_settings().ledger.reconcile_debounce_ms
        self._debounce = debounce_ms / 1000

        # One-slot mailbox
        self._pending: Optional[asyncio.Future] = None
        self._pending_since: Optional[date] = None
        self._pending_requests = 0
        self._worker: Optional[asyncio.Task] = None
        self._last_dirty_from: Optional[date] = None
        self._last_overflows: list[RecalculationOverflow] = []
        self.passes = 0

    @property
    def ledger(self) -> Ledger:
        """Copy of the current ledger."""
        return self._ledger.copy()

    @property
    def log(self) -> TransactionLog:
        return self._log

    @log.setter
    def log(self, log: TransactionLog) -> None:
        self._log = log

    @property
    def busy(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def reconcile(self, since: Optional[date] = None) -> Ledger:
        """
        Run one pass now.

        Overflow warnings from the cascade are re-emitted to the caller and
        kept for the audit trail.

        Returns:
            Copy of the reconciled ledger
        """
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            ledger, dirty_from = rebuild_ledger(
                self._log,
                previous=self._ledger,
                since=since,
                recalculator=self._recalculator,
            )
        for warning in caught:
            warnings.warn(warning.message, stacklevel=2)
        self._last_overflows = [
            w.message for w in caught if isinstance(w.message, RecalculationOverflow)
        ]
        self._ledger = ledger
        self.passes += 1
        logger.info(
            "reconcile_pass",
            dirty_from=dirty_from.isoformat() if dirty_from else None,
            transactions=len(self._log),
            entries=len(ledger),
        )
        self._last_dirty_from = dirty_from
        return ledger.copy()

    def request(self, since: Optional[date] = None) -> "asyncio.Future[Ledger]":
        """
        Ask for a pass.

        Must be called from a running event loop. Returns a future resolved
        with the ledger of the pass that covers this request.
        """
        loop = asyncio.get_running_loop()
        if self._pending is None:
            self._pending = loop.create_future()
            self._pending_since = since
            self._pending_requests = 0
        else:
            self._pending_since = _earliest(self._pending_since, since)
        self._pending_requests += 1

        if not self.busy:
            self._worker = loop.create_task(self._drain())
        return self._pending

    async def _drain(self) -> None:
        while self._pending is not None:
            if self._debounce:
                await asyncio.sleep(self._debounce)
            future = self._pending
            since = self._pending_since
            requests = self._pending_requests
            self._pending = None
            self._pending_since = None
            self._pending_requests = 0

            try:
                ledger = self.reconcile(since)
            except Exception as e:
                logger.error("reconcile_pass_failed", error=str(e))
                if not future.done():
                    future.set_exception(e)
                if self._audit:
                    await self._audit.log_error(
                        error_type="reconcile_pass_failed",
                        error_message=str(e),
                        details={"since": since.isoformat() if since else None},
                    )
                continue

            if not future.done():
                future.set_result(ledger)
            if requests > 1:
                logger.debug("reconcile_requests_coalesced", requests=requests)
            if self._audit:
                dirty_from = self._last_dirty_from
                await self._audit.log(AuditEventBuilder.reconciliation_completed(
                    dirty_from=dirty_from.isoformat() if dirty_from else None,
                    entries=len(ledger),
                    requests=requests,
                ))
                for overflow in self._last_overflows:
                    await self._audit.log(AuditEventBuilder.recalculation_overflow(
                        last_year=overflow.last_year,
                        carry=str(overflow.carry),
                    ))

    async def flush(self) -> Ledger:
        """Wait until no pass is pending or running."""
        while self.busy:
            await asyncio.shield(self._worker)
        return self.ledger
