"""
Diary State Repository

Reads and writes the three documents the diary keeps in the key-value
store (ledger, transaction log, recurring rules) plus the audit trail.

IMPORTANT: Loading never fails. An absent key is a first run; malformed
JSON or malformed records are logged and treated as empty/skipped. The
ledger document is only a cache, so losing it costs a rebuild, nothing more.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

import structlog

from finance_diary.config import StorageSettings, get_settings
from finance_diary.models.audit import AuditEvent
from finance_diary.models.ledger import Ledger
from finance_diary.models.recurring import RecurringRule
from finance_diary.models.transaction import Transaction
from finance_diary.services.storage.interface import (
    AuditStorageInterface,
    KeyValueStore,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class DiaryState:
    """Everything loaded from storage in one go."""

    transactions: list[Transaction] = field(default_factory=list)
    ledger: Ledger = field(default_factory=Ledger)
    rules: list[RecurringRule] = field(default_factory=list)
    # key -> error message for documents that could not be decoded
    load_errors: dict[str, str] = field(default_factory=dict)
    skipped_records: int = 0


class DiaryStateRepository:
    """
    Typed access to the diary documents in a KeyValueStore.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: Optional[StorageSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().storage

    @property
    def keys(self) -> list[str]:
        return [
            self._settings.financial_data_key,
            self._settings.transactions_key,
            self._settings.recurring_key,
        ]

    async def _load_json(self, key: str, state: DiaryState) -> Any:
        raw = await self._store.load(key)
        if raw is None or raw == "":
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("state_document_malformed", key=key, error=str(e))
            state.load_errors[key] = str(e)
            return None

    def _decode_list(
        self,
        key: str,
        document: Any,
        decode: Callable[[dict], T],
        state: DiaryState,
    ) -> list[T]:
        if document is None:
            return []
        if not isinstance(document, list):
            logger.warning("state_document_malformed", key=key, error="expected a list")
            state.load_errors[key] = "expected a list"
            return []

        items = []
        for record in document:
            try:
                if not isinstance(record, dict):
                    raise ValueError("record is not an object")
                items.append(decode(record))
            except ValueError as e:
                state.skipped_records += 1
                logger.warning("state_record_skipped", key=key, error=str(e))
        return items

    async def load_raw_transactions(self) -> list[Any]:
        """
        Raw transaction records, malformed ones included.

        Used by the integrity checker, which must see what the typed loader
        skips.
        """
        document = await self._load_json(self._settings.transactions_key, DiaryState())
        return document if isinstance(document, list) else []

    async def load_state(self) -> DiaryState:
        """Load ledger, transactions and rules, tolerating any damage."""
        state = DiaryState()

        transactions = await self._load_json(self._settings.transactions_key, state)
        state.transactions = self._decode_list(
            self._settings.transactions_key,
            transactions,
            Transaction.from_storage_dict,
            state,
        )

        rules = await self._load_json(self._settings.recurring_key, state)
        state.rules = self._decode_list(
            self._settings.recurring_key,
            rules,
            RecurringRule.from_storage_dict,
            state,
        )

        ledger = await self._load_json(self._settings.financial_data_key, state)
        if ledger is not None:
            state.ledger = Ledger.from_storage_dict(ledger)

        logger.info(
            "state_loaded",
            transactions=len(state.transactions),
            rules=len(state.rules),
            ledger_entries=len(state.ledger),
            load_errors=sorted(state.load_errors),
            skipped_records=state.skipped_records,
        )
        return state

    async def save_transactions(self, transactions: list[Transaction]) -> None:
        await self._store.save(
            self._settings.transactions_key,
            json.dumps([t.to_storage_dict() for t in transactions], ensure_ascii=False),
        )

    async def save_ledger(self, ledger: Ledger) -> None:
        await self._store.save(
            self._settings.financial_data_key,
            json.dumps(ledger.to_storage_dict(), ensure_ascii=False),
        )

    async def save_rules(self, rules: list[RecurringRule]) -> None:
        await self._store.save(
            self._settings.recurring_key,
            json.dumps([r.to_storage_dict() for r in rules], ensure_ascii=False),
        )

    async def clear(self) -> None:
        for key in self.keys:
            await self._store.delete(key)


class KeyValueAuditStorage(AuditStorageInterface):
    """
    Audit trail kept as a JSON list under one key of a KeyValueStore.

    Append-only and bounded: each append rewrites the list with one more
    event, dropping the oldest beyond `max_events`.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: Optional[str] = None,
        max_events: Optional[int] = None,
    ):
        storage_settings = get_settings().storage
        self._store = store
        self._key = key or storage_settings.audit_key
        self._max_events = max_events or storage_settings.audit_max_events

    async def _events(self) -> list[AuditEvent]:
        raw = await self._store.load(self._key)
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except ValueError as e:
            logger.warning("audit_document_malformed", key=self._key, error=str(e))
            return []
        events = []
        for record in records if isinstance(records, list) else []:
            try:
                events.append(AuditEvent.model_validate(record))
            except ValueError:
                logger.warning("audit_record_skipped", key=self._key)
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        events = await self._events()
        events.append(event)
        if len(events) > self._max_events:
            logger.debug(
                "audit_trail_trimmed",
                key=self._key,
                dropped=len(events) - self._max_events,
            )
            events = events[-self._max_events:]
        await self._store.save(
            self._key,
            json.dumps([e.to_log_dict() for e in events], ensure_ascii=False),
        )
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return [
            event for event in await self._events()
            if event.entity_type == entity_type and event.entity_id == entity_id
        ]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(await self._events()))[:limit]
