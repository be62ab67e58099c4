"""
Abstract Storage Interface

DESIGN DECISION: Persistence is an external collaborator. The engine only
needs a key-value store holding one JSON document per key:
1. The store can be swapped (browser storage, files, a database) freely
2. In-memory storage keeps tests hermetic
3. The engine never depends on durability: saves are fire-and-forget

Values cross this boundary as raw JSON text. Decoding (and tolerating
malformed text) is the repository's job, not the store's.
"""

from abc import ABC, abstractmethod
from typing import Optional

from finance_diary.models.audit import AuditEvent


class KeyValueStore(ABC):
    """
    Abstract interface for the key-value persistence collaborator.
    """

    @abstractmethod
    async def load(self, key: str) -> Optional[str]:
        """
        Load the raw JSON text stored under a key.

        Args:
            key: Storage key (e.g. 'transactions')

        Returns:
            The stored text, or None if the key is absent
        """
        pass

    @abstractmethod
    async def save(self, key: str, value: str) -> None:
        """
        Store raw JSON text under a key, replacing any previous value.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageConnectionError(StorageError):
    """Could not reach the storage backend."""
    pass
