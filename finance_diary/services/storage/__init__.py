"""
Storage Services Package

Provides the abstract key-value interface the diary persists through,
plus in-memory and JSON-file implementations and the typed repository.
"""

from finance_diary.services.storage.interface import (
    AuditStorageInterface,
    KeyValueStore,
    StorageConnectionError,
    StorageError,
)
from finance_diary.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
)
from finance_diary.services.storage.json_file import JsonFileKeyValueStore
from finance_diary.services.storage.repository import (
    DiaryState,
    DiaryStateRepository,
    KeyValueAuditStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStore",
    # Exceptions
    "StorageConnectionError",
    "StorageError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueAuditStorage",
    # Repository
    "DiaryState",
    "DiaryStateRepository",
]
