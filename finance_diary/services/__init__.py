"""Services package."""

from finance_diary.services.storage import (
    AuditStorageInterface,
    DiaryState,
    DiaryStateRepository,
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueAuditStorage,
    KeyValueStore,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "DiaryState",
    "DiaryStateRepository",
    "InMemoryAuditStorage",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueAuditStorage",
    "KeyValueStore",
    "StorageConnectionError",
    "StorageError",
]
