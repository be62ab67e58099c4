"""
JSON File Storage Implementation

One file per key inside a data directory. Writes go to a temporary file
that is then renamed over the target, so a crash mid-write leaves the
previous document intact.

TRADEOFFS:
- No locking across processes (the diary has a single writer)
- Whole-document rewrites (documents are small for personal use)
"""

import os
import re
from pathlib import Path
from typing import Optional, Union

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finance_diary.services.storage.interface import (
    KeyValueStore,
    StorageConnectionError,
    StorageError,
)

logger = structlog.get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileKeyValueStore(KeyValueStore):
    """
    Directory-backed key-value store.

    Transient filesystem errors are retried before surfacing as StorageError.
    """

    def __init__(self, data_dir: Union[str, Path]):
        self._dir = Path(data_dir)

    def _path_for(self, key: str) -> Path:
        if not key:
            raise StorageError("Storage key must not be empty")
        return self._dir / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    def _write(self, path: Path, value: str) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(value, encoding="utf-8")
        os.replace(tmp_path, path)

    @retry(
        retry=retry_if_exception_type(PermissionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    async def load(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return self._read(path)
        except OSError as e:
            raise StorageConnectionError(f"Failed to read {path}: {e}")

    async def save(self, key: str, value: str) -> None:
        path = self._path_for(key)
        try:
            self._write(path, value)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}")
        logger.debug("storage_saved", key=key, path=str(path), size=len(value))

    async def delete(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}")
        return True
