"""Client-side persisted key/value storage.

Mirrors the browser ``localStorage`` contract: string keys, string values,
synchronous access. Implementations raise ``StorageError`` when the backing
medium cannot be used; readers decide whether that means "absent".
"""

from __future__ import annotations

import json
import os
import threading

from abc import ABC, abstractmethod
from pathlib import Path

from ..exceptions import StorageError


class LocalStorage(ABC):
    """Abstract string key/value store."""

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Return the stored value or None if the key is not set.

        Raises
        ------
        StorageError
            If the storage cannot be read.
        """
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Delete ``key``. Deleting a missing key is not an error."""
        ...


class MemoryStorage(LocalStorage):
    """In-process storage, for tests and headless use."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class JsonFileStorage(LocalStorage):
    """Storage persisted as a single JSON object on disk.

    Every write replaces the file atomically (temp file + ``os.replace``)
    so a crash mid-write leaves the previous contents intact.

    Parameters
    ----------
    path : str or Path
        Location of the JSON file. Parent directories are created on
        first write.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            msg = f"Cannot read storage file {self.path}"
            raise StorageError(msg) from exc
        if not isinstance(data, dict):
            msg = f"Storage file {self.path} does not hold a JSON object"
            raise StorageError(msg)
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(data, fh, separators=(",", ":"), sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as exc:
            msg = f"Cannot write storage file {self.path}"
            raise StorageError(msg) from exc

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)
