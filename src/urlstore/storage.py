"""Key/value persistence for tokens and ``local:`` URLs.

:class:`KeyValueStore` is the small string-to-string interface the rest of
the package depends on. Two implementations are provided:

* :class:`MemoryStore` -- a plain dict, for tests and ephemeral sessions.
* :class:`DiskStore` -- a :class:`diskcache.Cache` in the data directory, so
  stored values survive restarts.

:func:`get_default_storage` returns the process-wide store selected by the
``storage`` setting.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import diskcache

from urlstore.config import get_data_dir, resolve_settings


class KeyValueStore(ABC):
    """String key/value store. Missing keys read as ``None``."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete *key*; a missing key is not an error."""

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None


class MemoryStore(KeyValueStore):
    """In-memory store backed by a dict."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class DiskStore(KeyValueStore):
    """Persistent store backed by :mod:`diskcache`.

    Args:
        directory: Cache directory. Defaults to ``<data dir>/store``.
    """

    def __init__(self, directory: str | Path | None = None) -> None:
        self._directory = Path(directory) if directory else get_data_dir() / "store"
        self._cache = diskcache.Cache(str(self._directory))

    @property
    def directory(self) -> Path:
        return self._directory

    def get(self, key: str) -> Optional[str]:
        return self._cache.get(key)

    def set(self, key: str, value: str) -> None:
        self._cache.set(key, value)

    def remove(self, key: str) -> None:
        self._cache.delete(key)

    def keys(self) -> list[str]:
        return list(self._cache.iterkeys())

    def close(self) -> None:
        self._cache.close()


_default_storage: Optional[KeyValueStore] = None
_lock = threading.Lock()


def get_default_storage() -> KeyValueStore:
    """Return the process-wide store, creating it on first use."""
    global _default_storage
    with _lock:
        if _default_storage is None:
            settings = resolve_settings()
            if settings.storage == "memory":
                _default_storage = MemoryStore()
            else:
                _default_storage = DiskStore()
        return _default_storage


def set_default_storage(storage: Optional[KeyValueStore]) -> None:
    """Replace the process-wide store (``None`` resets to lazy creation)."""
    global _default_storage
    with _lock:
        _default_storage = storage
