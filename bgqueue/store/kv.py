import copy
import time
import threading
from typing import Any, Optional, Tuple

from bgqueue.store.storage import StoreDocument
from bgqueue.store.models import (
    Intent,
    PutIntent,
    AddIntent,
    UpdateIntent,
    DeleteIntent,
    PurgeExpiredIntent,
    is_expired,
)


class KeyValueStore:
    """
    Durable mapping from string key to a serialised value.

    Rows carry a monotonic insertion id so prefix scans can return the
    oldest row first. Every operation is atomic for a single key only.
    """

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        raise NotImplementedError

    def add(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Insert only when the key is free. Never overwrites a live row."""
        raise NotImplementedError

    def update(self, key: str, value: Any) -> bool:
        raise NotImplementedError

    def delete(self, *keys: str) -> int:
        raise NotImplementedError

    def count_by_prefix(self, prefix: str, exclude_suffix: Optional[str] = None) -> int:
        raise NotImplementedError

    def first_by_prefix(self, prefix: str, ascending: bool = True,
                        exclude_suffix: Optional[str] = None) -> Optional[Tuple[str, Any]]:
        raise NotImplementedError


class _DocumentStore(KeyValueStore):
    """Shared read path for stores that keep every row in one JSON document."""

    def _snapshot(self) -> dict:
        raise NotImplementedError

    def _apply(self, intent: Intent):
        raise NotImplementedError

    def _live_entries(self, prefix: str = "", exclude_suffix: Optional[str] = None):
        now = time.time()
        entries = self._snapshot().get("entries", {})
        for key, entry in entries.items():
            if not key.startswith(prefix) or is_expired(entry, now):
                continue
            if exclude_suffix and key.endswith(exclude_suffix):
                continue
            yield key, entry

    def get(self, key, default=None):
        entry = self._snapshot().get("entries", {}).get(key)
        if entry is None or is_expired(entry, time.time()):
            return default
        return entry["value"]

    def put(self, key, value, ttl=None):
        self._apply(PutIntent(key, value, ttl))

    def add(self, key, value, ttl=None):
        return self._apply(AddIntent(key, value, ttl))

    def update(self, key, value):
        return self._apply(UpdateIntent(key, value))

    def delete(self, *keys):
        return self._apply(DeleteIntent(*keys))

    def purge_expired(self) -> int:
        return self._apply(PurgeExpiredIntent())

    def count_by_prefix(self, prefix, exclude_suffix=None):
        return sum(1 for _ in self._live_entries(prefix, exclude_suffix))

    def first_by_prefix(self, prefix, ascending=True, exclude_suffix=None):
        rows = sorted(self._live_entries(prefix, exclude_suffix), key=lambda row: row[1]["id"], reverse=not ascending)
        if not rows:
            return None
        key, entry = rows[0]
        return key, entry["value"]


class JsonFileStore(_DocumentStore):
    """KeyValueStore persisted in a StoreDocument, safe across processes."""

    def __init__(self, filename_base: str = "queue", max_retries: int = 10):
        self.document = StoreDocument(filename_base, prune=PurgeExpiredIntent().apply)
        self.max_retries = max_retries

    def _snapshot(self):
        document, _ = self.document.snapshot()
        return document

    def _apply(self, intent):
        return self.document.transact(intent.apply, max_retries=self.max_retries)


class MemoryStore(_DocumentStore):
    """In-process KeyValueStore. Nothing survives a restart."""

    def __init__(self):
        self._data: dict = {}
        self._lock = threading.Lock()

    def _snapshot(self):
        with self._lock:
            return copy.deepcopy(self._data)

    def _apply(self, intent):
        with self._lock:
            return intent.apply(self._data)

    def put(self, key, value, ttl=None):
        super().put(key, copy.deepcopy(value), ttl)

    def add(self, key, value, ttl=None):
        return super().add(key, copy.deepcopy(value), ttl)

    def update(self, key, value):
        return super().update(key, copy.deepcopy(value))
