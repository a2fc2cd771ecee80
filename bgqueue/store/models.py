import time


def _entries(data: dict) -> dict:
    if "entries" not in data:
        data["entries"] = {}
    return data["entries"]


def is_expired(entry: dict, now: float) -> bool:
    expires_at = entry.get("expires_at")
    return expires_at is not None and expires_at <= now


class Intent:
    def apply(self, data: dict) -> any:
        raise NotImplementedError


class PutIntent(Intent):
    """Create or replace a row. An existing row keeps its insertion id."""
    def __init__(self, key: str, value, ttl: float = None):
        self.key = key
        self.value = value
        self.ttl = ttl

    def apply(self, data: dict):
        now = time.time()
        entries = _entries(data)
        entry = entries.get(self.key)
        if entry is None or is_expired(entry, now):
            data["next_id"] = data.get("next_id", 0) + 1
            entry = {"id": data["next_id"]}
            # Re-insert so the document's key order follows insertion id
            entries.pop(self.key, None)
            entries[self.key] = entry
        entry["value"] = self.value
        entry["expires_at"] = now + self.ttl if self.ttl is not None else None
        return entry["id"]


class AddIntent(PutIntent):
    """Insert a row only if no live row holds the key. Returns False otherwise."""
    def apply(self, data: dict):
        entry = _entries(data).get(self.key)
        if entry is not None and not is_expired(entry, time.time()):
            return False
        super().apply(data)
        return True


class UpdateIntent(Intent):
    """Overwrite the value of a live row. Missing rows are left missing."""
    def __init__(self, key: str, value):
        self.key = key
        self.value = value

    def apply(self, data: dict):
        entry = _entries(data).get(self.key)
        if entry is None or is_expired(entry, time.time()):
            return False
        entry["value"] = self.value
        return True


class DeleteIntent(Intent):
    def __init__(self, *keys: str):
        self.keys = keys

    def apply(self, data: dict):
        entries = _entries(data)
        removed = 0
        for key in self.keys:
            if entries.pop(key, None) is not None:
                removed += 1
        return removed


class PurgeExpiredIntent(Intent):
    def apply(self, data: dict):
        now = time.time()
        entries = _entries(data)
        expired = [key for key, entry in entries.items() if is_expired(entry, now)]
        for key in expired:
            del entries[key]
        return len(expired)
