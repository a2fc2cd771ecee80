import time

from bgqueue.store.kv import KeyValueStore


class ProcessLock:
    """
    Time-bound advisory lock kept in the shared store.

    The flag expires on its own after `ttl` seconds, so a crashed run never
    blocks the queue for good. It is advisory: once it expires under a run
    that is still going, a second run can take it, and the queue tolerates
    the resulting double pass through requeue.
    """

    def __init__(self, store: KeyValueStore, key: str):
        self.store = store
        self.key = key

    def is_held(self) -> bool:
        return self.store.get(self.key) is not None

    def try_acquire(self, ttl: float) -> bool:
        return self.store.add(self.key, time.time(), ttl=ttl)

    def release(self):
        self.store.delete(self.key)
