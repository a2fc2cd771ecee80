import time

import pytest

from bgqueue.config import QueueConfig
from bgqueue.client.trigger import TriggerResult
from bgqueue.queue.models import DONE
from bgqueue.queue.service import BatchQueue
from bgqueue.store.kv import MemoryStore


class RecordingTrigger:
    def __init__(self, ok=True):
        self.ok = ok
        self.calls = []

    def send(self, params, payload=None, timeout=0.01, blocking=False, extra_headers=None):
        self.calls.append(params)
        if self.ok:
            return TriggerResult(ok=True, status_code=202)
        return TriggerResult(ok=False, error="connection refused")


class FakeScheduler:
    def __init__(self):
        self.jobs = {}
        self.registrations = 0

    def register_interval(self, job_id, period_seconds, callback):
        if job_id in self.jobs:
            return False
        self.jobs[job_id] = (period_seconds, callback)
        self.registrations += 1
        return True

    def unregister(self, job_id):
        return self.jobs.pop(job_id, None) is not None

    def is_registered(self, job_id):
        return job_id in self.jobs

    def fire(self, job_id):
        _, callback = self.jobs[job_id]
        return callback()


def done_handler(item, group):
    return DONE


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def trigger():
    return RecordingTrigger()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def make_queue(store, trigger, scheduler):
    def _make(handler=done_handler, **overrides):
        overrides.setdefault("process_id", "test_queue")
        overrides.setdefault("memory_limit", "1024G")
        return BatchQueue(QueueConfig(**overrides), store, trigger, scheduler, handler)
    return _make


@pytest.fixture
def hold_lock():
    """Mark a queue as running, as another process holding the lock would."""
    def _hold(queue, ttl=60):
        queue.store.put(queue.config.lock_key, time.time(), ttl=ttl)
    return _hold
