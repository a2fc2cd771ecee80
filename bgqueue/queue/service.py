import json
import time
import random
import hashlib
import logging
import threading
from typing import Any, Dict, List, Optional

from bgqueue.config import QueueConfig
from bgqueue.scheduler import IntervalScheduler
from bgqueue.store.kv import KeyValueStore
from bgqueue.store.storage import StoreError
from bgqueue.client.trigger import Trigger, TriggerResult
from bgqueue.queue import budget
from bgqueue.queue.lock import ProcessLock
from bgqueue.queue.models import Batch, TaskHandler, is_done, to_items

logger = logging.getLogger(__name__)

GROUP_SUFFIX = "_group"
# Hex digits of md5 entropy kept even when the process id is long
MIN_KEY_ENTROPY = 8
KEY_ATTEMPTS = 5


class BatchQueue:
    """
    Durable, self-pacing background queue.

    Producers push items and save them as a batch, then dispatch. The
    triggered run drains batches oldest-first until its time or memory
    budget runs out, checkpointing after every pass, and dispatches itself
    again while work remains. A periodic health check restarts processing
    if a dispatch was lost.
    """

    def __init__(self, config: QueueConfig, store: KeyValueStore, trigger: Trigger,
                 scheduler: IntervalScheduler, handler: TaskHandler):
        self.config = config
        self.store = store
        self.trigger = trigger
        self.scheduler = scheduler
        self.handler = handler

        self.lock = ProcessLock(store, config.lock_key)

        self._pending: List[Any] = []
        self._pending_lock = threading.Lock()

    @property
    def process_id(self) -> str:
        return self.config.process_id

    # --- Queue mutation ---

    def push(self, item: Any) -> "BatchQueue":
        with self._pending_lock:
            self._pending.append(item)
        return self

    def set_queue(self, items: List[Any]) -> "BatchQueue":
        with self._pending_lock:
            self._pending = list(items)
        return self

    def save(self, group: str = "default") -> Optional[str]:
        """Persist the pending items as one batch and start a fresh pending list."""
        with self._pending_lock:
            items, self._pending = self._pending, []
        try:
            return self.save_batch(items, group)
        except Exception:
            with self._pending_lock:
                self._pending = items + self._pending
            raise

    def save_batch(self, items: List[Any], group: str = "default") -> Optional[str]:
        if not items:
            return None
        for _ in range(KEY_ATTEMPTS):
            key = self.generate_key()
            if self.store.add(key, to_items(items)):
                break
        else:
            raise StoreError(f"Could not find a free batch key for {self.process_id}")
        try:
            self.store.put(key + GROUP_SUFFIX, group)
        except Exception:
            self.store.delete(key, key + GROUP_SUFFIX)
            raise
        logger.info(json.dumps({"event": "batch_saved", "key": key, "items": len(items), "group": group}))
        return key

    def update(self, key: str, items: Dict[str, Any]) -> bool:
        if not items:
            return False
        return self.store.update(key, items)

    def delete(self, key: str) -> "BatchQueue":
        self.store.delete(key, key + GROUP_SUFFIX)
        return self

    def generate_key(self, length: int = 64) -> str:
        """
        Unique batch key: prefix, hex timestamp, then md5 entropy.

        Only the entropy is trimmed to fit `length`, and never below
        MIN_KEY_ENTROPY digits, so a long process id yields a longer key
        rather than a colliding one.
        """
        head = self.config.batch_prefix + format(time.time_ns(), "016x")
        unique = hashlib.md5(f"{time.time()}{random.random()}".encode()).hexdigest()
        return head + unique[:max(MIN_KEY_ENTROPY, length - len(head))]

    # --- Queue inspection ---

    def get_batch(self) -> Optional[Batch]:
        """Oldest stored batch, or None when the queue is empty."""
        row = self.store.first_by_prefix(self.config.batch_prefix, exclude_suffix=GROUP_SUFFIX)
        if row is None:
            return None
        key, items = row
        group = self.store.get(key + GROUP_SUFFIX, "default")
        return Batch(key, to_items(items or {}), group)

    def pending_batches(self) -> int:
        return self.store.count_by_prefix(self.config.batch_prefix, exclude_suffix=GROUP_SUFFIX)

    def is_queue_empty(self) -> bool:
        return self.pending_batches() == 0

    # --- Lock ---

    def is_process_running(self) -> bool:
        return self.lock.is_held()

    def lock_process(self) -> bool:
        acquired = self.lock.try_acquire(self.config.lock_duration)
        if acquired:
            logger.info(json.dumps({"event": "process_locked", "process_id": self.process_id}))
        return acquired

    def unlock_process(self) -> "BatchQueue":
        self.lock.release()
        return self

    # --- Budgets ---

    def time_exceeded(self, run_budget: budget.TimeBudget) -> bool:
        return run_budget.exceeded()

    def memory_exceeded(self) -> bool:
        return budget.memory_exceeded(self.config.memory_fraction, self.config.memory_limit)

    def budget_exceeded(self, run_budget: budget.TimeBudget) -> bool:
        return self.time_exceeded(run_budget) or self.memory_exceeded()

    # --- Processing ---

    def maybe_handle(self) -> bool:
        """Entry point for a triggered run. Returns False when there was nothing to do."""
        if self.is_process_running():
            logger.info(json.dumps({"event": "skip_run", "reason": "locked", "process_id": self.process_id}))
            return False
        if self.is_queue_empty():
            logger.info(json.dumps({"event": "skip_run", "reason": "empty", "process_id": self.process_id}))
            return False
        return self.handle()

    def handle(self) -> bool:
        """
        Drain batches oldest-first until a budget trips or the queue empties.

        Each batch is written back (or deleted) after its pass, so a run that
        stops early leaves only unprocessed and requeued items behind. When work
        remains the queue dispatches itself again; otherwise it completes.
        """
        if not self.lock_process():
            return False
        # Per run, so an overlapping run on this instance keeps its own clock
        run_budget = budget.TimeBudget(self.config.time_limit).start()

        try:
            while True:
                batch = self.get_batch()
                if batch is None:
                    break
                self._process_batch(batch, run_budget)
                if self.budget_exceeded(run_budget) or self.is_queue_empty():
                    break
        finally:
            self.unlock_process()

        if self.is_queue_empty():
            self.complete()
        else:
            self.dispatch()
        return True

    def _process_batch(self, batch: Batch, run_budget: budget.TimeBudget):
        start_t = time.perf_counter()
        processed = 0
        try:
            for sub_key, item in list(batch.items.items()):
                result = self.handler(item, batch.group)
                processed += 1
                if is_done(result):
                    del batch.items[sub_key]
                else:
                    batch.items[sub_key] = result

                if self.budget_exceeded(run_budget):
                    break
        except Exception as e:
            logger.error(f"Task handler failed on batch {batch.key} after {processed} item(s): {e}")
            raise
        finally:
            self._checkpoint(batch, processed, start_t)

    def _checkpoint(self, batch: Batch, processed: int, start_t: float):
        elapsed_ms = (time.perf_counter() - start_t) * 1000
        if batch.items:
            if not self.update(batch.key, batch.items):
                # Cancelled or drained by a concurrent run while we held it
                logger.warning(json.dumps({"event": "batch_vanished", "key": batch.key}))
                return
            logger.info(json.dumps({
                "event": "batch_checkpoint",
                "key": batch.key,
                "processed": processed,
                "remaining": len(batch.items),
                "duration_ms": round(elapsed_ms, 2),
            }))
        else:
            self.delete(batch.key)
            logger.info(json.dumps({
                "event": "batch_drained",
                "key": batch.key,
                "processed": processed,
                "duration_ms": round(elapsed_ms, 2),
            }))

    def dispatch(self) -> TriggerResult:
        """Ensure the health check is scheduled, then ask for a run without waiting on it."""
        self.schedule_event()
        result = self.trigger.send({"action": self.process_id}, timeout=self.config.trigger_timeout)
        if result.ok:
            logger.info(json.dumps({"event": "dispatch", "process_id": self.process_id}))
        else:
            logger.warning(json.dumps({"event": "dispatch_failed", "process_id": self.process_id, "error": result.error}))
        return result

    def complete(self):
        """Called once the queue is empty. Overrides must call through."""
        self.clear_scheduled_event()
        logger.info(json.dumps({"event": "queue_complete", "process_id": self.process_id}))

    # --- Health check ---

    def schedule_event(self) -> bool:
        return self.scheduler.register_interval(
            self.config.health_check_id, self.config.health_check_period, self.handle_health_check
        )

    def clear_scheduled_event(self) -> bool:
        return self.scheduler.unregister(self.config.health_check_id)

    def handle_health_check(self) -> bool:
        if self.is_process_running():
            logger.info(json.dumps({"event": "health_check", "result": "running", "process_id": self.process_id}))
            return False
        if self.is_queue_empty():
            logger.info(json.dumps({"event": "health_check", "result": "empty", "process_id": self.process_id}))
            self.clear_scheduled_event()
            return False
        logger.warning(json.dumps({"event": "health_check", "result": "restart", "process_id": self.process_id}))
        return self.handle()

    # --- Cancellation ---

    def cancel(self) -> Optional[str]:
        """Remove the oldest batch and stop the health check. Best effort, one batch per call."""
        if self.is_queue_empty():
            return None
        batch = self.get_batch()
        if batch is None:
            return None
        self.delete(batch.key)
        self.clear_scheduled_event()
        logger.info(json.dumps({"event": "queue_cancelled", "key": batch.key, "process_id": self.process_id}))
        return batch.key

    def status(self) -> Dict[str, Any]:
        return {
            "process_id": self.process_id,
            "pending_batches": self.pending_batches(),
            "running": self.is_process_running(),
            "health_check_scheduled": self.scheduler.is_registered(self.config.health_check_id),
        }
