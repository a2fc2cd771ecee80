import logging
import threading
from typing import Callable, Dict

logger = logging.getLogger(__name__)


class IntervalScheduler:
    """Runs registered callbacks on a fixed interval, one daemon thread per id."""

    def __init__(self):
        self._jobs: Dict[str, threading.Event] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def register_interval(self, job_id: str, period_seconds: float, callback: Callable[[], None]) -> bool:
        with self._lock:
            if job_id in self._jobs:
                return False
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run, args=(job_id, period_seconds, callback, stop_event),
                name=f"interval-{job_id}", daemon=True,
            )
            self._jobs[job_id] = stop_event
            self._threads[job_id] = thread
        thread.start()
        logger.info(f"Scheduled {job_id} every {period_seconds}s")
        return True

    def unregister(self, job_id: str) -> bool:
        with self._lock:
            stop_event = self._jobs.pop(job_id, None)
            self._threads.pop(job_id, None)
        if stop_event is None:
            return False
        stop_event.set()
        logger.info(f"Unscheduled {job_id}")
        return True

    def is_registered(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def _run(self, job_id, period_seconds, callback, stop_event):
        while not stop_event.wait(period_seconds):
            try:
                callback()
            except Exception as e:
                logger.error(f"Scheduled callback {job_id} failed: {e}")

    def shutdown(self, timeout: float = 5.0):
        with self._lock:
            jobs = list(self._jobs.items())
            threads = dict(self._threads)
            self._jobs.clear()
            self._threads.clear()
        for job_id, stop_event in jobs:
            stop_event.set()
        for job_id, thread in threads.items():
            if thread is not threading.current_thread():
                thread.join(timeout)
