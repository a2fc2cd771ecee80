from typing import Dict, List, Optional

from bgqueue.queue.service import BatchQueue


class QueueRegistry:
    """BatchQueues served by this process, keyed by process id."""

    def __init__(self):
        self._queues: Dict[str, BatchQueue] = {}

    def register(self, queue: BatchQueue) -> BatchQueue:
        if queue.process_id in self._queues:
            raise ValueError(f"Queue {queue.process_id} is already registered")
        self._queues[queue.process_id] = queue
        return queue

    def get(self, process_id: str) -> Optional[BatchQueue]:
        return self._queues.get(process_id)

    def process_ids(self) -> List[str]:
        return list(self._queues)


# Global reference populated during app lifespan
_registry_instance: Optional[QueueRegistry] = None


def get_queue_registry() -> QueueRegistry:
    """FastAPI Dependency for accessing the registered queues."""
    if _registry_instance is None:
        raise RuntimeError("Queue registry is not initialized.")
    return _registry_instance


def set_queue_registry(registry: Optional[QueueRegistry]):
    global _registry_instance
    _registry_instance = registry
