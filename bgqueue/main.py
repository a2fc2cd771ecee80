import argparse
import importlib
import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI

from bgqueue.config import AppConfig, QueueConfig, settings
from bgqueue.client.trigger import HttpTrigger, Trigger
from bgqueue.scheduler import IntervalScheduler
from bgqueue.store.kv import JsonFileStore, KeyValueStore
from bgqueue.queue.dependencies import QueueRegistry, set_queue_registry
from bgqueue.queue.router import router as queue_router
from bgqueue.queue.service import BatchQueue

logging.basicConfig(level=logging.INFO, format='[%(process)d] %(message)s')
logger = logging.getLogger("bgqueue")


def load_handler(path: str) -> Callable:
    """Resolve a "package.module:function" task handler path."""
    module_name, sep, attr = path.partition(":")
    if not sep or not attr:
        raise ValueError(f"Task handler must look like 'module:function', got {path!r}")
    handler = getattr(importlib.import_module(module_name), attr)
    if not callable(handler):
        raise TypeError(f"Task handler {path!r} is not callable")
    return handler


def build_registry(config: AppConfig, store: KeyValueStore, trigger: Trigger,
                   scheduler: IntervalScheduler) -> QueueRegistry:
    registry = QueueRegistry()
    for process_id, handler_path in config.task_handlers.items():
        queue = BatchQueue(
            QueueConfig.from_settings(config, process_id),
            store, trigger, scheduler, load_handler(handler_path),
        )
        registry.register(queue)
        logger.info({"event": "queue_registered", "process_id": process_id, "handler": handler_path})
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Parse port to support running several apps side by side
    parser = argparse.ArgumentParser()
    parser.add_argument("--port", type=int, default=settings.port)
    args, _ = parser.parse_known_args()

    base_url = settings.base_url
    if args.port != settings.port:
        base_url = f"http://{settings.host}:{args.port}"

    store = JsonFileStore(settings.storage_filename)
    scheduler = IntervalScheduler()
    trigger = HttpTrigger(base_url)

    registry = build_registry(settings, store, trigger, scheduler)
    set_queue_registry(registry)

    # Resume health checks for work left over from a previous run
    for process_id in registry.process_ids():
        queue = registry.get(process_id)
        if not queue.is_queue_empty():
            queue.schedule_event()

    logger.info({"event": "app_startup", "url": base_url, "queues": registry.process_ids()})

    yield

    scheduler.shutdown()
    set_queue_registry(None)
    logger.info({"event": "app_shutdown"})


app = FastAPI(lifespan=lifespan, title="Background Batch Queue")
app.include_router(queue_router)
