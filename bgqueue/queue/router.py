import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from bgqueue.queue.dependencies import QueueRegistry, get_queue_registry
from bgqueue.queue.schemas import CancelResponse, PushRequest, PushResponse, StatusResponse
from bgqueue.queue.service import BatchQueue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Queue"])

# These routes are `def` rather than `async def`: the store takes file locks
# and the processing loop blocks, so FastAPI runs them in its threadpool.


def _get_queue(registry: QueueRegistry, process_id: str) -> BatchQueue:
    queue = registry.get(process_id)
    if queue is None:
        raise HTTPException(status_code=404, detail=f"Unknown queue {process_id}")
    return queue


def _run_queue(queue: BatchQueue):
    try:
        queue.maybe_handle()
    except Exception as e:
        logger.error(f"Processing run for {queue.process_id} aborted: {e}")


@router.post("/dispatch", status_code=status.HTTP_202_ACCEPTED)
def dispatch_run(
    background_tasks: BackgroundTasks,
    action: str = Query(...),
    registry: QueueRegistry = Depends(get_queue_registry),
):
    """Target of the self-trigger: accept straight away and process after responding."""
    queue = _get_queue(registry, action)
    background_tasks.add_task(_run_queue, queue)
    return {"status": "accepted"}


@router.post("/queues/{process_id}/push", response_model=PushResponse)
def push_items(process_id: str, req: PushRequest, registry: QueueRegistry = Depends(get_queue_registry)):
    queue = _get_queue(registry, process_id)
    try:
        key = queue.save_batch(req.items, req.group)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    if key is None or not req.dispatch:
        return PushResponse(batch_key=key)

    result = queue.dispatch()
    return PushResponse(batch_key=key, dispatched=result.ok, dispatch_error=result.error)


@router.get("/queues/{process_id}/status", response_model=StatusResponse)
def queue_status(process_id: str, registry: QueueRegistry = Depends(get_queue_registry)):
    queue = _get_queue(registry, process_id)
    try:
        return StatusResponse(**queue.status())
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/queues/{process_id}/cancel", response_model=CancelResponse)
def cancel_queue(process_id: str, registry: QueueRegistry = Depends(get_queue_registry)):
    queue = _get_queue(registry, process_id)
    try:
        return CancelResponse(cancelled_batch=queue.cancel())
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
