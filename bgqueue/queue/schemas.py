from typing import Any, List, Optional
from pydantic import BaseModel, Field


class PushRequest(BaseModel):
    items: List[Any] = Field(default_factory=list)
    group: str = "default"
    dispatch: bool = True


class PushResponse(BaseModel):
    status: str = "ok"
    batch_key: Optional[str] = None
    dispatched: bool = False
    dispatch_error: Optional[str] = None


class StatusResponse(BaseModel):
    process_id: str
    pending_batches: int
    running: bool
    health_check_scheduled: bool


class CancelResponse(BaseModel):
    status: str = "ok"
    cancelled_batch: Optional[str] = None
