import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class TriggerResult(BaseModel):
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class Trigger:
    def send(
        self,
        params: Dict[str, Any],
        payload: Optional[Dict[str, Any]] = None,
        timeout: float = 0.01,
        blocking: bool = False,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> TriggerResult:
        raise NotImplementedError


class HttpTrigger(Trigger):
    """
    Fire-and-forget POST back into the running app.

    A non-blocking send waits only long enough to get the request onto the
    wire: a read timeout means it was delivered and nobody waited for the
    answer, which is the point.
    """
    def __init__(self, base_url: str, path: str = "/dispatch", connect_timeout: float = 2.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.url = f"{base_url.rstrip('/')}{path}"
        self.connect_timeout = connect_timeout
        self.transport = transport

    def send(self, params, payload=None, timeout=0.01, blocking=False, extra_headers=None):
        read_timeout = timeout if not blocking else max(timeout, 30.0)
        timeouts = httpx.Timeout(read_timeout, connect=self.connect_timeout, write=self.connect_timeout)

        try:
            with httpx.Client(timeout=timeouts, transport=self.transport) as client:
                resp = client.post(self.url, params=params, json=payload or {}, headers=extra_headers)
        except httpx.ReadTimeout:
            if blocking:
                logger.warning(f"Trigger {self.url} timed out waiting for a response")
                return TriggerResult(ok=False, error="read timeout")
            return TriggerResult(ok=True)
        except httpx.HTTPError as e:
            logger.warning(f"Trigger {self.url} failed: {e}")
            return TriggerResult(ok=False, error=str(e))

        if resp.is_error:
            logger.warning(f"Trigger {self.url} answered {resp.status_code}")
            return TriggerResult(ok=False, status_code=resp.status_code, error=resp.text)
        return TriggerResult(ok=True, status_code=resp.status_code)
