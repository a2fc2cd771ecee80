import time
import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class QueueApiError(Exception):
    pass


class QueueApiClient:
    """
    Producer-side client for a running bgqueue app.
    Connection failures are retried a few times before giving up.
    """
    def __init__(self, base_url: str = "http://127.0.0.1:8000", timeout: float = 5.0,
                 max_retries: int = 2, retry_delay: float = 0.2,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.http_client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def _make_request(self, method: str, endpoint: str, json_data: dict = None, retry_count: int = 0):
        try:
            resp = self.http_client.request(method, endpoint, json=json_data)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise QueueApiError(f"{method} {endpoint} failed with {e.response.status_code}: {e.response.text}") from e
        except httpx.RequestError as e:
            if retry_count < self.max_retries:
                logger.warning(f"Queue app at {self.base_url} unreachable ({e}). Retrying...")
                time.sleep(self.retry_delay * (retry_count + 1))
                return self._make_request(method, endpoint, json_data, retry_count + 1)
            raise QueueApiError(f"Failed to reach {self.base_url} after {retry_count + 1} attempts: {e}") from e

    # --- Queue API ---
    def push(self, process_id: str, items: List[Any], group: str = "default", dispatch: bool = True) -> Dict[str, Any]:
        return self._make_request(
            "POST", f"/queues/{process_id}/push",
            {"items": items, "group": group, "dispatch": dispatch},
        )

    def status(self, process_id: str) -> Dict[str, Any]:
        return self._make_request("GET", f"/queues/{process_id}/status")

    def cancel(self, process_id: str) -> Optional[str]:
        return self._make_request("POST", f"/queues/{process_id}/cancel").get("cancelled_batch")

    def close(self):
        self.http_client.close()
