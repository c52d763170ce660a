"""
PURPOSE: HTTP client for the streaming computation backend: opens its event stream and submits tasks
SRP and DRY check: Pass - wraps the two upstream calls and translates transport failures into relay errors
"""

import logging
from typing import Any

import httpx

from relay_api.errors import UpstreamConnectionFailure, UpstreamDispatchFailure

logger = logging.getLogger(__name__)

TASK_ID_HEADER = "X-Task-Id"
PERFORM_METHOD = "perform_search"


class BackendClient:
    """Talks to the backend's text/event-stream endpoint and its companion message endpoint."""

    def __init__(self, client: httpx.AsyncClient, stream_url: str, message_url: str, connect_timeout_seconds: float = 10.0) -> None:
        self._client = client
        self.stream_url = stream_url
        self.message_url = message_url
        self._connect_timeout = connect_timeout_seconds

    async def open_event_stream(self, task_id: str) -> httpx.Response:
        """
        Open the backend event stream. The caller owns the returned response and must aclose() it.
        Raises UpstreamConnectionFailure when the backend is unreachable or answers with a non-success status.
        """
        request = self._client.build_request(
            "GET",
            self.stream_url,
            headers={
                "Accept": "text/event-stream",
                "Cache-Control": "no-cache",
                TASK_ID_HEADER: task_id,
            },
            # The stream stays open for as long as the backend keeps it open.
            timeout=httpx.Timeout(None, connect=self._connect_timeout),
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamConnectionFailure(f"Failed to connect to backend stream {self.stream_url}: {e}") from e

        if not response.is_success:
            await response.aclose()
            raise UpstreamConnectionFailure(
                f"Failed to connect to backend stream {self.stream_url}: {response.status_code} {response.reason_phrase}"
            )
        return response

    async def dispatch_task(self, task_id: str, message: str) -> Any:
        """Submit the task to the backend and return its acknowledgement."""
        body = {
            "method": PERFORM_METHOD,
            "params": {
                "task": message,
            },
        }
        try:
            response = await self._client.post(
                self.message_url,
                json=body,
                headers={TASK_ID_HEADER: task_id},
                timeout=self._connect_timeout,
            )
        except httpx.HTTPError as e:
            raise UpstreamDispatchFailure(f"Failed to send message to backend {self.message_url}: {e}") from e

        if not response.is_success:
            raise UpstreamDispatchFailure(
                f"Failed to send message to backend {self.message_url}: {response.status_code} {response.reason_phrase}"
            )

        logger.info(f"Dispatched task {task_id} to backend, status: {response.status_code}")
        try:
            return response.json()
        except ValueError:
            return response.text
