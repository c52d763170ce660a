"""Best-effort delivery of relayed events to an external webhook."""

import logging
from typing import Optional

import httpx

from relay_api.errors import WebhookDeliveryFailure
from relay_api.models import WebhookEnvelope
from relay_api.streaming.event_frames import EventPayload

logger = logging.getLogger(__name__)


class WebhookForwarder:
    """
    POST every event to the configured webhook URL, once.

    Failures are logged and discarded: no retry, no exception reaches the relay session.
    Without a configured URL, forwarding is a no-op.
    """

    def __init__(self, client: httpx.AsyncClient, webhook_url: Optional[str], timeout_seconds: float = 10.0) -> None:
        self._client = client
        self._webhook_url = webhook_url
        self._timeout = timeout_seconds
        self.delivered = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def forward(self, payload: EventPayload, connection_id: str, task_id: str) -> None:
        if not self.enabled:
            return
        envelope = WebhookEnvelope(
            event=payload.data if payload.is_well_formed else payload.raw,
            connection_id=connection_id,
            task_id=task_id,
        )
        try:
            response = await self._client.post(
                self._webhook_url,
                json=envelope.model_dump(mode="json", by_alias=True),
                timeout=self._timeout,
            )
            if not response.is_success:
                raise WebhookDeliveryFailure(f"Webhook answered with status {response.status_code}")
            self.delivered += 1
        except Exception as e:
            self.failed += 1
            logger.error(f"Failed to forward event to webhook. task_id: {task_id}, connection_id: {connection_id}, error: {e}")
