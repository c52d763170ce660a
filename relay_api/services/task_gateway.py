"""
PURPOSE: Synchronous-looking task submission on top of the asynchronous relay
SRP and DRY check: Pass - sequences validate, start relay, dispatch, wait. The relay, the backend
                   call and the wait are each owned by their own component.
"""

import logging
from typing import Optional
from uuid import uuid4

from relay_api.errors import MissingParameter, RelayError, UpstreamDispatchFailure
from relay_api.models import TaskResult
from relay_api.services.backend_client import BackendClient
from relay_api.streaming.sse_sink import DiscardSink
from relay_api.streaming.stream_relay import StreamRelay
from relay_api.streaming.task_correlator import TaskCorrelator

logger = logging.getLogger(__name__)


def generate_task_id() -> str:
    return uuid4().hex


class TaskGateway:
    """Submit a task and wait, bounded, for its completion signal."""

    def __init__(
        self,
        *,
        relay: StreamRelay,
        backend: BackendClient,
        correlator: TaskCorrelator,
        timeout_seconds: float = 300.0,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self._relay = relay
        self._backend = backend
        self._correlator = correlator
        self._timeout = timeout_seconds
        self._poll_interval = poll_interval_seconds

    async def submit(self, message: Optional[str]) -> TaskResult:
        """
        Run one task end to end.

        Raises MissingParameter, UpstreamConnectionFailure, UpstreamDispatchFailure or TaskTimeout.
        A timeout does not stop the relay session: it keeps running until the backend closes the stream.
        After a successful wait, or a failed dispatch, the session is closed.
        """
        if not message or not message.strip():
            raise MissingParameter("Message is required")

        task_id = generate_task_id()
        logger.info(f"Submitting task {task_id}")

        session = await self._relay.start_session(task_id, DiscardSink())

        try:
            await self._backend.dispatch_task(task_id, message)
        except UpstreamDispatchFailure:
            await session.close()
            raise

        try:
            result = await self._correlator.wait_for_result(
                task_id,
                timeout=self._timeout,
                poll_interval=self._poll_interval,
            )
        except RelayError as e:
            logger.warning(f"Task {task_id} did not complete: {e}")
            raise

        # The completion has been consumed, nothing reads this stream any more.
        await session.close()
        logger.info(f"Task {task_id} completed")
        return result
