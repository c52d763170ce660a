"""
PURPOSE: Relay one backend event stream to one downstream sink, the webhook, and the task correlator
SRP and DRY check: Pass - owns the per-session lifecycle (CONNECTING -> STREAMING -> CLOSED/FAILED).
                   Decoding, forwarding, bookkeeping and correlation are delegated.

For every payload, in upstream arrival order:
1. forward it to the webhook (failures are swallowed by the forwarder),
2. if it is a completion signal, record the TaskResult,
3. write the raw payload to the downstream sink.
Payloads that are not valid JSON skip steps 2 and 3. The session removes its registry entry and
closes its sink on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Set

import httpx

from relay_api.connection_manager import ConnectionRegistry, RelayConnection
from relay_api.errors import EventDecodeFailure, FrameDecodeError, SinkClosed, UpstreamConnectionFailure
from relay_api.models import TaskResult, TaskStatus
from relay_api.services.backend_client import BackendClient
from relay_api.services.webhook_forwarder import WebhookForwarder
from relay_api.streaming.event_frames import iter_event_payloads, parse_event_payload
from relay_api.streaming.sse_sink import DownstreamSink
from relay_api.streaming.task_correlator import TaskCorrelator

logger = logging.getLogger(__name__)

COMPLETION_METHOD = "notifications/message"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"
    FAILED = "failed"


def extract_completion_result(event: Any) -> Optional[dict]:
    """
    Return the nested result when the event is a completion signal, otherwise None.

    Completion signal: {"method": "notifications/message", "params": {"data": {"result": {"done": true, ...}}}}
    """
    if not isinstance(event, dict) or event.get("method") != COMPLETION_METHOD:
        return None
    params = event.get("params")
    if not isinstance(params, dict):
        return None
    data = params.get("data")
    if not isinstance(data, dict):
        return None
    result = data.get("result")
    if isinstance(result, dict) and result.get("done") is True:
        return result
    return None


class RelaySession:
    """One relay session for one task id. Created by StreamRelay."""

    def __init__(
        self,
        *,
        task_id: str,
        sink: DownstreamSink,
        backend: BackendClient,
        registry: ConnectionRegistry,
        correlator: TaskCorrelator,
        forwarder: WebhookForwarder,
    ) -> None:
        self.task_id = task_id
        self.connection = RelayConnection(task_id, sink)
        self.state = SessionState.CONNECTING
        self.task: Optional[asyncio.Task] = None
        self._backend = backend
        self._registry = registry
        self._correlator = correlator
        self._forwarder = forwarder
        self._response: Optional[httpx.Response] = None
        self._registered = False
        self._released = False
        self._closing = False

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    async def connect(self) -> None:
        """Open the backend stream and register the connection. Raises UpstreamConnectionFailure."""
        try:
            self._response = await self._backend.open_event_stream(self.task_id)
        except UpstreamConnectionFailure:
            self.state = SessionState.FAILED
            await self.connection.close()
            raise
        self._registry.add(self.connection_id, self.connection)
        self._registered = True
        self.state = SessionState.STREAMING

    async def pump(self) -> SessionState:
        """Relay events until the stream ends, fails, or the subscriber goes away."""
        if self.state != SessionState.STREAMING or self._response is None:
            raise RuntimeError(f"Session for task {self.task_id} is not streaming: {self.state.value}")
        try:
            async for raw in iter_event_payloads(self._response.aiter_bytes()):
                try:
                    await self._relay_payload(raw)
                except EventDecodeFailure as e:
                    logger.error(f"Failed to parse event data for task {self.task_id}: {e}. payload: {raw[:200]!r}")
            self.state = SessionState.CLOSED
            logger.info(f"Backend stream ended for task {self.task_id}, connection {self.connection_id}")
        except SinkClosed:
            self.state = SessionState.CLOSED
            logger.info(f"Subscriber went away for task {self.task_id}, connection {self.connection_id}")
        except (httpx.HTTPError, FrameDecodeError) as e:
            self.state = SessionState.FAILED
            logger.error(f"SSE connection error for task {self.task_id}, connection {self.connection_id}: {e}")
        except Exception as e:
            self.state = SessionState.FAILED
            logger.exception(f"Unexpected relay error for task {self.task_id}, connection {self.connection_id}: {e}")
        finally:
            if self.state == SessionState.STREAMING:
                # Cancelled from outside, typically a client disconnect.
                self.state = SessionState.CLOSED
            await self._release()
        return self.state

    async def _relay_payload(self, raw: str) -> None:
        payload = parse_event_payload(raw)
        await self._forwarder.forward(payload, self.connection_id, self.task_id)

        if not payload.is_well_formed:
            raise EventDecodeFailure(payload.error)

        completion = extract_completion_result(payload.data)
        if completion is not None:
            self._correlator.record(
                self.task_id,
                TaskResult(task_id=self.task_id, status=TaskStatus.completed, result=completion),
            )

        await self.connection.send(raw)

    async def _release(self) -> None:
        if self._released:
            return
        if self._registered:
            self._registry.remove(self.connection_id)
            self._registered = False
        response, self._response = self._response, None
        if response is not None:
            try:
                await response.aclose()
            except Exception as e:
                logger.warning(f"Error closing backend stream for connection {self.connection_id}: {e}")
        await self.connection.close()
        self._released = True
        logger.info(
            f"Relay session finished for task {self.task_id}, connection {self.connection_id}. "
            f"state: {self.state.value}, events relayed: {self.connection.events_relayed}"
        )

    @property
    def released(self) -> bool:
        return self._released

    @property
    def closing(self) -> bool:
        return self._closing

    def cancel(self) -> None:
        """Request cancellation of the pump task without waiting for it."""
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def close(self) -> None:
        """
        Stop the pump task and release the session. Safe to call more than once.

        A task cancelled before its first step never runs pump(), so the release is done here too.
        """
        self._closing = True
        if self.task is not None:
            self.cancel()
            await asyncio.gather(self.task, return_exceptions=True)
        if self.state in (SessionState.CONNECTING, SessionState.STREAMING):
            self.state = SessionState.CLOSED
        await self._release()


class StreamRelay:
    """Creates relay sessions and keeps track of the ones running in the background."""

    def __init__(
        self,
        *,
        backend: BackendClient,
        registry: ConnectionRegistry,
        correlator: TaskCorrelator,
        forwarder: WebhookForwarder,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._correlator = correlator
        self._forwarder = forwarder
        self._sessions: Set[RelaySession] = set()
        self._cleanups: Set[asyncio.Future] = set()

    async def open_session(self, task_id: str, sink: DownstreamSink) -> RelaySession:
        """Connect a new session. The caller is responsible for running its pump()."""
        session = RelaySession(
            task_id=task_id,
            sink=sink,
            backend=self._backend,
            registry=self._registry,
            correlator=self._correlator,
            forwarder=self._forwarder,
        )
        await session.connect()
        return session

    async def start_session(self, task_id: str, sink: DownstreamSink) -> RelaySession:
        """Connect a new session and pump it as a background task."""
        session = await self.open_session(task_id, sink)
        session.task = asyncio.create_task(session.pump(), name=f"relay-{task_id}")
        self._sessions.add(session)
        session.task.add_done_callback(lambda _: self._on_session_done(session))
        return session

    def _on_session_done(self, session: RelaySession) -> None:
        if session.released or session.closing:
            self._sessions.discard(session)
            return
        # Cancelled before pump() ran, nothing has released the session yet.
        cleanup = asyncio.ensure_future(session.close())
        self._cleanups.add(cleanup)

        def _finished(future: asyncio.Future) -> None:
            self._cleanups.discard(future)
            self._sessions.discard(session)

        cleanup.add_done_callback(_finished)

    @property
    def background_sessions(self) -> int:
        return len(self._sessions)

    async def shutdown(self) -> None:
        sessions = list(self._sessions)
        if sessions:
            await asyncio.gather(*(session.close() for session in sessions), return_exceptions=True)
        if self._cleanups:
            await asyncio.gather(*self._cleanups, return_exceptions=True)
        logger.info(f"StreamRelay shutdown: closed {len(sessions)} background sessions")
