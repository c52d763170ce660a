"""
PURPOSE: Thread-safe registry of live relay sessions, keyed by connection id
SRP and DRY check: Pass - Single responsibility for relay connection bookkeeping. The owning
                   relay session adds and removes its own entry, the registry never evicts.
"""

import logging
import threading
from typing import Dict, List, Optional
from uuid import uuid4

from relay_api.streaming.sse_sink import DownstreamSink

logger = logging.getLogger(__name__)


def new_connection_id() -> str:
    return uuid4().hex


class RelayConnection:
    """One live relay session: the task it relays for and the sink it writes to"""

    def __init__(self, task_id: str, sink: DownstreamSink, connection_id: Optional[str] = None):
        self.connection_id = connection_id or new_connection_id()
        self.task_id = task_id
        self.sink = sink
        self.events_relayed = 0

    async def send(self, payload: str) -> None:
        await self.sink.send(payload)
        self.events_relayed += 1

    async def close(self) -> None:
        """Close the downstream sink, never raises"""
        try:
            await self.sink.close()
        except Exception as e:
            logger.warning(f"Error closing sink for connection {self.connection_id}: {e}")

    def __repr__(self) -> str:
        return f"RelayConnection(connection_id={self.connection_id!r}, task_id={self.task_id!r})"


class ConnectionRegistry:
    """
    Process-wide map of connection id to RelayConnection.

    The map itself is never handed out. Callers get counts and statistics only.
    """

    def __init__(self):
        self._connections: Dict[str, RelayConnection] = {}
        self._lock = threading.RLock()

        # Statistics
        self._total_connections = 0

    def add(self, connection_id: str, connection: RelayConnection) -> None:
        with self._lock:
            if connection_id in self._connections:
                raise ValueError(f"Connection id already registered: {connection_id}")
            self._connections[connection_id] = connection
            self._total_connections += 1
            logger.info(f"Relay connected: task_id={connection.task_id}, connection_id={connection_id}, active={len(self._connections)}")

    def remove(self, connection_id: str) -> bool:
        """Remove a connection. Returns False if it was not registered."""
        with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return False
            logger.info(f"Relay disconnected: task_id={connection.task_id}, connection_id={connection_id}, active={len(self._connections)}")
            return True

    def count(self) -> int:
        with self._lock:
            return len(self._connections)

    def get_statistics(self) -> dict:
        with self._lock:
            task_ids: List[str] = sorted({connection.task_id for connection in self._connections.values()})
            return {
                "total_connections": len(self._connections),
                "total_connections_ever": self._total_connections,
                "tasks_with_connections": task_ids,
            }

    async def shutdown(self) -> None:
        """Close every registered sink. The owning sessions still remove their own entries."""
        with self._lock:
            all_connections = list(self._connections.values())

        for connection in all_connections:
            await connection.close()

        logger.info(f"ConnectionRegistry shutdown: closed {len(all_connections)} sinks")
