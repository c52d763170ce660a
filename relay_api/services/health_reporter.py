"""Health snapshot of the relay gateway."""

from relay_api.connection_manager import ConnectionRegistry
from relay_api.models import HealthResponse
from relay_api.streaming.task_correlator import TaskCorrelator


class HealthReporter:
    def __init__(self, registry: ConnectionRegistry, correlator: TaskCorrelator) -> None:
        self._registry = registry
        self._correlator = correlator

    def snapshot(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            connections=self._registry.count(),
            pending_tasks=self._correlator.pending_count(),
        )
