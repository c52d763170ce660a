"""
PURPOSE: Streaming utilities for relaying backend event streams.
SRP and DRY check: Pass - exposes the leaf modules only. StreamRelay is imported from
                   relay_api.streaming.stream_relay directly since it depends on the connection registry.
"""

from .event_frames import EventFrameDecoder, EventPayload, iter_event_payloads, parse_event_payload
from .sse_sink import DiscardSink, DownstreamSink, SSEQueueSink
from .task_correlator import TaskCorrelator

__all__ = [
    "EventFrameDecoder",
    "EventPayload",
    "iter_event_payloads",
    "parse_event_payload",
    "DiscardSink",
    "DownstreamSink",
    "SSEQueueSink",
    "TaskCorrelator",
]
