"""
Decode a text/event-stream byte stream into event payloads.

Frames are separated by a blank line. Only frames that begin with the ``data:`` marker carry a
payload, every other frame (comments, ``event:`` only frames, retry hints) is ignored. The decoder
keeps its own buffer, so frames and multi-byte characters may be split across chunks arbitrarily.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional

from relay_api.errors import FrameDecodeError

DATA_MARKER = "data:"
FRAME_SEPARATOR = "\n\n"
# Field lines that may accompany data lines in the same frame. They never belong to the payload.
OTHER_FIELD_PREFIXES = ("id:", "event:", "retry:", ":")


@dataclass(frozen=True)
class EventPayload:
    """One decoded event. ``data`` is set when ``raw`` is well-formed JSON, otherwise ``error`` is."""

    raw: str
    data: Any = None
    error: Optional[str] = None

    @property
    def is_well_formed(self) -> bool:
        return self.error is None


def parse_event_payload(raw: str) -> EventPayload:
    try:
        return EventPayload(raw=raw, data=json.loads(raw))
    except json.JSONDecodeError as exc:
        return EventPayload(raw=raw, error=str(exc))


def payload_from_frame(frame: str) -> Optional[str]:
    """Return the trimmed payload of a ``data:`` frame, or None when the frame carries none."""
    frame = frame.lstrip("\n")
    if not frame.startswith(DATA_MARKER):
        return None
    parts = []
    for line in frame.split("\n"):
        if line.startswith(DATA_MARKER):
            line = line[len(DATA_MARKER):].lstrip(" ")
        elif line.startswith(OTHER_FIELD_PREFIXES):
            continue
        parts.append(line)
    payload = "\n".join(parts).strip()
    return payload or None


class EventFrameDecoder:
    """Incremental decoder. Feed raw chunks, collect the payloads of completed frames."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="strict")
        self._buffer = ""

    def _decode(self, chunk: bytes, final: bool = False) -> str:
        try:
            return self._decoder.decode(chunk, final=final)
        except UnicodeDecodeError as exc:
            raise FrameDecodeError(f"Upstream stream is not valid UTF-8: {exc}") from exc

    def _drain(self) -> List[str]:
        payloads: List[str] = []
        while FRAME_SEPARATOR in self._buffer:
            frame, self._buffer = self._buffer.split(FRAME_SEPARATOR, 1)
            payload = payload_from_frame(frame)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def feed(self, chunk: bytes) -> List[str]:
        if not chunk:
            return []
        self._buffer += self._decode(chunk)
        # A trailing "\r" stays in the buffer until its "\n" arrives with the next chunk.
        self._buffer = self._buffer.replace("\r\n", "\n")
        return self._drain()

    def flush(self) -> List[str]:
        """Emit whatever is left once the stream has ended, including an unterminated last frame."""
        self._buffer += self._decode(b"", final=True)
        self._buffer = self._buffer.replace("\r\n", "\n")
        payloads = self._drain()
        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            payload = payload_from_frame(remainder)
            if payload is not None:
                payloads.append(payload)
        return payloads


async def iter_event_payloads(byte_iter: AsyncIterator[bytes]) -> AsyncIterator[str]:
    """Yield event payload strings from an async iterator of raw bytes, in arrival order."""
    decoder = EventFrameDecoder()
    async for chunk in byte_iter:
        for payload in decoder.feed(chunk):
            yield payload
    for payload in decoder.flush():
        yield payload
