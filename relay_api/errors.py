"""
PURPOSE: Exception taxonomy for the relay gateway. Each error knows the HTTP status and the
         client-safe message it maps to; internal details only go to the log.
SRP and DRY check: Pass - error types live here, mapping to responses lives in api.py
"""


class RelayError(Exception):
    """Base exception for the relay gateway."""

    status_code: int = 500
    public_message: str = "Internal server error"


class RelayConfigError(RelayError):
    """Raised when an environment variable holds an invalid value."""


class MissingParameter(RelayError):
    """A required client parameter is absent or empty."""

    status_code = 400

    def __init__(self, public_message: str) -> None:
        super().__init__(public_message)
        self.public_message = public_message


class UpstreamConnectionFailure(RelayError):
    """The backend event stream could not be reached or answered with a non-success status."""

    public_message = "Failed to establish SSE connection"


class UpstreamDispatchFailure(RelayError):
    """The backend rejected, or could not be reached for, the task submission."""

    public_message = "Failed to perform action"


class TaskTimeout(RelayError):
    """No completion signal arrived before the deadline."""

    status_code = 408
    public_message = "Task timeout"


class EventDecodeFailure(RelayError):
    """One event payload is not well-formed JSON. Contained at the event level."""


class FrameDecodeError(RelayError):
    """The raw byte stream could not be decoded as text. Ends the session."""


class WebhookDeliveryFailure(RelayError):
    """Forwarding one event to the webhook failed. Logged, never surfaced."""


class SinkClosed(RelayError):
    """The downstream subscriber went away."""
