"""Exception hierarchy for the MQTT helper."""

from __future__ import annotations


class MqttHelperError(RuntimeError):
    """Base class for helper errors."""


class ConfigurationError(MqttHelperError, ValueError):
    """Raised at construction time when connection parameters are missing or invalid."""


class TransportError(MqttHelperError):
    """Raised (or reported) when the broker connection fails."""


class StallTimeoutError(TransportError):
    """Reported when a publish is not acknowledged within the stall window."""

    def __init__(self, seq: int, timeout: float) -> None:
        super().__init__(f"publish #{seq} not acknowledged within {timeout:.1f}s")
        self.seq = seq
        self.timeout = timeout


class PublishError(MqttHelperError):
    """Reported when the transport rejects a publish."""
