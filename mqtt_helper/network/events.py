"""Tagged events carried on the supervisor's inbound channel."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from mqtt_helper.network.transport.base import BaseTransport


class LifecycleEvent(str, enum.Enum):
    """Events re-emitted to external observers."""

    CONNECT = "connect"
    MESSAGE = "message"
    CLOSE = "close"
    ERROR = "error"


@dataclass(frozen=True)
class TransportConnected:
    handle: "BaseTransport"


@dataclass(frozen=True)
class TransportClosed:
    handle: "BaseTransport"
    reason: Optional[BaseException] = None


@dataclass(frozen=True)
class TransportFailed:
    handle: "BaseTransport"
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class MessageReceived:
    handle: "BaseTransport"
    topic: str
    payload: bytes
    packet: Any = None


@dataclass(frozen=True)
class PublishCompleted:
    seq: int
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class RetryTimerFired:
    pass


@dataclass(frozen=True)
class StallTimerFired:
    seq: int


EventSink = Callable[[object], None]
