"""Transport abstraction for the supervised broker connection."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from mqtt_helper.network.events import EventSink
from mqtt_helper.network.options import ConnectionOptions, Payload, PublishOptions

PublishCallback = Callable[[Optional[BaseException]], None]
SubscribeCallback = Callable[[Optional[BaseException], Any], None]


class BaseTransport(ABC):
    """One underlying connection attempt (a handle).

    Lifecycle events are reported through ``sink`` as tagged event objects and
    may be reported from any thread. Nothing is reported after ``close()``; a
    closed transport is never reused.
    """

    def __init__(self, host: str, port: int, options: ConnectionOptions, sink: EventSink) -> None:
        self.host = host
        self.port = port
        self.options = options
        self._sink = sink
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _report(self, event: object) -> None:
        if self._closed:
            return
        self._sink(event)

    @abstractmethod
    async def connect(self) -> None:
        """Start connecting; the outcome is reported as an event."""

    @abstractmethod
    def publish(self, topic: str, payload: Payload, options: PublishOptions, callback: PublishCallback) -> None:
        """Publish once; ``callback`` fires exactly once with ``None`` or the error."""

    @abstractmethod
    def subscribe(
        self,
        topic: str | list[tuple[str, int]],
        qos: int = 0,
        callback: Optional[SubscribeCallback] = None,
        **kwargs: Any,
    ) -> None:
        """Request a subscription; raises ``TransportError`` if the request cannot be sent."""

    @abstractmethod
    async def close(self) -> None:
        ...


TransportFactory = Callable[[str, int, ConnectionOptions, EventSink], BaseTransport]
