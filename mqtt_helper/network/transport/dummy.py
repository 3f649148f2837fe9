"""In-memory transport for offline runs and tests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from mqtt_helper.network.events import (
    EventSink,
    MessageReceived,
    TransportClosed,
    TransportConnected,
    TransportFailed,
)
from mqtt_helper.network.options import ConnectionOptions, Payload, PublishOptions

from .base import BaseTransport, PublishCallback, SubscribeCallback

LOGGER = logging.getLogger(__name__)


@dataclass
class PublishRecord:
    topic: str
    payload: Payload
    options: PublishOptions
    callback: PublishCallback
    completed: bool = False


class DummyTransport(BaseTransport):
    """Records traffic instead of talking to a broker.

    With ``auto_connect`` the transport reports itself connected as soon as
    ``connect()`` runs; with ``auto_ack`` every publish completes immediately.
    Tests drive the rest through the ``emit_*`` and ``complete`` helpers.
    """

    def __init__(
        self,
        host: str,
        port: int,
        options: ConnectionOptions,
        sink: EventSink,
        *,
        auto_connect: bool = False,
        auto_ack: bool = False,
    ) -> None:
        super().__init__(host, port, options, sink)
        self.auto_connect = auto_connect
        self.auto_ack = auto_ack
        self.connect_calls = 0
        self.published: list[PublishRecord] = []
        self.subscriptions: list[tuple[Any, int, dict[str, Any]]] = []

    async def connect(self) -> None:
        LOGGER.debug("Dummy transport connect() %s:%s", self.host, self.port)
        self.connect_calls += 1
        if self.auto_connect:
            self.emit_connected()

    def publish(self, topic: str, payload: Payload, options: PublishOptions, callback: PublishCallback) -> None:
        LOGGER.debug("Dummy transport publish(): %s", topic)
        record = PublishRecord(topic=topic, payload=payload, options=options, callback=callback)
        self.published.append(record)
        if self.auto_ack:
            self.complete(len(self.published) - 1)

    def subscribe(
        self,
        topic: Any,
        qos: int = 0,
        callback: Optional[SubscribeCallback] = None,
        **kwargs: Any,
    ) -> None:
        LOGGER.debug("Dummy transport subscribe(): %s", topic)
        self.subscriptions.append((topic, qos, kwargs))
        if callback is not None:
            callback(None, [qos])

    async def close(self) -> None:
        LOGGER.debug("Dummy transport close()")
        self._closed = True

    def emit_connected(self) -> None:
        self._report(TransportConnected(self))

    def emit_closed(self, reason: Optional[BaseException] = None) -> None:
        self._report(TransportClosed(self, reason))

    def emit_failed(self, error: Optional[BaseException] = None) -> None:
        self._report(TransportFailed(self, error))

    def emit_message(self, topic: str, payload: bytes, packet: Any = None) -> None:
        self._report(MessageReceived(self, topic, payload, packet))

    def complete(self, index: int = -1, error: Optional[BaseException] = None) -> None:
        record = self.published[index]
        if record.completed:
            raise RuntimeError(f"Publish to {record.topic} already completed")
        record.completed = True
        record.callback(error)
