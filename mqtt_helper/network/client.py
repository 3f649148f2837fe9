"""Public facade: a supervised connection plus its publish queue."""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Any, Optional

from mqtt_helper.errors import MqttHelperError
from mqtt_helper.network.events import LifecycleEvent
from mqtt_helper.network.options import ConnectionOptions, Payload, PublishOptions
from mqtt_helper.network.publish_queue import MAX_QUEUE_SIZE, PublishQueue
from mqtt_helper.network.state import ConnectionState
from mqtt_helper.network.supervisor import ConnectionSupervisor, Observer
from mqtt_helper.network.transport.base import SubscribeCallback, TransportFactory
from mqtt_helper.network.transport.dummy import DummyTransport

if TYPE_CHECKING:
    from mqtt_helper.config import HelperSettings

LOGGER = logging.getLogger(__name__)


class MqttHelper:
    """Keeps publishing and subscribing usable across broker reconnects.

    ``publish`` never fails synchronously: messages are queued (or dropped
    when the queue is full) and delivered in order once connected.
    ``subscribe`` only works while connected; re-subscribe from a
    ``connect`` observer to survive reconnects.

    Example::

        helper = MqttHelper(1883, "broker.local", {"retry_timeout": 10})
        helper.on("connect", lambda: helper.subscribe("sensors/#", qos=1))
        helper.on("message", lambda topic, payload, packet: print(topic, payload))
        await helper.start()
        helper.publish("sensors/temp", b"21.5", {"qos": 1, "retain": True})
    """

    MAX_QUEUE_SIZE = MAX_QUEUE_SIZE

    def __init__(
        self,
        port: int,
        host: str,
        options: ConnectionOptions | dict | None = None,
        secure: bool = False,
        *,
        max_queue: int = MAX_QUEUE_SIZE,
        transport_factory: Optional[TransportFactory] = None,
        secure_transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self.supervisor = ConnectionSupervisor(
            port,
            host,
            options,
            secure,
            transport_factory=transport_factory,
            secure_transport_factory=secure_transport_factory,
        )
        self.queue = PublishQueue(self.supervisor, capacity=max_queue)

    @classmethod
    def from_settings(cls, settings: "HelperSettings") -> "MqttHelper":
        factory: Optional[TransportFactory] = None
        if settings.transport == "dummy":
            factory = functools.partial(DummyTransport, auto_connect=True, auto_ack=True)
        return cls(
            settings.broker_port,
            settings.broker_host,
            settings.connection_options(),
            settings.secure,
            max_queue=settings.publish_queue_max,
            transport_factory=factory,
            secure_transport_factory=factory,
        )

    @property
    def state(self) -> ConnectionState:
        return self.supervisor.state

    @property
    def is_connected(self) -> bool:
        return self.supervisor.is_connected

    def on(self, event: LifecycleEvent | str, handler: Observer) -> None:
        self.supervisor.on(event, handler)

    def off(self, event: LifecycleEvent | str, handler: Observer) -> None:
        self.supervisor.off(event, handler)

    async def start(self) -> None:
        await self.supervisor.start()

    async def stop(self) -> None:
        await self.supervisor.stop()

    async def __aenter__(self) -> "MqttHelper":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def publish(self, topic: str, payload: Payload, options: PublishOptions | dict | None = None) -> None:
        """Queue ``payload`` for ``topic``; call from the event loop thread."""
        self.queue.enqueue(topic, payload, options)

    def subscribe(
        self,
        topic: Any,
        qos: int = 0,
        callback: Optional[SubscribeCallback] = None,
        **kwargs: Any,
    ) -> bool:
        """Forward to the live connection.

        Returns ``False`` when disconnected or when the transport refuses the
        request; the error is logged (and passed to ``callback``) instead of
        raised.
        """
        handle = self.supervisor.handle
        if handle is None:
            LOGGER.error("Subscribe to %s failed: not connected", topic)
            return False
        try:
            handle.subscribe(topic, qos, callback, **kwargs)
        except MqttHelperError as exc:
            LOGGER.error("Subscribe to %s failed: %s", topic, exc)
            if callback is not None:
                callback(exc, None)
            return False
        return True
