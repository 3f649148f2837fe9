"""paho-mqtt backed transports (plain and TLS)."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional

import paho.mqtt.client as mqtt

from mqtt_helper.errors import PublishError, TransportError
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

_PROTOCOLS = {
    "3.1": mqtt.MQTTv31,
    "3.1.1": mqtt.MQTTv311,
    "5": mqtt.MQTTv5,
}


def _ignore_suback(error: Optional[BaseException], granted: Any) -> None:
    if error is not None:
        LOGGER.warning("Subscription rejected: %s", error)


class _MidCorrelator:
    """Matches paho message ids to completion callbacks.

    paho may acknowledge a mid before the call that produced it returns, so
    early results are parked until the callback is registered.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Dict[int, Callable[..., None]] = {}
        self._early: Dict[int, tuple[Any, ...]] = {}

    def register(self, mid: int, callback: Callable[..., None]) -> None:
        with self._lock:
            early = self._early.pop(mid, None)
            if early is None:
                self._pending[mid] = callback
                return
        callback(*early)

    def resolve(self, mid: int, *result: Any) -> None:
        with self._lock:
            callback = self._pending.pop(mid, None)
            if callback is None:
                self._early[mid] = result
                return
        callback(*result)

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()
            self._early.clear()


class PahoTransport(BaseTransport):
    """Plain TCP transport driven by paho's network thread."""

    def __init__(self, host: str, port: int, options: ConnectionOptions, sink: EventSink) -> None:
        super().__init__(host, port, options, sink)
        self._publishes = _MidCorrelator()
        self._subscribes = _MidCorrelator()
        self._client = self._build_client()

    def _build_client(self) -> mqtt.Client:
        options = self.options
        protocol = _PROTOCOLS[options.protocol]
        extra = options.model_extra or {}
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=options.client_id,
            clean_session=None if protocol == mqtt.MQTTv5 else options.clean_session,
            protocol=protocol,
            transport=extra.get("transport", "tcp"),
            reconnect_on_failure=False,
        )
        # paho still retries the first connection from loop_start(); keep that
        # retry beyond the window in which the supervisor closes the client.
        delay = max(1, int(options.retry_timeout))
        client.reconnect_delay_set(min_delay=delay, max_delay=delay)
        if options.username is not None:
            client.username_pw_set(options.username, options.password)
        if options.will is not None:
            will = options.will
            client.will_set(will.topic, will.payload, qos=will.qos, retain=will.retain)
        self._configure(client)
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_publish = self._on_publish
        client.on_subscribe = self._on_subscribe
        return client

    def _configure(self, client: mqtt.Client) -> None:
        """Hook for subclasses to adjust the client before connecting."""

    async def connect(self) -> None:
        LOGGER.info("Connecting to MQTT broker at %s:%s", self.host, self.port)
        kwargs: Dict[str, Any] = {}
        if _PROTOCOLS[self.options.protocol] == mqtt.MQTTv5:
            kwargs["clean_start"] = self.options.clean_session
        self._client.connect_async(self.host, self.port, keepalive=self.options.keepalive, **kwargs)
        self._client.loop_start()

    def publish(self, topic: str, payload: Payload, options: PublishOptions, callback: PublishCallback) -> None:
        try:
            info = self._client.publish(topic, payload, qos=options.qos, retain=options.retain)
        except (TypeError, ValueError) as exc:
            callback(PublishError(str(exc)))
            return
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            callback(PublishError(mqtt.error_string(info.rc)))
            return
        self._publishes.register(info.mid, callback)

    def subscribe(
        self,
        topic: Any,
        qos: int = 0,
        callback: Optional[SubscribeCallback] = None,
        **kwargs: Any,
    ) -> None:
        result, mid = self._client.subscribe(topic, qos=qos, **kwargs)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"subscribe failed: {mqtt.error_string(result)}")
        if mid is not None:
            # Every mid is claimed so its SUBACK is never parked as an early result.
            self._subscribes.register(mid, callback or _ignore_suback)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        LOGGER.info("Closing MQTT transport to %s:%s", self.host, self.port)
        self._client.disconnect()
        # loop_stop() joins paho's network thread, which may be sleeping
        # between first-connection retries.
        await asyncio.to_thread(self._client.loop_stop)
        self._publishes.clear()
        self._subscribes.clear()

    # paho callbacks (network thread)

    def _on_connect(self, client, userdata, connect_flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            LOGGER.warning("Broker refused connection: %s", reason_code)
            self._report(TransportFailed(self, TransportError(f"connection refused: {reason_code}")))
            return
        self._report(TransportConnected(self))

    def _on_connect_fail(self, client, userdata) -> None:
        self._report(TransportFailed(self, TransportError(f"cannot connect to {self.host}:{self.port}")))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        reason = None
        if reason_code.is_failure:
            reason = TransportError(f"connection lost: {reason_code}")
        self._report(TransportClosed(self, reason))

    def _on_message(self, client, userdata, message) -> None:
        self._report(MessageReceived(self, message.topic, message.payload, message))

    def _on_publish(self, client, userdata, mid, reason_code, properties) -> None:
        error = None
        if reason_code.is_failure:
            error = PublishError(f"publish rejected: {reason_code}")
        self._publishes.resolve(mid, error)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties) -> None:
        failures = [code for code in reason_code_list if code.is_failure]
        error = TransportError(f"subscribe rejected: {failures}") if failures else None
        self._subscribes.resolve(mid, error, reason_code_list)


class SecurePahoTransport(PahoTransport):
    """TLS transport; certificate material comes from ``options.tls``."""

    def _configure(self, client: mqtt.Client) -> None:
        tls = self.options.tls
        client.tls_set(
            ca_certs=str(tls.ca_certs) if tls.ca_certs else None,
            certfile=str(tls.certfile) if tls.certfile else None,
            keyfile=str(tls.keyfile) if tls.keyfile else None,
        )
        if tls.insecure:
            client.tls_insecure_set(True)
