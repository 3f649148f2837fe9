"""Supervised MQTT connection, publish queue and transports."""

from mqtt_helper.network.client import MqttHelper
from mqtt_helper.network.events import LifecycleEvent
from mqtt_helper.network.options import ConnectionOptions, PublishOptions, TlsOptions, WillOptions
from mqtt_helper.network.publish_queue import MAX_QUEUE_SIZE, PublishQueue, QueueEntry
from mqtt_helper.network.state import ConnectionState
from mqtt_helper.network.supervisor import ConnectionSupervisor
from mqtt_helper.network.transport.base import BaseTransport
from mqtt_helper.network.transport.dummy import DummyTransport
from mqtt_helper.network.transport.paho_client import PahoTransport, SecurePahoTransport

__all__ = [
    "MqttHelper",
    "ConnectionSupervisor",
    "ConnectionState",
    "LifecycleEvent",
    "PublishQueue",
    "QueueEntry",
    "MAX_QUEUE_SIZE",
    "ConnectionOptions",
    "PublishOptions",
    "TlsOptions",
    "WillOptions",
    "BaseTransport",
    "DummyTransport",
    "PahoTransport",
    "SecurePahoTransport",
]
