"""Resilient MQTT publishing and subscribing on top of paho-mqtt."""

from mqtt_helper.errors import ConfigurationError, MqttHelperError, PublishError, StallTimeoutError, TransportError
from mqtt_helper.network import ConnectionState, LifecycleEvent, MqttHelper

__all__ = [
    "MqttHelper",
    "ConnectionState",
    "LifecycleEvent",
    "MqttHelperError",
    "ConfigurationError",
    "TransportError",
    "StallTimeoutError",
    "PublishError",
]
