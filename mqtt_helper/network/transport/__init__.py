"""Transport implementations for the supervised broker connection."""

from .base import BaseTransport, TransportFactory
from .dummy import DummyTransport
from .paho_client import PahoTransport, SecurePahoTransport

__all__ = ["BaseTransport", "TransportFactory", "DummyTransport", "PahoTransport", "SecurePahoTransport"]
