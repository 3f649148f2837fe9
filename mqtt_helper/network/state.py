"""Connection state tracking for the supervisor."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from mqtt_helper.network.transport.base import BaseTransport


class ConnectionState(enum.Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


@dataclass
class ConnectionTracker:
    """Pairs the connection state with the handle it belongs to.

    A handle is attached only when leaving DISCONNECTED and detached only
    when returning to it, so "at most one live handle" holds by construction.
    """

    state: ConnectionState = ConnectionState.DISCONNECTED
    handle: Optional["BaseTransport"] = None
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def attach(self, handle: "BaseTransport") -> None:
        if self.handle is not None:
            raise ValueError("A connection handle is already attached")
        self.transition(ConnectionState.CONNECTING)
        self.handle = handle

    def mark_connected(self, handle: "BaseTransport") -> None:
        if handle is not self.handle:
            raise ValueError("Connected handle is not the attached handle")
        self.transition(ConnectionState.CONNECTED)

    def detach(self) -> Optional["BaseTransport"]:
        handle = self.handle
        self.handle = None
        if self.state is not ConnectionState.DISCONNECTED:
            self.transition(ConnectionState.DISCONNECTED)
        return handle

    def transition(self, next_state: ConnectionState) -> None:
        if not self._is_valid_transition(self.state, next_state):
            raise ValueError(f"Invalid transition {self.state.value} → {next_state.value}")
        self.state = next_state
        self.last_transition_at = datetime.now(tz=timezone.utc)

    @staticmethod
    def _is_valid_transition(current: ConnectionState, nxt: ConnectionState) -> bool:
        allowed = {
            ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
            ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED},
            ConnectionState.CONNECTED: {ConnectionState.DISCONNECTED},
        }
        return nxt in allowed.get(current, set())

    @property
    def connected_handle(self) -> Optional["BaseTransport"]:
        if self.state is ConnectionState.CONNECTED:
            return self.handle
        return None
