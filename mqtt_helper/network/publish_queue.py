"""Ordered outbound queue with a single in-flight publish."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from itertools import count
from typing import Deque, Optional, Tuple

from mqtt_helper.errors import StallTimeoutError
from mqtt_helper.network.events import PublishCompleted, StallTimerFired
from mqtt_helper.network.options import Payload, PublishOptions, coerce_publish_options
from mqtt_helper.network.supervisor import ConnectionSupervisor

LOGGER = logging.getLogger(__name__)

MAX_QUEUE_SIZE = 1000


@dataclass(frozen=True)
class QueueEntry:
    seq: int
    topic: str
    payload: Payload
    options: PublishOptions


class PublishQueue:
    """FIFO of pending publishes, drained one message at a time.

    The head is only removed once the transport reports completion for the
    same sequence id. While a publish is in flight a stall timer runs; if it
    expires the supervisor is reset, which closes the handle and schedules a
    reconnect. The head is then re-published after the next ``connect``.
    """

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        *,
        capacity: int = MAX_QUEUE_SIZE,
        wait_close_timeout: Optional[float] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._supervisor = supervisor
        self._capacity = capacity
        self._wait_close_timeout = float(
            wait_close_timeout if wait_close_timeout is not None else supervisor.options.wait_close_timeout
        )
        self._entries: Deque[QueueEntry] = deque()
        self._seq = count(1)
        self._stall_timer: Optional[asyncio.TimerHandle] = None
        self._inflight_seq: Optional[int] = None
        self.dropped = 0

        supervisor.route(PublishCompleted, self._on_publish_completed)
        supervisor.route(StallTimerFired, self._on_stall_timer)
        supervisor.add_connect_hook(self.try_drain)
        supervisor.add_teardown_hook(self.abandon_inflight)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def inflight_seq(self) -> Optional[int]:
        return self._inflight_seq

    def snapshot(self) -> Tuple[QueueEntry, ...]:
        return tuple(self._entries)

    def enqueue(self, topic: str, payload: Payload, options: PublishOptions | dict | None = None) -> None:
        """Queue a message and try to send it. Full queues drop the new message."""
        if len(self._entries) < self._capacity:
            entry = QueueEntry(next(self._seq), topic, payload, coerce_publish_options(options))
            self._entries.append(entry)
            if len(self._entries) > 1:
                LOGGER.warning("Publish #%s to %s queued; %d pending", entry.seq, topic, len(self._entries))
        else:
            self.dropped += 1
            LOGGER.error("Publish queue full (%d); dropping message for %s", self._capacity, topic)
        self.try_drain()

    def try_drain(self) -> None:
        """Publish the head if connected and nothing is in flight."""
        handle = self._supervisor.handle
        if handle is None:
            return
        if not self._entries:
            return
        if self._stall_timer is not None:
            return

        entry = self._entries[0]
        self._inflight_seq = entry.seq
        self._stall_timer = self._supervisor.call_later(self._wait_close_timeout, StallTimerFired(entry.seq))
        LOGGER.debug("Publishing #%s to %s", entry.seq, entry.topic)

        def _completed(error: Optional[BaseException] = None, seq: int = entry.seq) -> None:
            self._supervisor.post(PublishCompleted(seq, error))

        try:
            handle.publish(entry.topic, entry.payload, entry.options, _completed)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Transport raised while publishing #%s: %s", entry.seq, exc)
            _completed(exc)

    def abandon_inflight(self) -> None:
        """Forget the in-flight publish; the entry stays at the head."""
        self._cancel_stall_timer()
        self._inflight_seq = None

    def _cancel_stall_timer(self) -> None:
        if self._stall_timer is not None:
            self._stall_timer.cancel()
            self._stall_timer = None

    def _on_publish_completed(self, event: PublishCompleted) -> None:
        if event.error is not None:
            LOGGER.warning("Publish #%s failed: %s", event.seq, event.error)
        if self._inflight_seq is not None and event.seq != self._inflight_seq:
            LOGGER.warning("Ignoring completion for #%s while #%s is in flight", event.seq, self._inflight_seq)
            return

        self._cancel_stall_timer()
        self._inflight_seq = None

        if not self._entries:
            LOGGER.error("Publish #%s completed but the queue is empty", event.seq)
            return

        head = self._entries[0]
        if head.seq == event.seq:
            self._entries.popleft()
        else:
            LOGGER.warning("Publish completion mismatch: got #%s, head is #%s", event.seq, head.seq)

        self.try_drain()

    async def _on_stall_timer(self, event: StallTimerFired) -> None:
        if self._stall_timer is None or event.seq != self._inflight_seq:
            LOGGER.debug("Ignoring stale stall timer for #%s", event.seq)
            return
        self._stall_timer = None
        self._inflight_seq = None
        LOGGER.warning(
            "Publish #%s not acknowledged within %.1fs; resetting connection",
            event.seq,
            self._wait_close_timeout,
        )
        await self._supervisor.reset(StallTimeoutError(event.seq, self._wait_close_timeout))
