"""Supervisor that owns the broker connection lifecycle."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from mqtt_helper.errors import ConfigurationError
from mqtt_helper.network.events import (
    LifecycleEvent,
    MessageReceived,
    RetryTimerFired,
    TransportClosed,
    TransportConnected,
    TransportFailed,
)
from mqtt_helper.network.options import ConnectionOptions
from mqtt_helper.network.state import ConnectionState, ConnectionTracker
from mqtt_helper.network.transport.base import BaseTransport, TransportFactory
from mqtt_helper.network.transport.paho_client import PahoTransport, SecurePahoTransport

LOGGER = logging.getLogger(__name__)

Observer = Callable[..., Any]
Hook = Callable[[], Any]


class ConnectionSupervisor:
    """Keeps one broker connection alive with a fixed-delay retry.

    Transport callbacks and timer expiries are posted onto a single inbound
    channel and handled in order by one dispatcher task, so the handle and
    the timer slots are only ever touched from that task (or from the event
    loop thread that owns it).
    """

    def __init__(
        self,
        port: int,
        host: str,
        options: ConnectionOptions | dict | None = None,
        secure: bool = False,
        *,
        transport_factory: Optional[TransportFactory] = None,
        secure_transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        if not port or not host:
            raise ConfigurationError("port and host are required")
        if isinstance(port, bool) or not isinstance(port, int) or port < 1:
            raise ConfigurationError(f"port must be a positive integer, got {port!r}")
        try:
            self._options = ConnectionOptions.coerce(options)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid connection options: {exc}") from exc
        self._port = port
        self._host = host
        self._secure = secure is True
        self._plain_factory: TransportFactory = transport_factory or PahoTransport
        self._secure_factory: TransportFactory = secure_transport_factory or SecurePahoTransport

        self._tracker = ConnectionTracker()
        self._retry_timer: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional[asyncio.Queue[object]] = None
        self._dispatch_task: Optional[asyncio.Task[None]] = None
        self._stopped = False

        self._observers: Dict[LifecycleEvent, List[Observer]] = defaultdict(list)
        self._connect_hooks: List[Hook] = []
        self._teardown_hooks: List[Hook] = []
        self._routes: Dict[type, Callable[[Any], Any]] = {
            TransportConnected: self._on_connected,
            TransportClosed: self._on_closed,
            TransportFailed: self._on_failed,
            MessageReceived: self._on_message,
            RetryTimerFired: self._on_retry_timer,
        }

    @property
    def options(self) -> ConnectionOptions:
        return self._options

    @property
    def state(self) -> ConnectionState:
        return self._tracker.state

    @property
    def handle(self) -> Optional[BaseTransport]:
        """The handle usable for publish/subscribe, or ``None`` unless connected."""
        return self._tracker.connected_handle

    @property
    def is_connected(self) -> bool:
        return self._tracker.state is ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._retry_timer is not None

    # Observer + internal wiring

    def on(self, event: LifecycleEvent | str, handler: Observer) -> None:
        """Register an observer for ``connect``, ``message``, ``close`` or ``error``."""
        self._observers[LifecycleEvent(event)].append(handler)

    def off(self, event: LifecycleEvent | str, handler: Observer) -> None:
        handlers = self._observers.get(LifecycleEvent(event), [])
        if handler in handlers:
            handlers.remove(handler)

    def add_connect_hook(self, hook: Hook) -> None:
        """Register a hook run after ``connect`` observers."""
        self._connect_hooks.append(hook)

    def add_teardown_hook(self, hook: Hook) -> None:
        """Register a hook run whenever the current handle is given up."""
        self._teardown_hooks.append(hook)

    def route(self, event_type: type, handler: Callable[[Any], Any]) -> None:
        """Send channel events of ``event_type`` to ``handler``."""
        self._routes[event_type] = handler

    def post(self, event: object) -> None:
        """Queue an event for the dispatcher. Safe to call from any thread."""
        if self._loop is None or self._events is None:
            raise RuntimeError("Supervisor not started")
        if self._loop.is_closed():
            LOGGER.debug("Dropping %s posted after event loop closed", type(event).__name__)
            return
        self._loop.call_soon_threadsafe(self._events.put_nowait, event)

    def call_later(self, delay: float, event: object) -> asyncio.TimerHandle:
        """Post ``event`` after ``delay`` seconds."""
        if self._loop is None:
            raise RuntimeError("Supervisor not started")
        return self._loop.call_later(delay, self.post, event)

    # Lifecycle

    async def start(self) -> None:
        if self._dispatch_task and not self._dispatch_task.done():
            return
        self._stopped = False
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(), name="mqtt-supervisor")
        await self._init()

    async def stop(self) -> None:
        self._stopped = True
        self._cancel_retry()
        await self._teardown()
        task = self._dispatch_task
        if task:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._dispatch_task = None
        LOGGER.info("Supervisor for %s:%s stopped", self._host, self._port)

    async def reset(self, reason: Optional[BaseException] = None) -> None:
        """Give up the current handle as if the transport had closed."""
        await self._handle_terminal(self._tracker.handle, LifecycleEvent.CLOSE, reason)

    # Dispatcher

    async def _dispatch_loop(self) -> None:
        assert self._events is not None
        while True:
            event = await self._events.get()
            handler = self._routes.get(type(event))
            if handler is None:
                LOGGER.warning("No route for event %s", type(event).__name__)
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                LOGGER.exception("Failed to process %s", type(event).__name__)

    async def _init(self) -> None:
        self._retry_timer = None
        if self._stopped:
            return
        if self._tracker.handle is not None:
            LOGGER.debug("Connection handle already present; skipping init")
            return
        factory = self._secure_factory if self._secure else self._plain_factory
        LOGGER.info("Creating %s connection to %s:%s", "secure" if self._secure else "plain", self._host, self._port)
        handle: Optional[BaseTransport] = None
        try:
            handle = factory(self._host, self._port, self._options, self.post)
            self._tracker.attach(handle)
            await handle.connect()
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Connection attempt to %s:%s failed to start: %s", self._host, self._port, exc)
            await self._handle_terminal(handle, LifecycleEvent.ERROR, exc)

    async def _on_connected(self, event: TransportConnected) -> None:
        if event.handle is not self._tracker.handle:
            LOGGER.debug("Ignoring connect from a superseded handle")
            return
        if self._tracker.state is ConnectionState.CONNECTED:
            LOGGER.debug("Ignoring duplicate connect")
            return
        self._tracker.mark_connected(event.handle)
        LOGGER.info("Connected to %s:%s", self._host, self._port)
        await self._emit(LifecycleEvent.CONNECT)
        await self._run_hooks(self._connect_hooks)

    async def _on_closed(self, event: TransportClosed) -> None:
        await self._handle_terminal(event.handle, LifecycleEvent.CLOSE, event.reason)

    async def _on_failed(self, event: TransportFailed) -> None:
        await self._handle_terminal(event.handle, LifecycleEvent.ERROR, event.error)

    async def _on_message(self, event: MessageReceived) -> None:
        if event.handle is not self._tracker.handle:
            return
        await self._emit(LifecycleEvent.MESSAGE, event.topic, event.payload, event.packet)

    async def _on_retry_timer(self, event: RetryTimerFired) -> None:
        if self._retry_timer is None:
            LOGGER.debug("Ignoring cancelled retry timer")
            return
        await self._init()

    async def _handle_terminal(
        self,
        handle: Optional[BaseTransport],
        kind: LifecycleEvent,
        reason: Optional[BaseException],
    ) -> None:
        current = self._tracker.handle
        if current is not None and handle is not current:
            LOGGER.debug("Ignoring %s from a superseded handle", kind.value)
            return
        if self._stopped:
            return
        await self._teardown()
        if self._retry_timer is None:
            delay = self._options.retry_timeout
            self._retry_timer = self.call_later(delay, RetryTimerFired())
            LOGGER.warning(
                "Connection to %s:%s %s (%s); reconnecting in %.1fs",
                self._host,
                self._port,
                "closed" if kind is LifecycleEvent.CLOSE else "failed",
                reason,
                delay,
            )
        else:
            LOGGER.debug("Reconnect already pending; not rescheduling after %s", kind.value)
        await self._emit(kind, reason)

    async def _teardown(self) -> None:
        handle = self._tracker.detach()
        if handle is not None:
            try:
                await handle.close()
            except Exception:  # noqa: BLE001
                LOGGER.debug("Suppress transport close error", exc_info=True)
        await self._run_hooks(self._teardown_hooks)

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    async def _emit(self, event: LifecycleEvent, *args: Any) -> None:
        for handler in list(self._observers.get(event, [])):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("Observer for %s failed: %s", event.value, handler)

    async def _run_hooks(self, hooks: List[Hook]) -> None:
        for hook in list(hooks):
            try:
                result = hook()
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("Lifecycle hook failed: %s", hook)
