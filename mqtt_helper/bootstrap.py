"""Helper bootstrap entrypoint: build from settings, subscribe, run."""

from __future__ import annotations

import asyncio
import logging

from mqtt_helper.config import HelperSettings, get_settings
from mqtt_helper.network.client import MqttHelper

LOGGER = logging.getLogger(__name__)
_helper: MqttHelper | None = None


def setup(settings: HelperSettings | None = None) -> MqttHelper:
    """Construct and wire the helper (not started)."""

    settings = settings or get_settings()
    helper = MqttHelper.from_settings(settings)

    def _resubscribe() -> None:
        for topic in settings.subscribe_topics:
            helper.subscribe(topic, settings.subscribe_qos)

    def _log_message(topic: str, payload: bytes, packet: object = None) -> None:
        LOGGER.info("Message on %s: %r", topic, payload)

    def _log_down(reason: BaseException | None = None) -> None:
        LOGGER.info("Broker connection down: %s", reason)

    helper.on("connect", _resubscribe)
    helper.on("message", _log_message)
    helper.on("close", _log_down)
    helper.on("error", _log_down)
    return helper


async def serve_forever(settings: HelperSettings | None = None) -> None:
    """Start the helper and keep the process alive until cancelled."""

    global _helper
    _helper = setup(settings)
    await _helper.start()
    try:
        await asyncio.Future()  # block until cancelled
    except asyncio.CancelledError:
        LOGGER.info("Helper shutdown requested")
        raise
    finally:
        await _helper.stop()
        _helper = None


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(serve_forever(settings))


if __name__ == "__main__":
    main()
