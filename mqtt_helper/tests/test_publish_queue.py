import asyncio
import logging

import pytest

from mqtt_helper.errors import PublishError, StallTimeoutError
from mqtt_helper.network.client import MqttHelper
from mqtt_helper.network.events import PublishCompleted
from mqtt_helper.network.options import PublishOptions
from mqtt_helper.network.state import ConnectionState
from mqtt_helper.network.transport.dummy import DummyTransport


class _Factory:
    def __init__(self, **kwargs) -> None:
        self.created = []
        self._kwargs = kwargs

    def __call__(self, host, port, options, sink):
        transport = DummyTransport(host, port, options, sink, **self._kwargs)
        self.created.append(transport)
        return transport


async def _wait_for(predicate, *, timeout: float = 1.0, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


def _make_helper(factory, *, max_queue: int = 1000, **options) -> MqttHelper:
    options.setdefault("retry_timeout", 0.05)
    options.setdefault("wait_close_timeout", 5.0)
    return MqttHelper(1883, "broker.test", options, max_queue=max_queue, transport_factory=factory)


def _payloads(helper: MqttHelper) -> list:
    return [entry.payload for entry in helper.queue.snapshot()]


@pytest.mark.asyncio
async def test_messages_queued_while_disconnected_drain_one_at_a_time():
    factory = _Factory()
    helper = _make_helper(factory)
    await helper.start()
    try:
        for index in range(1, 4):
            helper.publish("plant/line1", f"m{index}", {"qos": 1})

        transport = factory.created[0]
        assert _payloads(helper) == ["m1", "m2", "m3"]
        assert transport.published == []

        transport.emit_connected()
        assert await _wait_for(lambda: len(transport.published) == 1)
        await asyncio.sleep(0.02)
        assert len(transport.published) == 1
        assert transport.published[0].payload == "m1"
        assert transport.published[0].options == PublishOptions(qos=1)
        assert helper.queue.inflight_seq == 1

        transport.complete(0)
        assert await _wait_for(lambda: len(transport.published) == 2)
        assert transport.published[1].payload == "m2"
        assert _payloads(helper) == ["m2", "m3"]
    finally:
        await helper.stop()


@pytest.mark.asyncio
async def test_at_most_one_publish_in_flight_and_fifo_removal():
    factory = _Factory()
    helper = _make_helper(factory)
    await helper.start()
    try:
        transport = factory.created[0]
        transport.emit_connected()
        assert await _wait_for(lambda: helper.is_connected)

        for index in range(5):
            helper.publish("plant/line1", index)
        assert len(transport.published) == 1

        for index in range(5):
            assert await _wait_for(lambda: len(transport.published) == index + 1)
            assert transport.published[index].payload == index
            assert len([record for record in transport.published if not record.completed]) == 1
            transport.complete(index)

        assert await _wait_for(lambda: len(helper.queue) == 0)
        assert helper.queue.inflight_seq is None
    finally:
        await helper.stop()


def test_full_queue_drops_newest_submission(caplog):
    helper = _make_helper(_Factory(), max_queue=2)

    with caplog.at_level(logging.ERROR):
        for index in range(1, 4):
            helper.publish("plant/line1", f"m{index}")

    assert _payloads(helper) == ["m1", "m2"]
    assert helper.queue.dropped == 1
    assert any("Publish queue full" in record.getMessage() for record in caplog.records)


def test_queue_never_exceeds_capacity():
    helper = _make_helper(_Factory(), max_queue=10)
    for index in range(50):
        helper.publish("plant/line1", index)
        assert len(helper.queue) <= 10

    assert _payloads(helper) == list(range(10))
    assert helper.queue.dropped == 40


@pytest.mark.asyncio
async def test_mismatched_completion_leaves_queue_untouched():
    factory = _Factory()
    helper = _make_helper(factory)
    helper.publish("plant/line1", "m1")
    helper.publish("plant/line1", "m2")

    helper.queue._on_publish_completed(PublishCompleted(seq=2))
    assert _payloads(helper) == ["m1", "m2"]

    await helper.start()
    try:
        transport = factory.created[0]
        transport.emit_connected()
        assert await _wait_for(lambda: len(transport.published) == 1)
        assert transport.published[0].payload == "m1"
    finally:
        await helper.stop()


@pytest.mark.asyncio
async def test_completion_for_other_sequence_does_not_release_inflight():
    factory = _Factory()
    helper = _make_helper(factory)
    await helper.start()
    try:
        transport = factory.created[0]
        transport.emit_connected()
        assert await _wait_for(lambda: helper.is_connected)
        helper.publish("plant/line1", "m1")
        helper.publish("plant/line1", "m2")

        helper.supervisor.post(PublishCompleted(seq=99))
        await asyncio.sleep(0.02)

        assert _payloads(helper) == ["m1", "m2"]
        assert helper.queue.inflight_seq == 1
        assert len(transport.published) == 1
    finally:
        await helper.stop()


@pytest.mark.asyncio
async def test_failed_publish_still_advances_queue():
    factory = _Factory()
    helper = _make_helper(factory)
    await helper.start()
    try:
        transport = factory.created[0]
        transport.emit_connected()
        assert await _wait_for(lambda: helper.is_connected)
        helper.publish("plant/line1", "m1")
        helper.publish("plant/line1", "m2")

        transport.complete(0, error=PublishError("rejected"))
        assert await _wait_for(lambda: len(transport.published) == 2)
        assert _payloads(helper) == ["m2"]
    finally:
        await helper.stop()


@pytest.mark.asyncio
async def test_stalled_publish_resets_connection_and_republishes_head():
    factory = _Factory()
    helper = _make_helper(factory, wait_close_timeout=0.05, retry_timeout=0.05)
    closes = []
    helper.on("close", closes.append)
    await helper.start()
    try:
        first = factory.created[0]
        first.emit_connected()
        assert await _wait_for(lambda: helper.is_connected)
        helper.publish("plant/line1", "m1")
        assert len(first.published) == 1

        assert await _wait_for(lambda: first.closed)
        assert len(closes) == 1
        assert isinstance(closes[0], StallTimeoutError)
        assert closes[0].seq == 1
        assert helper.queue.inflight_seq is None
        assert _payloads(helper) == ["m1"]

        assert await _wait_for(lambda: len(factory.created) == 2)
        second = factory.created[1]
        assert helper.state is ConnectionState.CONNECTING
        second.emit_connected()
        assert await _wait_for(lambda: len(second.published) == 1)
        assert second.published[0].payload == "m1"
    finally:
        await helper.stop()


@pytest.mark.asyncio
async def test_transport_close_cancels_stall_timer():
    factory = _Factory()
    helper = _make_helper(factory, wait_close_timeout=0.05, retry_timeout=10)
    closes = []
    helper.on("close", closes.append)
    await helper.start()
    try:
        transport = factory.created[0]
        transport.emit_connected()
        assert await _wait_for(lambda: helper.is_connected)
        helper.publish("plant/line1", "m1")

        transport.emit_closed()
        assert await _wait_for(lambda: closes)
        await asyncio.sleep(0.1)

        assert closes == [None]
        assert helper.queue.inflight_seq is None
        assert _payloads(helper) == ["m1"]
        assert helper.supervisor.reconnect_pending
    finally:
        await helper.stop()


@pytest.mark.asyncio
async def test_publish_raising_synchronously_is_treated_as_failure():
    class _ExplodingTransport(DummyTransport):
        def publish(self, topic, payload, options, callback):
            raise ValueError("bad topic")

    created = []

    def _factory(host, port, options, sink):
        transport = _ExplodingTransport(host, port, options, sink)
        created.append(transport)
        return transport

    helper = _make_helper(_factory)
    await helper.start()
    try:
        created[0].emit_connected()
        assert await _wait_for(lambda: helper.is_connected)
        helper.publish("bad/#", "m1")
        assert await _wait_for(lambda: len(helper.queue) == 0)
        assert helper.queue.inflight_seq is None
    finally:
        await helper.stop()
