"""
Tests for the change envelope codec and the in-process bus.
"""

import asyncio
import json

import pytest

from doodlesync.utils import realtime_bus

from factories import settle


class TestEnvelope:
    def test_encode_shape(self):
        message = realtime_bus.encode_change("thread_items", realtime_bus.INSERT, {"id": "x"})
        assert json.loads(message) == {"type": "INSERT", "table": "thread_items", "record": {"id": "x"}}

    def test_decode_accepts_bytes(self):
        message = realtime_bus.encode_change("friendships", realtime_bus.UPDATE, {"id": "y"}).encode()
        envelope = realtime_bus.decode_change("c", message)
        assert envelope["record"] == {"id": "y"}

    @pytest.mark.parametrize("message", ["not json", "[]", '{"type": "INSERT"}', '{"record": 3}'])
    def test_decode_rejects_non_envelopes(self, message):
        assert realtime_bus.decode_change("c", message) is None

    def test_decode_rejects_invalid_utf8(self):
        assert realtime_bus.decode_change("c", b"\xff\xfe") is None

    def test_channel_names(self):
        assert realtime_bus.thread_items_channel("c1") == "thread_items:c1"
        assert realtime_bus.friendship_inserts_channel("u1") != realtime_bus.friendship_updates_channel("u1")


class TestLocalBus:
    @pytest.mark.asyncio
    async def test_publish_reaches_subscribers(self, bus):
        sub = await bus.subscribe("room")
        received = []

        async def drain():
            async for envelope in sub:
                received.append(envelope["record"]["n"])

        task = asyncio.create_task(drain())
        await bus.publish("room", realtime_bus.encode_change("t", realtime_bus.INSERT, {"n": 1}))
        await bus.publish("elsewhere", realtime_bus.encode_change("t", realtime_bus.INSERT, {"n": 2}))
        await bus.publish("room", realtime_bus.encode_change("t", realtime_bus.INSERT, {"n": 3}))
        await settle()
        await sub.close()
        await task

        assert received == [1, 3]
        assert bus.subscriber_count("room") == 0

    @pytest.mark.asyncio
    async def test_drop_ends_streams(self, bus):
        sub = await bus.subscribe("room")

        bus.drop("room")

        assert [envelope async for envelope in sub] == []
        assert bus.subscriber_count("room") == 0
