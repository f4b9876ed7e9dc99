import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError


logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"


def thread_items_channel(conversation_id) -> str:
    return f"thread_items:{conversation_id}"


def doodle_recipients_channel(recipient_id) -> str:
    return f"doodle_recipients:{recipient_id}"


def friendship_inserts_channel(addressee_id) -> str:
    return f"friendships:addressee:{addressee_id}"


def friendship_updates_channel(requester_id) -> str:
    return f"friendships:requester:{requester_id}"


def encode_change(table: str, change_type: str, record: Dict[str, Any]) -> str:
    return json.dumps({"type": change_type, "table": table, "record": record})


def decode_change(channel: str, message: Any) -> Optional[Dict[str, Any]]:
    """Parse a row-level change envelope. Returns None (and logs) when it is not one."""
    try:
        if isinstance(message, bytes):
            message = message.decode("utf-8")
        envelope = json.loads(message)
    except (TypeError, UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("realtime_bus: skipping non-JSON message on %s: %r", channel, str(message)[:200])
        return None
    if not isinstance(envelope, dict) or not isinstance(envelope.get("record"), dict):
        logger.warning("realtime_bus: skipping message without record on %s", channel)
        return None
    return envelope


_END = object()


class LocalSubscription:
    """In-process subscription. Iterating yields change envelopes until closed or dropped."""

    def __init__(self, bus: "LocalBus", channel: str) -> None:
        self.channel = channel
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue()

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            message = await self._queue.get()
            if message is _END:
                return
            envelope = decode_change(self.channel, message)
            if envelope is not None:
                yield envelope

    def _deliver(self, message: str) -> None:
        self._queue.put_nowait(message)

    def _end(self) -> None:
        self._queue.put_nowait(_END)

    async def close(self) -> None:
        self._bus._remove(self)
        self._end()


class LocalBus:
    """Single-process bus used when no REDIS_URL is configured."""

    enabled = False

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[LocalSubscription]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for sub in list(self._subscribers.get(channel, [])):
            sub._deliver(message)

    async def subscribe(self, channel: str) -> LocalSubscription:
        sub = LocalSubscription(self, channel)
        self._subscribers.setdefault(channel, []).append(sub)
        return sub

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, []))

    def drop(self, channel: Optional[str] = None) -> None:
        """End the streams on `channel` (or every channel) as a transport drop would."""
        channels = [channel] if channel is not None else list(self._subscribers)
        for name in channels:
            for sub in self._subscribers.pop(name, []):
                sub._end()

    def _remove(self, sub: LocalSubscription) -> None:
        subs = self._subscribers.get(sub.channel)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._subscribers[sub.channel]

    async def close(self) -> None:
        self.drop()


class RedisSubscription:

    def __init__(self, channel: str, pubsub) -> None:
        self.channel = channel
        self._pubsub = pubsub
        self._running = True

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Dict[str, Any]]:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (RedisConnectionError, RedisTimeoutError) as exc:
                # transport dropped: end the stream, the consumer decides whether to reconnect
                logger.warning("realtime_bus: stream on %s ended: %s", self.channel, exc)
                return
            if msg and msg.get("type") == "message":
                envelope = decode_change(self.channel, msg.get("data"))
                if envelope is not None:
                    yield envelope

    async def close(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.debug("realtime_bus: unsubscribe from %s failed: %s", self.channel, exc)


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str) -> RedisSubscription:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return RedisSubscription(channel, pubsub)

    async def close(self) -> None:
        await self._redis.aclose()


def create_bus(redis_url: str = ""):
    if not redis_url:
        logger.info("realtime_bus: REDIS_URL not set, using in-process bus")
        return LocalBus()
    return RedisBus(redis_url)
