"""
Realtime Service: owns the change-feed subscriptions of one user session.

Each subscription is drained by its own consumer task, so events on a channel
are decoded and dispatched one at a time in arrival order. Listeners register
per event kind through `add_listener`.

When a stream ends without a requested disconnect, every channel is torn down
and resubscribed after RECONNECT_DELAY_SECONDS. The cycle repeats for as long
as the service stays connected. A generation counter ties consumer tasks and
the reconnect timer to the connection they were started for, so nothing
started before a `disconnect()` can act after it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Type
from uuid import UUID

from pydantic import BaseModel, ValidationError

from doodlesync.config import Settings
from doodlesync.schemas.thread import DoodleRecipient, ThreadItem
from doodlesync.schemas.user import Friendship, FriendshipStatus
from doodlesync.services.errors import DecodeError, GatewayError
from doodlesync.services.gateway import RemoteGateway, Subscription
from doodlesync.utils import realtime_bus


logger = logging.getLogger(__name__)

THREAD_ITEM = "thread_item"
DOODLE_RECEIVED = "doodle_received"
FRIEND_REQUEST = "friend_request"
FRIEND_ACCEPTED = "friend_accepted"

LISTENER_KINDS = (THREAD_ITEM, DOODLE_RECEIVED, FRIEND_REQUEST, FRIEND_ACCEPTED)

Listener = Callable[[Any], Awaitable[None]]


def decode_record(table: str, model: Type[BaseModel], record: Dict[str, Any]) -> Any:
    try:
        return model.model_validate(record)
    except ValidationError as exc:
        raise DecodeError(table, str(exc)) from exc


def _decode_thread_item(envelope: Dict[str, Any]) -> Optional[ThreadItem]:
    return decode_record("thread_items", ThreadItem, envelope["record"])


def _decode_doodle_recipient(envelope: Dict[str, Any]) -> Optional[DoodleRecipient]:
    return decode_record("doodle_recipients", DoodleRecipient, envelope["record"])


def _decode_friend_request(envelope: Dict[str, Any]) -> Optional[Friendship]:
    friendship = decode_record("friendships", Friendship, envelope["record"])
    if friendship.status is not FriendshipStatus.PENDING:
        return None
    return friendship


def _decode_friend_accepted(envelope: Dict[str, Any]) -> Optional[Friendship]:
    friendship = decode_record("friendships", Friendship, envelope["record"])
    if friendship.status is not FriendshipStatus.ACCEPTED:
        return None
    return friendship


_DECODERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    THREAD_ITEM: _decode_thread_item,
    DOODLE_RECEIVED: _decode_doodle_recipient,
    FRIEND_REQUEST: _decode_friend_request,
    FRIEND_ACCEPTED: _decode_friend_accepted,
}


@dataclass
class _Channel:

    subscription: Subscription
    task: asyncio.Task


class RealtimeService:

    def __init__(self, gateway: RemoteGateway, settings: Settings) -> None:
        self._gateway = gateway
        self._settings = settings
        self._listeners: Dict[str, List[Listener]] = {kind: [] for kind in LISTENER_KINDS}
        self._user_id: Optional[UUID] = None
        self._conversation_ids: List[UUID] = []
        self._channels: Dict[str, _Channel] = {}
        self._generation = 0
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._user_id is not None

    @property
    def conversation_ids(self) -> List[UUID]:
        return list(self._conversation_ids)

    @property
    def channels(self) -> List[str]:
        return list(self._channels)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def add_listener(self, kind: str, listener: Listener) -> Callable[[], None]:
        """Register an async listener for one event kind. Returns a function that removes it."""
        if kind not in self._listeners:
            raise ValueError(f"Unknown event kind: {kind}")
        self._listeners[kind].append(listener)

        def remove() -> None:
            if listener in self._listeners[kind]:
                self._listeners[kind].remove(listener)

        return remove

    # -- connection lifecycle --

    async def connect(self, user_id: UUID) -> None:
        if self._user_id is not None:
            await self.disconnect()
        self._user_id = user_id
        self._generation += 1
        logger.info("realtime: connecting %s", user_id)
        await self._subscribe_all(self._generation)

    async def disconnect(self) -> None:
        self._generation += 1
        self._user_id = None
        self._conversation_ids = []
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        await self._teardown()

    async def subscribe_to_conversations(self, conversation_ids: Iterable[UUID]) -> None:
        wanted = list(dict.fromkeys(conversation_ids))[: self._settings.MAX_CONVERSATION_SUBSCRIPTIONS]
        for conversation_id in self._conversation_ids:
            if conversation_id not in wanted:
                await self._close_channel(realtime_bus.thread_items_channel(conversation_id))
        self._conversation_ids = wanted
        if self._user_id is None:
            return
        generation = self._generation
        try:
            for conversation_id in wanted:
                key = realtime_bus.thread_items_channel(conversation_id)
                if key not in self._channels:
                    await self._open(key, THREAD_ITEM, self._thread_item_opener(conversation_id), generation)
        except GatewayError as exc:
            logger.warning("realtime: conversation subscribe failed: %s", exc)
            self._schedule_reconnect(generation)

    async def add_conversation_subscription(self, conversation_id: UUID) -> bool:
        if conversation_id in self._conversation_ids:
            return True
        if len(self._conversation_ids) >= self._settings.MAX_CONVERSATION_SUBSCRIPTIONS:
            logger.warning("realtime: subscription limit reached, not following %s", conversation_id)
            return False
        self._conversation_ids.append(conversation_id)
        if self._user_id is None:
            return True
        generation = self._generation
        try:
            await self._open(
                realtime_bus.thread_items_channel(conversation_id),
                THREAD_ITEM,
                self._thread_item_opener(conversation_id),
                generation,
            )
        except GatewayError as exc:
            logger.warning("realtime: subscribe to %s failed: %s", conversation_id, exc)
            self._schedule_reconnect(generation)
        return True

    async def remove_conversation_subscription(self, conversation_id: UUID) -> None:
        if conversation_id in self._conversation_ids:
            self._conversation_ids.remove(conversation_id)
        await self._close_channel(realtime_bus.thread_items_channel(conversation_id))

    # -- channels --

    def _thread_item_opener(self, conversation_id: UUID) -> Callable[[], Awaitable[Subscription]]:
        return lambda: self._gateway.subscribe_thread_item_inserts(conversation_id)

    def _plan(self, user_id: UUID) -> List[Tuple[str, str, Callable[[], Awaitable[Subscription]]]]:
        plan = [
            (
                realtime_bus.doodle_recipients_channel(user_id),
                DOODLE_RECEIVED,
                lambda: self._gateway.subscribe_doodle_recipient_inserts(user_id),
            ),
            (
                realtime_bus.friendship_inserts_channel(user_id),
                FRIEND_REQUEST,
                lambda: self._gateway.subscribe_friendship_inserts(user_id),
            ),
            (
                realtime_bus.friendship_updates_channel(user_id),
                FRIEND_ACCEPTED,
                lambda: self._gateway.subscribe_friendship_updates(user_id),
            ),
        ]
        for conversation_id in self._conversation_ids:
            plan.append((
                realtime_bus.thread_items_channel(conversation_id),
                THREAD_ITEM,
                self._thread_item_opener(conversation_id),
            ))
        return plan

    async def _subscribe_all(self, generation: int) -> None:
        user_id = self._user_id
        if user_id is None:
            return
        try:
            for key, kind, opener in self._plan(user_id):
                if generation != self._generation:
                    return
                await self._open(key, kind, opener, generation)
        except GatewayError as exc:
            logger.warning("realtime: subscribe failed for %s: %s", user_id, exc)
            self._schedule_reconnect(generation)

    async def _open(
        self, key: str, kind: str, opener: Callable[[], Awaitable[Subscription]], generation: int
    ) -> None:
        subscription = await opener()
        if generation != self._generation or key in self._channels:
            # disconnected or already subscribed while the subscribe was in flight
            await subscription.close()
            return
        task = asyncio.create_task(self._consume(key, kind, subscription, generation), name=f"realtime:{key}")
        self._channels[key] = _Channel(subscription, task)
        logger.debug("realtime: subscribed %s", key)

    async def _close_channel(self, key: str) -> None:
        channel = self._channels.pop(key, None)
        if channel is None:
            return
        channel.task.cancel()
        await channel.subscription.close()
        logger.debug("realtime: unsubscribed %s", key)

    async def _teardown(self) -> None:
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            channel.task.cancel()
        for channel in channels:
            await channel.subscription.close()
        if channels:
            await asyncio.gather(*(channel.task for channel in channels), return_exceptions=True)

    async def _consume(self, key: str, kind: str, subscription: Subscription, generation: int) -> None:
        try:
            async for envelope in subscription:
                await self._dispatch(kind, envelope)
        except Exception:
            logger.exception("realtime: stream %s failed", key)

        channel = self._channels.get(key)
        if generation != self._generation or channel is None or channel.task is not asyncio.current_task():
            return
        logger.warning("realtime: stream %s ended unexpectedly", key)
        self._schedule_reconnect(generation)

    async def _dispatch(self, kind: str, envelope: Dict[str, Any]) -> None:
        try:
            event = _DECODERS[kind](envelope)
        except DecodeError as exc:
            logger.warning("realtime: dropping event: %s", exc)
            return
        if event is None:
            return
        for listener in list(self._listeners[kind]):
            try:
                await listener(event)
            except Exception:
                logger.exception("realtime: %s listener failed", kind)

    # -- reconnection --

    def _schedule_reconnect(self, generation: int) -> None:
        if generation != self._generation or self._user_id is None:
            return
        if self.reconnect_pending:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay(generation), name="realtime:reconnect")

    async def _reconnect_after_delay(self, generation: int) -> None:
        await asyncio.sleep(self._settings.RECONNECT_DELAY_SECONDS)
        if generation != self._generation or self._user_id is None:
            return
        self._reconnect_task = None
        self._generation += 1
        logger.info("realtime: reconnecting %s", self._user_id)
        await self._teardown()
        await self._subscribe_all(self._generation)
