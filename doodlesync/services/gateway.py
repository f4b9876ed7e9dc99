"""
Remote Data Gateway.

`RemoteGateway` is the contract the sync core consumes: batched reads, row
writes that return the authoritative row, and subscribable row-level change
feeds. Delivery on the feeds is at-least-once and approximately in commit
order; the core deduplicates.

`MongoGateway` implements it over the Mongo repositories and publishes the
change feed on the realtime bus after each committed write.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol
from uuid import UUID

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from doodlesync.repositories.conversation_repository import ConversationRepository
from doodlesync.repositories.doodle_repository import DoodleRepository
from doodlesync.repositories.friend_repository import FriendRepository
from doodlesync.repositories.reaction_repository import ReactionRepository
from doodlesync.repositories.thread_item_repository import ThreadItemRepository
from doodlesync.repositories.user_repository import UserRepository
from doodlesync.schemas.conversation import ConversationMetadata
from doodlesync.schemas.reaction import AggregatedReaction, Reaction
from doodlesync.schemas.thread import Doodle, DoodleRecipient, ThreadItem, ThreadItemType
from doodlesync.schemas.user import Friendship, FriendshipStatus, User
from doodlesync.services.errors import GatewayError
from doodlesync.utils import realtime_bus


logger = logging.getLogger(__name__)


class Subscription(Protocol):

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]: ...

    async def close(self) -> None: ...


class RemoteGateway(Protocol):

    async def fetch_conversations_with_metadata(self, user_id: UUID, conversation_id: Optional[UUID] = None) -> List[ConversationMetadata]: ...

    async def fetch_thread_items(self, conversation_id: UUID, limit: int, before: Optional[datetime] = None) -> List[ThreadItem]: ...

    async def fetch_thread_item_by_doodle(self, doodle_id: UUID) -> Optional[ThreadItem]: ...

    async def fetch_doodles(self, doodle_ids: List[UUID]) -> List[Doodle]: ...

    async def fetch_received_doodles(self, user_id: UUID) -> List[Doodle]: ...

    async def fetch_reactions(self, thread_item_ids: List[UUID]) -> List[Reaction]: ...

    async def fetch_aggregated_reactions(self, doodle_ids: List[UUID]) -> List[AggregatedReaction]: ...

    async def fetch_doodle_recipients(self, doodle_id: UUID) -> List[User]: ...

    async def add_doodle_recipients(self, doodle_id: UUID, recipient_ids: List[UUID]) -> None: ...

    async def create_text_item(self, conversation_id: UUID, sender_id: UUID, text: str) -> ThreadItem: ...

    async def create_doodle_item(self, conversation_id: UUID, sender_id: UUID, doodle_id: UUID) -> ThreadItem: ...

    async def upsert_reaction(self, thread_item_id: UUID, user_id: UUID, emoji: str) -> Reaction: ...

    async def delete_reaction(self, thread_item_id: UUID, user_id: UUID) -> None: ...

    async def update_last_read_at(self, conversation_id: UUID, user_id: UUID) -> None: ...

    async def update_muted(self, conversation_id: UUID, user_id: UUID, muted: bool) -> None: ...

    async def get_or_create_direct_conversation(self, user_a: UUID, user_b: UUID) -> UUID: ...

    async def fetch_user(self, user_id: UUID) -> Optional[User]: ...

    async def fetch_user_by_invite_code(self, invite_code: str) -> Optional[User]: ...

    async def fetch_accepted_friends(self, user_id: UUID) -> List[User]: ...

    async def fetch_pending_requests(self, user_id: UUID) -> List[Friendship]: ...

    async def fetch_friendships(self, user_id: UUID) -> List[Friendship]: ...

    async def create_friend_request(self, requester_id: UUID, addressee_id: UUID) -> Friendship: ...

    async def accept_friend_request(self, friendship_id: UUID) -> Friendship: ...

    async def delete_friendship(self, friendship_id: UUID) -> None: ...

    async def subscribe_thread_item_inserts(self, conversation_id: UUID) -> Subscription: ...

    async def subscribe_doodle_recipient_inserts(self, user_id: UUID) -> Subscription: ...

    async def subscribe_friendship_inserts(self, user_id: UUID) -> Subscription: ...

    async def subscribe_friendship_updates(self, user_id: UUID) -> Subscription: ...


@asynccontextmanager
async def _backend(operation: str):
    try:
        yield
    except (PyMongoError, RedisError) as exc:
        logger.warning("gateway: %s failed: %s", operation, exc)
        raise GatewayError(f"{operation} failed") from exc


def _ids(values) -> List[str]:
    return [str(v) for v in values]


class MongoGateway:

    def __init__(self, db: AsyncIOMotorDatabase, bus) -> None:
        self._bus = bus
        self._conversations = ConversationRepository(db)
        self._thread_items = ThreadItemRepository(db)
        self._doodles = DoodleRepository(db)
        self._reactions = ReactionRepository(db)
        self._friends = FriendRepository(db)
        self._users = UserRepository(db)

    async def ensure_indexes(self) -> None:
        for repo in (self._conversations, self._thread_items, self._doodles, self._reactions, self._friends, self._users):
            await repo.ensure_indexes()

    # -- reads --

    async def fetch_conversations_with_metadata(self, user_id: UUID, conversation_id: Optional[UUID] = None) -> List[ConversationMetadata]:
        async with _backend("fetch_conversations_with_metadata"):
            rows = await self._conversations.list_with_metadata(
                str(user_id), str(conversation_id) if conversation_id else None
            )
        return [ConversationMetadata.model_validate(row) for row in rows]

    async def fetch_thread_items(self, conversation_id: UUID, limit: int, before: Optional[datetime] = None) -> List[ThreadItem]:
        async with _backend("fetch_thread_items"):
            docs = await self._thread_items.list_for_conversation(str(conversation_id), limit=limit, before=before)
        return [ThreadItem.model_validate(doc) for doc in docs]

    async def fetch_thread_item_by_doodle(self, doodle_id: UUID) -> Optional[ThreadItem]:
        async with _backend("fetch_thread_item_by_doodle"):
            doc = await self._thread_items.find_by_doodle(str(doodle_id))
        return ThreadItem.model_validate(doc) if doc else None

    async def fetch_doodles(self, doodle_ids: List[UUID]) -> List[Doodle]:
        async with _backend("fetch_doodles"):
            docs = await self._doodles.find_by_ids(_ids(doodle_ids))
        return [Doodle.model_validate(doc) for doc in docs]

    async def fetch_received_doodles(self, user_id: UUID) -> List[Doodle]:
        async with _backend("fetch_received_doodles"):
            docs = await self._doodles.list_received(str(user_id))
        return [Doodle.model_validate(doc) for doc in docs]

    async def fetch_reactions(self, thread_item_ids: List[UUID]) -> List[Reaction]:
        async with _backend("fetch_reactions"):
            docs = await self._reactions.list_for_items(_ids(thread_item_ids))
        return [Reaction.model_validate(doc) for doc in docs]

    async def fetch_aggregated_reactions(self, doodle_ids: List[UUID]) -> List[AggregatedReaction]:
        async with _backend("fetch_aggregated_reactions"):
            rows = await self._reactions.aggregated_for_doodles(_ids(doodle_ids))
        return [AggregatedReaction.model_validate(row) for row in rows]

    async def fetch_doodle_recipients(self, doodle_id: UUID) -> List[User]:
        async with _backend("fetch_doodle_recipients"):
            recipient_ids = await self._doodles.recipient_ids(str(doodle_id))
            docs = await self._users.get_users_by_ids(recipient_ids)
        return [User.model_validate(doc) for doc in docs]

    async def fetch_user(self, user_id: UUID) -> Optional[User]:
        async with _backend("fetch_user"):
            doc = await self._users.get_user_by_id(str(user_id))
        return User.model_validate(doc) if doc else None

    async def fetch_user_by_invite_code(self, invite_code: str) -> Optional[User]:
        async with _backend("fetch_user_by_invite_code"):
            doc = await self._users.get_user_by_invite_code(invite_code)
        return User.model_validate(doc) if doc else None

    async def fetch_friendships(self, user_id: UUID) -> List[Friendship]:
        async with _backend("fetch_friendships"):
            docs = await self._friends.list_for_user(str(user_id))
        return [Friendship.model_validate(doc) for doc in docs]

    async def fetch_accepted_friends(self, user_id: UUID) -> List[User]:
        me = str(user_id)
        async with _backend("fetch_accepted_friends"):
            docs = await self._friends.list_for_user(me, status=FriendshipStatus.ACCEPTED.value)
            friend_ids = [d["addressee_id"] if d["requester_id"] == me else d["requester_id"] for d in docs]
            users = await self._users.get_users_by_ids(friend_ids)
        return [User.model_validate(doc) for doc in users]

    async def fetch_pending_requests(self, user_id: UUID) -> List[Friendship]:
        async with _backend("fetch_pending_requests"):
            docs = await self._friends.list_received_requests(str(user_id))
        return [Friendship.model_validate(doc) for doc in docs]

    # -- writes --

    async def create_text_item(self, conversation_id: UUID, sender_id: UUID, text: str) -> ThreadItem:
        return await self._create_item(conversation_id, sender_id, ThreadItemType.TEXT, text_content=text)

    async def create_doodle_item(self, conversation_id: UUID, sender_id: UUID, doodle_id: UUID) -> ThreadItem:
        return await self._create_item(conversation_id, sender_id, ThreadItemType.DOODLE, doodle_id=str(doodle_id))

    async def _create_item(self, conversation_id: UUID, sender_id: UUID, item_type: ThreadItemType, **fields) -> ThreadItem:
        async with _backend(f"create_{item_type.value}_item"):
            doc = await self._thread_items.insert(str(conversation_id), str(sender_id), item_type.value, **fields)
            await self._conversations.touch(str(conversation_id), doc["created_at"])
        item = ThreadItem.model_validate(doc)
        await self._publish(
            realtime_bus.thread_items_channel(conversation_id), "thread_items", realtime_bus.INSERT, item.model_dump(mode="json")
        )
        return item

    async def upsert_reaction(self, thread_item_id: UUID, user_id: UUID, emoji: str) -> Reaction:
        async with _backend("upsert_reaction"):
            doc = await self._reactions.upsert(str(thread_item_id), str(user_id), emoji)
        return Reaction.model_validate(doc)

    async def delete_reaction(self, thread_item_id: UUID, user_id: UUID) -> None:
        async with _backend("delete_reaction"):
            await self._reactions.delete(str(thread_item_id), str(user_id))

    async def update_last_read_at(self, conversation_id: UUID, user_id: UUID) -> None:
        async with _backend("update_last_read_at"):
            await self._conversations.update_last_read_at(str(conversation_id), str(user_id))

    async def update_muted(self, conversation_id: UUID, user_id: UUID, muted: bool) -> None:
        async with _backend("update_muted"):
            await self._conversations.update_muted(str(conversation_id), str(user_id), muted)

    async def get_or_create_direct_conversation(self, user_a: UUID, user_b: UUID) -> UUID:
        async with _backend("get_or_create_direct_conversation"):
            conversation_id = await self._conversations.get_or_create_direct(str(user_a), str(user_b))
        return UUID(conversation_id)

    async def add_doodle_recipients(self, doodle_id: UUID, recipient_ids: List[UUID]) -> None:
        async with _backend("add_doodle_recipients"):
            docs = await self._doodles.add_recipients(str(doodle_id), _ids(recipient_ids))
        for doc in docs:
            recipient = DoodleRecipient.model_validate(doc)
            await self._publish(
                realtime_bus.doodle_recipients_channel(recipient.recipient_id),
                "doodle_recipients",
                realtime_bus.INSERT,
                recipient.model_dump(mode="json"),
            )

    async def create_friend_request(self, requester_id: UUID, addressee_id: UUID) -> Friendship:
        async with _backend("create_friend_request"):
            doc = await self._friends.create_friend_request(str(requester_id), str(addressee_id))
        friendship = Friendship.model_validate(doc)
        await self._publish(
            realtime_bus.friendship_inserts_channel(addressee_id), "friendships", realtime_bus.INSERT, friendship.model_dump(mode="json")
        )
        return friendship

    async def accept_friend_request(self, friendship_id: UUID) -> Friendship:
        async with _backend("accept_friend_request"):
            doc = await self._friends.update_status(str(friendship_id), FriendshipStatus.ACCEPTED.value)
        if doc is None:
            raise GatewayError(f"Friendship {friendship_id} not found")
        friendship = Friendship.model_validate(doc)
        await self._publish(
            realtime_bus.friendship_updates_channel(friendship.requester_id), "friendships", realtime_bus.UPDATE, friendship.model_dump(mode="json")
        )
        return friendship

    async def delete_friendship(self, friendship_id: UUID) -> None:
        async with _backend("delete_friendship"):
            await self._friends.delete_friendship(str(friendship_id))

    # -- change feeds --

    async def subscribe_thread_item_inserts(self, conversation_id: UUID) -> Subscription:
        return await self._subscribe(realtime_bus.thread_items_channel(conversation_id))

    async def subscribe_doodle_recipient_inserts(self, user_id: UUID) -> Subscription:
        return await self._subscribe(realtime_bus.doodle_recipients_channel(user_id))

    async def subscribe_friendship_inserts(self, user_id: UUID) -> Subscription:
        return await self._subscribe(realtime_bus.friendship_inserts_channel(user_id))

    async def subscribe_friendship_updates(self, user_id: UUID) -> Subscription:
        return await self._subscribe(realtime_bus.friendship_updates_channel(user_id))

    async def _subscribe(self, channel: str) -> Subscription:
        async with _backend(f"subscribe {channel}"):
            return await self._bus.subscribe(channel)

    async def _publish(self, channel: str, table: str, change_type: str, record: Dict[str, Any]) -> None:
        # row is already committed: a failed publish is logged, not raised
        try:
            await self._bus.publish(channel, realtime_bus.encode_change(table, change_type, record))
        except RedisError as exc:
            logger.warning("gateway: publish to %s failed: %s", channel, exc)
