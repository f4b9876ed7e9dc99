"""
Pytest configuration and fixtures for doodlesync tests.

`FakeGateway` is an in-memory backend implementing the gateway contract. Writes
publish row changes on a LocalBus the same way MongoGateway does, so realtime
tests run end to end without Mongo or Redis.
"""

import asyncio
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from doodlesync.config import Settings
from doodlesync.schemas.conversation import ConversationMetadata, ConversationType
from doodlesync.schemas.reaction import AggregatedReaction, Reaction
from doodlesync.schemas.thread import Doodle, DoodleRecipient, ThreadItem, ThreadItemType
from doodlesync.schemas.user import Friendship, FriendshipStatus, User
from doodlesync.services.entity_store import EntityStore
from doodlesync.services.errors import GatewayError
from doodlesync.services.pagination import PaginationController
from doodlesync.services.sync_engine import SyncEngine
from doodlesync.utils import realtime_bus
from doodlesync.utils.realtime_bus import LocalBus

from factories import BASE_TIME, make_user


class FakeGateway:

    def __init__(self) -> None:
        self.bus = LocalBus()
        self.calls: Counter = Counter()
        self.fail: Set[str] = set()
        self.fail_subscribes = 0
        # when set, fetch_thread_items waits on it before answering
        self.hold_fetches: Optional[asyncio.Event] = None

        self.users: Dict[UUID, User] = {}
        self.rows: Dict[UUID, ConversationMetadata] = {}
        self.items: Dict[UUID, ThreadItem] = {}
        self.doodles: Dict[UUID, Doodle] = {}
        self.reactions: Dict[Tuple[UUID, UUID], Reaction] = {}
        self.recipients: Dict[UUID, List[UUID]] = {}
        self.friendships: Dict[UUID, Friendship] = {}
        self._clock = BASE_TIME + timedelta(hours=1)

    # -- seeding --

    def now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def add_user(self, user: User) -> User:
        self.users[user.id] = user
        return user

    def add_conversation(
        self,
        other: Optional[User],
        updated_at: datetime,
        unread_count: int = 0,
        conversation_id: Optional[UUID] = None,
    ) -> UUID:
        conversation_id = conversation_id or uuid4()
        fields = {}
        if other is not None:
            self.add_user(other)
            fields = {
                "other_user_id": other.id,
                "other_display_name": other.display_name,
                "other_color_hex": other.color_hex,
            }
        self.rows[conversation_id] = ConversationMetadata(
            conversation_id=conversation_id,
            type=ConversationType.DIRECT,
            updated_at=updated_at,
            unread_count=unread_count,
            **fields,
        )
        return conversation_id

    def add_items(self, *items: ThreadItem) -> None:
        for item in items:
            self.items[item.id] = item
            self._touch(item)

    def add_doodle(self, doodle: Doodle) -> Doodle:
        self.doodles[doodle.id] = doodle
        return doodle

    def add_friendship(self, requester_id: UUID, addressee_id: UUID, status: FriendshipStatus) -> Friendship:
        friendship = Friendship(
            id=uuid4(), requester_id=requester_id, addressee_id=addressee_id, status=status, created_at=self.now()
        )
        self.friendships[friendship.id] = friendship
        return friendship

    def _touch(self, item: ThreadItem) -> None:
        row = self.rows.get(item.conversation_id)
        if row is None or (row.last_item_created_at and row.last_item_created_at > item.created_at):
            return
        self.rows[item.conversation_id] = row.model_copy(update={
            "updated_at": max(row.updated_at, item.created_at),
            "last_item_id": item.id,
            "last_item_sender_id": item.sender_id,
            "last_item_type": item.type,
            "last_item_doodle_id": item.doodle_id,
            "last_item_text_content": item.text_content,
            "last_item_created_at": item.created_at,
        })

    def _call(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation in self.fail:
            raise GatewayError(f"{operation} failed")

    async def _publish(self, channel: str, table: str, change_type: str, record) -> None:
        await self.bus.publish(channel, realtime_bus.encode_change(table, change_type, record))

    # -- reads --

    async def fetch_conversations_with_metadata(self, user_id, conversation_id=None):
        self._call("fetch_conversations_with_metadata")
        rows = list(self.rows.values())
        if conversation_id is not None:
            rows = [r for r in rows if r.conversation_id == conversation_id]
        return sorted(rows, key=lambda r: r.updated_at, reverse=True)

    async def fetch_thread_items(self, conversation_id, limit, before=None):
        self._call("fetch_thread_items")
        if self.hold_fetches is not None:
            await self.hold_fetches.wait()
        items = [i for i in self.items.values() if i.conversation_id == conversation_id]
        if before is not None:
            items = [i for i in items if i.created_at < before]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items[:limit]

    async def fetch_thread_item_by_doodle(self, doodle_id):
        self._call("fetch_thread_item_by_doodle")
        return next((i for i in self.items.values() if i.doodle_id == doodle_id), None)

    async def fetch_doodles(self, doodle_ids):
        self._call("fetch_doodles")
        return [self.doodles[d] for d in doodle_ids if d in self.doodles]

    async def fetch_received_doodles(self, user_id):
        self._call("fetch_received_doodles")
        return [self.doodles[d] for d, users in self.recipients.items() if user_id in users and d in self.doodles]

    async def fetch_reactions(self, thread_item_ids):
        self._call("fetch_reactions")
        wanted = set(thread_item_ids)
        return [r for r in self.reactions.values() if r.thread_item_id in wanted]

    async def fetch_aggregated_reactions(self, doodle_ids):
        self._call("fetch_aggregated_reactions")
        wanted = set(doodle_ids)
        rows = []
        for reaction in self.reactions.values():
            item = self.items.get(reaction.thread_item_id)
            if item is None or item.doodle_id not in wanted:
                continue
            user = self.users.get(reaction.user_id)
            rows.append(AggregatedReaction(
                doodle_id=item.doodle_id,
                user_id=reaction.user_id,
                display_name=user.display_name if user else "Unknown",
                emoji=reaction.emoji,
            ))
        return rows

    async def fetch_doodle_recipients(self, doodle_id):
        self._call("fetch_doodle_recipients")
        return [self.users[u] for u in self.recipients.get(doodle_id, []) if u in self.users]

    async def fetch_user(self, user_id):
        self._call("fetch_user")
        return self.users.get(user_id)

    async def fetch_user_by_invite_code(self, invite_code):
        self._call("fetch_user_by_invite_code")
        return next((u for u in self.users.values() if u.invite_code == invite_code), None)

    async def fetch_friendships(self, user_id):
        self._call("fetch_friendships")
        return [f for f in self.friendships.values() if user_id in (f.requester_id, f.addressee_id)]

    async def fetch_accepted_friends(self, user_id):
        self._call("fetch_accepted_friends")
        friends = []
        for f in self.friendships.values():
            if f.status is not FriendshipStatus.ACCEPTED or user_id not in (f.requester_id, f.addressee_id):
                continue
            other = f.addressee_id if f.requester_id == user_id else f.requester_id
            if other in self.users:
                friends.append(self.users[other])
        return friends

    async def fetch_pending_requests(self, user_id):
        self._call("fetch_pending_requests")
        return [
            f for f in self.friendships.values()
            if f.addressee_id == user_id and f.status is FriendshipStatus.PENDING
        ]

    # -- writes --

    async def create_text_item(self, conversation_id, sender_id, text):
        self._call("create_text_item")
        return await self._create(ThreadItem(
            id=uuid4(), conversation_id=conversation_id, sender_id=sender_id,
            type=ThreadItemType.TEXT, text_content=text, created_at=self.now(),
        ))

    async def create_doodle_item(self, conversation_id, sender_id, doodle_id):
        self._call("create_doodle_item")
        return await self._create(ThreadItem(
            id=uuid4(), conversation_id=conversation_id, sender_id=sender_id,
            type=ThreadItemType.DOODLE, doodle_id=doodle_id, created_at=self.now(),
        ))

    async def _create(self, item: ThreadItem) -> ThreadItem:
        self.add_items(item)
        await self._publish(
            realtime_bus.thread_items_channel(item.conversation_id), "thread_items",
            realtime_bus.INSERT, item.model_dump(mode="json"),
        )
        return item

    async def upsert_reaction(self, thread_item_id, user_id, emoji):
        self._call("upsert_reaction")
        existing = self.reactions.get((thread_item_id, user_id))
        reaction = Reaction(
            id=existing.id if existing else uuid4(),
            thread_item_id=thread_item_id, user_id=user_id, emoji=emoji, created_at=self.now(),
        )
        self.reactions[(thread_item_id, user_id)] = reaction
        return reaction

    async def delete_reaction(self, thread_item_id, user_id):
        self._call("delete_reaction")
        self.reactions.pop((thread_item_id, user_id), None)

    async def update_last_read_at(self, conversation_id, user_id):
        self._call("update_last_read_at")
        row = self.rows.get(conversation_id)
        if row is not None:
            self.rows[conversation_id] = row.model_copy(update={"unread_count": 0})

    async def update_muted(self, conversation_id, user_id, muted):
        self._call("update_muted")
        row = self.rows.get(conversation_id)
        if row is not None:
            self.rows[conversation_id] = row.model_copy(update={"muted": muted})

    async def get_or_create_direct_conversation(self, user_a, user_b):
        self._call("get_or_create_direct_conversation")
        for row in self.rows.values():
            if row.other_user_id == user_b:
                return row.conversation_id
        return self.add_conversation(self.users.get(user_b) or make_user(user_id=user_b), self.now())

    async def add_doodle_recipients(self, doodle_id, recipient_ids):
        self._call("add_doodle_recipients")
        for recipient_id in recipient_ids:
            if recipient_id in self.recipients.setdefault(doodle_id, []):
                continue
            self.recipients[doodle_id].append(recipient_id)
            recipient = DoodleRecipient(id=uuid4(), doodle_id=doodle_id, recipient_id=recipient_id, created_at=self.now())
            await self._publish(
                realtime_bus.doodle_recipients_channel(recipient_id), "doodle_recipients",
                realtime_bus.INSERT, recipient.model_dump(mode="json"),
            )

    async def create_friend_request(self, requester_id, addressee_id):
        self._call("create_friend_request")
        friendship = self.add_friendship(requester_id, addressee_id, FriendshipStatus.PENDING)
        await self._publish(
            realtime_bus.friendship_inserts_channel(addressee_id), "friendships",
            realtime_bus.INSERT, friendship.model_dump(mode="json"),
        )
        return friendship

    async def accept_friend_request(self, friendship_id):
        self._call("accept_friend_request")
        friendship = self.friendships[friendship_id].model_copy(update={"status": FriendshipStatus.ACCEPTED})
        self.friendships[friendship_id] = friendship
        await self._publish(
            realtime_bus.friendship_updates_channel(friendship.requester_id), "friendships",
            realtime_bus.UPDATE, friendship.model_dump(mode="json"),
        )
        return friendship

    async def delete_friendship(self, friendship_id):
        self._call("delete_friendship")
        self.friendships.pop(friendship_id, None)

    # -- change feeds --

    async def subscribe_thread_item_inserts(self, conversation_id):
        return await self._subscribe(realtime_bus.thread_items_channel(conversation_id))

    async def subscribe_doodle_recipient_inserts(self, user_id):
        return await self._subscribe(realtime_bus.doodle_recipients_channel(user_id))

    async def subscribe_friendship_inserts(self, user_id):
        return await self._subscribe(realtime_bus.friendship_inserts_channel(user_id))

    async def subscribe_friendship_updates(self, user_id):
        return await self._subscribe(realtime_bus.friendship_updates_channel(user_id))

    async def _subscribe(self, channel: str):
        self.calls["subscribe"] += 1
        if self.fail_subscribes > 0:
            self.fail_subscribes -= 1
            raise GatewayError(f"subscribe {channel} failed")
        return await self.bus.subscribe(channel)


@pytest.fixture
def settings():
    return Settings(RECONNECT_DELAY_SECONDS=0.05, CACHE_FRESHNESS_SECONDS=30)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def me(gateway):
    return gateway.add_user(make_user("Me Myself", invite_code="ME0001"))


@pytest.fixture
def friend(gateway):
    return gateway.add_user(make_user("Grace Hopper", invite_code="GRACE1"))


@pytest.fixture
def store():
    return EntityStore()


@pytest.fixture
def pagination(gateway, store):
    return PaginationController(gateway, store)


@pytest.fixture
def engine(gateway, store, pagination, me, settings):
    return SyncEngine(gateway, store, pagination, me.id, settings)


@pytest_asyncio.fixture
async def bus():
    bus = LocalBus()
    yield bus
    await bus.close()
