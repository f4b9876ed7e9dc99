"""
End-to-end tests of a user session over the in-memory backend and bus.
"""

import pytest
import pytest_asyncio

from doodlesync.schemas.user import FriendshipStatus
from doodlesync.services.session import SessionRegistry

from factories import at, make_text_item, make_user, settle


@pytest_asyncio.fixture
async def registry(gateway, settings):
    registry = SessionRegistry(gateway, settings)
    yield registry
    await registry.close_all()


class TestSyncSession:
    @pytest.mark.asyncio
    async def test_realtime_insert_reaches_open_thread(self, gateway, registry, me, friend):
        cid = gateway.add_conversation(friend, at(0))
        gateway.add_items(*(make_text_item(cid, at(m), sender_id=friend.id) for m in (1, 2, 3)))
        session = await registry.get(me.id)
        await session.load_conversations()
        await session.engine.open_conversation(cid)

        item = await gateway.create_text_item(cid, friend.id, "live")
        await settle()

        assert session.store.live.items[0].id == item.id
        assert session.store.get_thread_cache(cid).items[0].id == item.id
        assert session.store.get_conversation(cid).unread_count == 1

    @pytest.mark.asyncio
    async def test_own_send_and_echo_count_once(self, gateway, registry, me, friend):
        cid = gateway.add_conversation(friend, at(0))
        session = await registry.get(me.id)
        await session.load_conversations()
        await session.engine.open_conversation(cid)

        sent = await session.engine.send_text(cid, "hi there")
        await settle()

        assert [i.id for i in session.store.live.items] == [sent.id]
        assert session.store.get_conversation(cid).unread_count == 0

    @pytest.mark.asyncio
    async def test_friend_request_event_reaches_friend_state(self, gateway, registry, me, friend):
        session = await registry.get(me.id)

        request = await gateway.create_friend_request(friend.id, me.id)
        await settle()

        assert [f.id for f in session.friends.pending_requests] == [request.id]

    @pytest.mark.asyncio
    async def test_acceptance_event_adds_friend(self, gateway, registry, me, friend):
        session = await registry.get(me.id)
        request = gateway.add_friendship(me.id, friend.id, FriendshipStatus.PENDING)

        await gateway.accept_friend_request(request.id)
        await settle()

        assert [u.id for u in session.friends.friends] == [friend.id]

    @pytest.mark.asyncio
    async def test_open_direct_conversation_follows_it(self, gateway, registry, me):
        other = gateway.add_user(make_user("Alan Turing"))
        session = await registry.get(me.id)
        await session.load_conversations()

        cid = await session.open_direct_conversation(other.id)

        assert cid in session.realtime.conversation_ids
        assert session.store.get_conversation(cid) is not None


class TestSessionRegistry:
    @pytest.mark.asyncio
    async def test_one_session_per_user(self, registry, me):
        assert await registry.get(me.id) is await registry.get(me.id)
        assert me.id in registry

    @pytest.mark.asyncio
    async def test_close_disconnects(self, registry, me):
        session = await registry.get(me.id)

        await registry.close(me.id)

        assert me.id not in registry
        assert not session.realtime.connected
