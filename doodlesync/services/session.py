"""
Per-user sync sessions.

A SyncSession bundles the store, engine, pagination, friend state and realtime
subscriptions of one user and wires the realtime listeners to them. The
SessionRegistry owns one session per user for the lifetime of the app.
"""

import asyncio
import logging
from typing import Callable, Dict, List
from uuid import UUID

from doodlesync.config import Settings
from doodlesync.schemas.conversation import ConversationSummary
from doodlesync.services.entity_store import EntityStore
from doodlesync.services.friend_service import FriendService
from doodlesync.services.gateway import RemoteGateway
from doodlesync.services.pagination import PaginationController
from doodlesync.services.realtime_service import (
    DOODLE_RECEIVED,
    FRIEND_ACCEPTED,
    FRIEND_REQUEST,
    THREAD_ITEM,
    RealtimeService,
)
from doodlesync.services.sync_engine import SyncEngine


logger = logging.getLogger(__name__)


class SyncSession:

    def __init__(self, user_id: UUID, gateway: RemoteGateway, settings: Settings) -> None:
        self.user_id = user_id
        self.store = EntityStore()
        self.pagination = PaginationController(gateway, self.store)
        self.engine = SyncEngine(gateway, self.store, self.pagination, user_id, settings)
        self.friends = FriendService(gateway, user_id)
        self.realtime = RealtimeService(gateway, settings)
        self._removers: List[Callable[[], None]] = [
            self.realtime.add_listener(THREAD_ITEM, self.engine.handle_thread_item),
            self.realtime.add_listener(DOODLE_RECEIVED, self.friends.handle_doodle_received),
            self.realtime.add_listener(FRIEND_REQUEST, self.friends.handle_friend_request),
            self.realtime.add_listener(FRIEND_ACCEPTED, self.friends.handle_friend_accepted),
        ]

    async def start(self) -> None:
        await self.realtime.connect(self.user_id)

    async def load_conversations(self) -> List[ConversationSummary]:
        """Load the list and follow inserts on the most recent conversations."""
        summaries = await self.engine.load_conversations()
        await self.realtime.subscribe_to_conversations([s.conversation_id for s in summaries])
        return summaries

    async def open_direct_conversation(self, friend_id: UUID) -> UUID:
        conversation_id = await self.engine.get_or_create_conversation(friend_id)
        await self.realtime.add_conversation_subscription(conversation_id)
        if self.store.get_conversation(conversation_id) is None:
            await self.engine.load_conversations()
        return conversation_id

    async def close(self) -> None:
        for remove in self._removers:
            remove()
        self._removers = []
        await self.realtime.disconnect()
        self.store.close_live()


class SessionRegistry:

    def __init__(self, gateway: RemoteGateway, settings: Settings) -> None:
        self._gateway = gateway
        self._settings = settings
        self._sessions: Dict[UUID, SyncSession] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, user_id: UUID) -> bool:
        return user_id in self._sessions

    async def get(self, user_id: UUID) -> SyncSession:
        async with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                session = SyncSession(user_id, self._gateway, self._settings)
                await session.start()
                self._sessions[user_id] = session
                logger.info("session: started for %s", user_id)
            return session

    async def close(self, user_id: UUID) -> None:
        async with self._lock:
            session = self._sessions.pop(user_id, None)
        if session is not None:
            await session.close()
            logger.info("session: closed for %s", user_id)

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
