"""
Sync Engine: reconciles fetch results, local writes and realtime inserts into
the Entity Store for one user.

Writes are apply-after-success: the remote row is created first and the
returned row (authoritative id and timestamp) is inserted locally through the
same path a realtime insert takes, so the later echo is absorbed by the id
guard.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from doodlesync.config import Settings
from doodlesync.schemas.conversation import ConversationMetadata, ConversationSummary
from doodlesync.schemas.reaction import Reaction, ReactionSummary
from doodlesync.schemas.thread import Doodle, ThreadItem
from doodlesync.schemas.user import User
from doodlesync.services.entity_store import EntityStore, ThreadView
from doodlesync.services.errors import ConversationLoadError, ConversationsUnavailableError, GatewayError
from doodlesync.services.gateway import RemoteGateway
from doodlesync.services.pagination import PaginationController
from doodlesync.services.reaction_aggregator import summarize
from doodlesync.utils.timestamps import utcnow


logger = logging.getLogger(__name__)


class ReactionChange(str, Enum):
    ADDED = "added"
    REPLACED = "replaced"
    REMOVED = "removed"


def decide_reaction_change(existing: Optional[Reaction], emoji: str) -> ReactionChange:
    """Three-way toggle: add when none, remove on the same emoji, replace otherwise."""
    if existing is None:
        return ReactionChange.ADDED
    if existing.emoji == emoji:
        return ReactionChange.REMOVED
    return ReactionChange.REPLACED


class SyncEngine:

    def __init__(
        self,
        gateway: RemoteGateway,
        store: EntityStore,
        pagination: PaginationController,
        user_id: UUID,
        settings: Settings,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._pagination = pagination
        self._settings = settings
        self.user_id = user_id
        # (conversation_id, item_id) of every item already applied to a summary
        self._applied: Set[Tuple[UUID, UUID]] = set()

    @property
    def store(self) -> EntityStore:
        return self._store

    # -- conversation list --

    async def load_conversations(self) -> List[ConversationSummary]:
        """
        Rebuild the conversation list from one batched metadata read.

        On failure a previously loaded list is kept and returned. With nothing
        loaded yet the failure surfaces as ConversationsUnavailableError.
        """
        try:
            rows = await self._gateway.fetch_conversations_with_metadata(self.user_id)
            doodle_ids = list(dict.fromkeys(
                row.last_item_doodle_id for row in rows if row.last_item_doodle_id is not None
            ))
            doodles = await self._gateway.fetch_doodles(doodle_ids) if doodle_ids else []
        except GatewayError as exc:
            if self._store.conversations_loaded:
                logger.warning("sync: conversation refresh failed, keeping cached list: %s", exc)
                return self._store.get_conversations()
            raise ConversationsUnavailableError("Could not load conversations") from exc

        doodle_map = {doodle.id: doodle for doodle in doodles}
        summaries = []
        for row in rows:
            summary = _build_summary(row, doodle_map)
            if summary is None:
                logger.debug("sync: conversation %s has no other participant, skipping", row.conversation_id)
                continue
            summaries.append(summary)

        self._store.set_conversations(summaries)
        logger.info("sync: loaded %d conversations for %s", len(summaries), self.user_id)
        return self._store.get_conversations()

    async def refresh_conversation(self, conversation_id: UUID) -> Optional[ConversationSummary]:
        """Re-read one conversation's metadata and patch its summary in place."""
        if self._store.get_conversation(conversation_id) is None:
            return None
        try:
            rows = await self._gateway.fetch_conversations_with_metadata(self.user_id, conversation_id)
        except GatewayError as exc:
            logger.warning("sync: refresh of conversation %s failed: %s", conversation_id, exc)
            return self._store.get_conversation(conversation_id)

        row = next((r for r in rows if r.conversation_id == conversation_id), None)
        if row is None:
            return self._store.get_conversation(conversation_id)

        last_item = row.last_item()
        last_doodle = None
        if last_item is not None and last_item.doodle_id is not None:
            last_doodle = self._known_doodle(conversation_id, last_item.doodle_id)
            if last_doodle is None:
                last_doodle = await self._fetch_doodle(last_item.doodle_id)

        self._store.upsert_conversation_summary(
            conversation_id,
            lambda summary: summary.model_copy(update={
                "type": row.type,
                "updated_at": row.updated_at,
                "last_item": last_item,
                "last_doodle": last_doodle,
                "unread_count": row.unread_count,
                "muted": row.muted,
            }),
        )
        return self._store.get_conversation(conversation_id)

    async def get_or_create_conversation(self, friend_id: UUID) -> UUID:
        return await self._gateway.get_or_create_direct_conversation(self.user_id, friend_id)

    async def mark_read(self, conversation_id: UUID) -> None:
        await self._gateway.update_last_read_at(conversation_id, self.user_id)
        self._store.upsert_conversation_summary(
            conversation_id, lambda summary: summary.model_copy(update={"unread_count": 0})
        )

    async def toggle_mute(self, conversation_id: UUID) -> Optional[bool]:
        summary = self._store.get_conversation(conversation_id)
        if summary is None:
            return None
        muted = not summary.muted
        await self._gateway.update_muted(conversation_id, self.user_id, muted)
        self._store.upsert_conversation_summary(
            conversation_id, lambda s: s.model_copy(update={"muted": muted})
        )
        return muted

    # -- threads --

    async def open_conversation(
        self, conversation_id: UUID, limit: Optional[int] = None, force_refresh: bool = False
    ) -> ThreadView:
        """
        Open a conversation as the live thread.

        The live list is seeded from the cache immediately. A cache younger than
        CACHE_FRESHNESS_SECONDS is served as-is unless `force_refresh` is set.
        A failed load keeps a stale cache silently; with no cache the state
        becomes FAILED and ConversationLoadError is raised.
        """
        limit = limit or self._settings.THREAD_PAGE_SIZE
        live = self._store.open_live(conversation_id)

        cache = self._store.get_thread_cache(conversation_id)
        if cache is not None and not force_refresh:
            age = (utcnow() - cache.loaded_at).total_seconds()
            if age < self._settings.CACHE_FRESHNESS_SECONDS:
                return live

        self._store.mark_loading(conversation_id)
        try:
            await self._pagination.load_first_page(conversation_id, limit)
        except GatewayError as exc:
            if self._store.get_thread_cache(conversation_id) is None:
                self._store.mark_failed(conversation_id, exc)
                raise ConversationLoadError(conversation_id) from exc
            logger.warning("sync: refresh of thread %s failed, showing cached items: %s", conversation_id, exc)

        if self._store.current_conversation_id == conversation_id:
            return self._store.live
        return self._store.get_thread_cache(conversation_id) or ThreadView()

    def close_conversation(self) -> None:
        self._store.close_live()

    async def load_more(self, conversation_id: UUID, limit: Optional[int] = None) -> List[ThreadItem]:
        return await self._pagination.load_older_page(conversation_id, limit or self._settings.OLDER_PAGE_SIZE)

    def has_more(self, conversation_id: UUID) -> bool:
        return self._pagination.has_more(conversation_id)

    # -- sends --

    async def send_text(self, conversation_id: UUID, text: str) -> ThreadItem:
        if not text or not text.strip():
            raise ValueError("Message text cannot be empty")
        item = await self._gateway.create_text_item(conversation_id, self.user_id, text)
        self._apply_local_item(item)
        return item

    async def send_doodle(self, conversation_id: UUID, doodle_id: UUID, doodle: Optional[Doodle] = None) -> ThreadItem:
        item = await self._gateway.create_doodle_item(conversation_id, self.user_id, doodle_id)
        self._apply_local_item(item, doodle)
        if doodle is None:
            await self._resolve_doodle(item)
        return item

    def _apply_local_item(self, item: ThreadItem, doodle: Optional[Doodle] = None) -> None:
        conversation_id = item.conversation_id
        self._applied.add((conversation_id, item.id))
        last_doodle = doodle or (self._known_doodle(conversation_id, item.doodle_id) if item.doodle_id else None)
        self._store.upsert_conversation_summary(
            conversation_id,
            lambda summary: summary.model_copy(update={
                "last_item": item,
                "last_doodle": last_doodle,
                "updated_at": item.created_at,
            }) if item.created_at >= summary.updated_at else summary,
        )

        def insert(view: ThreadView) -> None:
            view.insert_newest(item)
            if doodle is not None:
                view.merge_doodles([doodle])

        self._store.patch_thread_cache(conversation_id, insert)
        self._store.patch_live(conversation_id, insert)

    # -- realtime ingestion --

    async def handle_thread_item(self, item: ThreadItem) -> None:
        """Listener for thread item inserts: patch summary, cache and live, then resolve the doodle."""
        self.apply_thread_item(item)
        await self._resolve_doodle(item)

    def apply_thread_item(self, item: ThreadItem) -> None:
        conversation_id = item.conversation_id
        seen = (conversation_id, item.id) in self._applied or self._holds_item(conversation_id, item.id)
        self._applied.add((conversation_id, item.id))

        summary = self._store.get_conversation(conversation_id)
        if summary is None:
            logger.debug("sync: no summary for %s yet, list not loaded", conversation_id)
        elif summary.last_item is not None and summary.last_item.id == item.id:
            logger.debug("sync: summary of %s already reflects %s", conversation_id, item.id)
        else:
            unread = 0 if seen or item.sender_id == self.user_id else 1
            if item.created_at >= summary.updated_at:
                last_doodle = self._known_doodle(conversation_id, item.doodle_id) if item.doodle_id else None
                update = {"last_item": item, "last_doodle": last_doodle, "updated_at": item.created_at}
            else:
                logger.debug("sync: %s is older than the summary of %s", item.id, conversation_id)
                update = {}
            if unread or update:
                self._store.upsert_conversation_summary(
                    conversation_id,
                    lambda s: s.model_copy(update={**update, "unread_count": s.unread_count + unread}),
                )

        def insert(view: ThreadView) -> None:
            if not view.insert_newest(item):
                logger.debug("sync: %s already present in %s", item.id, conversation_id)

        self._store.patch_thread_cache(conversation_id, insert)
        self._store.patch_live(conversation_id, insert)

    def _holds_item(self, conversation_id: UUID, item_id: UUID) -> bool:
        cache = self._store.get_thread_cache(conversation_id)
        if cache is not None and cache.contains(item_id):
            return True
        live = self._store.live
        return live is not None and live.conversation_id == conversation_id and live.contains(item_id)

    async def _resolve_doodle(self, item: ThreadItem) -> None:
        if item.doodle_id is None:
            return
        conversation_id = item.conversation_id
        if self._known_doodle(conversation_id, item.doodle_id) is not None:
            return
        doodle = await self._fetch_doodle(item.doodle_id)
        if doodle is None:
            return

        def merge(view: ThreadView) -> None:
            view.merge_doodles([doodle])

        self._store.patch_thread_cache(conversation_id, merge)
        self._store.patch_live(conversation_id, merge)
        self._store.upsert_conversation_summary(
            conversation_id,
            lambda s: s.model_copy(update={"last_doodle": doodle})
            if s.last_item is not None and s.last_item.doodle_id == doodle.id
            else s,
        )

    async def _fetch_doodle(self, doodle_id: UUID) -> Optional[Doodle]:
        try:
            doodles = await self._gateway.fetch_doodles([doodle_id])
        except GatewayError as exc:
            logger.warning("sync: could not resolve doodle %s: %s", doodle_id, exc)
            return None
        return doodles[0] if doodles else None

    def _known_doodle(self, conversation_id: UUID, doodle_id: UUID) -> Optional[Doodle]:
        cache = self._store.get_thread_cache(conversation_id)
        if cache is not None and doodle_id in cache.doodles:
            return cache.doodles[doodle_id]
        live = self._store.live
        if live is not None and live.conversation_id == conversation_id:
            return live.doodles.get(doodle_id)
        return None

    # -- reactions --

    def my_reaction(self, conversation_id: UUID, thread_item_id: UUID) -> Optional[Reaction]:
        view = self._view_for(conversation_id)
        if view is None:
            return None
        return view.user_reaction(thread_item_id, self.user_id)

    async def add_reaction(self, conversation_id: UUID, thread_item_id: UUID, emoji: str) -> Reaction:
        reaction = await self._gateway.upsert_reaction(thread_item_id, self.user_id, emoji)
        self._set_my_reaction(conversation_id, thread_item_id, reaction)
        return reaction

    async def remove_reaction(self, conversation_id: UUID, thread_item_id: UUID) -> None:
        await self._gateway.delete_reaction(thread_item_id, self.user_id)
        self._set_my_reaction(conversation_id, thread_item_id, None)

    async def toggle_reaction(self, conversation_id: UUID, thread_item_id: UUID, emoji: str) -> ReactionChange:
        change = decide_reaction_change(self.my_reaction(conversation_id, thread_item_id), emoji)
        await self._apply_reaction_change(conversation_id, thread_item_id, change, emoji)
        await self._refresh_summary_for_item(conversation_id, thread_item_id)
        return change

    async def toggle_reaction_on_doodle(self, doodle_id: UUID, emoji: str) -> Optional[ReactionChange]:
        """Toggle from the grid view, where only the doodle is known."""
        item = await self._gateway.fetch_thread_item_by_doodle(doodle_id)
        if item is None:
            logger.info("sync: no thread item carries doodle %s", doodle_id)
            return None
        reactions = await self._gateway.fetch_reactions([item.id])
        mine = next((r for r in reactions if r.user_id == self.user_id), None)
        change = decide_reaction_change(mine, emoji)
        await self._apply_reaction_change(item.conversation_id, item.id, change, emoji)
        await self._refresh_summaries([doodle_id])
        return change

    async def _apply_reaction_change(
        self, conversation_id: UUID, thread_item_id: UUID, change: ReactionChange, emoji: str
    ) -> None:
        if change is ReactionChange.REMOVED:
            await self.remove_reaction(conversation_id, thread_item_id)
        else:
            # replace is one upsert
            await self.add_reaction(conversation_id, thread_item_id, emoji)

    def _set_my_reaction(self, conversation_id: UUID, thread_item_id: UUID, reaction: Optional[Reaction]) -> None:
        def update(view: ThreadView) -> None:
            view.set_user_reaction(thread_item_id, self.user_id, reaction)

        self._store.patch_thread_cache(conversation_id, update)
        self._store.patch_live(conversation_id, update)

    def _view_for(self, conversation_id: UUID) -> Optional[ThreadView]:
        live = self._store.live
        if live is not None and live.conversation_id == conversation_id:
            return live
        return self._store.get_thread_cache(conversation_id)

    async def _refresh_summary_for_item(self, conversation_id: UUID, thread_item_id: UUID) -> None:
        view = self._view_for(conversation_id)
        if view is None:
            return
        item = next((i for i in view.items if i.id == thread_item_id), None)
        if item is not None and item.doodle_id is not None:
            await self._refresh_summaries([item.doodle_id])

    async def _refresh_summaries(self, doodle_ids: List[UUID]) -> None:
        tracked = [d for d in doodle_ids if self._store.has_reaction_summary(d)]
        if not tracked:
            return
        try:
            await self.load_reaction_summaries(tracked)
        except GatewayError as exc:
            logger.warning("sync: reaction summary refresh failed: %s", exc)

    async def load_reaction_summaries(self, doodle_ids: Iterable[UUID]) -> Dict[UUID, ReactionSummary]:
        ids = list(dict.fromkeys(doodle_ids))
        if not ids:
            return {}
        rows = await self._gateway.fetch_aggregated_reactions(ids)
        built = summarize(rows)
        summaries = {doodle_id: built.get(doodle_id, ReactionSummary.empty()) for doodle_id in ids}
        self._store.set_reaction_summaries(summaries)
        return summaries

    # -- recipients --

    async def get_doodle_recipients(self, doodle_id: UUID) -> List[User]:
        cached = self._store.get_recipients(doodle_id)
        if cached is not None:
            return cached
        recipients = await self._gateway.fetch_doodle_recipients(doodle_id)
        self._store.set_recipients(doodle_id, recipients)
        return recipients

    async def forward_doodle(self, doodle_id: UUID, recipient_ids: List[UUID]) -> None:
        await self._gateway.add_doodle_recipients(doodle_id, recipient_ids)
        self._store.invalidate_recipients(doodle_id)


def _build_summary(row: ConversationMetadata, doodles: Dict[UUID, Doodle]) -> Optional[ConversationSummary]:
    other = row.other_participant()
    if other is None:
        return None
    last_item = row.last_item()
    last_doodle = None
    if last_item is not None and last_item.doodle_id is not None:
        last_doodle = doodles.get(last_item.doodle_id)
    return ConversationSummary(
        conversation_id=row.conversation_id,
        type=row.type,
        updated_at=row.updated_at,
        other_participant=other,
        last_item=last_item,
        last_doodle=last_doodle,
        unread_count=row.unread_count,
        muted=row.muted,
    )
