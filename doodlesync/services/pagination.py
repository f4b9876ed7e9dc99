import logging
from typing import Dict, List, Set, Tuple
from uuid import UUID

from doodlesync.schemas.reaction import Reaction
from doodlesync.schemas.thread import Doodle, ThreadItem
from doodlesync.services.entity_store import EntityStore, ThreadCache, ThreadView
from doodlesync.services.gateway import RemoteGateway


logger = logging.getLogger(__name__)


async def resolve_attachments(
    gateway: RemoteGateway,
    items: List[ThreadItem],
    known_doodles: Dict[UUID, Doodle],
) -> Tuple[List[Doodle], Dict[UUID, List[Reaction]]]:
    """Batch-fetch the doodles not yet known and the reactions for `items`."""
    doodle_ids = list(dict.fromkeys(
        item.doodle_id for item in items if item.doodle_id is not None and item.doodle_id not in known_doodles
    ))
    doodles = await gateway.fetch_doodles(doodle_ids) if doodle_ids else []

    reactions: Dict[UUID, List[Reaction]] = {}
    item_ids = [item.id for item in items]
    if item_ids:
        for reaction in await gateway.fetch_reactions(item_ids):
            reactions.setdefault(reaction.thread_item_id, []).append(reaction)
    return doodles, reactions


class PaginationController:
    """Backward (older-items) pagination per conversation."""

    def __init__(self, gateway: RemoteGateway, store: EntityStore) -> None:
        self._gateway = gateway
        self._store = store
        self._has_more: Dict[UUID, bool] = {}
        self._in_flight: Set[UUID] = set()

    def has_more(self, conversation_id: UUID) -> bool:
        return self._has_more.get(conversation_id, True)

    def is_loading_older(self, conversation_id: UUID) -> bool:
        return conversation_id in self._in_flight

    async def load_first_page(self, conversation_id: UUID, limit: int = 50) -> ThreadCache:
        """
        Fetch the newest `limit` items and replace the conversation's cache.

        Items already cached that are newer than anything on the page (a
        realtime or optimistic insert that landed during the fetch) are kept.
        The live list is refreshed only if this conversation is still open
        when the response arrives.
        """
        items = await self._gateway.fetch_thread_items(conversation_id, limit)
        doodles, reactions = await resolve_attachments(self._gateway, items, {})

        cache = ThreadCache(items=list(items))
        cache.merge_doodles(doodles)
        cache.merge_reactions(reactions)

        previous = self._store.get_thread_cache(conversation_id)
        if previous is not None:
            _carry_newer_items(previous, cache)

        self._store.set_thread_cache(conversation_id, cache)
        self._has_more[conversation_id] = True
        self._store.replace_live(conversation_id, cache)
        return cache

    async def load_older_page(self, conversation_id: UUID, limit: int = 30) -> List[ThreadItem]:
        if conversation_id in self._in_flight:
            logger.debug("pagination: older page for %s already in flight, dropping", conversation_id)
            return []
        if not self.has_more(conversation_id):
            return []

        view = self._held_view(conversation_id)
        oldest = view.oldest_created_at() if view else None
        if oldest is None:
            return []

        self._in_flight.add(conversation_id)
        try:
            page = await self._gateway.fetch_thread_items(conversation_id, limit, before=oldest)
            known = dict(view.doodles)
            doodles, reactions = await resolve_attachments(self._gateway, page, known)
        finally:
            self._in_flight.discard(conversation_id)

        # short page = no older items remain
        self._has_more[conversation_id] = len(page) >= limit

        def apply(target: ThreadView) -> None:
            target.append_older(page)
            target.merge_doodles(doodles)
            target.merge_reactions(reactions)

        self._store.patch_thread_cache(conversation_id, apply)
        self._store.patch_live(conversation_id, apply)
        logger.debug("pagination: loaded %d older items for %s", len(page), conversation_id)
        return page

    def reset(self, conversation_id: UUID) -> None:
        self._has_more.pop(conversation_id, None)

    def _held_view(self, conversation_id: UUID):
        live = self._store.live
        if live is not None and live.conversation_id == conversation_id:
            return live
        return self._store.get_thread_cache(conversation_id)


def _carry_newer_items(previous: ThreadCache, cache: ThreadCache) -> None:
    fetched_ids = {item.id for item in cache.items}
    newest = cache.items[0].created_at if cache.items else None
    carried = [
        item for item in previous.items
        if item.id not in fetched_ids and (newest is None or item.created_at > newest)
    ]
    if not carried:
        return
    cache.items[:0] = carried
    for item in carried:
        if item.doodle_id is not None and item.doodle_id in previous.doodles:
            cache.doodles.setdefault(item.doodle_id, previous.doodles[item.doodle_id])
        if item.id in previous.reactions:
            cache.reactions.setdefault(item.id, list(previous.reactions[item.id]))
