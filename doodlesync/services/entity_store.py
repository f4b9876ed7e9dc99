"""
In-memory entity store for one user session.

Holds the conversation list, one thread cache per conversation, the live
(UI-bound) thread, the recipients cache and reaction summaries. Every mutating
method is synchronous, so a logical update is never interleaved with another
on the event loop that owns the session.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional
from uuid import UUID

from doodlesync.schemas.conversation import ConversationSummary
from doodlesync.schemas.reaction import Reaction, ReactionSummary
from doodlesync.schemas.thread import Doodle, ThreadItem
from doodlesync.schemas.user import User
from doodlesync.utils.timestamps import utcnow


logger = logging.getLogger(__name__)


@dataclass
class ThreadView:
    """Items newest-first, resolved doodles and reactions keyed by thread item id."""

    items: List[ThreadItem] = field(default_factory=list)
    doodles: Dict[UUID, Doodle] = field(default_factory=dict)
    reactions: Dict[UUID, List[Reaction]] = field(default_factory=dict)

    def contains(self, item_id: UUID) -> bool:
        return any(item.id == item_id for item in self.items)

    def insert_newest(self, item: ThreadItem) -> bool:
        """Insert at the head unless an item with the same id is already present."""
        if self.contains(item.id):
            return False
        self.items.insert(0, item)
        return True

    def append_older(self, items: Iterable[ThreadItem]) -> List[ThreadItem]:
        known = {item.id for item in self.items}
        added = []
        for item in items:
            if item.id in known:
                continue
            known.add(item.id)
            self.items.append(item)
            added.append(item)
        return added

    def oldest_created_at(self) -> Optional[datetime]:
        if not self.items:
            return None
        return min(item.created_at for item in self.items)

    def merge_doodles(self, doodles: Iterable[Doodle]) -> None:
        for doodle in doodles:
            self.doodles[doodle.id] = doodle

    def merge_reactions(self, reactions: Dict[UUID, List[Reaction]]) -> None:
        for item_id, rows in reactions.items():
            self.reactions[item_id] = list(rows)

    def user_reaction(self, item_id: UUID, user_id: UUID) -> Optional[Reaction]:
        for reaction in self.reactions.get(item_id, []):
            if reaction.user_id == user_id:
                return reaction
        return None

    def set_user_reaction(self, item_id: UUID, user_id: UUID, reaction: Optional[Reaction]) -> None:
        """Replace (or with None, remove) the user's single reaction on an item."""
        rows = [r for r in self.reactions.get(item_id, []) if r.user_id != user_id]
        if reaction is not None:
            rows.append(reaction)
        if rows:
            self.reactions[item_id] = rows
        else:
            self.reactions.pop(item_id, None)

    def copy_view(self) -> "ThreadView":
        return ThreadView(
            items=list(self.items),
            doodles=dict(self.doodles),
            reactions={k: list(v) for k, v in self.reactions.items()},
        )


@dataclass
class ThreadCache(ThreadView):

    loaded_at: datetime = field(default_factory=utcnow)


@dataclass
class LiveThread(ThreadView):

    conversation_id: Optional[UUID] = None


class CacheStatus(str, Enum):
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass
class ThreadCacheState:

    status: CacheStatus = CacheStatus.NOT_LOADED
    cache: Optional[ThreadCache] = None
    error: Optional[Exception] = None


ThreadMutator = Callable[[ThreadView], object]
SummaryUpdater = Callable[[ConversationSummary], ConversationSummary]


def _sorted_summaries(summaries: Iterable[ConversationSummary]) -> List[ConversationSummary]:
    return sorted(summaries, key=lambda s: s.updated_at, reverse=True)


class EntityStore:

    def __init__(self) -> None:
        self._conversations: List[ConversationSummary] = []
        self._conversations_loaded = False
        self._threads: Dict[UUID, ThreadCacheState] = {}
        self._live: Optional[LiveThread] = None
        self._recipients: Dict[UUID, List[User]] = {}
        self._reaction_summaries: Dict[UUID, ReactionSummary] = {}

    # -- conversation summaries --

    @property
    def conversations_loaded(self) -> bool:
        return self._conversations_loaded

    def get_conversations(self) -> List[ConversationSummary]:
        return list(self._conversations)

    def get_conversation(self, conversation_id: UUID) -> Optional[ConversationSummary]:
        for summary in self._conversations:
            if summary.conversation_id == conversation_id:
                return summary
        return None

    def set_conversations(self, summaries: Iterable[ConversationSummary]) -> None:
        self._conversations = _sorted_summaries(summaries)
        self._conversations_loaded = True

    def upsert_conversation_summary(self, conversation_id: UUID, updater: SummaryUpdater) -> bool:
        for index, summary in enumerate(self._conversations):
            if summary.conversation_id == conversation_id:
                updated = self._conversations[:]
                updated[index] = updater(summary)
                self._conversations = _sorted_summaries(updated)
                return True
        return False

    # -- thread caches --

    def thread_state(self, conversation_id: UUID) -> ThreadCacheState:
        return self._threads.get(conversation_id) or ThreadCacheState()

    def get_thread_cache(self, conversation_id: UUID) -> Optional[ThreadCache]:
        state = self._threads.get(conversation_id)
        if state is None or state.status is not CacheStatus.LOADED:
            return None
        return state.cache

    def set_thread_cache(self, conversation_id: UUID, cache: ThreadCache) -> None:
        self._threads[conversation_id] = ThreadCacheState(status=CacheStatus.LOADED, cache=cache)

    def patch_thread_cache(self, conversation_id: UUID, mutator: ThreadMutator) -> bool:
        """Apply an in-place edit to a loaded cache. No-op (False) when none is loaded."""
        cache = self.get_thread_cache(conversation_id)
        if cache is None:
            return False
        mutator(cache)
        return True

    def mark_loading(self, conversation_id: UUID) -> None:
        # an existing cache stays LOADED during a background refresh
        if self.get_thread_cache(conversation_id) is None:
            self._threads[conversation_id] = ThreadCacheState(status=CacheStatus.LOADING)

    def mark_failed(self, conversation_id: UUID, error: Exception) -> None:
        if self.get_thread_cache(conversation_id) is None:
            self._threads[conversation_id] = ThreadCacheState(status=CacheStatus.FAILED, error=error)

    def reset_thread_cache(self, conversation_id: UUID) -> None:
        self._threads.pop(conversation_id, None)

    # -- live thread --

    @property
    def current_conversation_id(self) -> Optional[UUID]:
        return self._live.conversation_id if self._live else None

    @property
    def live(self) -> Optional[LiveThread]:
        return self._live

    def open_live(self, conversation_id: UUID) -> LiveThread:
        cache = self.get_thread_cache(conversation_id)
        view = cache.copy_view() if cache else ThreadView()
        self._live = LiveThread(
            items=view.items, doodles=view.doodles, reactions=view.reactions, conversation_id=conversation_id
        )
        return self._live

    def replace_live(self, conversation_id: UUID, view: ThreadView) -> bool:
        if self.current_conversation_id != conversation_id:
            return False
        copy = view.copy_view()
        self._live = LiveThread(
            items=copy.items, doodles=copy.doodles, reactions=copy.reactions, conversation_id=conversation_id
        )
        return True

    def patch_live(self, conversation_id: UUID, mutator: ThreadMutator) -> bool:
        """Apply an edit to the live thread only if `conversation_id` is the one open now."""
        if self._live is None or self._live.conversation_id != conversation_id:
            return False
        mutator(self._live)
        return True

    def close_live(self) -> None:
        self._live = None

    # -- recipients --

    def get_recipients(self, doodle_id: UUID) -> Optional[List[User]]:
        recipients = self._recipients.get(doodle_id)
        return list(recipients) if recipients is not None else None

    def set_recipients(self, doodle_id: UUID, recipients: Iterable[User]) -> None:
        self._recipients[doodle_id] = list(recipients)

    def invalidate_recipients(self, doodle_id: UUID) -> None:
        self._recipients.pop(doodle_id, None)

    # -- reaction summaries --

    def get_reaction_summary(self, doodle_id: UUID) -> ReactionSummary:
        return self._reaction_summaries.get(doodle_id) or ReactionSummary.empty()

    def has_reaction_summary(self, doodle_id: UUID) -> bool:
        return doodle_id in self._reaction_summaries

    def set_reaction_summaries(self, summaries: Dict[UUID, ReactionSummary]) -> None:
        self._reaction_summaries.update(summaries)
