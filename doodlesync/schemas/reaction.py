from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from doodlesync.schemas.common import Timestamp, record_id


REACTION_EMOJIS = ("❤️", "😂", "😮", "😢", "🔥", "👍")


class Reaction(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: UUID = record_id()
    thread_item_id: UUID
    user_id: UUID
    emoji: str
    created_at: Timestamp


class AggregatedReaction(BaseModel):
    """A reaction on any thread item carrying a doodle, joined with the reactor's profile."""

    model_config = ConfigDict(frozen=True)

    doodle_id: UUID
    user_id: UUID
    display_name: str
    profile_image_url: Optional[str] = None
    color_hex: str = "#FF6B54"
    emoji: str


class ReactionSummary(BaseModel):

    model_config = ConfigDict(frozen=True)

    # up to 3, most frequent first
    top_emojis: List[str]
    total_count: int
    reactions: List[AggregatedReaction]

    @property
    def is_empty(self) -> bool:
        return not self.reactions

    @classmethod
    def empty(cls) -> "ReactionSummary":
        return cls(top_emojis=[], total_count=0, reactions=[])
