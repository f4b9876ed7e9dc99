from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, ValidationError, computed_field

from doodlesync.schemas.common import Timestamp, record_id
from doodlesync.schemas.thread import Doodle, ThreadItem, ThreadItemType
from doodlesync.schemas.user import User


PREVIEW_MAX_LENGTH = 40


class ConversationType(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


class Conversation(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: UUID = record_id()
    type: ConversationType
    created_at: Optional[Timestamp] = None
    updated_at: Timestamp


class ConversationMetadata(BaseModel):
    """
    One row of the batched conversations-with-metadata read.

    Flat on purpose: the backend joins participant, profile, latest item and
    unread count in a single query instead of one call per conversation.
    """

    conversation_id: UUID
    type: ConversationType
    updated_at: Timestamp
    muted: bool = False
    unread_count: int = 0

    other_user_id: Optional[UUID] = None
    other_display_name: Optional[str] = None
    other_profile_image_url: Optional[str] = None
    other_color_hex: Optional[str] = None

    last_item_id: Optional[UUID] = None
    last_item_sender_id: Optional[UUID] = None
    last_item_type: Optional[ThreadItemType] = None
    last_item_doodle_id: Optional[UUID] = None
    last_item_text_content: Optional[str] = None
    last_item_reply_to_item_id: Optional[UUID] = None
    last_item_created_at: Optional[Timestamp] = None

    def other_participant(self) -> Optional[User]:
        if self.other_user_id is None or self.other_display_name is None:
            return None
        return User(
            id=self.other_user_id,
            display_name=self.other_display_name,
            profile_image_url=self.other_profile_image_url,
            color_hex=self.other_color_hex or "#FF6B54",
        )

    def last_item(self) -> Optional[ThreadItem]:
        """The joined latest item, or None when the row carries no complete one."""
        required = (self.last_item_id, self.last_item_sender_id, self.last_item_type, self.last_item_created_at)
        if any(value is None for value in required):
            return None
        try:
            return ThreadItem(
                id=self.last_item_id,
                conversation_id=self.conversation_id,
                sender_id=self.last_item_sender_id,
                type=self.last_item_type,
                doodle_id=self.last_item_doodle_id,
                text_content=self.last_item_text_content,
                reply_to_item_id=self.last_item_reply_to_item_id,
                created_at=self.last_item_created_at,
            )
        except ValidationError:
            return None


class ConversationSummary(BaseModel):
    """List-row view of a conversation. Derived locally, never persisted."""

    model_config = ConfigDict(frozen=True)

    conversation_id: UUID
    type: ConversationType
    updated_at: Timestamp
    other_participant: User
    last_item: Optional[ThreadItem] = None
    last_doodle: Optional[Doodle] = None
    unread_count: int = 0
    muted: bool = False

    @computed_field
    @property
    def preview_text(self) -> str:
        item = self.last_item
        if item is None:
            return "Start a conversation"
        if item.type is ThreadItemType.DOODLE:
            if item.sender_id == self.other_participant.id:
                return "Sent you a doodle"
            return "You sent a doodle"
        if item.text_content is None:
            return "Sent a message"
        if len(item.text_content) > PREVIEW_MAX_LENGTH:
            return item.text_content[:PREVIEW_MAX_LENGTH] + "..."
        return item.text_content
