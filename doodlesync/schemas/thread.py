from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator

from doodlesync.schemas.common import Timestamp, record_id


class ThreadItemType(str, Enum):
    DOODLE = "doodle"
    TEXT = "text"


class ThreadItem(BaseModel):
    """One message-like unit in a conversation. Never mutated once created."""

    model_config = ConfigDict(frozen=True)

    id: UUID = record_id()
    conversation_id: UUID
    sender_id: UUID
    type: ThreadItemType
    doodle_id: Optional[UUID] = None
    text_content: Optional[str] = None
    reply_to_item_id: Optional[UUID] = None
    created_at: Timestamp

    @model_validator(mode="after")
    def _check_payload(self) -> "ThreadItem":
        if self.type is ThreadItemType.DOODLE and self.doodle_id is None:
            raise ValueError("doodle thread item requires doodle_id")
        if self.type is ThreadItemType.TEXT and self.text_content is None:
            raise ValueError("text thread item requires text_content")
        return self


class Doodle(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: UUID = record_id()
    sender_id: UUID
    image_url: str
    created_at: Timestamp


class DoodleRecipient(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: UUID = record_id()
    doodle_id: UUID
    recipient_id: UUID
    viewed_at: Optional[Timestamp] = None
    created_at: Timestamp
