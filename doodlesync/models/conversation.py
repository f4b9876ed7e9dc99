from datetime import datetime
from typing import Literal, TypedDict


ConversationKind = Literal["direct", "group"]


class ConversationDocument(TypedDict, total=False):
    _id: str
    type: ConversationKind
    created_at: datetime
    updated_at: datetime


class ParticipantDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    user_id: str
    # unread = items from others created after this
    last_read_at: datetime
    muted: bool
    joined_at: datetime
