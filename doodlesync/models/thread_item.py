from datetime import datetime
from typing import Literal, Optional, TypedDict


class ThreadItemDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    type: Literal["doodle", "text"]
    # exactly one of doodle_id / text_content, matching type
    doodle_id: Optional[str]
    text_content: Optional[str]
    reply_to_item_id: Optional[str]
    created_at: datetime
