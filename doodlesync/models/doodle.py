from datetime import datetime
from typing import Optional, TypedDict


class DoodleDocument(TypedDict, total=False):
    _id: str
    sender_id: str
    image_url: str
    created_at: datetime


class DoodleRecipientDocument(TypedDict, total=False):
    _id: str
    doodle_id: str
    recipient_id: str
    viewed_at: Optional[datetime]
    created_at: datetime
