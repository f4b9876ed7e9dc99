from datetime import datetime
from typing import Literal, TypedDict


class FriendshipDocument(TypedDict, total=False):
    _id: str
    requester_id: str
    addressee_id: str
    status: Literal["pending", "accepted"]
    created_at: datetime
