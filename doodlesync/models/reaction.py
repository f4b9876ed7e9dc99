from datetime import datetime
from typing import TypedDict


class ReactionDocument(TypedDict, total=False):
    _id: str
    # unique together: one reaction per user per thread item
    thread_item_id: str
    user_id: str
    emoji: str
    created_at: datetime
