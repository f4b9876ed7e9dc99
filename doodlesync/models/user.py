from datetime import datetime
from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    display_name: str
    profile_image_url: Optional[str]
    color_hex: str
    invite_code: Optional[str]
    created_at: datetime
