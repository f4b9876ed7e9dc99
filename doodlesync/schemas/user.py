from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from doodlesync.schemas.common import Timestamp, record_id


class User(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: UUID = record_id()
    display_name: str
    profile_image_url: Optional[str] = None
    color_hex: str = "#FF6B54"
    invite_code: Optional[str] = None
    created_at: Optional[Timestamp] = None

    @property
    def initials(self) -> str:
        parts = self.display_name.split()
        if len(parts) >= 2:
            return (parts[0][:1] + parts[1][:1]).upper()
        return self.display_name[:2].upper()


class FriendshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class Friendship(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: UUID = record_id()
    requester_id: UUID
    addressee_id: UUID
    status: FriendshipStatus
    created_at: Timestamp
