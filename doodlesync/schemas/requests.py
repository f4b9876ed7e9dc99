from typing import List
from uuid import UUID

from pydantic import BaseModel, Field


class SendTextRequest(BaseModel):

    text: str = Field(min_length=1)


class SendDoodleRequest(BaseModel):

    doodle_id: UUID


class ReactionRequest(BaseModel):

    emoji: str = Field(min_length=1)


class ForwardDoodleRequest(BaseModel):

    recipient_ids: List[UUID] = Field(min_length=1)


class FriendRequestCreate(BaseModel):

    invite_code: str = Field(min_length=1)
