from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from doodlesync.schemas.requests import ForwardDoodleRequest, ReactionRequest, SendDoodleRequest, SendTextRequest
from doodlesync.services.session import SyncSession
from doodlesync.utils.dependencies import get_session


router = APIRouter(prefix="/conversations", tags=["chat"])
doodles_router = APIRouter(prefix="/doodles", tags=["doodles"])


@router.post("/{conversation_id}/messages")
async def send_text(conversation_id: UUID, body: SendTextRequest, session: SyncSession = Depends(get_session)):
    item = await session.engine.send_text(conversation_id, body.text)
    return item.model_dump(mode="json")


@router.post("/{conversation_id}/doodles")
async def send_doodle(conversation_id: UUID, body: SendDoodleRequest, session: SyncSession = Depends(get_session)):
    item = await session.engine.send_doodle(conversation_id, body.doodle_id)
    return item.model_dump(mode="json")


@router.post("/{conversation_id}/items/{item_id}/reactions")
async def toggle_reaction(conversation_id: UUID, item_id: UUID, body: ReactionRequest, session: SyncSession = Depends(get_session)):
    change = await session.engine.toggle_reaction(conversation_id, item_id, body.emoji)
    reaction = session.engine.my_reaction(conversation_id, item_id)
    return {"change": change.value, "reaction": reaction.model_dump(mode="json") if reaction else None}


@doodles_router.get("/reactions")
async def reaction_summaries(ids: List[UUID] = Query(...), session: SyncSession = Depends(get_session)):
    summaries = await session.engine.load_reaction_summaries(ids)
    return {"summaries": {str(k): s.model_dump(mode="json") for k, s in summaries.items()}}


@doodles_router.post("/{doodle_id}/reactions")
async def toggle_doodle_reaction(doodle_id: UUID, body: ReactionRequest, session: SyncSession = Depends(get_session)):
    change = await session.engine.toggle_reaction_on_doodle(doodle_id, body.emoji)
    if change is None:
        raise HTTPException(status_code=404, detail="Doodle was not sent in any conversation.")
    return {"change": change.value}


@doodles_router.get("/{doodle_id}/recipients")
async def doodle_recipients(doodle_id: UUID, session: SyncSession = Depends(get_session)):
    recipients = await session.engine.get_doodle_recipients(doodle_id)
    return {"recipients": [user.model_dump(mode="json") for user in recipients]}


@doodles_router.post("/{doodle_id}/forward")
async def forward_doodle(doodle_id: UUID, body: ForwardDoodleRequest, session: SyncSession = Depends(get_session)):
    await session.engine.forward_doodle(doodle_id, body.recipient_ids)
    return {"msg": "Forwarded"}
