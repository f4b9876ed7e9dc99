from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from doodlesync.services.entity_store import ThreadView
from doodlesync.services.session import SyncSession
from doodlesync.utils.dependencies import get_session


router = APIRouter(prefix="/conversations", tags=["conversations"])


def thread_payload(view: Optional[ThreadView], has_more: bool) -> dict:
    view = view or ThreadView()
    return {
        "items": [item.model_dump(mode="json") for item in view.items],
        "doodles": {str(k): d.model_dump(mode="json") for k, d in view.doodles.items()},
        "reactions": {str(k): [r.model_dump(mode="json") for r in rows] for k, rows in view.reactions.items()},
        "has_more": has_more,
    }


@router.get("")
async def list_conversations(session: SyncSession = Depends(get_session)):
    summaries = await session.load_conversations()
    return {"items": [summary.model_dump(mode="json") for summary in summaries]}


@router.post("/with/{friend_id}")
async def open_direct_conversation(friend_id: UUID, session: SyncSession = Depends(get_session)):
    if friend_id == session.user_id:
        raise HTTPException(status_code=400, detail="Cannot start a conversation with yourself.")
    conversation_id = await session.open_direct_conversation(friend_id)
    return {"conversation_id": str(conversation_id)}


@router.post("/close")
async def close_conversation(session: SyncSession = Depends(get_session)):
    session.engine.close_conversation()
    return {"msg": "Closed"}


@router.get("/{conversation_id}/items")
async def open_conversation(
    conversation_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    force_refresh: bool = False,
    session: SyncSession = Depends(get_session),
):
    view = await session.engine.open_conversation(conversation_id, limit=limit, force_refresh=force_refresh)
    return thread_payload(view, session.engine.has_more(conversation_id))


@router.post("/{conversation_id}/older")
async def load_older(conversation_id: UUID, limit: int = Query(30, ge=1, le=200), session: SyncSession = Depends(get_session)):
    items = await session.engine.load_more(conversation_id, limit=limit)
    return {
        "items": [item.model_dump(mode="json") for item in items],
        "has_more": session.engine.has_more(conversation_id),
    }


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: UUID, session: SyncSession = Depends(get_session)):
    await session.engine.mark_read(conversation_id)
    return {"unread_count": 0}


@router.post("/{conversation_id}/mute")
async def toggle_mute(conversation_id: UUID, session: SyncSession = Depends(get_session)):
    muted = await session.engine.toggle_mute(conversation_id)
    if muted is None:
        raise HTTPException(status_code=404, detail="Conversation not loaded.")
    return {"muted": muted}
