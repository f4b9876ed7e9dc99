from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from doodlesync.schemas.requests import FriendRequestCreate
from doodlesync.services.session import SyncSession
from doodlesync.utils.dependencies import get_session


router = APIRouter(prefix="/friends", tags=["friend"])


async def _pending_or_404(session: SyncSession, friendship_id: UUID):
    friendship = session.friends.find_pending(friendship_id)
    if friendship is None:
        await session.friends.load_friends()
        friendship = session.friends.find_pending(friendship_id)
    if friendship is None:
        raise HTTPException(status_code=404, detail="No such request.")
    return friendship


@router.get("")
async def friend_list(session: SyncSession = Depends(get_session)):
    friends = await session.friends.load_friends()
    return {"friends": [user.model_dump(mode="json") for user in friends]}


@router.get("/requests")
async def received_friend_requests(session: SyncSession = Depends(get_session)):
    await session.friends.load_friends()
    return {"requests": [f.model_dump(mode="json") for f in session.friends.pending_requests]}


@router.post("/request")
async def send_friend_request(body: FriendRequestCreate, session: SyncSession = Depends(get_session)):
    ok = await session.friends.send_request(body.invite_code)
    if not ok:
        raise HTTPException(status_code=400, detail="Unknown invite code or request already sent.")
    return {"msg": "Request sent"}


@router.post("/accept/{friendship_id}")
async def accept_friend_request(friendship_id: UUID, session: SyncSession = Depends(get_session)):
    friendship = await _pending_or_404(session, friendship_id)
    await session.friends.accept_request(friendship)
    return {"msg": "Friend added"}


@router.delete("/request/{friendship_id}")
async def decline_friend_request(friendship_id: UUID, session: SyncSession = Depends(get_session)):
    friendship = await _pending_or_404(session, friendship_id)
    await session.friends.decline_request(friendship)
    return {"msg": "Request declined"}


@router.get("/doodles")
async def received_doodles(session: SyncSession = Depends(get_session)):
    doodles = await session.friends.load_received_doodles()
    return {"doodles": [d.model_dump(mode="json") for d in doodles]}


@router.delete("/{friend_id}")
async def unfriend(friend_id: UUID, session: SyncSession = Depends(get_session)):
    if friend_id == session.user_id:
        raise HTTPException(status_code=400, detail="Cannot unfriend yourself.")
    ok = await session.friends.remove_friend(friend_id)
    if not ok:
        raise HTTPException(status_code=404, detail="Friend relation not found.")
    return {"msg": "Unfriended"}
