from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from doodlesync.services.session import SessionRegistry, SyncSession


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> UUID:
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-Id header")


async def get_session(
    user_id: UUID = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> SyncSession:
    return await registry.get(user_id)
