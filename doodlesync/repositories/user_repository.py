from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from doodlesync.models.user import UserDocument


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("invite_code", ASCENDING)], unique=True, sparse=True)

    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:
        return await self._collection.find_one({"_id": user_id})

    async def get_users_by_ids(self, user_ids: List[str]) -> List[UserDocument]:
        if not user_ids:
            return []
        cursor = self._collection.find({"_id": {"$in": user_ids}})
        return await cursor.to_list(length=len(user_ids))

    async def get_user_by_invite_code(self, invite_code: str) -> Optional[UserDocument]:
        return await self._collection.find_one({"invite_code": invite_code})
