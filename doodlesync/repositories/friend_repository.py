from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from doodlesync.models.friendship import FriendshipDocument


class FriendRepository:
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("friendships")

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("requester_id", ASCENDING), ("addressee_id", ASCENDING)], unique=True)
        await self._collection.create_index([("addressee_id", ASCENDING), ("status", ASCENDING)])

    async def create_friend_request(self, requester_id: str, addressee_id: str) -> FriendshipDocument:
        doc: FriendshipDocument = {
            "_id": str(uuid4()),
            "requester_id": requester_id,
            "addressee_id": addressee_id,
            "status": "pending",
            "created_at": datetime.now(timezone.utc),
        }
        await self._collection.insert_one(doc)
        return doc

    async def get_friendship(self, friendship_id: str) -> Optional[FriendshipDocument]:
        return await self._collection.find_one({"_id": friendship_id})

    async def update_status(self, friendship_id: str, status: str) -> Optional[FriendshipDocument]:
        result = await self._collection.update_one({"_id": friendship_id}, {"$set": {"status": status}})
        if not result.matched_count:
            return None
        return await self.get_friendship(friendship_id)

    async def delete_friendship(self, friendship_id: str) -> bool:
        result = await self._collection.delete_one({"_id": friendship_id})
        return result.deleted_count > 0

    async def list_for_user(self, user_id: str, status: Optional[str] = None) -> List[FriendshipDocument]:
        query: dict = {"$or": [{"requester_id": user_id}, {"addressee_id": user_id}]}
        if status:
            query["status"] = status
        return await self._collection.find(query).to_list(length=None)

    async def list_received_requests(self, user_id: str) -> List[FriendshipDocument]:
        cursor = self._collection.find({"addressee_id": user_id, "status": "pending"}).sort("created_at", ASCENDING)
        return await cursor.to_list(length=None)
