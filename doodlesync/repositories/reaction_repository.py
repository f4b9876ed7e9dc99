from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from doodlesync.models.reaction import ReactionDocument


class ReactionRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["reactions"]

    async def ensure_indexes(self) -> None:
        # one reaction per user per thread item
        await self.collection.create_index([("thread_item_id", ASCENDING), ("user_id", ASCENDING)], unique=True)

    async def list_for_items(self, thread_item_ids: List[str]) -> List[ReactionDocument]:
        if not thread_item_ids:
            return []
        cur = self.collection.find({"thread_item_id": {"$in": thread_item_ids}}).sort("created_at", ASCENDING)
        return await cur.to_list(length=None)

    async def upsert(self, thread_item_id: str, user_id: str, emoji: str) -> ReactionDocument:
        return await self.collection.find_one_and_update(
            {"thread_item_id": thread_item_id, "user_id": user_id},
            {
                "$set": {"emoji": emoji, "created_at": datetime.now(timezone.utc)},
                "$setOnInsert": {"_id": str(uuid4())},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    async def delete(self, thread_item_id: str, user_id: str) -> bool:
        result = await self.collection.delete_one({"thread_item_id": thread_item_id, "user_id": user_id})
        return result.deleted_count > 0

    async def aggregated_for_doodles(self, doodle_ids: List[str]) -> List[Dict[str, Any]]:
        """Reactions across every thread item carrying each doodle, one row per (doodle, user)."""
        if not doodle_ids:
            return []
        pipeline: List[Dict[str, Any]] = [
            {"$match": {"doodle_id": {"$in": doodle_ids}}},
            {"$lookup": {"from": "reactions", "localField": "_id", "foreignField": "thread_item_id", "as": "reaction"}},
            {"$unwind": "$reaction"},
            {"$sort": {"reaction.created_at": DESCENDING}},
            {"$group": {
                "_id": {"doodle_id": "$doodle_id", "user_id": "$reaction.user_id"},
                "emoji": {"$first": "$reaction.emoji"},
                "created_at": {"$first": "$reaction.created_at"},
            }},
            {"$lookup": {"from": "users", "localField": "_id.user_id", "foreignField": "_id", "as": "user"}},
            {"$unwind": "$user"},
            {"$sort": {"created_at": ASCENDING}},
            {"$project": {
                "_id": 0,
                "doodle_id": "$_id.doodle_id",
                "user_id": "$_id.user_id",
                "display_name": "$user.display_name",
                "profile_image_url": "$user.profile_image_url",
                "color_hex": "$user.color_hex",
                "emoji": 1,
            }},
        ]
        return await self._db["thread_items"].aggregate(pipeline).to_list(length=None)
