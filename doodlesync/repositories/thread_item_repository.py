from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from doodlesync.models.thread_item import ThreadItemDocument


class ThreadItemRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["thread_items"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("doodle_id", ASCENDING)])

    async def list_for_conversation(
        self,
        conversation_id: str,
        limit: int = 50,
        before: Optional[datetime] = None,
    ) -> List[ThreadItemDocument]:
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        if before is not None:
            query["created_at"] = {"$lt": before}
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        cur = self.collection.find(query).sort(sort).limit(limit)
        return await cur.to_list(length=limit)

    async def insert(
        self,
        conversation_id: str,
        sender_id: str,
        item_type: str,
        doodle_id: Optional[str] = None,
        text_content: Optional[str] = None,
        reply_to_item_id: Optional[str] = None,
    ) -> ThreadItemDocument:
        doc: ThreadItemDocument = {
            "_id": str(uuid4()),
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "type": item_type,
            "doodle_id": doodle_id,
            "text_content": text_content,
            "reply_to_item_id": reply_to_item_id,
            "created_at": datetime.now(timezone.utc),
        }
        await self.collection.insert_one(doc)
        return doc

    async def find_by_doodle(self, doodle_id: str) -> Optional[ThreadItemDocument]:
        return await self.collection.find_one({"doodle_id": doodle_id}, sort=[("created_at", DESCENDING)])
