from datetime import datetime, timezone
from typing import List
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from doodlesync.models.doodle import DoodleDocument, DoodleRecipientDocument


class DoodleRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["doodles"]

    @property
    def recipients(self):
        return self._db["doodle_recipients"]

    async def ensure_indexes(self) -> None:
        await self.recipients.create_index([("recipient_id", ASCENDING)])
        await self.recipients.create_index([("doodle_id", ASCENDING), ("recipient_id", ASCENDING)], unique=True)

    async def find_by_ids(self, doodle_ids: List[str]) -> List[DoodleDocument]:
        if not doodle_ids:
            return []
        cur = self.collection.find({"_id": {"$in": doodle_ids}})
        return await cur.to_list(length=len(doodle_ids))

    async def list_received(self, recipient_id: str) -> List[DoodleDocument]:
        rows = await self.recipients.find({"recipient_id": recipient_id}, {"doodle_id": 1}).to_list(length=None)
        doodle_ids = [r["doodle_id"] for r in rows]
        if not doodle_ids:
            return []
        cur = self.collection.find({"_id": {"$in": doodle_ids}}).sort("created_at", DESCENDING)
        return await cur.to_list(length=None)

    async def recipient_ids(self, doodle_id: str) -> List[str]:
        rows = await self.recipients.find({"doodle_id": doodle_id}, {"recipient_id": 1}).to_list(length=None)
        return [r["recipient_id"] for r in rows]

    async def add_recipients(self, doodle_id: str, recipient_ids: List[str]) -> List[DoodleRecipientDocument]:
        existing = set(await self.recipient_ids(doodle_id))
        now = datetime.now(timezone.utc)
        docs: List[DoodleRecipientDocument] = [
            {"_id": str(uuid4()), "doodle_id": doodle_id, "recipient_id": rid, "viewed_at": None, "created_at": now}
            for rid in dict.fromkeys(recipient_ids)
            if rid not in existing
        ]
        if docs:
            await self.recipients.insert_many(docs)
        return docs
