from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from doodlesync.models.conversation import ConversationDocument, ParticipantDocument


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    @property
    def participants(self):
        return self._db["conversation_participants"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("updated_at", DESCENDING)])
        await self.participants.create_index([("user_id", ASCENDING)])
        await self.participants.create_index([("conversation_id", ASCENDING), ("user_id", ASCENDING)], unique=True)

    async def list_with_metadata(self, user_id: str, conversation_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        One aggregation per call: every conversation the user participates in,
        joined with the other participant's profile, the latest thread item and
        the unread count (items from others newer than last_read_at).
        """
        match: Dict[str, Any] = {"user_id": user_id}
        if conversation_id:
            match["conversation_id"] = conversation_id
        pipeline: List[Dict[str, Any]] = [
            {"$match": match},
            {"$lookup": {"from": "conversations", "localField": "conversation_id", "foreignField": "_id", "as": "conversation"}},
            {"$unwind": "$conversation"},
            {"$lookup": {
                "from": "conversation_participants",
                "let": {"cid": "$conversation_id"},
                "pipeline": [
                    {"$match": {"$expr": {"$and": [{"$eq": ["$conversation_id", "$$cid"]}, {"$ne": ["$user_id", user_id]}]}}},
                    {"$limit": 1},
                ],
                "as": "other",
            }},
            {"$unwind": {"path": "$other", "preserveNullAndEmptyArrays": True}},
            {"$lookup": {"from": "users", "localField": "other.user_id", "foreignField": "_id", "as": "other_user"}},
            {"$unwind": {"path": "$other_user", "preserveNullAndEmptyArrays": True}},
            {"$lookup": {
                "from": "thread_items",
                "let": {"cid": "$conversation_id"},
                "pipeline": [
                    {"$match": {"$expr": {"$eq": ["$conversation_id", "$$cid"]}}},
                    {"$sort": {"created_at": -1}},
                    {"$limit": 1},
                ],
                "as": "last_item",
            }},
            {"$unwind": {"path": "$last_item", "preserveNullAndEmptyArrays": True}},
            {"$lookup": {
                "from": "thread_items",
                "let": {"cid": "$conversation_id", "read_at": "$last_read_at"},
                "pipeline": [
                    {"$match": {"$expr": {"$and": [
                        {"$eq": ["$conversation_id", "$$cid"]},
                        {"$gt": ["$created_at", "$$read_at"]},
                        {"$ne": ["$sender_id", user_id]},
                    ]}}},
                    {"$count": "n"},
                ],
                "as": "unread",
            }},
            {"$project": {
                "_id": 0,
                "conversation_id": "$conversation._id",
                "type": "$conversation.type",
                "updated_at": "$conversation.updated_at",
                "muted": {"$ifNull": ["$muted", False]},
                "unread_count": {"$ifNull": [{"$arrayElemAt": ["$unread.n", 0]}, 0]},
                "other_user_id": "$other_user._id",
                "other_display_name": "$other_user.display_name",
                "other_profile_image_url": "$other_user.profile_image_url",
                "other_color_hex": "$other_user.color_hex",
                "last_item_id": "$last_item._id",
                "last_item_sender_id": "$last_item.sender_id",
                "last_item_type": "$last_item.type",
                "last_item_doodle_id": "$last_item.doodle_id",
                "last_item_text_content": "$last_item.text_content",
                "last_item_reply_to_item_id": "$last_item.reply_to_item_id",
                "last_item_created_at": "$last_item.created_at",
            }},
            {"$sort": {"updated_at": DESCENDING}},
        ]
        cursor = self.participants.aggregate(pipeline)
        return await cursor.to_list(length=None)

    async def get_or_create_direct(self, user_a: str, user_b: str) -> str:
        mine = await self.participants.find({"user_id": user_a}, {"conversation_id": 1}).to_list(length=None)
        shared_ids = [p["conversation_id"] for p in mine]
        if shared_ids:
            theirs = await self.participants.find(
                {"user_id": user_b, "conversation_id": {"$in": shared_ids}}, {"conversation_id": 1}
            ).to_list(length=None)
            existing = await self.collection.find_one(
                {"_id": {"$in": [p["conversation_id"] for p in theirs]}, "type": "direct"}
            )
            if existing:
                return existing["_id"]

        now = datetime.now(timezone.utc)
        conversation_id = str(uuid4())
        conversation: ConversationDocument = {"_id": conversation_id, "type": "direct", "created_at": now, "updated_at": now}
        participants: List[ParticipantDocument] = [
            {"_id": str(uuid4()), "conversation_id": conversation_id, "user_id": user, "last_read_at": now, "muted": False, "joined_at": now}
            for user in (user_a, user_b)
        ]
        await self.collection.insert_one(conversation)
        await self.participants.insert_many(participants)
        return conversation_id

    async def touch(self, conversation_id: str, at: datetime) -> None:
        await self.collection.update_one({"_id": conversation_id}, {"$max": {"updated_at": at}})

    async def update_last_read_at(self, conversation_id: str, user_id: str) -> bool:
        result = await self.participants.update_one(
            {"conversation_id": conversation_id, "user_id": user_id},
            {"$set": {"last_read_at": datetime.now(timezone.utc)}},
        )
        return bool(result.matched_count)

    async def update_muted(self, conversation_id: str, user_id: str, muted: bool) -> bool:
        result = await self.participants.update_one(
            {"conversation_id": conversation_id, "user_id": user_id},
            {"$set": {"muted": muted}},
        )
        return bool(result.matched_count)
