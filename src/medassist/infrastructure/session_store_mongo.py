from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ASCENDING

from ..domain.chat_models import Message


logger = logging.getLogger("medassist.store")


class MongoSessionStore:
    """Session records in MongoDB, one document per message.

    Messages are upserted on ``(session_id, message_id)`` and read back in
    insertion order (``seq``), which matches creation order for a single
    writer. Errors propagate to the caller.
    """

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self._messages = collection
        self._indexes_ready = False
        self._index_lock = asyncio.Lock()

    @classmethod
    def from_env(cls) -> "MongoSessionStore":
        mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
        mongo_db = os.getenv("MONGO_DB", "medassist")
        client = AsyncIOMotorClient(mongo_url, serverSelectionTimeoutMS=2000, tz_aware=True)
        return cls(client[mongo_db]["chat_messages"])

    async def _ensure_indexes(self) -> None:
        if self._indexes_ready:
            return
        async with self._index_lock:
            if self._indexes_ready:
                return
            await self._messages.create_index(
                [("session_id", ASCENDING), ("message_id", ASCENDING)], unique=True
            )
            await self._messages.create_index([("session_id", ASCENDING), ("seq", ASCENDING)])
            self._indexes_ready = True

    async def get_session(self, session_id: str) -> List[Message]:
        await self._ensure_indexes()
        cursor = self._messages.find({"session_id": session_id}).sort("seq", ASCENDING)
        docs = await cursor.to_list(length=None)
        return [self._to_message(doc) for doc in docs]

    async def save_session(self, session_id: str, messages: Sequence[Message]) -> None:
        await self._ensure_indexes()
        await self._messages.delete_many({"session_id": session_id})
        if not messages:
            return
        base = time.time_ns()
        docs = [self._to_doc(session_id, msg, seq=base + idx) for idx, msg in enumerate(messages)]
        await self._messages.insert_many(docs, ordered=True)

    async def save_message(self, session_id: str, message: Message) -> None:
        await self._ensure_indexes()
        doc = self._to_doc(session_id, message)
        seq = doc.pop("seq")
        await self._messages.update_one(
            {"session_id": session_id, "message_id": message.id},
            {"$set": doc, "$setOnInsert": {"seq": seq}},
            upsert=True,
        )

    async def end_session(self, session_id: str) -> bool:
        result = await self._messages.delete_many({"session_id": session_id})
        deleted = int(getattr(result, "deleted_count", 0) or 0)
        logger.info("session_purged", extra={"session_id": session_id, "deleted": deleted})
        return deleted > 0

    @staticmethod
    def _to_doc(session_id: str, message: Message, seq: Optional[int] = None) -> Dict[str, Any]:
        return {
            "session_id": session_id,
            "message_id": message.id,
            "role": message.role,
            "content": message.content,
            "timestamp": message.timestamp,
            "seq": time.time_ns() if seq is None else seq,
        }

    @staticmethod
    def _to_message(doc: Dict[str, Any]) -> Message:
        data: Dict[str, Any] = {
            "id": str(doc.get("message_id")),
            "role": str(doc.get("role", "assistant")),
            "content": str(doc.get("content", "")),
        }
        if doc.get("timestamp") is not None:
            data["timestamp"] = doc["timestamp"]
        return Message(**data)
