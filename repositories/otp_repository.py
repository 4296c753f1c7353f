"""Mongo implementation of OtpStore.

Requests live in `otp-requests`. The resend cooldown is one document per
phone in `otp-cooldowns` (`_id` is the phone), so claiming it is a single
upsert that the unique `_id` index settles when requests race.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import DuplicateKeyError

from repositories.base import BaseRepository
from schemas.models.otp_request import OtpRequestDoc
from shared.datetime_utils import as_utc


class OtpRepository(BaseRepository[OtpRequestDoc]):
    model = OtpRequestDoc

    def __init__(self, collection: AsyncCollection, cooldowns: AsyncCollection) -> None:
        super().__init__(collection)
        self._cooldowns = cooldowns

    async def insert(self, doc: OtpRequestDoc) -> OtpRequestDoc:
        return await self._insert(doc)

    async def get(self, request_id: ObjectId) -> Optional[OtpRequestDoc]:
        return self._load(await self._col.find_one({"_id": request_id}))

    async def claim_resend_slot(
        self, phone: str, request_id: ObjectId, now: datetime, until: datetime
    ) -> Optional[datetime]:
        try:
            await self._cooldowns.find_one_and_update(
                {
                    "_id": phone,
                    "$or": [
                        {"resend_available_at": {"$lte": now}},
                        {"released": True},
                    ],
                },
                {
                    "$set": {
                        "request_id": request_id,
                        "resend_available_at": until,
                        "released": False,
                    }
                },
                upsert=True,
            )
        except DuplicateKeyError:
            # The slot exists and is held; the upsert tried to insert a second
            raw = await self._cooldowns.find_one({"_id": phone})
            return as_utc(raw["resend_available_at"]) if raw else now
        return None

    async def release_resend_slot(self, phone: str, request_id: ObjectId) -> None:
        await self._cooldowns.update_one(
            {"_id": phone, "request_id": request_id}, {"$set": {"released": True}}
        )

    async def consume_attempt(
        self, request_id: ObjectId, now: datetime
    ) -> Optional[OtpRequestDoc]:
        raw = await self._col.find_one_and_update(
            {
                "_id": request_id,
                "used_at": None,
                "expires_at": {"$gte": now},
                "attempts_left": {"$gt": 0},
            },
            {"$inc": {"attempts_left": -1}},
            return_document=ReturnDocument.AFTER,
        )
        return self._load(raw)

    async def mark_used(
        self, request_id: ObjectId, now: datetime
    ) -> Optional[OtpRequestDoc]:
        raw = await self._col.find_one_and_update(
            {"_id": request_id, "used_at": None},
            {"$set": {"used_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return self._load(raw)

    async def link_identity(self, request_id: ObjectId, identity_id: ObjectId) -> None:
        await self._col.update_one(
            {"_id": request_id}, {"$set": {"identity_id": identity_id}}
        )
