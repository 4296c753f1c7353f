"""Mongo implementation of IdentityStore (`users` collection)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from repositories.base import BaseRepository
from schemas.models.identity import STATUS_ACTIVE, IdentityDoc
from shared.logging import get_logger, mask_phone

log = get_logger(__name__)


class IdentityRepository(BaseRepository[IdentityDoc]):
    model = IdentityDoc

    async def find_by_id(self, identity_id: ObjectId) -> Optional[IdentityDoc]:
        return self._load(await self._col.find_one({"_id": identity_id}))

    async def find_by_phone(self, phone: str) -> Optional[IdentityDoc]:
        return self._load(await self._col.find_one({"phone": phone}))

    async def upsert_verified_login(self, phone: str, now: datetime) -> IdentityDoc:
        update = {
            "$set": {
                "phone_verified": True,
                "last_login_at": now,
                "failed_login_count": 0,
                "locked_until": None,
                "updated_at": now,
            },
            "$setOnInsert": {
                "phone": phone,
                "password_hash": None,
                "status": STATUS_ACTIVE,
                "roles": [],
                "password_version": 0,
                "session_epoch": 0,
                "created_at": now,
            },
        }
        try:
            raw = await self._col.find_one_and_update(
                {"phone": phone},
                update,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # A concurrent upsert created the identity first; the retry
            # matches the existing document.
            log.info("identity_upsert_race", phone=mask_phone(phone))
            raw = await self._col.find_one_and_update(
                {"phone": phone},
                {"$set": update["$set"]},
                return_document=ReturnDocument.AFTER,
            )
        return self.model.from_mongo(raw)

    async def record_login(
        self, identity_id: ObjectId, now: datetime
    ) -> Optional[IdentityDoc]:
        raw = await self._col.find_one_and_update(
            {"_id": identity_id},
            {
                "$set": {
                    "last_login_at": now,
                    "failed_login_count": 0,
                    "locked_until": None,
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return self._load(raw)

    async def record_failed_login(
        self,
        identity_id: ObjectId,
        now: datetime,
        max_failures: int,
        locked_until: datetime,
    ) -> Optional[IdentityDoc]:
        raw = await self._col.find_one_and_update(
            {"_id": identity_id},
            {"$inc": {"failed_login_count": 1}, "$set": {"updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if raw is None or raw.get("failed_login_count", 0) < max_failures:
            return self._load(raw)

        # Only the request that crossed the threshold applies the lock
        raw = await self._col.find_one_and_update(
            {"_id": identity_id, "failed_login_count": {"$gte": max_failures}},
            {"$set": {"failed_login_count": 0, "locked_until": locked_until}},
            return_document=ReturnDocument.AFTER,
        )
        return self._load(raw)

    async def set_password(
        self, identity_id: ObjectId, password_hash: str, now: datetime
    ) -> Optional[IdentityDoc]:
        raw = await self._col.find_one_and_update(
            {"_id": identity_id},
            {
                "$set": {
                    "password_hash": password_hash,
                    "failed_login_count": 0,
                    "locked_until": None,
                    "updated_at": now,
                },
                "$inc": {"password_version": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        return self._load(raw)

    async def bump_session_epoch(
        self, identity_id: ObjectId, now: datetime
    ) -> Optional[IdentityDoc]:
        raw = await self._col.find_one_and_update(
            {"_id": identity_id},
            {"$inc": {"session_epoch": 1}, "$set": {"updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return self._load(raw)

    async def add_role(
        self, identity_id: ObjectId, role: str, now: datetime
    ) -> Optional[IdentityDoc]:
        raw = await self._col.find_one_and_update(
            {"_id": identity_id},
            {"$addToSet": {"roles": role}, "$set": {"updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return self._load(raw)
