"""Mongo implementation of RefreshTokenStore (`refresh-tokens` collection)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument

from repositories.base import BaseRepository
from schemas.models.refresh_token import RefreshTokenDoc


class RefreshTokenRepository(BaseRepository[RefreshTokenDoc]):
    model = RefreshTokenDoc

    async def insert(self, doc: RefreshTokenDoc) -> RefreshTokenDoc:
        return await self._insert(doc)

    async def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenDoc]:
        return self._load(await self._col.find_one({"token_hash": token_hash}))

    async def find_successor(self, token_id: ObjectId) -> Optional[RefreshTokenDoc]:
        return self._load(await self._col.find_one({"rotated_from": token_id}))

    async def revoke_if_active(
        self, token_id: ObjectId, now: datetime
    ) -> Optional[RefreshTokenDoc]:
        raw = await self._col.find_one_and_update(
            {"_id": token_id, "revoked_at": None, "expires_at": {"$gte": now}},
            {"$set": {"revoked_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return self._load(raw)

    async def revoke_by_hash(self, token_hash: str, now: datetime) -> bool:
        result = await self._col.update_one(
            {"token_hash": token_hash, "revoked_at": None},
            {"$set": {"revoked_at": now}},
        )
        return result.modified_count > 0

    async def revoke_all_for_identity(self, identity_id: ObjectId, now: datetime) -> int:
        result = await self._col.update_many(
            {"identity_id": identity_id, "revoked_at": None},
            {"$set": {"revoked_at": now}},
        )
        return result.modified_count
