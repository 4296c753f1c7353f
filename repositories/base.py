"""Shared plumbing for the Mongo-backed stores."""

from __future__ import annotations

from typing import Generic, Optional, TypeVar

from pymongo.asynchronous.collection import AsyncCollection

from schemas.models.base import MongoBaseModel

DocT = TypeVar("DocT", bound=MongoBaseModel)


class BaseRepository(Generic[DocT]):
    """Wraps one collection and converts raw documents to *model*."""

    model: type[DocT]

    def __init__(self, collection: AsyncCollection) -> None:
        self._col = collection

    def _load(self, raw: Optional[dict]) -> Optional[DocT]:
        return self.model.from_mongo(raw)

    async def _insert(self, doc: DocT) -> DocT:
        data = doc.to_mongo()
        result = await self._col.insert_one(data)
        return doc.model_copy(update={"id": result.inserted_id})
