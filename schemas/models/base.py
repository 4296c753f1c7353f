"""
Shared pieces of the auth document models.

Ids are BSON ObjectIds in Mongo and strings everywhere else (JWT ``sub``,
API responses, OTP request ids sent back by clients). ``PyObjectId`` teaches
pydantic both directions and ``parse_object_id`` is the lenient variant for
client-supplied ids.
"""

from __future__ import annotations

from typing import Any, Optional, TypeVar

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, GetCoreSchemaHandler
from pydantic_core import core_schema

ModelT = TypeVar("ModelT", bound="MongoBaseModel")


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return *value* as an ObjectId, or ``None`` if it is not a valid id.

    A malformed id from a client resolves to "not found" instead of an error.
    """
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


class PyObjectId(ObjectId):
    """ObjectId field type: accepts ObjectId or hex string, dumps as string."""

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._coerce,
            serialization=core_schema.plain_serializer_function_ser_schema(
                str, when_used="json"
            ),
        )

    @staticmethod
    def _coerce(value: Any) -> ObjectId:
        oid = parse_object_id(value)
        if oid is None:
            raise ValueError(f"not a valid ObjectId: {value!r}")
        return oid


class MongoBaseModel(BaseModel):
    """Document with its Mongo ``_id`` exposed as ``id``."""

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    id: Optional[PyObjectId] = Field(default=None, alias="_id")

    def to_mongo(self) -> dict:
        """Dump for insert; ``_id`` is left out until Mongo assigns one."""
        data = self.model_dump(by_alias=True)
        if data.get("_id") is None:
            data.pop("_id", None)
        return data

    @classmethod
    def from_mongo(cls: type[ModelT], raw: Optional[dict]) -> Optional[ModelT]:
        if raw is None:
            return None
        return cls.model_validate(raw)
