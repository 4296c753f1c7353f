"""Unit tests for MongoDB document models."""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from schemas.models.base import MongoBaseModel, PyObjectId, parse_object_id
from schemas.models.identity import STATUS_ACTIVE, STATUS_SUSPENDED, IdentityDoc
from schemas.models.otp_request import OtpRequestDoc
from schemas.models.refresh_token import RefreshTokenDoc


# ── Helpers ───────────────────────────────────────────────────────────────────

def now():
    return datetime.now(timezone.utc)


def oid():
    return ObjectId()


# ── PyObjectId ────────────────────────────────────────────────────────────────

class TestPyObjectId:
    def test_accepts_objectid_instance(self):
        o = oid()
        assert RefreshTokenDoc(identity_id=o, token_hash="h", expires_at=now()).identity_id == o

    def test_accepts_valid_string(self):
        o = oid()
        doc = RefreshTokenDoc(identity_id=str(o), token_hash="h", expires_at=now())
        assert doc.identity_id == o
        assert isinstance(doc.identity_id, ObjectId)

    def test_rejects_invalid_string(self):
        with pytest.raises(ValidationError):
            RefreshTokenDoc(identity_id="nope", token_hash="h", expires_at=now())

    def test_serializes_to_string_in_json(self):
        o = oid()
        doc = RefreshTokenDoc(identity_id=o, token_hash="h", expires_at=now())
        assert doc.model_dump(mode="json")["identity_id"] == str(o)

    def test_is_objectid_subclass(self):
        assert issubclass(PyObjectId, ObjectId)


@pytest.mark.parametrize(
    "value, valid",
    [(ObjectId(), True), ("65f1a2b3c4d5e6f7a8b9c0d1", True), ("bogus", False),
     (None, False), (123, False)],
    ids=["objectid", "hex_string", "bogus", "none", "int"],
)
def test_parse_object_id(value, valid):
    assert (parse_object_id(value) is not None) is valid


# ── MongoBaseModel ────────────────────────────────────────────────────────────

class TestMongoBaseModel:
    def test_from_mongo_none(self):
        assert IdentityDoc.from_mongo(None) is None

    def test_to_mongo_drops_missing_id(self):
        data = IdentityDoc(phone="+989121234567").to_mongo()
        assert "_id" not in data
        assert "id" not in data

    def test_to_mongo_keeps_id(self):
        o = oid()
        assert IdentityDoc(_id=o, phone="+989121234567").to_mongo()["_id"] == o

    def test_round_trip_via_mongo_dict(self):
        o = oid()
        raw = {"_id": o, "phone": "+989121234567", "password_version": 2}
        doc = IdentityDoc.from_mongo(raw)
        assert doc.id == o
        assert doc.password_version == 2
        assert isinstance(doc, MongoBaseModel)


# ── IdentityDoc ───────────────────────────────────────────────────────────────

class TestIdentityDoc:
    def test_defaults(self):
        doc = IdentityDoc(phone="+989121234567")
        assert doc.status == STATUS_ACTIVE
        assert doc.phone_verified is False
        assert doc.roles == []
        assert doc.password_version == 0
        assert doc.failed_login_count == 0
        assert doc.locked_until is None

    @pytest.mark.parametrize(
        "password_hash, expected", [(None, False), ("$argon2id$...", True)]
    )
    def test_password_set(self, password_hash, expected):
        assert IdentityDoc(phone="p", password_hash=password_hash).password_set is expected

    @pytest.mark.parametrize(
        "status, expected", [(STATUS_ACTIVE, True), (STATUS_SUSPENDED, False)]
    )
    def test_is_active(self, status, expected):
        assert IdentityDoc(phone="p", status=status).is_active is expected

    def test_negative_password_version_rejected(self):
        with pytest.raises(ValidationError):
            IdentityDoc(phone="p", password_version=-1)

    @pytest.mark.parametrize(
        "field, value", [("status", "deleted"), ("roles", ["admin"])]
    )
    def test_unknown_status_or_role_rejected(self, field, value):
        with pytest.raises(ValidationError):
            IdentityDoc(phone="p", **{field: value})


# ── OtpRequestDoc ─────────────────────────────────────────────────────────────

class TestOtpRequestDoc:
    def test_minimal(self):
        t = now()
        doc = OtpRequestDoc(
            phone="+989121234567",
            purpose="login",
            code_hash="a" * 64,
            expires_at=t + timedelta(minutes=3),
            attempts_left=5,
            resend_available_at=t + timedelta(seconds=60),
        )
        assert doc.used_at is None
        assert doc.identity_id is None

    def test_negative_attempts_rejected(self):
        t = now()
        with pytest.raises(ValidationError):
            OtpRequestDoc(
                phone="+989121234567",
                purpose="login",
                code_hash="a" * 64,
                expires_at=t,
                attempts_left=-1,
                resend_available_at=t,
            )


# ── RefreshTokenDoc ───────────────────────────────────────────────────────────

class TestRefreshTokenDoc:
    def test_is_revoked(self):
        doc = RefreshTokenDoc(identity_id=oid(), token_hash="h", expires_at=now())
        assert doc.is_revoked is False
        assert doc.model_copy(update={"revoked_at": now()}).is_revoked is True

    def test_session_stamp_defaults(self):
        doc = RefreshTokenDoc(identity_id=oid(), token_hash="h", expires_at=now())
        assert doc.password_version == 0
        assert doc.session_epoch == 0

    def test_rotated_from_optional(self):
        parent = oid()
        doc = RefreshTokenDoc(
            identity_id=oid(), token_hash="h", expires_at=now(), rotated_from=parent
        )
        assert doc.rotated_from == parent
