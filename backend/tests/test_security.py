"""
Tests for tokens, passwords and shared route helpers.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from khareedo.api.deps import ok, paginate, parse_datetime
from khareedo.core.config import DEV_JWT_SECRET, Settings
from khareedo.core.errors import AuthError, ValidationError
from khareedo.core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    role_matches,
    verify_password,
)


def test_token_carries_role_claims():
    token = create_access_token("a" * 32, "priya@acme-realty.in", "b" * 32, "Project Manager")
    user = decode_access_token(token)
    assert user.user_id == "a" * 32
    assert user.role_name == "Project Manager"
    assert user.has_role("project manager")
    assert not user.is_admin


def test_tampered_token_is_rejected():
    token = create_access_token("a" * 32, None, None, "User")
    with pytest.raises(AuthError):
        decode_access_token(token[:-2] + "xx")


def test_password_hashing():
    hashed = hash_password("Admin@123")
    assert verify_password("Admin@123", hashed)
    assert not verify_password("admin@123", hashed)
    assert not verify_password("Admin@123", "not-a-bcrypt-hash")
    assert not verify_password("Admin@123", None)


def test_role_matching_is_case_insensitive():
    assert role_matches(" super admin ", "Super Admin", "admin")
    assert not role_matches(None, "User")


def test_envelope_and_pagination():
    assert ok([1], message="done", pagination=paginate(21, 2, 10)) == {
        "success": True,
        "message": "done",
        "data": [1],
        "pagination": {"total": 21, "page": 2, "limit": 10, "totalPages": 3},
    }
    assert ok(message="bare") == {"success": True, "message": "bare"}


def test_parse_datetime_normalizes_to_naive_utc():
    parsed = parse_datetime("2030-05-01T10:00:00+05:30", "visitDate")
    assert parsed.tzinfo is None
    assert (parsed.hour, parsed.minute) == (4, 30)
    assert parse_datetime("", "visitDate", required=False) is None
    with pytest.raises(ValidationError):
        parse_datetime("tomorrow", "visitDate")


def test_production_requires_jwt_secret(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(PydanticValidationError):
        Settings(ENVIRONMENT="production", _env_file=None)

    configured = Settings(ENVIRONMENT="production", JWT_SECRET="s3cret-from-vault", _env_file=None)
    assert configured.JWT_SECRET == "s3cret-from-vault"
    assert Settings(ENVIRONMENT="test", _env_file=None).JWT_SECRET == DEV_JWT_SECRET
