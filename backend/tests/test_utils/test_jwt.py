"""Tests for JWT access token helpers"""
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from app.core.config import settings
from app.utils.jwt import (
    TokenError,
    bearer_token,
    claimed_tenant_id,
    create_access_token,
    decode_access_token,
)


class TestAccessTokens:

    def test_round_trip_claims(self):
        token = create_access_token("user-1", "tenant-001", "manager")

        payload = decode_access_token(token)

        assert payload["user_id"] == "user-1"
        assert payload["tenant_id"] == "tenant-001"
        assert payload["role"] == "manager"

    def test_role_is_optional(self):
        assert decode_access_token(create_access_token("user-1", "tenant-001"))["role"] is None

    def test_expired_token(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode(
            {"sub": "user-1", "tenant_id": "tenant-001", "exp": past},
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )

        with pytest.raises(TokenError, match="expired"):
            decode_access_token(token)

    def test_wrong_signature(self):
        token = jwt.encode({"sub": "user-1", "tenant_id": "t"}, "other-secret", algorithm="HS256")

        with pytest.raises(TokenError):
            decode_access_token(token)

    def test_token_without_tenant_rejected(self):
        token = jwt.encode({"sub": "user-1"}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(TokenError):
            decode_access_token(token)

    def test_garbage(self):
        with pytest.raises(TokenError):
            decode_access_token("not.a.token")


class TestAuthorizationHeader:

    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc.def", "abc.def"),
        ("bearer  abc.def ", "abc.def"),
        ("Basic dXNlcjpwYXNz", None),
        ("Bearer ", None),
        (None, None),
    ])
    def test_bearer_token(self, header, expected):
        assert bearer_token(header) == expected

    def test_claimed_tenant(self):
        token = create_access_token("user-1", "tenant-001")

        assert claimed_tenant_id(f"Bearer {token}") == "tenant-001"

    def test_claimed_tenant_ignores_bad_signature(self):
        token = jwt.encode({"sub": "user-1", "tenant_id": "tenant-001"}, "other-secret", algorithm="HS256")

        assert claimed_tenant_id(f"Bearer {token}") is None
