"""Unit tests for JWT token creation, decoding, and validation."""

from datetime import timedelta

import pytest
from jose import JWTError

from dashboard.auth.jwt import (
    create_access_token,
    create_refresh_token,
    create_token_pair,
    decode_token,
)


class TestTokens:
    def test_access_token_claims(self):
        payload = decode_token(create_access_token("user-123"))
        assert payload["type"] == "access"
        assert payload["sub"] == "user-123"
        assert "iat" in payload
        assert "exp" in payload

    def test_refresh_token_type(self):
        payload = decode_token(create_refresh_token("user-xyz"))
        assert payload["type"] == "refresh"
        assert payload["sub"] == "user-xyz"

    def test_token_pair(self):
        pair = create_token_pair("user-123")
        assert pair["token_type"] == "bearer"
        assert decode_token(pair["access_token"])["type"] == "access"
        assert decode_token(pair["refresh_token"])["type"] == "refresh"


class TestDecodeToken:
    def test_expired_token_raises(self):
        token = create_access_token("user-123", expires_delta=timedelta(seconds=-1))
        with pytest.raises(JWTError):
            decode_token(token)

    def test_tampered_token_raises(self):
        token = create_access_token("user-123")
        with pytest.raises(JWTError):
            decode_token(token[:-4] + "abcd")

    def test_garbage_raises(self):
        with pytest.raises(JWTError):
            decode_token("not.a.jwt")
