"""
Pytest configuration for browser_client. Fixed OAuth settings; in-memory session storage.
"""
import os
import time

import jwt
import pytest

os.environ["OAUTH_CLIENT_ID"] = "test-client.apps.example"
os.environ["OAUTH_CLIENT_SECRET"] = "test-secret"
os.environ["OAUTH_REDIRECT_URI"] = "http://testserver/auth"
os.environ["OAUTH_AUTH_URI"] = "https://idp.example/o/oauth2/v2/auth"
os.environ["OAUTH_TOKEN_URI"] = "https://idp.example/token"
os.environ["OAUTH_SCOPE"] = "openid email profile"
# Session storage stays in memory; test_storage.py uses its own in-memory SQLite
os.environ.pop("CLIENT_SESSION_DATABASE_URL", None)
os.environ.pop("OAUTH_VERIFY_ID_TOKEN", None)

from browser_client.config import ClientConfig
from browser_client.storage import MemoryStorage


def make_id_token(nonce: str | None, **claims) -> str:
    """Identity token as the provider would send it. Signed with a throwaway HMAC key; not verified by default."""
    now = int(time.time())
    payload = {
        "iss": "https://idp.example",
        "aud": "test-client.apps.example",
        "sub": "113202346692217960179",
        "iat": now,
        "exp": now + 3600,
        "email": "user@example.com",
        "name": "Test User",
        "given_name": "Test",
        "family_name": "User",
        "locale": "en",
        "picture": "https://idp.example/u/1.png",
    }
    if nonce is not None:
        payload["nonce"] = nonce
    payload.update(claims)
    return jwt.encode(payload, "not-a-real-key-but-long-enough-for-hs256", algorithm="HS256")


class MockResponse:
    """Stand-in for httpx.Response: status_code plus json()."""

    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._body


@pytest.fixture
def config():
    return ClientConfig.from_env()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def id_token_for():
    return make_id_token


@pytest.fixture
def token_response():
    """Factory for a MockResponse carrying a successful token endpoint body."""

    def _make(id_token: str, expires_in: int = 3599, **overrides):
        body = {
            "access_token": "ya29.test-access-token",
            "id_token": id_token,
            "expires_in": expires_in,
            "scope": "openid https://www.googleapis.com/auth/userinfo.email",
            "token_type": "Bearer",
        }
        body.update(overrides)
        return MockResponse(200, body)

    return _make
