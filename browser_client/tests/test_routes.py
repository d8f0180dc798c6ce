"""Tests for browser_client routes: redirect, callback, session page, /me, logout."""
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from browser_client import storage as storage_module
from browser_client.config import SESSION_COOKIE_NAME
from browser_client.errors import ConfigurationError
from browser_client.flow_store import NONCE_KEY
from browser_client.main import app, get_config
from browser_client.storage import MemoryStorage


@pytest.fixture
def client():
    # Fresh cookie jar per test = fresh browser session
    return TestClient(app)


def _storage_for(client):
    return MemoryStorage.for_session(client.cookies.get(SESSION_COOKIE_NAME))


def _login(client, id_token_for, token_response, nonce_override=None):
    r = client.get("/", follow_redirects=False)
    state = parse_qs(urlparse(r.headers["location"]).query)["state"][0]
    nonce = nonce_override or _storage_for(client).get_item(NONCE_KEY)
    with patch("browser_client.exchange.httpx.post", return_value=token_response(id_token_for(nonce))):
        return client.get("/auth", params={"code": "auth-code-xyz", "state": state}, follow_redirects=False)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("service") == "browser_client"


def test_first_visit_redirects_to_provider_and_sets_session_cookie(client):
    r = client.get("/", follow_redirects=False)
    assert r.status_code == 302
    location = r.headers["location"]
    assert location.startswith("https://idp.example/o/oauth2/v2/auth?")
    assert "response_type=code" in location
    assert "code_challenge=" in location
    assert "code_challenge_method=S256" in location
    assert "state=state-" in location
    assert "nonce=nonce-" in location
    cookie = r.headers["set-cookie"]
    assert cookie.startswith(f"{SESSION_COOKIE_NAME}=")
    assert "httponly" in cookie.lower()
    assert "max-age" not in cookie.lower()


def test_callback_success_redirects_to_root_then_shows_user(client, id_token_for, token_response):
    r = _login(client, id_token_for, token_response)
    assert r.status_code == 302
    assert r.headers["location"] == "http://testserver/"

    r = client.get("/", follow_redirects=False)
    assert r.status_code == 200
    assert "Signed in" in r.text
    assert "Test User" in r.text
    assert "user@example.com" in r.text


def test_me_returns_profile_without_tokens(client, id_token_for, token_response):
    _login(client, id_token_for, token_response)
    r = client.get("/me")
    assert r.status_code == 200
    body = r.json()
    assert body["email"] == "user@example.com"
    assert body["given_name"] == "Test"
    assert "access_token" not in body
    assert "id_token" not in body


def test_me_without_session_is_401(client):
    r = client.get("/me")
    assert r.status_code == 401
    assert r.json()["detail"]["error"] == "login_required"


def test_anonymous_requests_leave_no_session_namespace(client):
    before = set(storage_module._namespaces)
    for _ in range(50):
        client.cookies.clear()
        assert client.get("/me").status_code == 401
        assert client.get("/logout").status_code == 200
    assert set(storage_module._namespaces) <= before


def test_each_login_attempt_holds_one_namespace(client):
    before = set(storage_module._namespaces)
    client.get("/", follow_redirects=False)
    session_id = client.cookies.get(SESSION_COOKIE_NAME)
    assert set(storage_module._namespaces) - before == {session_id}
    _storage_for(client).clear()
    assert session_id not in storage_module._namespaces


def test_callback_nonce_mismatch_shows_generic_error(client, id_token_for, token_response):
    r = _login(client, id_token_for, token_response, nonce_override="nonce-forged")
    assert r.status_code == 401
    assert "Could not authenticate" in r.text
    assert "nonce" not in r.text.lower()
    assert client.get("/me").status_code == 401


def test_callback_state_mismatch(client):
    client.get("/", follow_redirects=False)
    with patch("browser_client.exchange.httpx.post") as post:
        r = client.get("/auth", params={"code": "c", "state": "state-ZZ"}, follow_redirects=False)
    assert r.status_code == 401
    post.assert_not_called()


def test_callback_user_denied(client):
    r = client.get("/", follow_redirects=False)
    state = parse_qs(urlparse(r.headers["location"]).query)["state"][0]
    r = client.get("/auth", params={"error": "access_denied", "state": state}, follow_redirects=False)
    assert r.status_code == 401
    assert "Login error" in r.text


def test_logout_clears_session(client, id_token_for, token_response):
    _login(client, id_token_for, token_response)
    assert client.get("/me").status_code == 200
    r = client.get("/logout")
    assert r.status_code == 200
    assert "Signed out" in r.text
    assert client.get("/me").status_code == 401
    # Next visit starts a new login
    r = client.get("/", follow_redirects=False)
    assert r.status_code == 302


def test_sessions_are_isolated(id_token_for, token_response):
    alice = TestClient(app)
    bob = TestClient(app)
    _login(alice, id_token_for, token_response)
    assert alice.get("/me").status_code == 200
    assert bob.get("/me").status_code == 401


def test_unconfigured_client_returns_500(client):
    def broken_config():
        raise ConfigurationError("Missing required OAuth settings: client_id")

    app.dependency_overrides[get_config] = broken_config
    try:
        r = client.get("/", follow_redirects=False)
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 500
    assert "not configured" in r.text
