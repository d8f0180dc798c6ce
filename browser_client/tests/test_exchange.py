"""Tests for the token endpoint exchange."""
from unittest.mock import MagicMock, patch

import httpx
import pytest

from browser_client.errors import FailureReason, IdTokenVerificationError
from browser_client.exchange import TokenExchangeClient, TokenResponse
from browser_client.flow_store import NONCE_KEY, VERIFIER_KEY, AttemptStore, SlotStatus


@pytest.fixture
def attempts(storage):
    a = AttemptStore(storage)
    a.new_state()
    a.new_verifier()
    return a


@pytest.fixture
def client(config, attempts):
    return TokenExchangeClient(config, attempts)


def test_exchange_success_posts_form_and_returns_tokens(config, client, attempts, id_token_for, token_response):
    nonce = attempts.new_nonce()
    verifier = attempts.storage.get_item(VERIFIER_KEY)
    with patch("browser_client.exchange.httpx.post", return_value=token_response(id_token_for(nonce))) as post:
        result = client.exchange("4/0ARtbsJr")
    assert result.ok
    assert result.tokens.access_token == "ya29.test-access-token"
    assert result.tokens.expires_in == 3599
    assert result.claims["nonce"] == nonce

    args, kwargs = post.call_args
    assert args[0] == config.token_uri
    assert kwargs["data"] == {
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        "code": "4/0ARtbsJr",
        "redirect_uri": config.redirect_uri,
        "grant_type": "authorization_code",
        "code_verifier": verifier,
    }
    assert kwargs["timeout"] == config.token_timeout


def test_exchange_consumes_verifier_and_nonce(client, attempts, id_token_for, token_response):
    nonce = attempts.new_nonce()
    with patch("browser_client.exchange.httpx.post", return_value=token_response(id_token_for(nonce))):
        client.exchange("code")
    assert attempts.status(VERIFIER_KEY) == SlotStatus.CONSUMED
    assert attempts.status(NONCE_KEY) == SlotStatus.CONSUMED


def test_exchange_without_verifier_makes_no_request(client, attempts):
    attempts.take_verifier()
    with patch("browser_client.exchange.httpx.post") as post:
        result = client.exchange("code")
    assert result.error == FailureReason.INCOMPLETE_ATTEMPT
    post.assert_not_called()


def test_exchange_verifier_is_one_shot_even_on_failure(client, attempts):
    with patch("browser_client.exchange.httpx.post", side_effect=httpx.ConnectError("refused")):
        client.exchange("code")
    with patch("browser_client.exchange.httpx.post") as post:
        result = client.exchange("code")
    assert result.error == FailureReason.INCOMPLETE_ATTEMPT
    post.assert_not_called()


def test_exchange_transport_error(client):
    with patch("browser_client.exchange.httpx.post", side_effect=httpx.ConnectError("refused")):
        result = client.exchange("code")
    assert not result.ok
    assert result.error == FailureReason.TRANSPORT
    assert "refused" in result.detail


def test_exchange_timeout_is_transport_error(client):
    with patch("browser_client.exchange.httpx.post", side_effect=httpx.ReadTimeout("timed out")):
        result = client.exchange("code")
    assert result.error == FailureReason.TRANSPORT


def test_exchange_non_json_body_is_transport_error(client):
    class MockResponse:
        status_code = 502
        text = "<html>Bad Gateway</html>"

        def json(self):
            raise ValueError("Expecting value")

    with patch("browser_client.exchange.httpx.post", return_value=MockResponse()):
        result = client.exchange("code")
    assert result.error == FailureReason.TRANSPORT


def test_exchange_provider_error_body_is_kept_verbatim(client):
    class MockResponse:
        status_code = 400

        def json(self):
            return {"error": "invalid_grant", "error_description": "Bad Request"}

    with patch("browser_client.exchange.httpx.post", return_value=MockResponse()):
        result = client.exchange("expired-code")
    assert result.error == FailureReason.PROVIDER
    assert result.detail == {"error": "invalid_grant", "error_description": "Bad Request"}


def test_exchange_200_without_id_token_is_provider_error(client, token_response):
    response = token_response("unused")
    del response._body["id_token"]
    with patch("browser_client.exchange.httpx.post", return_value=response):
        result = client.exchange("code")
    assert result.error == FailureReason.PROVIDER
    assert "id_token" not in result.detail


def test_exchange_json_array_is_provider_error(client):
    class MockResponse:
        status_code = 200

        def json(self):
            return ["not", "an", "object"]

    with patch("browser_client.exchange.httpx.post", return_value=MockResponse()):
        result = client.exchange("code")
    assert result.error == FailureReason.PROVIDER


def test_exchange_undecodable_id_token_is_provider_error(client, token_response):
    with patch("browser_client.exchange.httpx.post", return_value=token_response("not-a-jwt")):
        result = client.exchange("code")
    assert result.error == FailureReason.PROVIDER


def test_exchange_nonce_mismatch_despite_200(client, attempts, id_token_for, token_response):
    attempts.new_nonce()
    with patch("browser_client.exchange.httpx.post", return_value=token_response(id_token_for("nonce-forged"))):
        result = client.exchange("code")
    assert not result.ok
    assert result.error == FailureReason.NONCE_MISMATCH
    assert result.tokens is None


def test_exchange_with_signature_verifier_failure(config, attempts, id_token_for, token_response):
    nonce = attempts.new_nonce()
    verifier = MagicMock()
    verifier.verify.side_effect = IdTokenVerificationError("id_token signature verification failed")
    client = TokenExchangeClient(config, attempts, verifier)
    with patch("browser_client.exchange.httpx.post", return_value=token_response(id_token_for(nonce))):
        result = client.exchange("code")
    assert result.error == FailureReason.INVALID_ID_TOKEN
    # Nonce is left for the flow to clear with the rest of the attempt
    assert attempts.status(NONCE_KEY) == SlotStatus.PENDING


def test_exchange_with_signature_verifier_uses_verified_claims(config, attempts, id_token_for, token_response):
    nonce = attempts.new_nonce()
    verifier = MagicMock()
    verifier.verify.return_value = {"nonce": nonce, "sub": "42"}
    client = TokenExchangeClient(config, attempts, verifier)
    with patch("browser_client.exchange.httpx.post", return_value=token_response(id_token_for("nonce-from-unverified"))):
        result = client.exchange("code")
    assert result.ok
    assert result.claims == {"nonce": nonce, "sub": "42"}


@pytest.mark.parametrize(
    "body",
    [
        {"id_token": "a.b.c", "expires_in": 3599},
        {"access_token": "at", "expires_in": 3599},
        {"access_token": "at", "id_token": "a.b.c"},
        {"access_token": "at", "id_token": "a.b.c", "expires_in": "soon"},
        {"access_token": "at", "id_token": "a.b.c", "expires_in": "-5"},
        {"access_token": "at", "id_token": "a.b.c", "expires_in": 0},
        {"access_token": "at", "id_token": "a.b.c", "expires_in": True},
    ],
)
def test_token_response_rejects_incomplete_bodies(body):
    assert TokenResponse.from_json(body) is None


def test_token_response_defaults_optional_fields():
    t = TokenResponse.from_json({"access_token": "at", "id_token": "a.b.c", "expires_in": 60})
    assert t.scope == ""
    assert t.token_type == "Bearer"


def test_exchange_accepts_numeric_string_lifetime(client, attempts, id_token_for, token_response):
    nonce = attempts.new_nonce()
    with patch(
        "browser_client.exchange.httpx.post", return_value=token_response(id_token_for(nonce), expires_in="3599")
    ):
        result = client.exchange("code")
    assert result.ok
    assert result.tokens.expires_in == 3599


def test_mistyped_lifetime_is_provider_failure(client, attempts, id_token_for, token_response, caplog):
    nonce = attempts.new_nonce()
    with patch(
        "browser_client.exchange.httpx.post", return_value=token_response(id_token_for(nonce), expires_in="an hour")
    ):
        result = client.exchange("code")
    assert result.error == FailureReason.PROVIDER
    assert "missing or mistyped" in caplog.text
