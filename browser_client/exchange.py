"""
Token endpoint client: exchange an authorization code (+ PKCE verifier) for tokens.
Never raises for provider or network problems; returns an ExchangeResult with a FailureReason.
A 200 from the token endpoint is not enough: the id_token nonce must match our attempt.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from browser_client.config import ClientConfig
from browser_client.errors import FailureReason, IdTokenDecodeError, IdTokenVerificationError
from browser_client.flow_store import AttemptStore
from browser_client.id_token import IdTokenSignatureVerifier, decode_claims, verify_nonce

logger = logging.getLogger(__name__)

GRANT_TYPE = "authorization_code"


def _lifetime_seconds(value: Any) -> int | None:
    """expires_in as a positive int; numeric strings ("3599") are accepted."""
    # bool is an int subclass
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if not isinstance(value, int) or value <= 0:
        return None
    return value


@dataclass
class TokenResponse:
    access_token: str
    id_token: str
    expires_in: int
    scope: str = ""
    token_type: str = "Bearer"

    @classmethod
    def from_json(cls, body: dict[str, Any]) -> "TokenResponse | None":
        """Validated response, or None if a required field is missing or mistyped."""
        access_token = body.get("access_token")
        id_token = body.get("id_token")
        expires_in = _lifetime_seconds(body.get("expires_in"))
        if not isinstance(access_token, str) or not access_token:
            return None
        if not isinstance(id_token, str) or not id_token:
            return None
        if expires_in is None:
            return None
        scope = body.get("scope")
        token_type = body.get("token_type")
        return cls(
            access_token=access_token,
            id_token=id_token,
            expires_in=expires_in,
            scope=scope if isinstance(scope, str) else "",
            token_type=token_type if isinstance(token_type, str) else "Bearer",
        )


@dataclass
class ExchangeResult:
    tokens: TokenResponse | None = None
    claims: dict[str, Any] = field(default_factory=dict)
    error: FailureReason | None = None
    # Provider body or exception text, for diagnostics only
    detail: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.tokens is not None

    @classmethod
    def failure(cls, reason: FailureReason, detail: Any = None) -> "ExchangeResult":
        return cls(error=reason, detail=detail)


class TokenExchangeClient:
    def __init__(
        self,
        config: ClientConfig,
        attempts: AttemptStore,
        signature_verifier: IdTokenSignatureVerifier | None = None,
    ):
        self.config = config
        self.attempts = attempts
        self.signature_verifier = signature_verifier

    def exchange(self, code: str) -> ExchangeResult:
        # One-shot: the verifier is gone from storage whatever happens next
        code_verifier = self.attempts.take_verifier()
        if not code_verifier:
            logger.warning("No persisted code_verifier for this callback")
            return ExchangeResult.failure(FailureReason.INCOMPLETE_ATTEMPT, "code_verifier not found in session")

        data = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
            "redirect_uri": self.config.redirect_uri,
            "grant_type": GRANT_TYPE,
            "code_verifier": code_verifier,
        }
        try:
            r = httpx.post(
                self.config.token_uri,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.config.token_timeout,
            )
        except httpx.HTTPError as e:
            logger.error("Token request to %s failed: %s", self.config.token_uri, e)
            return ExchangeResult.failure(FailureReason.TRANSPORT, str(e))

        # Read the body before looking at the status; error responses are JSON too
        try:
            body = r.json()
        except ValueError:
            logger.error("Token endpoint returned non-JSON body (status %s)", r.status_code)
            return ExchangeResult.failure(FailureReason.TRANSPORT, "non-JSON response from token endpoint")

        if not isinstance(body, dict):
            return ExchangeResult.failure(FailureReason.PROVIDER, body)
        if r.status_code != 200:
            logger.error(
                "Token endpoint error %s: %s", r.status_code, body.get("error_description") or body.get("error")
            )
            return ExchangeResult.failure(FailureReason.PROVIDER, body)
        tokens = TokenResponse.from_json(body)
        if tokens is None:
            logger.error("Token response has missing or mistyped fields (keys: %s)", sorted(body))
            return ExchangeResult.failure(FailureReason.PROVIDER, body)

        try:
            claims = decode_claims(tokens.id_token)
        except IdTokenDecodeError as e:
            logger.error("%s", e)
            return ExchangeResult.failure(FailureReason.PROVIDER, str(e))

        if self.signature_verifier is not None:
            try:
                claims = self.signature_verifier.verify(tokens.id_token)
            except IdTokenVerificationError as e:
                logger.warning("%s", e)
                return ExchangeResult.failure(FailureReason.INVALID_ID_TOKEN, str(e))

        if not verify_nonce(claims, self.attempts):
            return ExchangeResult.failure(FailureReason.NONCE_MISMATCH, "id_token nonce does not match")

        logger.info("Token exchange succeeded (scope=%s)", tokens.scope)
        return ExchangeResult(tokens=tokens, claims=claims)
