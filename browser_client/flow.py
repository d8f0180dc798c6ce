"""
Authorization code + PKCE flow, run once per page load.

Each run reaches exactly one conclusion:
  HAS_VALID_SESSION  stored tokens are still valid
  AUTHENTICATED      callback code exchanged; caller should redirect to the app root
  FAILED             callback rejected (state/nonce mismatch, provider or network error); no retry
  REDIRECTING        new attempt persisted; caller must send the browser to redirect_url

Nothing is kept in memory between runs. Verifier, state and nonce are written to session
storage before the redirect is issued and read back on the callback run.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from browser_client.callback import CallbackInspector, CallbackKind
from browser_client.config import ClientConfig
from browser_client.errors import ConfigurationError, FailureReason
from browser_client.exchange import TokenExchangeClient
from browser_client.flow_store import AttemptStore
from browser_client.id_token import IdTokenSignatureVerifier
from browser_client.pkce import build_authorize_url, challenge_for
from browser_client.storage import SessionStorage
from browser_client.token_store import TokenSet, TokenStore

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    HAS_VALID_SESSION = "has_valid_session"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"
    REDIRECTING = "redirecting"


@dataclass
class FlowResult:
    state: FlowState
    tokens: TokenSet | None = None
    redirect_url: str | None = None
    reason: FailureReason | None = None
    detail: Any = None

    @property
    def authenticated(self) -> bool:
        return self.tokens is not None


_CALLBACK_FAILURES = {
    CallbackKind.STATE_MISMATCH: FailureReason.STATE_MISMATCH,
    CallbackKind.PROVIDER_ERROR: FailureReason.PROVIDER_DENIED,
}


def app_root_url(current_url: str, configured: str = "") -> str:
    """Where to land after login: configured root, else origin of the current URL + '/'."""
    if configured:
        return configured
    parsed = urlparse(current_url)
    return f"{parsed.scheme}://{parsed.netloc}/"


class AuthFlowController:
    def __init__(
        self,
        config: ClientConfig,
        storage: SessionStorage,
        exchange_client: TokenExchangeClient | None = None,
    ):
        config.validate()
        self.config = config
        self.attempts = AttemptStore(storage)
        self.tokens = TokenStore(storage)
        self.inspector = CallbackInspector(self.attempts)
        if exchange_client is None:
            verifier = None
            if config.verify_id_token:
                verifier = IdTokenSignatureVerifier(config.jwks_uri, config.client_id, config.issuer)
            exchange_client = TokenExchangeClient(config, self.attempts, verifier)
        self.exchange_client = exchange_client

    def check_auth_states(self, current_url: str) -> FlowResult:
        """Drive the flow for one page load. Only ConfigurationError escapes."""
        try:
            return self._run(current_url)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.exception("Unexpected error in auth flow")
            self.attempts.clear()
            return FlowResult(FlowState.FAILED, reason=FailureReason.UNEXPECTED, detail=str(e))

    def _run(self, current_url: str) -> FlowResult:
        stored = self.tokens.load()
        if stored is not None:
            logger.debug("Found stored credentials")
            return FlowResult(FlowState.HAS_VALID_SESSION, tokens=stored)

        callback = self.inspector.inspect(current_url)
        if callback.kind == CallbackKind.READY:
            return self._complete(callback.code, current_url)
        if callback.kind in _CALLBACK_FAILURES:
            self.attempts.clear()
            reason = _CALLBACK_FAILURES[callback.kind]
            logger.warning("Authentication failed: %s", reason.value)
            detail = callback.error_description or callback.error
            return FlowResult(FlowState.FAILED, reason=reason, detail=detail)

        return self._request_authorization()

    def _complete(self, code: str, current_url: str) -> FlowResult:
        result = self.exchange_client.exchange(code)
        if not result.ok:
            self.attempts.clear()
            logger.error("Can't get OAuth2 tokens: %s", result.error.value)
            return FlowResult(FlowState.FAILED, reason=result.error, detail=result.detail)

        tokens = self.tokens.save(
            access_token=result.tokens.access_token,
            id_token=result.tokens.id_token,
            expires_in=result.tokens.expires_in,
            scope=result.tokens.scope,
            claims=result.claims,
        )
        # Land on the app root so the code does not stay in the address bar
        return FlowResult(
            FlowState.AUTHENTICATED,
            tokens=tokens,
            redirect_url=app_root_url(current_url, self.config.app_root),
        )

    def _request_authorization(self) -> FlowResult:
        state = self.attempts.new_state()
        nonce = self.attempts.new_nonce()
        code_verifier = self.attempts.new_verifier()
        url = build_authorize_url(
            auth_uri=self.config.auth_uri,
            client_id=self.config.client_id,
            redirect_uri=self.config.redirect_uri,
            scope=self.config.scope,
            state=state,
            nonce=nonce,
            code_challenge=challenge_for(code_verifier),
            extra_params=self.config.extra_auth_params,
        )
        logger.info("Redirecting to authorization endpoint %s", self.config.auth_uri)
        return FlowResult(FlowState.REDIRECTING, redirect_url=url)

    def is_authed(self) -> bool:
        return self.tokens.load() is not None

    def clear_tokens(self) -> None:
        """Sign out: drop stored tokens (and any half-finished attempt)."""
        self.tokens.clear()
        self.attempts.clear()
