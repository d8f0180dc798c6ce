"""
Session-scoped store for tokens after a successful login.
Stores access_token, id_token, scope, expiry (epoch ms) and the id_token profile fields.
No refresh token: the provider issues none for this flow, so an expired set means log in again.
"""
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any

from browser_client.errors import IdTokenDecodeError
from browser_client.id_token import decode_claims, identity_fields
from browser_client.storage import SessionStorage

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "oauth2AccessToken"
ID_TOKEN_KEY = "oauth2IdToken"
EXPIRED_AT_KEY = "oauth2ExpiredAt"
SCOPE_KEY = "oauth2Scope"
REQUIRED_KEYS = (ACCESS_TOKEN_KEY, ID_TOKEN_KEY, EXPIRED_AT_KEY, SCOPE_KEY)

IDENTITY_KEYS = {
    "email": "oauth2Email",
    "name": "oauth2Name",
    "picture": "oauth2Picture",
    "locale": "oauth2Locale",
    "family_name": "oauth2FamilyName",
    "given_name": "oauth2GivenName",
}

SESSION_KEYS = REQUIRED_KEYS + tuple(IDENTITY_KEYS.values())


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class TokenSet:
    access_token: str
    id_token: str
    scope: str
    expired_at: int  # epoch milliseconds
    email: str | None = None
    name: str | None = None
    picture: str | None = None
    locale: str | None = None
    family_name: str | None = None
    given_name: str | None = None

    def expired(self, at_ms: int | None = None) -> bool:
        return self.expired_at <= (now_ms() if at_ms is None else at_ms)

    def authorization_header(self) -> dict[str, str]:
        """Bearer header for calls to provider APIs."""
        return {"Authorization": f"Bearer {self.access_token}"}

    def profile(self) -> dict[str, Any]:
        """Everything except the raw tokens; safe to show to the user."""
        data = asdict(self)
        data.pop("access_token")
        data.pop("id_token")
        return data


class TokenStore:
    def __init__(self, storage: SessionStorage):
        self.storage = storage

    def save(
        self,
        *,
        access_token: str,
        id_token: str,
        expires_in: int,
        scope: str = "",
        claims: dict[str, Any] | None = None,
        at_ms: int | None = None,
    ) -> TokenSet:
        """Persist a freshly issued token set; expired_at = now + expires_in seconds."""
        issued = now_ms() if at_ms is None else at_ms
        tokens = TokenSet(
            access_token=access_token,
            id_token=id_token,
            scope=scope,
            expired_at=issued + int(expires_in) * 1000,
            **identity_fields(claims or {}),
        )
        self.storage.set_item(ACCESS_TOKEN_KEY, tokens.access_token)
        self.storage.set_item(ID_TOKEN_KEY, tokens.id_token)
        self.storage.set_item(EXPIRED_AT_KEY, str(tokens.expired_at))
        self.storage.set_item(SCOPE_KEY, tokens.scope)
        for field_name, key in IDENTITY_KEYS.items():
            value = getattr(tokens, field_name)
            if value is None:
                self.storage.remove_item(key)
            else:
                self.storage.set_item(key, value)
        logger.info("Stored tokens for session (expires in %ss)", expires_in)
        return tokens

    def load(self, at_ms: int | None = None) -> TokenSet | None:
        """
        Stored TokenSet, or None. Missing fields or expired_at <= now wipe the session keys,
        so a partial or expired set is never returned.
        """
        values = {key: self.storage.get_item(key) for key in REQUIRED_KEYS}
        # scope may legitimately be "" but must be present
        if any(values[k] is None for k in REQUIRED_KEYS) or not values[ACCESS_TOKEN_KEY] or not values[ID_TOKEN_KEY]:
            if any(values[k] is not None for k in REQUIRED_KEYS):
                logger.info("Incomplete tokens in session storage; clearing")
            self.clear()
            return None
        try:
            expired_at = int(values[EXPIRED_AT_KEY])
        except ValueError:
            logger.warning("Unreadable token expiry in session storage; clearing")
            self.clear()
            return None

        tokens = TokenSet(
            access_token=values[ACCESS_TOKEN_KEY],
            id_token=values[ID_TOKEN_KEY],
            scope=values[SCOPE_KEY],
            expired_at=expired_at,
        )
        if tokens.expired(at_ms):
            logger.info("Stored tokens expired at %s; clearing", expired_at)
            self.clear()
            return None

        stored_identity = {f: self.storage.get_item(k) for f, k in IDENTITY_KEYS.items()}
        if all(v is None for v in stored_identity.values()):
            # Saved without flattened fields; derive them from the id_token
            try:
                stored_identity = identity_fields(decode_claims(tokens.id_token))
            except IdTokenDecodeError:
                logger.warning("Stored id_token cannot be decoded; clearing")
                self.clear()
                return None
        for field_name, value in stored_identity.items():
            setattr(tokens, field_name, value)
        return tokens

    def clear(self) -> None:
        """Delete every session-phase key. Idempotent."""
        for key in SESSION_KEYS:
            self.storage.remove_item(key)
