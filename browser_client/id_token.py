"""
Identity token (OIDC id_token) decoding and nonce check.

decode_claims() does NOT verify the signature. The id_token arrives directly from the token
endpoint over TLS in response to our own authenticated request, never via the browser, and that
channel is the trust boundary. IdTokenSignatureVerifier adds RS256/JWKS verification when
OAUTH_VERIFY_ID_TOKEN is enabled.
"""
import logging
from typing import Any

import jwt
from jwt import PyJWKClient

from browser_client.errors import IdTokenDecodeError, IdTokenVerificationError
from browser_client.flow_store import AttemptStore

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ("email", "name", "picture", "locale", "family_name", "given_name")


def decode_claims(id_token: str) -> dict[str, Any]:
    """Payload of a compact JWT, unverified. Raises IdTokenDecodeError if not a JWT with a JSON object payload."""
    if not id_token or id_token.count(".") != 2:
        raise IdTokenDecodeError("id_token is not a three-part compact JWT")
    try:
        return jwt.decode(id_token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        raise IdTokenDecodeError(f"Cannot decode id_token payload: {e}") from e


def verify_nonce(claims: dict[str, Any], attempts: AttemptStore) -> bool:
    """Consume the persisted nonce against the id_token's nonce claim (one-shot)."""
    nonce = claims.get("nonce")
    return attempts.consume_nonce(nonce if isinstance(nonce, str) else None)


def identity_fields(claims: dict[str, Any]) -> dict[str, str | None]:
    """Profile fields flattened into the TokenSet; absent claims become None."""
    out: dict[str, str | None] = {}
    for name in IDENTITY_FIELDS:
        value = claims.get(name)
        out[name] = str(value) if value is not None else None
    return out


def _issuer_variants(issuer: str) -> set[str]:
    # Google issues both "https://accounts.google.com" and "accounts.google.com"
    bare = issuer.split("://", 1)[-1]
    return {issuer, bare, f"https://{bare}"}


class IdTokenSignatureVerifier:
    """Verify id_token signature via the provider JWKS, plus aud and iss."""

    def __init__(self, jwks_uri: str, client_id: str, issuer: str, jwks_client: PyJWKClient | None = None):
        self.client_id = client_id
        self.issuer = issuer
        # PyJWKClient caches the JWK set and keys
        self._jwks_client = jwks_client or PyJWKClient(uri=jwks_uri, cache_jwk_set=True, lifespan=300)

    def verify(self, id_token: str) -> dict[str, Any]:
        """Return verified claims. Raises IdTokenVerificationError on any failure."""
        try:
            signing_key = self._jwks_client.get_signing_key_from_jwt(id_token)
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.client_id,
                options={"verify_exp": True, "verify_aud": True, "verify_iss": False},
            )
        except jwt.ExpiredSignatureError as e:
            raise IdTokenVerificationError("id_token expired") from e
        except jwt.InvalidAudienceError as e:
            raise IdTokenVerificationError("id_token audience mismatch") from e
        except (jwt.PyJWKClientError, jwt.InvalidTokenError) as e:
            logger.debug("id_token verification failed: %s", e)
            raise IdTokenVerificationError("id_token signature verification failed") from e
        if claims.get("iss") not in _issuer_variants(self.issuer):
            raise IdTokenVerificationError("id_token issuer mismatch")
        return claims
