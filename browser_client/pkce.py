"""
PKCE (RFC 7636) and authorization request helpers.
S256 only. Random values are hex from secrets; no non-cryptographic fallback.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import quote, urlencode

from browser_client.errors import ConfigurationError, InsecureRandomError

# 64 bytes -> 128 hex chars, the RFC 7636 maximum verifier length
VERIFIER_BYTES = 64
# state / nonce: 48 bytes -> 96 hex chars after the prefix
TOKEN_BYTES = 48


def random_hex(byte_length: int) -> str:
    """2*byte_length lowercase hex chars from the OS CSPRNG."""
    if byte_length <= 0:
        raise ValueError("byte_length must be positive")
    try:
        return secrets.token_hex(byte_length)
    except NotImplementedError as e:
        # os.urandom has no entropy source on this platform
        raise InsecureRandomError("No cryptographically secure random source available") from e


def challenge_for(code_verifier: str) -> str:
    """S256 code_challenge: base64url(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_authorize_url(
    *,
    auth_uri: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    nonce: str,
    code_challenge: str,
    extra_params: dict[str, str] | None = None,
) -> str:
    """Build the provider authorization URL. Extra params never override the required ones."""
    for name, value in (("state", state), ("nonce", nonce), ("code_challenge", code_challenge)):
        if not value:
            raise ConfigurationError(f"Cannot build authorization URL without {name}")
    params = {
        "client_id": client_id,
        "response_type": "code",
        "scope": scope,
        "redirect_uri": redirect_uri,
        "state": state,
        "nonce": nonce,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    for key, value in (extra_params or {}).items():
        params.setdefault(key, value)
    separator = "&" if "?" in auth_uri else "?"
    return f"{auth_uri}{separator}{urlencode(params, safe='', quote_via=quote)}"
