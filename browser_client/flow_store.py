"""
Pending authorization attempt (verifier, state, nonce) kept in session storage between
the redirect to the provider and the callback. At most one attempt per session: starting a
new one overwrites the previous values.

Verifier, state and nonce are one-shot. Each has a slot status EMPTY -> PENDING -> CONSUMED;
consuming deletes the value and records CONSUMED whether or not the comparison matched.
"""
import logging
import secrets
from enum import Enum

from browser_client.pkce import TOKEN_BYTES, VERIFIER_BYTES, random_hex
from browser_client.storage import SessionStorage

logger = logging.getLogger(__name__)

VERIFIER_KEY = "oauth2CodeVerifier"
STATE_KEY = "oauth2State"
NONCE_KEY = "oauth2Nonce"
ATTEMPT_KEYS = (VERIFIER_KEY, STATE_KEY, NONCE_KEY)

_CONSUMED_SUFFIX = ".consumed"

STATE_PREFIX = "state-"
NONCE_PREFIX = "nonce-"


class SlotStatus(str, Enum):
    EMPTY = "empty"
    PENDING = "pending"
    CONSUMED = "consumed"


def tokens_match(expected: str | None, received: str | None) -> bool:
    """Constant-time equality; any missing side is a mismatch."""
    if not expected or not received:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


class AttemptStore:
    def __init__(self, storage: SessionStorage):
        self.storage = storage

    def _put(self, key: str, value: str) -> str:
        self.storage.set_item(key, value)
        self.storage.remove_item(key + _CONSUMED_SUFFIX)
        return value

    def _consume(self, key: str) -> str | None:
        value = self.storage.get_item(key)
        self.storage.remove_item(key)
        self.storage.set_item(key + _CONSUMED_SUFFIX, "1")
        return value

    def status(self, key: str) -> SlotStatus:
        if self.storage.get_item(key) is not None:
            return SlotStatus.PENDING
        if self.storage.get_item(key + _CONSUMED_SUFFIX) is not None:
            return SlotStatus.CONSUMED
        return SlotStatus.EMPTY

    def new_verifier(self) -> str:
        """Fresh 128-hex-char PKCE verifier, persisted in place of any previous one."""
        return self._put(VERIFIER_KEY, random_hex(VERIFIER_BYTES))

    def new_state(self) -> str:
        return self._put(STATE_KEY, STATE_PREFIX + random_hex(TOKEN_BYTES))

    def new_nonce(self) -> str:
        return self._put(NONCE_KEY, NONCE_PREFIX + random_hex(TOKEN_BYTES))

    def peek_state(self) -> str | None:
        """Persisted state without consuming it (callback detection)."""
        return self.storage.get_item(STATE_KEY)

    def take_verifier(self) -> str | None:
        """Read and delete the verifier. A second call returns None."""
        return self._consume(VERIFIER_KEY)

    def consume_state(self, received: str | None) -> bool:
        expected = self._consume(STATE_KEY)
        matched = tokens_match(expected, received)
        if not matched:
            logger.warning("OAuth state mismatch (persisted=%s)", "present" if expected else "absent")
        return matched

    def consume_nonce(self, received: str | None) -> bool:
        expected = self._consume(NONCE_KEY)
        matched = tokens_match(expected, received)
        if not matched:
            logger.warning("id_token nonce mismatch (persisted=%s)", "present" if expected else "absent")
        return matched

    def clear(self) -> None:
        """Drop the whole attempt, including consumed markers."""
        for key in ATTEMPT_KEYS:
            self.storage.remove_item(key)
            self.storage.remove_item(key + _CONSUMED_SUFFIX)
