"""
Exceptions and failure reasons for the browser client.
Exceptions are for conditions the flow cannot recover from (bad config, no entropy, undecodable tokens);
everything a provider round trip can go wrong with is reported as a FailureReason instead.
"""
from enum import Enum


class ClientError(Exception):
    """Base exception for the browser client."""


class ConfigurationError(ClientError):
    """Missing or invalid setting. Fatal: the flow cannot start."""


class InsecureRandomError(ConfigurationError):
    """The OS could not supply cryptographically secure random bytes."""


class IdTokenDecodeError(ClientError):
    """Identity token is not a decodable compact JWT."""


class IdTokenVerificationError(ClientError):
    """Identity token signature, audience or issuer check failed."""


class FailureReason(str, Enum):
    STATE_MISMATCH = "state_mismatch"
    NONCE_MISMATCH = "nonce_mismatch"
    TRANSPORT = "transport"
    PROVIDER = "provider"
    PROVIDER_DENIED = "provider_denied"
    INCOMPLETE_ATTEMPT = "incomplete_attempt"
    INVALID_ID_TOKEN = "invalid_id_token"
    UNEXPECTED = "unexpected"

    @property
    def forgery_detected(self) -> bool:
        """State or nonce did not round-trip; never retried automatically."""
        return self in (FailureReason.STATE_MISMATCH, FailureReason.NONCE_MISMATCH)
