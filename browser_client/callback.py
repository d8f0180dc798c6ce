"""
Classify the current page URL: fresh visit, or the provider redirecting back with ?code=&state=.
Consumes the persisted state whenever it is compared.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qs, urlparse

from browser_client.flow_store import AttemptStore

logger = logging.getLogger(__name__)


class CallbackKind(str, Enum):
    NOT_A_CALLBACK = "not_a_callback"
    MISSING_CODE = "missing_code"
    MISSING_STATE = "missing_state"
    STATE_MISMATCH = "state_mismatch"
    PROVIDER_ERROR = "provider_error"
    READY = "ready"


@dataclass(frozen=True)
class CallbackResult:
    kind: CallbackKind
    code: str | None = None
    error: str | None = None
    error_description: str | None = None


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None


class CallbackInspector:
    def __init__(self, attempts: AttemptStore):
        self.attempts = attempts

    def inspect(self, current_url: str) -> CallbackResult:
        if not self.attempts.peek_state():
            logger.debug("No pending state in session; not a callback")
            return CallbackResult(CallbackKind.NOT_A_CALLBACK)

        query = urlparse(current_url).query
        params = parse_qs(query, keep_blank_values=False) if query else {}
        code = _first(params, "code")
        state = _first(params, "state")
        error = _first(params, "error")

        # Provider refused (e.g. access_denied); only trusted when it carries our state
        if error and state:
            if not self.attempts.consume_state(state):
                return CallbackResult(CallbackKind.STATE_MISMATCH)
            logger.info("Provider returned error on callback: %s", error)
            return CallbackResult(
                CallbackKind.PROVIDER_ERROR,
                error=error,
                error_description=_first(params, "error_description"),
            )

        if not code:
            logger.debug("Pending state but no code in URL")
            return CallbackResult(CallbackKind.MISSING_CODE)
        if not state:
            logger.debug("Code in URL but no state")
            return CallbackResult(CallbackKind.MISSING_STATE)
        if not self.attempts.consume_state(state):
            return CallbackResult(CallbackKind.STATE_MISMATCH)
        logger.info("Callback state matched; code received")
        return CallbackResult(CallbackKind.READY, code=code)
