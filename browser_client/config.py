"""
Browser client configuration. Values come from the environment; client_secret is never defaulted.
Module constants are read once at import; ClientConfig.from_env() reads the OAuth settings on each call.
"""
import os
from dataclasses import dataclass, field
from urllib.parse import parse_qsl, urlparse

from browser_client.errors import ConfigurationError

# Google endpoints; any OIDC provider works by overriding these
DEFAULT_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_JWKS_URI = "https://www.googleapis.com/oauth2/v3/certs"
DEFAULT_ISSUER = "https://accounts.google.com"

# Empty: in-memory session storage (lost on restart). Set to e.g. sqlite:///./browser_client.db to persist.
SESSION_DATABASE_URL = os.environ.get("CLIENT_SESSION_DATABASE_URL", "").strip()

# Idle session namespaces older than this are purged from storage
SESSION_IDLE_SECONDS = int(os.environ.get("CLIENT_SESSION_IDLE_SECONDS", str(24 * 3600)))

SESSION_COOKIE_NAME = "browser_session"

LOG_LEVEL = os.environ.get("OAUTH_LOG_LEVEL", "INFO").upper()

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


def _parse_extra_params(raw: str) -> dict[str, str]:
    """Parse 'k=v&k2=v2' into a dict. Blank input gives {}."""
    raw = raw.strip()
    if not raw:
        return {}
    return dict(parse_qsl(raw, keep_blank_values=True))


@dataclass
class ClientConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    scope: str
    auth_uri: str = DEFAULT_AUTH_URI
    token_uri: str = DEFAULT_TOKEN_URI
    extra_auth_params: dict[str, str] = field(default_factory=dict)
    app_root: str = ""
    token_timeout: float | None = 10.0
    verify_id_token: bool = False
    jwks_uri: str = DEFAULT_JWKS_URI
    issuer: str = DEFAULT_ISSUER

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build and validate config from OAUTH_* environment variables."""
        timeout_raw = os.environ.get("OAUTH_TOKEN_TIMEOUT", "10").strip()
        try:
            timeout = float(timeout_raw) if timeout_raw else None
        except ValueError:
            raise ConfigurationError(f"OAUTH_TOKEN_TIMEOUT must be a number, got {timeout_raw!r}")
        config = cls(
            client_id=os.environ.get("OAUTH_CLIENT_ID", ""),
            client_secret=os.environ.get("OAUTH_CLIENT_SECRET", ""),
            redirect_uri=os.environ.get("OAUTH_REDIRECT_URI", ""),
            scope=os.environ.get("OAUTH_SCOPE", "").strip(),
            auth_uri=os.environ.get("OAUTH_AUTH_URI", "").strip() or DEFAULT_AUTH_URI,
            token_uri=os.environ.get("OAUTH_TOKEN_URI", "").strip() or DEFAULT_TOKEN_URI,
            extra_auth_params=_parse_extra_params(os.environ.get("OAUTH_EXTRA_AUTH_PARAMS", "")),
            app_root=os.environ.get("OAUTH_APP_ROOT", "").strip(),
            token_timeout=timeout if timeout and timeout > 0 else None,
            verify_id_token=_env_flag("OAUTH_VERIFY_ID_TOKEN"),
            jwks_uri=os.environ.get("OAUTH_JWKS_URI", "").strip() or DEFAULT_JWKS_URI,
            issuer=os.environ.get("OAUTH_ISSUER", "").strip().rstrip("/") or DEFAULT_ISSUER,
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ConfigurationError naming every missing required setting."""
        missing = [
            name
            for name in ("client_id", "client_secret", "scope", "redirect_uri")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(f"Missing required OAuth settings: {', '.join(missing)}")
        for name in ("redirect_uri", "auth_uri", "token_uri"):
            parsed = urlparse(getattr(self, name))
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ConfigurationError(f"{name} must be an absolute http(s) URL")


def _default_callback_path() -> str:
    path = urlparse(os.environ.get("OAUTH_REDIRECT_URI", "")).path
    return path if path and path != "/" else "/auth"


# Path the provider redirects back to (served in addition to /)
CALLBACK_PATH = os.environ.get("OAUTH_CALLBACK_PATH", "").strip() or _default_callback_path()
