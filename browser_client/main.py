"""
Browser Client Web App.
Every page load runs the PKCE flow once: valid session -> page, callback -> exchange, else -> redirect to provider.
GET /, <callback path>, /logout, /me. Port 8000.
"""
import html
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse

from browser_client.config import (
    CALLBACK_PATH,
    LOG_LEVEL,
    SESSION_COOKIE_NAME,
    SESSION_DATABASE_URL,
    SESSION_IDLE_SECONDS,
    ClientConfig,
)
from browser_client.database import get_session_factory
from browser_client.errors import ConfigurationError
from browser_client.flow import AuthFlowController, FlowState
from browser_client.storage import DatabaseStorage, MemoryStorage, SessionStorage
from browser_client.token_store import TokenSet, TokenStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Sweep idle sessions at startup; in-memory sessions are also swept while the app runs."""
    if SESSION_DATABASE_URL:
        DatabaseStorage.purge_idle(SESSION_IDLE_SECONDS, get_session_factory())
    else:
        MemoryStorage.purge_idle(SESSION_IDLE_SECONDS)
    yield


app = FastAPI(title="Browser Client", version="0.5.0", lifespan=lifespan)


def get_config() -> ClientConfig:
    """Dependency: validated OAuth client config (ConfigurationError if incomplete)."""
    return ClientConfig.from_env()


def get_session_id(request: Request) -> str:
    """Browser session id from the cookie; a new one is minted (and set on the response) if absent."""
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    if not session_id:
        session_id = secrets.token_urlsafe(32)
        request.state.new_session_id = session_id
    return session_id


def get_storage(session_id: Annotated[str, Depends(get_session_id)]) -> SessionStorage:
    """Dependency: the session storage namespace for this browser session."""
    if SESSION_DATABASE_URL:
        return DatabaseStorage(session_id, get_session_factory())
    return MemoryStorage.for_session(session_id)


def require_tokens(storage: Annotated[SessionStorage, Depends(get_storage)]) -> TokenSet:
    """Dependency for API routes: valid TokenSet or 401. Does not start a login."""
    tokens = TokenStore(storage).load()
    if tokens is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "login_required", "error_description": "No valid session; open / to log in"},
        )
    return tokens


def _with_session_cookie(request: Request, response):
    # No max_age: a browser-session cookie, gone when the browser closes (like sessionStorage)
    new_id = getattr(request.state, "new_session_id", None)
    if new_id:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            new_id,
            httponly=True,
            samesite="lax",
            secure=request.url.scheme == "https",
        )
    return response


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
{body}
</body>
</html>""",
        status_code=status_code,
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Client misconfigured: %s", exc)
    return _page(
        "Configuration error",
        """  <h1>Configuration error</h1>
  <p>The OAuth client is not configured.</p>""",
        status_code=500,
    )


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "browser_client"}


def run_flow(
    request: Request,
    config: Annotated[ClientConfig, Depends(get_config)],
    storage: Annotated[SessionStorage, Depends(get_storage)],
):
    """
    One page load of the auth flow. Redirects to the provider or the app root,
    shows the signed-in page, or a generic failure page.
    """
    controller = AuthFlowController(config, storage)
    result = controller.check_auth_states(str(request.url))

    if result.state in (FlowState.REDIRECTING, FlowState.AUTHENTICATED):
        response = RedirectResponse(url=result.redirect_url, status_code=302)
    elif result.state == FlowState.FAILED:
        response = _page(
            "Login error",
            """  <h1>Login error</h1>
  <p>Could not authenticate. Please try again.</p>
  <p><a href="/">Log in</a></p>""",
            status_code=401,
        )
    else:
        tokens = result.tokens
        who = html.escape(tokens.name or tokens.email or "signed-in user")
        email = html.escape(tokens.email or "")
        response = _page(
            "Signed in",
            f"""  <h1>Signed in</h1>
  <p>{who} <code>{email}</code></p>
  <p>Scope: <code>{html.escape(tokens.scope)}</code></p>
  <p><a href="/me">Session info</a> | <a href="/logout">Sign out</a></p>""",
        )
    return _with_session_cookie(request, response)


app.add_api_route("/", run_flow, methods=["GET"], response_class=HTMLResponse)
if CALLBACK_PATH != "/":
    app.add_api_route(CALLBACK_PATH, run_flow, methods=["GET"], response_class=HTMLResponse)


@app.get("/logout", response_class=HTMLResponse)
def logout(request: Request, storage: Annotated[SessionStorage, Depends(get_storage)]):
    """Sign out: clear stored tokens for this browser session."""
    TokenStore(storage).clear()
    response = _page(
        "Signed out",
        """  <h1>Signed out</h1>
  <p><a href="/">Log in again</a></p>""",
    )
    return _with_session_cookie(request, response)


@app.get("/me")
def me(tokens: Annotated[TokenSet, Depends(require_tokens)]):
    """Identity fields, scope and expiry of the current session. Never returns the raw tokens."""
    return tokens.profile()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL)
    uvicorn.run(
        "browser_client.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
