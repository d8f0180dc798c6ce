"""
Session factory for the persisted storage backend (DatabaseStorage).
Built on first use, so an app on in-memory storage never opens a connection.
"""
import threading

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from browser_client.config import SESSION_DATABASE_URL
from browser_client.models import Base

# Empty CLIENT_SESSION_DATABASE_URL: private in-memory SQLite (tests, throwaway runs)
IN_MEMORY_URL = "sqlite://"

_factories: dict[str, sessionmaker] = {}
_factories_lock = threading.Lock()


def _is_in_memory(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def make_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    # Requests run in FastAPI's threadpool; one connection may be used across threads
    connect_args = {"check_same_thread": False}
    if _is_in_memory(url):
        # Every session must see the one in-memory database
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


def get_session_factory(url: str | None = None) -> sessionmaker:
    """sessionmaker bound to url (default: the configured session database), with session_items created."""
    url = url or SESSION_DATABASE_URL or IN_MEMORY_URL
    with _factories_lock:
        factory = _factories.get(url)
        if factory is None:
            engine = make_engine(url)
            Base.metadata.create_all(bind=engine)
            factory = _factories[url] = sessionmaker(bind=engine, autoflush=False)
    return factory
