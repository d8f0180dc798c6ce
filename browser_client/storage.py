"""
Session-scoped key/value storage (the server-side stand-in for the browser's sessionStorage).
Each browser session cookie names one namespace. Values are strings, like sessionStorage.
Two backends: process memory (default) and SQLAlchemy (survives restarts mid-redirect).
"""
import logging
import threading
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session, sessionmaker

from browser_client.config import SESSION_IDLE_SECONDS
from browser_client.models import SessionItem

logger = logging.getLogger(__name__)


class SessionStorage:
    """Minimal sessionStorage interface used by the flow, attempt store and token store."""

    def get_item(self, key: str) -> str | None:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError

    def clear(self) -> None:
        for key in self.keys():
            self.remove_item(key)


# session_id -> {key: value}; shared by every MemoryStorage bound to a session id.
# A namespace exists only while it holds at least one key.
_namespaces: dict[str, dict[str, str]] = {}
_touched: dict[str, float] = {}
_lock = threading.Lock()

# for_session sweeps idle namespaces at most this often
PURGE_INTERVAL_SECONDS = 60.0
_last_purge = 0.0


class MemoryStorage(SessionStorage):
    """
    In-process storage. MemoryStorage() is a private throwaway namespace;
    MemoryStorage.for_session(id) binds to the process-wide namespace for that browser session.
    """

    def __init__(self, items: dict[str, str] | None = None, session_id: str | None = None):
        self._items = items if items is not None else {}
        self.session_id = session_id

    @classmethod
    def for_session(cls, session_id: str, idle_seconds: float = SESSION_IDLE_SECONDS) -> "MemoryStorage":
        """Bind to a browser session. Nothing is allocated until the first set_item."""
        global _last_purge
        now = time.monotonic()
        if now - _last_purge >= PURGE_INTERVAL_SECONDS:
            _last_purge = now
            cls.purge_idle(idle_seconds)
        return cls(session_id=session_id)

    def _namespace(self, create: bool = False) -> dict[str, str] | None:
        # Caller holds _lock
        if self.session_id is None:
            return self._items
        items = _namespaces.get(self.session_id)
        if items is None and create:
            items = _namespaces[self.session_id] = {}
        if items is not None:
            _touched[self.session_id] = time.monotonic()
        return items

    def get_item(self, key: str) -> str | None:
        with _lock:
            items = self._namespace()
            return items.get(key) if items is not None else None

    def set_item(self, key: str, value: str) -> None:
        with _lock:
            self._namespace(create=True)[key] = str(value)

    def remove_item(self, key: str) -> None:
        with _lock:
            items = self._namespace()
            if items is None:
                return
            items.pop(key, None)
            if not items and self.session_id is not None:
                _namespaces.pop(self.session_id, None)
                _touched.pop(self.session_id, None)

    def keys(self) -> list[str]:
        with _lock:
            items = self._namespace()
            return list(items) if items is not None else []

    @staticmethod
    def purge_idle(idle_seconds: float) -> int:
        """Drop namespaces untouched for idle_seconds. Returns how many were dropped."""
        now = time.monotonic()
        with _lock:
            stale = [sid for sid, ts in _touched.items() if (now - ts) > idle_seconds]
            for sid in stale:
                _touched.pop(sid, None)
                _namespaces.pop(sid, None)
        if stale:
            logger.info("Purged %d idle in-memory session(s)", len(stale))
        return len(stale)


class DatabaseStorage(SessionStorage):
    """Storage rows in session_items, one short transaction per operation."""

    def __init__(self, session_id: str, session_factory: sessionmaker):
        self.session_id = session_id
        self._session_factory = session_factory

    def _row(self, db: Session, key: str) -> SessionItem | None:
        return (
            db.query(SessionItem)
            .filter(SessionItem.session_id == self.session_id, SessionItem.key == key)
            .first()
        )

    def get_item(self, key: str) -> str | None:
        db = self._session_factory()
        try:
            row = self._row(db, key)
            return row.value if row is not None else None
        finally:
            db.close()

    def set_item(self, key: str, value: str) -> None:
        db = self._session_factory()
        try:
            row = self._row(db, key)
            if row is None:
                db.add(SessionItem(session_id=self.session_id, key=key, value=str(value)))
            else:
                row.value = str(value)
            db.commit()
        finally:
            db.close()

    def remove_item(self, key: str) -> None:
        db = self._session_factory()
        try:
            db.query(SessionItem).filter(
                SessionItem.session_id == self.session_id, SessionItem.key == key
            ).delete()
            db.commit()
        finally:
            db.close()

    def keys(self) -> list[str]:
        db = self._session_factory()
        try:
            rows = db.query(SessionItem.key).filter(SessionItem.session_id == self.session_id).all()
            return [r.key for r in rows]
        finally:
            db.close()

    def clear(self) -> None:
        db = self._session_factory()
        try:
            db.query(SessionItem).filter(SessionItem.session_id == self.session_id).delete()
            db.commit()
        finally:
            db.close()

    @staticmethod
    def purge_idle(idle_seconds: float, session_factory: sessionmaker) -> int:
        """Delete rows not updated for idle_seconds. Returns the number of rows deleted."""
        # SQLite stores naive datetimes; compare in naive UTC
        cutoff = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(seconds=idle_seconds)
        db = session_factory()
        try:
            deleted = db.query(SessionItem).filter(SessionItem.updated_at < cutoff).delete()
            db.commit()
        finally:
            db.close()
        if deleted:
            logger.info("Purged %d idle session item(s)", deleted)
        return deleted
