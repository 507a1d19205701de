"""
Session store: an in-memory cache layered over optional JSON file persistence.

The store owns session lifetime. Callers always receive clones and must
write changes back through ``save``.
"""

import asyncio
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from ..errors import PersistenceError, SessionDataError
from .types import Session

if TYPE_CHECKING:
    from ..config import Settings

logger = structlog.get_logger()

FILE_EXTENSION = ".json"

# Characters that are illegal in filenames on at least one common platform.
# Distinct keys that differ only in these characters share one file.
_ILLEGAL_FILENAME_CHARS = '/\\:*?"<>|'
_PLACEHOLDER = "_"


def sanitize_key(key: str) -> str:
    """Map a session key to a filesystem-safe file stem."""
    return key.translate({ord(c): _PLACEHOLDER for c in _ILLEGAL_FILENAME_CHARS})


class SessionStore:
    """Manages conversation sessions keyed by string.

    With ``storage_dir`` set, every saved session is written to
    ``<storage_dir>/<sanitized key>.json``. Without it the store is
    memory-only.
    """

    def __init__(self, storage_dir: str | Path | None = None):
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self.storage_dir = Path(storage_dir).expanduser() if storage_dir else None
        if self.storage_dir is not None:
            self.storage_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SessionStore":
        """Create a store configured from application settings."""
        if not settings.persist_sessions:
            return cls()
        return cls(settings.storage_dir)

    @property
    def persistent(self) -> bool:
        return self.storage_dir is not None

    def _path_for(self, key: str) -> Path:
        assert self.storage_dir is not None
        return self.storage_dir / f"{sanitize_key(key)}{FILE_EXTENSION}"

    def _cached(self, key: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(key)
            return session.clone() if session is not None else None

    def _cache(self, session: Session) -> None:
        snapshot = session.clone()
        with self._lock:
            self._sessions[session.key] = snapshot

    # ------------------------------------------------------------------ #
    # Disk I/O (runs in a worker thread)
    # ------------------------------------------------------------------ #

    def _read_file(self, path: Path) -> Session | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read session file {path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SessionDataError(f"Corrupt session file {path}: {e}") from e
        return Session.from_dict(data)

    def _write_file(self, path: Path, session: Session) -> None:
        content = json.dumps(session.to_dict(), indent=2, ensure_ascii=False)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise PersistenceError(f"Failed to write session file {path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("Failed to remove temp session file", path=tmp_name)

    def _remove_file(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Failed to delete session file {path}: {e}") from e

    def _list_files(self) -> list[str]:
        """Read the stored key of every session document."""
        assert self.storage_dir is not None
        try:
            paths = [
                p
                for p in self.storage_dir.iterdir()
                if p.is_file() and p.suffix == FILE_EXTENSION and not p.name.startswith(".")
            ]
        except OSError as e:
            raise PersistenceError(f"Failed to list sessions in {self.storage_dir}: {e}") from e

        keys = []
        for path in paths:
            try:
                key = json.loads(path.read_text(encoding="utf-8")).get("key")
            except (OSError, ValueError, AttributeError):
                key = None
            if not isinstance(key, str) or not key:
                logger.warning("Unreadable session file, listing by file name", path=str(path))
                key = path.stem
            keys.append(key)
        return keys

    async def _load(self, key: str) -> Session | None:
        if self.storage_dir is None:
            return None
        session = await asyncio.to_thread(self._read_file, self._path_for(key))
        if session is None:
            return None
        # Keys that sanitize to the same stem share a file; the requested key wins.
        if session.key != key:
            logger.warning("Session file key mismatch", requested=key, stored=session.key)
            session.key = key
        self._cache(session)
        return session.clone()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def get_or_create(self, key: str) -> Session:
        """Return the session for ``key``, loading or creating it as needed."""
        session = self._cached(key)
        if session is not None:
            return session

        session = await self._load(key)
        if session is not None:
            logger.debug("Loaded session from disk", session_key=key, messages=len(session))
            return session

        session = Session(key=key)
        with self._lock:
            # Another task may have created it while we were reading.
            existing = self._sessions.setdefault(key, session.clone())
        logger.debug("Created session", session_key=key)
        return existing.clone()

    async def get(self, key: str) -> Session | None:
        """Return the session for ``key`` if it exists, without creating it."""
        session = self._cached(key)
        if session is not None:
            return session
        return await self._load(key)

    async def _persist(self, session: Session) -> None:
        if self.storage_dir is not None:
            await asyncio.to_thread(self._write_file, self._path_for(session.key), session)
        self._cache(session)

    async def save(self, session: Session) -> None:
        """Persist ``session`` and update the cache.

        Disk is written first; if the write fails the cache keeps the last
        successfully saved state and ``PersistenceError`` is raised.
        Cancelling a save waits for the write already in progress, so cache
        and disk never disagree.
        """
        persist = asyncio.ensure_future(self._persist(session.clone()))
        try:
            await asyncio.shield(persist)
        except asyncio.CancelledError:
            # The worker thread cannot be stopped; let the cache catch up first.
            await asyncio.wait({persist})
            if not persist.cancelled() and persist.exception() is not None:
                logger.warning(
                    "Save failed during cancellation",
                    session_key=session.key,
                    error=str(persist.exception()),
                )
            raise
        logger.debug("Session saved", session_key=session.key, messages=len(session))

    async def delete(self, key: str) -> None:
        """Remove a session from the cache and from disk."""
        with self._lock:
            self._sessions.pop(key, None)
        if self.storage_dir is not None:
            await asyncio.to_thread(self._remove_file, self._path_for(key))
        logger.info("Session deleted", session_key=key)

    async def list(self) -> list[str]:
        """List known session keys, cached and persisted, sorted."""
        with self._lock:
            keys = set(self._sessions)
        if self.storage_dir is not None:
            keys.update(await asyncio.to_thread(self._list_files))
        return sorted(keys)

    async def exists(self, key: str) -> bool:
        with self._lock:
            if key in self._sessions:
                return True
        if self.storage_dir is not None:
            return await asyncio.to_thread(self._path_for(key).exists)
        return False

    async def clear_cache(self) -> None:
        with self._lock:
            self._sessions.clear()

    async def cache_size(self) -> int:
        with self._lock:
            return len(self._sessions)
