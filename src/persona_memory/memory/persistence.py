"""
Session persistence.

Two adapters with the same async interface:

- JsonFilePersistence: one JSON file per session, written atomically
  (temp file + replace) with aiofiles, fronted by an LRU read cache
- PostgresPersistence: one JSONB row per session in ``memory_sessions``

Interface:
    save(session_id, state) -> {"success": True, "session_id": ...}
    load(session_id) -> state dict or None
    list_sessions() -> [{"session_id", "timestamp", ...}], newest first
    delete(session_id) -> {"success": bool, ...}

Storage failures raise PersistenceError. Callers that must keep a
conversation going catch it and report ``{"success": False}``.
"""

import asyncio
import copy
import json
import logging
import os
import re
from collections import OrderedDict, defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiofiles.os

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


class PersistenceError(Exception):
    """Reading or writing a session snapshot failed."""


def sanitize_session_id(session_id: str) -> str:
    return _UNSAFE_ID_CHARS.sub("_", session_id or "")


def _summary(session_id: str, state: dict) -> dict[str, Any]:
    memory_state = state.get("memory_state") or {}
    return {
        "session_id": state.get("session_id") or session_id,
        "timestamp": state.get("timestamp"),
        "character_name": state.get("character_name"),
        "message_count": len(state.get("messages") or []),
        "long_term_count": len(memory_state.get("long_term") or []),
    }


class SessionCache:
    """Least-recently-used cache of session snapshots."""

    def __init__(self, max_size: int = 20):
        self.max_size = max_size
        self._items: OrderedDict[str, dict] = OrderedDict()

    def get(self, session_id: str) -> Optional[dict]:
        state = self._items.get(session_id)
        if state is None:
            return None
        self._items.move_to_end(session_id)
        return copy.deepcopy(state)

    def put(self, session_id: str, state: dict):
        self._items[session_id] = copy.deepcopy(state)
        self._items.move_to_end(session_id)
        while len(self._items) > self.max_size:
            self._items.popitem(last=False)

    def discard(self, session_id: str):
        self._items.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._items

    def __len__(self) -> int:
        return len(self._items)


class JsonFilePersistence:
    """Session snapshots as JSON files under ``storage_dir``."""

    def __init__(
        self,
        storage_dir: str | Path = "memory-storage",
        cache_enabled: bool = True,
        max_cache_size: int = 20,
        logger: Optional[logging.Logger] = None,
    ):
        self.storage_dir = Path(storage_dir)
        self.cache = SessionCache(max_cache_size) if cache_enabled else None
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._logger = logger or logging.getLogger(__name__)

    def path_for(self, session_id: str) -> Path:
        return self.storage_dir / f"{sanitize_session_id(session_id)}.json"

    async def save(self, session_id: str, state: dict) -> dict:
        key = sanitize_session_id(session_id)
        # Cache first so reads see the newest state even if the write fails
        if self.cache is not None:
            self.cache.put(key, state)

        path = self.path_for(session_id)
        temp_path = path.with_suffix(".tmp")
        async with self._locks[key]:
            try:
                await aiofiles.os.makedirs(self.storage_dir, exist_ok=True)
                async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                    await f.write(json.dumps(state, ensure_ascii=False, indent=2))
                await aiofiles.os.replace(temp_path, path)
            except OSError as e:
                raise PersistenceError(f"Failed to save session {session_id}: {e}") from e

        self._logger.debug("Saved session %s to %s", session_id, path)
        return {"success": True, "session_id": session_id}

    async def load(self, session_id: str) -> Optional[dict]:
        key = sanitize_session_id(session_id)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        path = self.path_for(session_id)
        if not await aiofiles.os.path.exists(path):
            return None

        async with self._locks[key]:
            state = await self._read(path)
        if self.cache is not None:
            self.cache.put(key, state)
        return state

    async def _read(self, path: Path) -> dict:
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                state = json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read {path.name}: {e}") from e
        if not isinstance(state, dict):
            raise PersistenceError(f"Unexpected snapshot format in {path.name}")
        return state

    async def list_sessions(self) -> list[dict]:
        if not await aiofiles.os.path.isdir(self.storage_dir):
            return []

        sessions = []
        for name in await aiofiles.os.listdir(self.storage_dir):
            if not name.endswith(".json"):
                continue
            path = self.storage_dir / name
            try:
                state = await self._read(path)
            except PersistenceError as e:
                self._logger.warning("Skipping unreadable session file: %s", e)
                continue
            summary = _summary(name[: -len(".json")], state)
            if not summary["timestamp"]:
                mtime = await aiofiles.os.path.getmtime(path)
                summary["timestamp"] = datetime.fromtimestamp(
                    mtime, tz=timezone.utc
                ).isoformat()
            sessions.append(summary)

        sessions.sort(key=lambda s: s["timestamp"] or "", reverse=True)
        return sessions

    async def delete(self, session_id: str) -> dict:
        key = sanitize_session_id(session_id)
        if self.cache is not None:
            self.cache.discard(key)

        path = self.path_for(session_id)
        async with self._locks[key]:
            if not await aiofiles.os.path.exists(path):
                return {"success": False, "reason": "Session not found"}
            try:
                await aiofiles.os.remove(path)
            except OSError as e:
                raise PersistenceError(f"Failed to delete session {session_id}: {e}") from e

        self._logger.info("Deleted session %s", session_id)
        return {"success": True, "session_id": session_id}


class PostgresPersistence:
    """
    Session snapshots in PostgreSQL.

    Without a connection every call is a no-op. Blocking driver calls run in
    a worker thread so the event loop keeps serving other sessions.
    """

    def __init__(self, pg_conn=None, logger: Optional[logging.Logger] = None):
        self._pg_conn = pg_conn
        self._logger = logger or logging.getLogger(__name__)
        self._setup_table()

    @classmethod
    def from_url(
        cls, db_url: Optional[str] = None, logger: Optional[logging.Logger] = None
    ) -> "PostgresPersistence":
        """Connect to ``db_url`` (default: DATABASE_URL)."""
        db_url = db_url or os.getenv("DATABASE_URL")
        if not db_url:
            return cls(None, logger=logger)

        from psycopg import Connection
        from psycopg.rows import dict_row

        conn = Connection.connect(
            db_url,
            autocommit=True,
            prepare_threshold=0,
            row_factory=dict_row,
        )
        return cls(conn, logger=logger)

    def _setup_table(self):
        if not self._pg_conn:
            return
        try:
            with self._pg_conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS memory_sessions (
                        session_id TEXT PRIMARY KEY,
                        state JSONB NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                """)
        except Exception as e:
            self._logger.warning("Failed to create memory_sessions table: %s", e)

    async def save(self, session_id: str, state: dict) -> dict:
        if not self._pg_conn:
            return {"success": False, "reason": "Persistence not configured"}
        await self._run(self._save_sync, session_id, state)
        return {"success": True, "session_id": session_id}

    async def load(self, session_id: str) -> Optional[dict]:
        if not self._pg_conn:
            return None
        return await self._run(self._load_sync, session_id)

    async def list_sessions(self) -> list[dict]:
        if not self._pg_conn:
            return []
        return await self._run(self._list_sync)

    async def delete(self, session_id: str) -> dict:
        if not self._pg_conn:
            return {"success": False, "reason": "Persistence not configured"}
        deleted = await self._run(self._delete_sync, session_id)
        if not deleted:
            return {"success": False, "reason": "Session not found"}
        self._logger.info("Deleted session %s", session_id)
        return {"success": True, "session_id": session_id}

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except Exception as e:
            raise PersistenceError(f"{func.__name__.strip('_')} failed: {e}") from e

    @staticmethod
    def _state_of(value: Any) -> dict:
        return json.loads(value) if isinstance(value, (str, bytes)) else value

    def _save_sync(self, session_id: str, state: dict):
        with self._pg_conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO memory_sessions (session_id, state, updated_at)
                VALUES (%s, %s::jsonb, now())
                ON CONFLICT (session_id) DO UPDATE SET
                    state = EXCLUDED.state,
                    updated_at = now()
                """,
                (session_id, json.dumps(state, ensure_ascii=False)),
            )

    def _load_sync(self, session_id: str) -> Optional[dict]:
        with self._pg_conn.cursor() as cur:
            cur.execute(
                "SELECT state FROM memory_sessions WHERE session_id = %s",
                (session_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return self._state_of(row["state"] if isinstance(row, dict) else row[0])

    def _list_sync(self) -> list[dict]:
        with self._pg_conn.cursor() as cur:
            cur.execute(
                "SELECT session_id, state, updated_at FROM memory_sessions "
                "ORDER BY updated_at DESC"
            )
            rows = cur.fetchall()
        sessions = []
        for row in rows:
            if isinstance(row, dict):
                session_id, state, updated_at = row["session_id"], row["state"], row["updated_at"]
            else:
                session_id, state, updated_at = row
            summary = _summary(session_id, self._state_of(state))
            summary["timestamp"] = summary["timestamp"] or (
                updated_at.isoformat() if updated_at else None
            )
            sessions.append(summary)
        return sessions

    def _delete_sync(self, session_id: str) -> bool:
        with self._pg_conn.cursor() as cur:
            cur.execute(
                "DELETE FROM memory_sessions WHERE session_id = %s", (session_id,)
            )
            return cur.rowcount > 0
