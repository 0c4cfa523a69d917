"""
Conversation Store

Persists Session objects to a string-keyed, string-valued store under
the key namespace ``conversation-<sessionId>``.

Writes are last-write-wins per session id: two clients saving the same
session overwrite each other, no merge is attempted.
"""

import asyncio
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from language_peer.errors import StorageError
from language_peer.logger import get_logger
from language_peer.models import Session, SessionSummary

logger = get_logger("language_peer.store")

KEY_PREFIX = "conversation-"


def session_key(session_id: str) -> str:
    return f"{KEY_PREFIX}{session_id}"


# ==================== Key-Value Backends ====================

class KeyValueStore:
    """Minimal async string store. Backends raise StorageError on failure."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store; contents vanish with the process."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class JsonFileKeyValueStore(KeyValueStore):
    """
    Single JSON document on disk, rewritten atomically on every change.

    Plays the role of browser local storage for the terminal client. File
    access runs in a worker thread; a lock serializes read-modify-write.
    """

    def __init__(self, path: str):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self.path} does not hold a JSON object")
        return data

    def _write_all(self, data: Dict[str, str]) -> None:
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"Cannot write {self.path}: {e}") from e

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def _set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def _delete(self, key: str) -> bool:
        with self._lock:
            data = self._read_all()
            if key not in data:
                return False
            del data[key]
            self._write_all(data)
            return True

    def _keys(self, prefix: str) -> List[str]:
        with self._lock:
            return [k for k in self._read_all() if k.startswith(prefix)]

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete, key)

    async def keys(self, prefix: str = "") -> List[str]:
        return await asyncio.to_thread(self._keys, prefix)


class SupabaseKeyValueStore(KeyValueStore):
    """
    Key-value rows in a Supabase table with columns ``key`` and ``value``.

    The supabase client is synchronous, so calls run in a worker thread.
    """

    def __init__(self, supabase_client, table: str = "client_storage"):
        self.supabase = supabase_client
        self.table = table

    async def _run(self, description: str, fn):
        try:
            return await asyncio.to_thread(fn)
        except Exception as e:
            raise StorageError(f"Supabase {description} failed: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        result = await self._run(
            "select",
            lambda: self.supabase.table(self.table).select("value").eq("key", key).execute(),
        )
        if result.data:
            return result.data[0]["value"]
        return None

    async def set(self, key: str, value: str) -> None:
        await self._run(
            "upsert",
            lambda: self.supabase.table(self.table).upsert({"key": key, "value": value}).execute(),
        )

    async def delete(self, key: str) -> bool:
        result = await self._run(
            "delete",
            lambda: self.supabase.table(self.table).delete().eq("key", key).execute(),
        )
        return bool(result.data)

    async def keys(self, prefix: str = "") -> List[str]:
        result = await self._run(
            "list",
            lambda: self.supabase.table(self.table).select("key").like("key", f"{prefix}%").execute(),
        )
        return [row["key"] for row in result.data or []]


# ==================== Conversation Store ====================

class ConversationStore:
    """
    Saves and restores sessions.

    Failures never propagate: save() reports False and load() returns None,
    so a conversation can continue in memory when storage is unavailable.
    """

    def __init__(self, backend: Optional[KeyValueStore] = None):
        self.backend = backend or InMemoryKeyValueStore()

    async def save(self, session: Session) -> bool:
        """
        Write the session under its key (one write per call).

        Returns:
            True if saved successfully, False otherwise
        """
        try:
            payload = json.dumps(session.to_dict(), ensure_ascii=False)
            await self.backend.set(session_key(session.id), payload)
        except StorageError as e:
            logger.error("Error saving session", error=e, data={"session_id": session.id})
            return False
        logger.debug(f"Saved session {session.id} ({len(session.turns)} turns)")
        return True

    async def load(self, session_id: str) -> Optional[Session]:
        """
        Load a session.

        Returns:
            Session, or None if missing or unreadable
        """
        try:
            raw = await self.backend.get(session_key(session_id))
        except StorageError as e:
            logger.error("Error loading session", error=e, data={"session_id": session_id})
            return None
        if raw is None:
            return None
        try:
            return Session.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Stored session is corrupt", error=e, data={"session_id": session_id})
            return None

    async def delete(self, session_id: str) -> bool:
        try:
            return await self.backend.delete(session_key(session_id))
        except StorageError as e:
            logger.error("Error deleting session", error=e, data={"session_id": session_id})
            return False

    async def list_recent(self, limit: int = 10) -> List[SessionSummary]:
        """Summaries of stored sessions, most recently active first."""
        try:
            keys = await self.backend.keys(KEY_PREFIX)
        except StorageError as e:
            logger.error("Error listing sessions", error=e)
            return []

        summaries = []
        for key in keys:
            session = await self.load(key[len(KEY_PREFIX):])
            if session is not None:
                summaries.append(SessionSummary.from_session(session))

        summaries.sort(key=lambda s: s.last_activity, reverse=True)
        return summaries[:limit]
