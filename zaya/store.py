"""HistoryStore: aiosqlite persistence for conversation dumps.

Live conversations are kept in memory only. On shutdown the orchestrator's
dump replaces the stored one; on startup it is loaded back together with the
per-session history limits.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiosqlite

from zaya.chat.buffer import DialogMessage
from zaya.config import settings

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 50

_CREATE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS dialog_messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER NOT NULL,
        role TEXT NOT NULL,
        text TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS session_limits (
        session_id INTEGER PRIMARY KEY,
        max_history INTEGER NOT NULL
    )
    """,
)


def clamp_max_history(max_history: int) -> int:
    """Zero (unset) and values above the limit both become the limit."""
    if max_history == 0 or max_history > MAX_HISTORY_LIMIT:
        return MAX_HISTORY_LIMIT
    return max_history


class HistoryStore:
    """Persists conversation dumps in SQLite.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            for statement in _CREATE_TABLES:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db

    # -- Messages --------------------------------------------------------------

    async def save_messages(self, messages: Iterable[DialogMessage]) -> int:
        """Replace the stored dump with *messages*. Returns the row count."""
        rows = [(m.session_id, m.role, m.text) for m in messages]
        db = await self._connect()
        try:
            await db.execute("DELETE FROM dialog_messages")
            await db.executemany(
                "INSERT INTO dialog_messages (session_id, role, text) VALUES (?, ?, ?)",
                rows,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        finally:
            await db.close()
        logger.info("Saved %d message(s)", len(rows))
        return len(rows)

    async def load_messages(self) -> list[DialogMessage]:
        """Return the stored dump in its original order."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT session_id, role, text FROM dialog_messages ORDER BY id"
            )
            rows = await cursor.fetchall()
            return [DialogMessage(session_id=r[0], role=r[1], text=r[2]) for r in rows]
        finally:
            await db.close()

    # -- History limits --------------------------------------------------------

    async def set_max_history(self, session_id: int, max_history: int) -> int:
        """Store the clamped history limit for a session and return it."""
        limit = clamp_max_history(max_history)
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO session_limits (session_id, max_history) VALUES (?, ?)
                ON CONFLICT(session_id) DO UPDATE SET max_history = excluded.max_history
                """,
                (session_id, limit),
            )
            await db.commit()
            return limit
        finally:
            await db.close()

    async def load_max_history(self) -> dict[int, int]:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT session_id, max_history FROM session_limits")
            rows = await cursor.fetchall()
            return {r[0]: r[1] for r in rows}
        finally:
            await db.close()
