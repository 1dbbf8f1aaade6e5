"""SQLite implementation of the ActivityLog protocol."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from wagerbot.models.records import ActivityRecord

SCHEMA = """
-- Audit trail of routing outcomes, transitions and transfers
CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    channel_id TEXT,
    amount TEXT,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_log(created_at);
CREATE INDEX IF NOT EXISTS idx_activity_channel ON activity_log(channel_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_record(row: aiosqlite.Row) -> ActivityRecord:
    return ActivityRecord(
        id=row["id"],
        event_type=row["event_type"],
        channel_id=row["channel_id"],
        amount=row["amount"],
        message=row["message"],
        created_at=row["created_at"],
    )


class SQLiteActivityLog:
    """Append-only activity log backed by aiosqlite.

    The log is an audit trail; nothing in the engine reads it for control flow.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Activity log not initialized. Call initialize() first."
        return self._db

    async def log_activity(
        self,
        event_type: str,
        message: str,
        channel_id: str | None = None,
        amount: str | None = None,
    ) -> None:
        await self.db.execute(
            "INSERT INTO activity_log (event_type, channel_id, amount, message, created_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (event_type, channel_id, None if amount is None else str(amount), message, _now()),
        )
        await self.db.commit()

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        async with self.db.execute(
            "SELECT * FROM activity_log ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
        ) as cur:
            return [_row_to_record(row) async for row in cur]

    async def get_channel_activity(self, channel_id: str) -> list[ActivityRecord]:
        async with self.db.execute(
            "SELECT * FROM activity_log WHERE channel_id = ? ORDER BY id ASC", (channel_id,)
        ) as cur:
            return [_row_to_record(row) async for row in cur]
