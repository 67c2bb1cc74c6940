"""
SQLite event journal.

One row per decision the ban engine takes (failed_auth, login, ban,
unban, banned_attempt). Used by the status API; the ban engine never reads
it back. A failed write is logged and dropped.
"""
from __future__ import annotations

import json
import logging
import time

import aiosqlite

logger = logging.getLogger("ssh_fb.journal")

CREATE_EVENTS = """
CREATE TABLE IF NOT EXISTS events (
    id     INTEGER PRIMARY KEY AUTOINCREMENT,
    ts     REAL NOT NULL,
    src_ip TEXT NOT NULL,
    kind   TEXT NOT NULL,
    meta   TEXT NOT NULL DEFAULT '{}'
);
"""

CREATE_EVENTS_IDX = "CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);"

KINDS = {"failed_auth", "login", "ban", "unban", "banned_attempt"}


class EventJournal:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def init(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(CREATE_EVENTS)
            await db.execute(CREATE_EVENTS_IDX)
            await db.commit()

    async def record(self, src_ip: str, kind: str, meta: dict | None = None, ts: float | None = None) -> bool:
        if kind not in KINDS:
            raise ValueError(f"unknown journal kind: {kind}")
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO events (ts, src_ip, kind, meta) VALUES (?, ?, ?, ?)",
                    (ts if ts is not None else time.time(), src_ip, kind, json.dumps(meta or {})),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            logger.warning("op=journal_%s ip=%s failed: %s", kind, src_ip, exc)
            return False
        return True

    async def fetch_recent(self, limit: int = 100) -> list[dict]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM events ORDER BY ts DESC, id DESC LIMIT ?", (limit,)
            ) as cursor:
                rows = await cursor.fetchall()
        out = []
        for r in rows:
            row = dict(r)
            try:
                row["meta"] = json.loads(row["meta"])
            except (TypeError, ValueError):
                pass
            out.append(row)
        return out

    async def count_since(self, kind: str, since_ts: float) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT COUNT(*) FROM events WHERE kind = ? AND ts >= ?", (kind, since_ts)
            ) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0
