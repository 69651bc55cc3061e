"""SQLite event log for board changes.

Every board, block, message, connection and memory change is one row.
Replaying the rows in insertion order rebuilds BoardState (state.py).
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BoardEvent

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class EventStore:
    """Board event log; rows are only ever inserted."""

    def __init__(self, db_path: Path | None = None):
        """Open (or create) the log.

        Args:
            db_path: Path to multiblock.db. None keeps the log in memory,
                which is what tests and throwaway engines use.
        """
        self.db_path = db_path
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Lazily open the SQLite connection."""
        if self._conn is None:
            target = str(self.db_path) if self.db_path is not None else ":memory:"
            self._conn = sqlite3.connect(target, timeout=30.0, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            if self.db_path is not None:
                # WAL lets readers proceed while a write commits
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    def _row_to_event(self, row: sqlite3.Row) -> "BoardEvent":
        """Rebuild a BoardEvent from a stored row."""
        from .models import BoardEvent

        return BoardEvent(
            id=row["id"],
            ts=row["ts"],
            op=row["op"],
            actor_id=row["actor_id"],
            board_id=row["board_id"],
            data=json.loads(row["data"]),
        )

    def _init_db(self):
        """Create tables and indexes if missing."""
        conn = self._get_conn()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                created_at TEXT DEFAULT (datetime('now'))
            )
        """)

        version = conn.execute("SELECT version FROM schema_version").fetchone()
        if version is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        elif version[0] < SCHEMA_VERSION:
            logger.warning(f"Schema version {version[0]} detected, may need migration")

        conn.executescript("""
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                ts TEXT NOT NULL,
                op TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                board_id TEXT,
                data TEXT NOT NULL,
                created_at TEXT DEFAULT (datetime('now'))
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_board ON events(board_id);
            CREATE INDEX IF NOT EXISTS idx_events_op ON events(op);
        """)
        conn.commit()

    @staticmethod
    def _row_values(event: BoardEvent) -> tuple:
        return (
            event.id,
            event.ts.isoformat(),
            event.op,
            event.actor_id,
            event.board_id,
            json.dumps(event.data),
        )

    def append(self, event: BoardEvent, durable: bool = True) -> BoardEvent:
        """Write one event.

        Args:
            event: The event to store
            durable: Commit right away. Pass False when the caller commits.
        """
        conn = self._get_conn()
        conn.execute(
            """
            INSERT INTO events (id, ts, op, actor_id, board_id, data)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            self._row_values(event),
        )
        if durable:
            conn.commit()
        return event

    def append_batch(self, events: list[BoardEvent]) -> list[BoardEvent]:
        """Write several events in one transaction."""
        if not events:
            return events

        conn = self._get_conn()
        conn.executemany(
            """
            INSERT INTO events (id, ts, op, actor_id, board_id, data)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [self._row_values(e) for e in events],
        )
        conn.commit()
        return events

    def read_all(self, tolerant: bool = True) -> list[BoardEvent]:
        """Every event in insertion order.

        Args:
            tolerant: Log and skip rows that fail to decode. When False
                the first bad row raises ValueError.
        """
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT id, ts, op, actor_id, board_id, data FROM events ORDER BY rowid"
        )

        events = []
        skipped = 0

        for row in cursor:
            try:
                events.append(self._row_to_event(row))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                if not tolerant:
                    raise ValueError(f"Malformed event {row['id']}: {e}") from e
                skipped += 1
                logger.warning(f"Skipping malformed event {row['id']}: {e}")

        if skipped:
            logger.warning(f"Loaded {len(events)} events, skipped {skipped} malformed rows")

        return events

    def read_by_board(self, board_id: str) -> list[BoardEvent]:
        """Read all events recorded against one board."""
        conn = self._get_conn()
        cursor = conn.execute(
            """
            SELECT id, ts, op, actor_id, board_id, data FROM events
            WHERE board_id = ?
            ORDER BY rowid
            """,
            (board_id,),
        )
        return [self._row_to_event(row) for row in cursor]

    def read_recent(self, limit: int = 20) -> list[BoardEvent]:
        """Most recent events first."""
        conn = self._get_conn()
        cursor = conn.execute(
            """
            SELECT id, ts, op, actor_id, board_id, data FROM events
            ORDER BY rowid DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [self._row_to_event(row) for row in cursor]

    def count(self) -> int:
        """Number of stored events."""
        conn = self._get_conn()
        return conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def close(self):
        """Checkpoint the WAL into the main file and close."""
        if self._conn is not None:
            if self.db_path is not None:
                self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            self._conn.close()
            self._conn = None
