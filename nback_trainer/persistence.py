from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path

from .results import SessionRecord

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DB_PATH_ENV = "NBACK_DB_PATH"

DEFAULT_LEVEL = 2
BEST_LEVEL_WINDOW = 100

_COLUMNS = (
    "n",
    "trial_count",
    "hits",
    "misses",
    "false_alarms",
    "correct_rejections",
    "accuracy",
    "hit_rate",
    "correct_rejection_rate",
    "next_level",
    "timestamp",
)


def default_db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".audio_nback_sessions.sqlite3"


def open_db(path: Path | str) -> sqlite3.Connection:
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session (
                id INTEGER PRIMARY KEY,
                n INTEGER NOT NULL,
                trial_count INTEGER NOT NULL,
                hits INTEGER NOT NULL,
                misses INTEGER NOT NULL,
                false_alarms INTEGER NOT NULL,
                correct_rejections INTEGER NOT NULL,
                accuracy REAL NOT NULL,
                hit_rate REAL NOT NULL,
                correct_rejection_rate REAL NOT NULL,
                next_level INTEGER NOT NULL,
                timestamp TEXT NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_session_timestamp ON session(timestamp);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")
    logger.debug("Session schema migrated from v%d to v%d", ver, SCHEMA_VERSION)


def save_session(conn: sqlite3.Connection, record: SessionRecord) -> int:
    """Insert one completed block and return its row id."""

    placeholders = ", ".join("?" for _ in _COLUMNS)
    with conn:
        cur = conn.execute(
            f"INSERT INTO session({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            (
                int(record.n),
                int(record.trial_count),
                int(record.hits),
                int(record.misses),
                int(record.false_alarms),
                int(record.correct_rejections),
                float(record.accuracy),
                float(record.hit_rate),
                float(record.correct_rejection_rate),
                int(record.next_level),
                str(record.timestamp),
            ),
        )
    return int(cur.lastrowid)


def get_sessions(conn: sqlite3.Connection, limit: int = 10) -> list[SessionRecord]:
    """Most recent sessions first."""

    rows = conn.execute(
        f"SELECT {', '.join(_COLUMNS)} FROM session ORDER BY timestamp DESC, id DESC LIMIT ?",
        (max(0, int(limit)),),
    ).fetchall()
    return [SessionRecord(*row) for row in rows]


def get_best_level(conn: sqlite3.Connection) -> int:
    sessions = get_sessions(conn, BEST_LEVEL_WINDOW)
    if not sessions:
        return DEFAULT_LEVEL
    return max(1, max(s.n for s in sessions))


def get_last_level(conn: sqlite3.Connection) -> int:
    sessions = get_sessions(conn, 1)
    if not sessions:
        return DEFAULT_LEVEL
    last = sessions[0]
    return last.next_level or last.n


def record_session(*, db_path: Path, record: SessionRecord) -> int:
    """Open, insert, close: for callers that do not keep a connection around."""

    conn = open_db(db_path)
    try:
        session_id = save_session(conn, record)
    finally:
        conn.close()
    logger.info("Saved session %d (%d-back, accuracy=%.3f)", session_id, record.n, record.accuracy)
    return session_id
