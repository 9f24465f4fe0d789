from __future__ import annotations

from pathlib import Path

import pytest

from nback_trainer.persistence import (
    DB_PATH_ENV,
    DEFAULT_LEVEL,
    SCHEMA_VERSION,
    default_db_path,
    get_best_level,
    get_last_level,
    get_sessions,
    open_db,
    record_session,
    save_session,
)
from nback_trainer.results import SessionRecord


def _record(n: int, *, next_level: int | None = None, ts: str = "2024-05-01T10:00:00Z") -> SessionRecord:
    return SessionRecord(
        n=n,
        trial_count=20,
        hits=4,
        misses=1,
        false_alarms=2,
        correct_rejections=13,
        accuracy=0.84,
        hit_rate=0.8,
        correct_rejection_rate=0.8667,
        next_level=n if next_level is None else next_level,
        timestamp=ts,
    )


def test_empty_history_uses_default_levels() -> None:
    conn = open_db(":memory:")
    try:
        assert get_sessions(conn) == []
        assert get_best_level(conn) == DEFAULT_LEVEL
        assert get_last_level(conn) == DEFAULT_LEVEL
    finally:
        conn.close()


def test_schema_version_is_recorded(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "sessions.sqlite3"
    conn = open_db(path)
    try:
        (ver,) = conn.execute("PRAGMA user_version;").fetchone()
        assert ver == SCHEMA_VERSION
    finally:
        conn.close()
    assert path.exists()

    # Reopening an up-to-date database is a no-op.
    conn = open_db(path)
    conn.close()


def test_sessions_round_trip_most_recent_first() -> None:
    conn = open_db(":memory:")
    try:
        first = save_session(conn, _record(2, ts="2024-05-01T10:00:00Z"))
        second = save_session(conn, _record(3, next_level=4, ts="2024-05-02T10:00:00Z"))
        assert second > first

        sessions = get_sessions(conn)
        assert [s.n for s in sessions] == [3, 2]
        assert sessions[0] == _record(3, next_level=4, ts="2024-05-02T10:00:00Z")
        assert sessions[1].accuracy == pytest.approx(0.84)

        assert get_best_level(conn) == 3
        assert get_last_level(conn) == 4
    finally:
        conn.close()


def test_get_sessions_respects_limit_and_tie_breaks_on_insert_order() -> None:
    conn = open_db(":memory:")
    try:
        for n in (1, 2, 3, 4):
            save_session(conn, _record(n, ts="2024-05-01T10:00:00Z"))
        assert [s.n for s in get_sessions(conn, limit=2)] == [4, 3]
        assert get_sessions(conn, limit=0) == []
    finally:
        conn.close()


def test_record_session_opens_and_closes(tmp_path: Path) -> None:
    path = tmp_path / "db.sqlite3"
    session_id = record_session(db_path=path, record=_record(5))
    assert session_id >= 1

    conn = open_db(path)
    try:
        assert get_best_level(conn) == 5
    finally:
        conn.close()


def test_default_db_path_honours_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    target = tmp_path / "custom.sqlite3"
    monkeypatch.setenv(DB_PATH_ENV, str(target))
    assert default_db_path() == target

    monkeypatch.delenv(DB_PATH_ENV)
    assert default_db_path().name == ".audio_nback_sessions.sqlite3"
