from __future__ import annotations

from pathlib import Path
import json
import sqlite3
import time

from .events import ParticipantInfo, TaskEvent

SCHEMA_VERSION = 1


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


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
                participant_id TEXT NOT NULL,
                study_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                created_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS task_event (
                id INTEGER PRIMARY KEY,
                session_row_id INTEGER NOT NULL REFERENCES session(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                event_type TEXT NOT NULL,
                round INTEGER NOT NULL,
                rep INTEGER NOT NULL,
                t_global_ms INTEGER NOT NULL,
                t_trial_ms INTEGER,
                payload TEXT NOT NULL
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_task_event_session_seq ON task_event(session_row_id, seq);"
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteEventLog:
    """Event log sink writing to a local sqlite database.

    One ``session`` row is created lazily on the first event; every event is
    stored with its full JSON payload so no column is lost.
    """

    def __init__(self, path: Path, *, participant: ParticipantInfo) -> None:
        self._path = path
        self._participant = participant
        self._conn: sqlite3.Connection | None = None
        self._session_row_id: int | None = None
        self._seq = 0

    @property
    def session_row_id(self) -> int | None:
        return self._session_row_id

    def record(self, event: TaskEvent) -> None:
        conn = self._connection()
        session_row_id = self._ensure_session(conn)
        t_trial_ms = None if event.t_trial is None else int(round(event.t_trial * 1000.0))
        with conn:
            conn.execute(
                """
                INSERT INTO task_event(
                    session_row_id, seq, event_type, round, rep,
                    t_global_ms, t_trial_ms, payload
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_row_id,
                    self._seq,
                    str(event.kind),
                    int(event.round),
                    int(event.rep),
                    int(round(event.t_global * 1000.0)),
                    t_trial_ms,
                    json.dumps(event.to_dict(), sort_keys=True),
                ),
            )
        self._seq += 1

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = open_db(self._path)
        return self._conn

    def _ensure_session(self, conn: sqlite3.Connection) -> int:
        if self._session_row_id is not None:
            return self._session_row_id
        p = self._participant
        with conn:
            cur = conn.execute(
                "INSERT INTO session(participant_id, study_id, session_id, created_at_utc) VALUES (?, ?, ?, ?)",
                (p.participant_id, p.study_id, p.session_id, _utc_now_iso()),
            )
        self._session_row_id = int(cur.lastrowid)
        return self._session_row_id


def load_session_events(db_path: Path, session_row_id: int) -> list[dict[str, object]]:
    """Read back the exported rows of one session, in recording order."""

    conn = open_db(db_path)
    try:
        rows = conn.execute(
            "SELECT payload FROM task_event WHERE session_row_id = ? ORDER BY seq",
            (int(session_row_id),),
        ).fetchall()
    finally:
        conn.close()
    return [json.loads(row[0]) for row in rows]
