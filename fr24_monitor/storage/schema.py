from __future__ import annotations

import sqlite3
from pathlib import Path


SCHEMA_VERSION = 2


def connect(path: str | Path) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    # WAL lets dashboard readers run alongside the daemon's appends.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.Error:
        pass
    return conn


def ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    conn.execute("BEGIN IMMEDIATE;")
    try:
        _upgrade(conn)
        conn.execute("COMMIT;")
    except BaseException:
        conn.execute("ROLLBACK;")
        raise


def _upgrade(conn: sqlite3.Connection) -> None:
    # Re-read under the write lock; another process may have upgraded first.
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        # Either a fresh file or a database created by an older installer, which
        # never recorded a version. v1 is idempotent so both paths are the same.
        _apply_v1(conn)
        _apply_v2(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    if cur == 1:
        _apply_v2(conn)
        conn.execute("UPDATE schema_meta SET v=? WHERE k='version'", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    return any(str(r["name"]) == str(column) for r in rows)


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS monitoring_stats (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          timestamp TEXT NOT NULL,
          tracked_aircraft INTEGER NOT NULL DEFAULT 0,
          uploaded_aircraft INTEGER,
          endpoint TEXT,
          feed_status TEXT,
          feed_server TEXT
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS reboot_events (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          timestamp TEXT NOT NULL,
          tracked_aircraft INTEGER,
          threshold INTEGER,
          reason TEXT,
          dry_run INTEGER NOT NULL DEFAULT 0,
          uptime_hours REAL,
          endpoint TEXT
        );
        """
    )


def _apply_v2(conn: sqlite3.Connection) -> None:
    """
    v2 tags every row with the encoding its timestamp was written in.

    The column default is ``naive_local`` on purpose: rows inserted by an older daemon that
    does not know about the column keep their local-clock meaning until migrated.
    """
    for table in ("monitoring_stats", "reboot_events"):
        if not column_exists(conn, table, "ts_encoding"):
            conn.execute(f"ALTER TABLE {table} ADD COLUMN ts_encoding TEXT NOT NULL DEFAULT 'naive_local';")

    # Older installs predate the feed health columns.
    for column in ("uploaded_aircraft INTEGER", "feed_status TEXT", "feed_server TEXT"):
        name = column.split()[0]
        if not column_exists(conn, "monitoring_stats", name):
            conn.execute(f"ALTER TABLE monitoring_stats ADD COLUMN {column};")

    conn.execute("CREATE INDEX IF NOT EXISTS idx_monitoring_stats_ts ON monitoring_stats(timestamp DESC);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_reboot_events_ts ON reboot_events(timestamp DESC);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_monitoring_stats_enc ON monitoring_stats(ts_encoding);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_reboot_events_enc ON reboot_events(ts_encoding);")
