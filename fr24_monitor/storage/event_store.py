from __future__ import annotations

import sqlite3
import warnings
from contextlib import contextmanager
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Iterator

import structlog

from ..errors import StorageError
from ..timestamps import SourceEncoding, canonicalize, to_storage
from .records import MigrationResult, MonitoringSample, PruneResult, RemediationEvent
from .schema import connect, ensure_schema_conn


logger = structlog.get_logger(__name__)

_TABLES = ("monitoring_stats", "reboot_events")
_DELETE_CHUNK = 500
_SQLITE_INT_MIN = -(2**63)
_SQLITE_INT_MAX = 2**63 - 1


def _encoding(row: sqlite3.Row) -> SourceEncoding:
    raw = str(row["ts_encoding"] or "").strip().lower()
    return SourceEncoding.UTC if raw == SourceEncoding.UTC.value else SourceEncoding.NAIVE_LOCAL


def _opt_int(v: Any) -> int | None:
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _newest_first(items: list[Any]) -> list[Any]:
    dated = [i for i in items if i.timestamp is not None]
    undated = [i for i in items if i.timestamp is None]
    dated.sort(key=lambda i: (i.timestamp, int(i.id or 0)), reverse=True)
    undated.sort(key=lambda i: int(i.id or 0), reverse=True)
    return dated + undated


class EventStore:
    """
    SQLite-backed store of monitoring samples and remediation events.

    A connection is opened per operation. Rows written here are tagged ``utc``; rows left
    behind by older daemons keep ``naive_local`` and are read in ``legacy_zone`` (the
    display zone), which gives the same instants :meth:`migrate_legacy_timestamps` would
    write.
    """

    def __init__(self, db_path: str | Path, legacy_zone: tzinfo) -> None:
        self.db_path = Path(db_path)
        self.legacy_zone = legacy_zone

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = connect(self.db_path)
        except (sqlite3.Error, OSError, ValueError) as exc:
            logger.error("Cannot open event store", db=str(self.db_path), error=str(exc))
            raise StorageError(f"Cannot open event store {self.db_path}: {exc}") from exc
        try:
            ensure_schema_conn(conn)
            yield conn
        except sqlite3.Error as exc:
            logger.error("Event store operation failed", db=str(self.db_path), error=str(exc))
            raise StorageError(f"Event store error ({self.db_path}): {exc}") from exc
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._session():
            pass

    # Writes

    def record_sample(self, sample: MonitoringSample) -> int:
        if sample.timestamp is None:
            raise ValueError("sample timestamp is required")
        if int(sample.tracked_aircraft) < 0:
            raise ValueError("tracked_aircraft must be >= 0")
        if sample.uploaded_aircraft is not None and int(sample.uploaded_aircraft) < 0:
            raise ValueError("uploaded_aircraft must be >= 0")
        ts = to_storage(sample.timestamp)
        with self._session() as conn:
            cur = conn.execute(
                """
                INSERT INTO monitoring_stats
                  (timestamp, ts_encoding, tracked_aircraft, uploaded_aircraft, endpoint, feed_status, feed_server)
                VALUES (?, 'utc', ?, ?, ?, ?, ?)
                """,
                (
                    ts,
                    int(sample.tracked_aircraft),
                    _opt_int(sample.uploaded_aircraft),
                    str(sample.endpoint or ""),
                    sample.feed_status,
                    sample.feed_server,
                ),
            )
            return int(cur.lastrowid)

    def record_event(self, event: RemediationEvent) -> int:
        if event.timestamp is None:
            raise ValueError("event timestamp is required")
        if int(event.tracked_aircraft) < 0:
            raise ValueError("tracked_aircraft must be >= 0")
        ts = to_storage(event.timestamp)
        with self._session() as conn:
            cur = conn.execute(
                """
                INSERT INTO reboot_events
                  (timestamp, ts_encoding, tracked_aircraft, threshold, reason, dry_run, uptime_hours, endpoint)
                VALUES (?, 'utc', ?, ?, ?, ?, ?, ?)
                """,
                (
                    ts,
                    int(event.tracked_aircraft),
                    int(event.threshold),
                    str(event.reason or ""),
                    1 if event.dry_run else 0,
                    float(event.uptime_hours),
                    str(event.endpoint or ""),
                ),
            )
            event_id = int(cur.lastrowid)
        logger.info("Remediation event recorded", event_id=event_id, dry_run=bool(event.dry_run), reason=event.reason)
        return event_id

    def delete_event(self, event_id: int) -> int:
        """Delete one event by id. Returns the number of rows removed (0 when already gone)."""
        if not _SQLITE_INT_MIN <= int(event_id) <= _SQLITE_INT_MAX:
            # No row can carry an id SQLite cannot bind.
            logger.info("Remediation event delete", event_id=int(event_id), deleted=0)
            return 0
        with self._session() as conn:
            cur = conn.execute("DELETE FROM reboot_events WHERE id=?", (int(event_id),))
            deleted = int(cur.rowcount or 0)
        logger.info("Remediation event delete", event_id=int(event_id), deleted=deleted)
        return deleted

    def delete_events_by_timestamp(self, raw_timestamp: str) -> int:
        """Legacy delete keyed on the stored timestamp text; may remove several rows."""
        warnings.warn(
            "delete_events_by_timestamp is deprecated; use delete_event(event_id)",
            DeprecationWarning,
            stacklevel=2,
        )
        with self._session() as conn:
            cur = conn.execute("DELETE FROM reboot_events WHERE timestamp=?", (str(raw_timestamp),))
            deleted = int(cur.rowcount or 0)
        if deleted > 1:
            logger.warning("Timestamp delete removed several events", timestamp=raw_timestamp, deleted=deleted)
        return deleted

    def prune(self, older_than: datetime) -> PruneResult:
        """Remove samples and events strictly older than ``older_than`` in one transaction."""
        cutoff = to_storage(older_than)
        counts: dict[str, int] = {}
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                for table in _TABLES:
                    cur = conn.execute(f"DELETE FROM {table} WHERE ts_encoding='utc' AND timestamp < ?", (cutoff,))
                    n = int(cur.rowcount or 0)
                    stale: list[int] = []
                    for row in conn.execute(f"SELECT id, timestamp FROM {table} WHERE ts_encoding != 'utc'"):
                        instant = canonicalize(row["timestamp"], SourceEncoding.NAIVE_LOCAL, self.legacy_zone)
                        if instant is not None and instant < older_than:
                            stale.append(int(row["id"]))
                    for i in range(0, len(stale), _DELETE_CHUNK):
                        chunk = stale[i : i + _DELETE_CHUNK]
                        marks = ",".join("?" for _ in chunk)
                        conn.execute(f"DELETE FROM {table} WHERE id IN ({marks})", chunk)
                    counts[table] = n + len(stale)
                conn.execute("COMMIT;")
            except BaseException:
                conn.execute("ROLLBACK;")
                raise
        result = PruneResult(samples=counts["monitoring_stats"], events=counts["reboot_events"])
        logger.info("Pruned event store", cutoff=cutoff, samples=result.samples, events=result.events)
        return result

    def migrate_legacy_timestamps(self, zone: tzinfo | None = None) -> MigrationResult:
        """
        Rewrite ``naive_local`` rows as explicit UTC, reading them in ``zone``.

        Rows whose timestamp cannot be parsed are left as they are and counted as skipped.
        Once every row is tagged ``utc`` this is a no-op.
        """
        source = zone or self.legacy_zone
        migrated: dict[str, int] = {}
        skipped = 0
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                for table in _TABLES:
                    n = 0
                    rows = conn.execute(f"SELECT id, timestamp FROM {table} WHERE ts_encoding != 'utc'").fetchall()
                    for row in rows:
                        instant = canonicalize(row["timestamp"], SourceEncoding.NAIVE_LOCAL, source)
                        if instant is None:
                            skipped += 1
                            logger.warning("Unparsable legacy timestamp left untouched", table=table, id=row["id"], timestamp=row["timestamp"])
                            continue
                        conn.execute(
                            f"UPDATE {table} SET timestamp=?, ts_encoding='utc' WHERE id=?",
                            (to_storage(instant), int(row["id"])),
                        )
                        n += 1
                    migrated[table] = n
                conn.execute("COMMIT;")
            except BaseException:
                conn.execute("ROLLBACK;")
                raise
        result = MigrationResult(samples=migrated["monitoring_stats"], events=migrated["reboot_events"], skipped=skipped)
        logger.info("Legacy timestamp migration", samples=result.samples, events=result.events, skipped=result.skipped)
        return result

    # Reads

    def _row_to_sample(self, row: sqlite3.Row) -> MonitoringSample:
        return MonitoringSample(
            id=int(row["id"]),
            timestamp=canonicalize(row["timestamp"], _encoding(row), self.legacy_zone),
            tracked_aircraft=int(row["tracked_aircraft"] or 0),
            uploaded_aircraft=_opt_int(row["uploaded_aircraft"]),
            endpoint=str(row["endpoint"] or ""),
            feed_status=row["feed_status"],
            feed_server=row["feed_server"],
        )

    def _row_to_event(self, row: sqlite3.Row) -> RemediationEvent:
        uptime = row["uptime_hours"]
        return RemediationEvent(
            id=int(row["id"]),
            timestamp=canonicalize(row["timestamp"], _encoding(row), self.legacy_zone),
            tracked_aircraft=int(row["tracked_aircraft"] or 0),
            threshold=int(row["threshold"] or 0),
            reason=str(row["reason"] or ""),
            dry_run=bool(row["dry_run"]),
            uptime_hours=float(uptime) if uptime is not None else 0.0,
            endpoint=str(row["endpoint"] or ""),
        )

    def _select(
        self, table: str, since: datetime | None, limit: int | None, until: datetime | None = None
    ) -> list[sqlite3.Row]:
        # UTC rows sort correctly as text; legacy rows are few and filtered after canonicalizing.
        params: list[Any] = []
        where = "ts_encoding='utc'"
        if since is not None:
            where += " AND timestamp >= ?"
            params.append(to_storage(since))
        if until is not None:
            where += " AND timestamp <= ?"
            params.append(to_storage(until))
        sql = f"SELECT * FROM {table} WHERE {where} ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, int(limit)))
        with self._session() as conn:
            rows = conn.execute(sql, params).fetchall()
            rows += conn.execute(f"SELECT * FROM {table} WHERE ts_encoding != 'utc'").fetchall()
        return rows

    def list_samples(
        self,
        since: datetime | None = None,
        limit: int | None = None,
        until: datetime | None = None,
    ) -> list[MonitoringSample]:
        """Samples newest first, optionally bounded to ``since <= timestamp <= until``."""
        samples = [self._row_to_sample(r) for r in self._select("monitoring_stats", since, limit, until)]
        if since is not None:
            samples = [s for s in samples if s.timestamp is not None and s.timestamp >= since]
        if until is not None:
            samples = [s for s in samples if s.timestamp is not None and s.timestamp <= until]
        samples = _newest_first(samples)
        return samples if limit is None else samples[: max(0, int(limit))]

    def list_events(self, limit: int | None = None, since: datetime | None = None) -> list[RemediationEvent]:
        """Events newest first."""
        events = [self._row_to_event(r) for r in self._select("reboot_events", since, limit)]
        if since is not None:
            events = [e for e in events if e.timestamp is not None and e.timestamp >= since]
        events = _newest_first(events)
        return events if limit is None else events[: max(0, int(limit))]

    def latest_sample(self) -> MonitoringSample | None:
        rows = self.list_samples(limit=1)
        return rows[0] if rows else None

    def latest_event(self) -> RemediationEvent | None:
        rows = self.list_events(limit=1)
        return rows[0] if rows else None

    def count_events(self) -> int:
        with self._session() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM reboot_events").fetchone()
        return int(row["n"] or 0)

    def iter_event_timestamps(self) -> Iterator[datetime]:
        """Canonical instants of every event whose timestamp parses."""
        with self._session() as conn:
            rows = conn.execute("SELECT timestamp, ts_encoding FROM reboot_events").fetchall()
        for row in rows:
            instant = canonicalize(row["timestamp"], _encoding(row), self.legacy_zone)
            if instant is not None:
                yield instant

    def legacy_row_counts(self) -> dict[str, int]:
        """Rows per table still tagged ``naive_local``."""
        out: dict[str, int] = {}
        with self._session() as conn:
            for table in _TABLES:
                row = conn.execute(f"SELECT COUNT(*) AS n FROM {table} WHERE ts_encoding != 'utc'").fetchone()
                out[table] = int(row["n"] or 0)
        return out
