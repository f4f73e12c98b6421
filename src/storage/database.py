"""
Database module for locations, count logs and entry/exit events.

Schema versioning ensures automatic migration when schema changes.
Timestamps are stored as ISO-8601 UTC strings so SQLite's strftime can
group them for reports.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from models.count_event import Location, utc_now_iso

# Schema version - increment when schema changes
EXPECTED_SCHEMA_VERSION = 1

# Utilization bands as a percentage of capacity: <25 low, <50 medium, <75 high, else full
UTILIZATION_BANDS = (25, 50, 75)

CSV_COLUMNS = {
    "counts": ["timestamp", "count", "status", "message"],
    "entry-exit": ["timestamp", "type", "count", "current_occupancy"],
}


class Database:
    """
    SQLite store backing the REST API and the in-process count sink.

    Tables:
    - schema_meta: tracks schema version
    - locations: monitored locations, seeded from config
    - counts: one row per count change
    - entry_exit: occupancy deltas

    The connection is shared between the event loop and worker threads, so
    every statement runs under a lock.
    """

    def __init__(self, local_database_path: str):
        """
        Initialize the database.

        Args:
            local_database_path: Path to the SQLite database file (":memory:" for tests).
        """
        self.local_database_path = local_database_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

        db_dir = os.path.dirname(local_database_path)
        if db_dir and local_database_path != ":memory:":
            os.makedirs(db_dir, exist_ok=True)

        logging.info(f"Database initialized at {local_database_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self.conn is None:
            self.conn = sqlite3.connect(self.local_database_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            if self.local_database_path != ":memory:":
                self.conn.execute("PRAGMA journal_mode = WAL")
        return self.conn

    def _get_schema_version(self) -> Optional[int]:
        """Get current schema version from database."""
        try:
            cursor = self._get_connection().cursor()
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_meta'"
            )
            if cursor.fetchone() is None:
                return None

            cursor.execute("SELECT schema_version FROM schema_meta LIMIT 1")
            row = cursor.fetchone()
            return row[0] if row else None
        except sqlite3.Error:
            return None

    def _drop_old_tables(self) -> None:
        cursor = self._get_connection().cursor()
        for table in ("entry_exit", "counts", "locations", "schema_meta"):
            cursor.execute(f"DROP TABLE IF EXISTS {table}")
        self._get_connection().commit()
        logging.info("Old tables dropped")

    def _create_schema(self) -> None:
        cursor = self._get_connection().cursor()

        cursor.execute("""
            CREATE TABLE schema_meta (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                schema_version INTEGER NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        cursor.execute("""
            CREATE TABLE locations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                capacity INTEGER NOT NULL,
                description TEXT,
                created_at TEXT DEFAULT (datetime('now')),
                updated_at TEXT DEFAULT (datetime('now'))
            )
        """)
        cursor.execute("""
            CREATE TABLE counts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                location_id TEXT NOT NULL,
                count INTEGER NOT NULL,
                status TEXT NOT NULL,
                message TEXT,
                timestamp TEXT NOT NULL,
                FOREIGN KEY (location_id) REFERENCES locations (id) ON DELETE CASCADE
            )
        """)
        cursor.execute("""
            CREATE TABLE entry_exit (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                location_id TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('entry', 'exit')),
                count INTEGER NOT NULL,
                current_occupancy INTEGER NOT NULL,
                timestamp TEXT NOT NULL,
                FOREIGN KEY (location_id) REFERENCES locations (id) ON DELETE CASCADE
            )
        """)
        cursor.execute("CREATE INDEX idx_counts_location_ts ON counts(location_id, timestamp)")
        cursor.execute("CREATE INDEX idx_entry_exit_location_ts ON entry_exit(location_id, timestamp)")

        cursor.execute(
            "INSERT INTO schema_meta (id, schema_version) VALUES (1, ?)",
            (EXPECTED_SCHEMA_VERSION,)
        )
        self._get_connection().commit()
        logging.info(f"Created schema version {EXPECTED_SCHEMA_VERSION}")

    def initialize(self, locations: Iterable[Location] = ()) -> None:
        """
        Initialize the database schema and seed locations.

        If schema_meta is missing or version doesn't match EXPECTED_SCHEMA_VERSION,
        drops all old tables and creates fresh schema. A database without any
        location gets the default one.
        """
        with self._lock:
            try:
                current_version = self._get_schema_version()
                if current_version != EXPECTED_SCHEMA_VERSION:
                    if current_version is not None:
                        logging.warning(
                            f"Schema version mismatch: found {current_version}, "
                            f"expected {EXPECTED_SCHEMA_VERSION}. Dropping old tables."
                        )
                    else:
                        logging.info("No schema found, creating fresh database.")
                    self._drop_old_tables()
                    self._create_schema()
                else:
                    logging.info(f"Schema version {current_version} is current")

                self.seed_locations(locations)
            except sqlite3.Error as e:
                logging.error(f"Database initialization error: {e}")
                raise

    def seed_locations(self, locations: Iterable[Location]) -> None:
        """Upsert configured locations; ensure at least the default one exists."""
        with self._lock:
            conn = self._get_connection()
            for loc in locations:
                conn.execute(
                    """
                    INSERT INTO locations (id, name, capacity, description) VALUES (?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        capacity = excluded.capacity,
                        description = excluded.description,
                        updated_at = datetime('now')
                    """,
                    (loc.id, loc.name, loc.capacity, loc.description),
                )
            if conn.execute("SELECT COUNT(*) FROM locations").fetchone()[0] == 0:
                conn.execute(
                    "INSERT INTO locations (id, name, capacity) VALUES ('default', 'Main Room', 50)"
                )
                logging.info("Created default location")
            conn.commit()

    # -------------------------------------------------------------------------
    # Locations
    # -------------------------------------------------------------------------

    def get_locations(self) -> List[Location]:
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT id, name, capacity, description FROM locations ORDER BY name"
            ).fetchall()
        return [Location.from_dict(dict(r)) for r in rows]

    def get_location(self, location_id: str) -> Optional[Location]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT id, name, capacity, description FROM locations WHERE id = ?",
                (location_id,),
            ).fetchone()
        return Location.from_dict(dict(row)) if row else None

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def _insert(self, table: str, sql: str, params: tuple) -> Dict[str, Any]:
        with self._lock:
            try:
                conn = self._get_connection()
                cursor = conn.execute(sql, params)
                conn.commit()
                row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (cursor.lastrowid,)).fetchone()
                return dict(row)
            except sqlite3.Error as e:
                logging.error(f"Error inserting into {table}: {e}")
                raise

    def add_count(
        self,
        location_id: str,
        count: int,
        status: str,
        message: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Insert a count log row.

        Returns:
            The stored row as a dict.
        """
        row = self._insert(
            "counts",
            "INSERT INTO counts (location_id, count, status, message, timestamp) VALUES (?, ?, ?, ?, ?)",
            (location_id, int(count), status, message or None, timestamp or utc_now_iso()),
        )
        logging.debug(f"Count added: location={location_id}, count={count}, status={status}")
        return row

    def add_entry_exit(
        self,
        location_id: str,
        type: str,
        count: int,
        current_occupancy: int,
        timestamp: Optional[str] = None,
    ) -> Dict[str, Any]:
        row = self._insert(
            "entry_exit",
            "INSERT INTO entry_exit (location_id, type, count, current_occupancy, timestamp) VALUES (?, ?, ?, ?, ?)",
            (location_id, type, int(count), int(current_occupancy), timestamp or utc_now_iso()),
        )
        logging.debug(f"Entry/exit added: location={location_id}, type={type}, count={count}")
        return row

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def _select(self, sql: str, params: tuple) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                return [dict(r) for r in self._get_connection().execute(sql, params).fetchall()]
            except sqlite3.Error as e:
                logging.error(f"Query failed: {e}")
                raise

    def get_counts(self, location_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent count rows, newest first."""
        return self._select(
            "SELECT * FROM counts WHERE location_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
            (location_id, limit),
        )

    def get_counts_range(self, location_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        return self._select(
            "SELECT * FROM counts WHERE location_id = ? AND timestamp BETWEEN ? AND ? "
            "ORDER BY timestamp DESC, id DESC",
            (location_id, start, end),
        )

    def get_entry_exit(self, location_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        return self._select(
            "SELECT * FROM entry_exit WHERE location_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
            (location_id, limit),
        )

    def get_entry_exit_range(self, location_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        return self._select(
            "SELECT * FROM entry_exit WHERE location_id = ? AND timestamp BETWEEN ? AND ? "
            "ORDER BY timestamp DESC, id DESC",
            (location_id, start, end),
        )

    # -------------------------------------------------------------------------
    # Reports (computed on-the-fly)
    # -------------------------------------------------------------------------

    def _occupancy_report(self, bucket_format: str, bucket_name: str, location_id: str, start: str, end: str):
        return self._select(
            f"""
            SELECT
                strftime('{bucket_format}', timestamp) as {bucket_name},
                ROUND(AVG(count)) as average_count,
                MAX(count) as max_count,
                MIN(count) as min_count,
                COUNT(*) as sample_count
            FROM counts
            WHERE location_id = ? AND timestamp BETWEEN ? AND ?
            GROUP BY {bucket_name}
            ORDER BY {bucket_name}
            """,
            (location_id, start, end),
        )

    def get_hourly_report(self, location_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        """Average/max/min occupancy per hour."""
        return self._occupancy_report("%Y-%m-%d %H:00:00", "hour", location_id, start, end)

    def get_daily_report(self, location_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        """Average/max/min occupancy per day."""
        return self._occupancy_report("%Y-%m-%d", "day", location_id, start, end)

    def get_summary_report(self, location: Location, start: str, end: str) -> Dict[str, Any]:
        """
        Overall summary for a location and period.

        Returns:
            Dict with location, summary stats, entry/exit totals by type and
            sample counts per utilization band.
        """
        summary = self._select(
            """
            SELECT
                COUNT(*) as total_samples,
                ROUND(AVG(count)) as average_count,
                MAX(count) as max_count,
                MIN(count) as min_count,
                MIN(timestamp) as start_time,
                MAX(timestamp) as end_time
            FROM counts
            WHERE location_id = ? AND timestamp BETWEEN ? AND ?
            """,
            (location.id, start, end),
        )[0]
        entry_exit = self._select(
            """
            SELECT type, SUM(count) as total_count, COUNT(*) as event_count
            FROM entry_exit
            WHERE location_id = ? AND timestamp BETWEEN ? AND ?
            GROUP BY type
            """,
            (location.id, start, end),
        )
        low, medium, high = UTILIZATION_BANDS
        utilization = self._select(
            f"""
            SELECT
                CASE
                    WHEN (count * 100.0 / ?) < {low} THEN 'low'
                    WHEN (count * 100.0 / ?) < {medium} THEN 'medium'
                    WHEN (count * 100.0 / ?) < {high} THEN 'high'
                    ELSE 'full'
                END as utilization_level,
                COUNT(*) as count
            FROM counts
            WHERE location_id = ? AND timestamp BETWEEN ? AND ?
            GROUP BY utilization_level
            """,
            (location.capacity, location.capacity, location.capacity, location.id, start, end),
        )
        return {
            "location": location.to_dict(),
            "summary": summary,
            "entry_exit": entry_exit,
            "utilization": utilization,
        }

    def export_csv(self, location_id: str, start: str, end: str, report_type: str = "counts") -> str:
        """
        Render counts or entry/exit rows as CSV, every value quoted.

        Raises:
            ValueError: Unknown report type.
        """
        if report_type not in CSV_COLUMNS:
            raise ValueError("Invalid report type")
        columns = CSV_COLUMNS[report_type]
        table = "counts" if report_type == "counts" else "entry_exit"
        rows = self._select(
            f"SELECT {', '.join(columns)} FROM {table} "
            "WHERE location_id = ? AND timestamp BETWEEN ? AND ? ORDER BY timestamp DESC, id DESC",
            (location_id, start, end),
        )

        buf = io.StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(columns)
        for row in rows:
            writer.writerow(["" if row[c] is None else row[c] for c in columns])
        return buf.getvalue()

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def cleanup_old_data(self, retention_days: int = 30) -> int:
        """
        Remove count and entry/exit rows older than the retention period.

        Returns:
            Number of rows deleted.
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(days=retention_days)).isoformat()
        with self._lock:
            try:
                conn = self._get_connection()
                deleted = conn.execute("DELETE FROM counts WHERE timestamp < ?", (cutoff,)).rowcount
                deleted += conn.execute("DELETE FROM entry_exit WHERE timestamp < ?", (cutoff,)).rowcount
                conn.commit()
            except sqlite3.Error as e:
                logging.error(f"Error cleaning up old data: {e}")
                return 0
        if deleted > 0:
            logging.info(f"Cleaned up {deleted} rows older than {retention_days} days")
        return deleted

    def row_counts(self) -> Dict[str, int]:
        """Rows per table, for the health endpoint."""
        counts = {}
        for table in ("locations", "counts", "entry_exit"):
            rows = self._select(f"SELECT COUNT(*) AS n FROM {table}", ())
            counts[table] = rows[0]["n"]
        return counts

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
                logging.info("Database connection closed")
