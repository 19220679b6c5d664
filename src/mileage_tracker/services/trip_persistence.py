"""Durable storage for the in-progress trip: JSON snapshot plus SQLite route log."""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Iterable, List, Optional

from mileage_tracker.models.data_records import RoutePoint
from mileage_tracker.models.snapshot import PersistedTripSnapshot
from mileage_tracker.services.errors import PersistenceError
from mileage_tracker.services.mileage_log_service import get_data_dir
from mileage_tracker.utils.geo import path_length_meters

logger = logging.getLogger(__name__)

STALE_AFTER_SECS = 24 * 60 * 60

# SQL schema
SCHEMA = """
-- Append-only route log for the single active trip slot
CREATE TABLE IF NOT EXISTS active_route_points (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trip_id TEXT NOT NULL,
    ts REAL NOT NULL,
    lat REAL NOT NULL,
    lon REAL NOT NULL,
    altitude_m REAL,
    speed_mps REAL,
    course_deg REAL
);

CREATE INDEX IF NOT EXISTS idx_active_route_trip ON active_route_points(trip_id, ts);
"""


def is_stale(
    snapshot: PersistedTripSnapshot,
    now: Optional[float] = None,
    max_age_secs: float = STALE_AFTER_SECS,
) -> bool:
    """True when the snapshot was last written more than ``max_age_secs`` ago."""
    return snapshot.age_secs(now) > max_age_secs


class TripStateStore:
    """
    Single-slot store for the trip currently being recorded.

    The snapshot is a small JSON document replaced atomically on every
    save. Route points are appended to a SQLite table keyed by trip id so
    a snapshot never has to rewrite the whole route.

    Write methods raise PersistenceError; reads degrade to "nothing stored".
    """

    SNAPSHOT_FILE = "active_trip.json"
    ROUTE_DB_FILE = "active_trip_route.db"

    def __init__(self, data_dir: Optional[Path] = None):
        data_dir = data_dir or get_data_dir()
        self._snapshot_path = data_dir / self.SNAPSHOT_FILE
        self._db_path = data_dir / self.ROUTE_DB_FILE
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def snapshot_path(self) -> Path:
        return self._snapshot_path

    def initialize(self) -> bool:
        """Open the route log and create the schema."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,  # We handle threading via Qt
                isolation_level=None,  # Autocommit mode
            )
            self._conn.execute("PRAGMA journal_mode = WAL")  # Write-ahead logging
            self._conn.executescript(SCHEMA)
            return True
        except (OSError, sqlite3.Error) as e:
            logger.error("Route log init failed: %s", e)
            self._conn = None
            return False

    def close(self) -> None:
        """Close the route log connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None and not self.initialize():
            raise PersistenceError(f"Route log unavailable: {self._db_path}")
        return self._conn

    # ---------- Snapshot ----------

    def save(self, snapshot: PersistedTripSnapshot) -> None:
        """
        Write the snapshot, stamping ``last_saved_at``.

        Raises:
            PersistenceError: if the file could not be written
        """
        snapshot.last_saved_at = time.time()
        tmp = self._snapshot_path.with_suffix(".tmp")
        try:
            self._snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(snapshot.to_dict(), indent=2), encoding="utf-8")
            tmp.replace(self._snapshot_path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save trip state: {e}") from e

    def load(self) -> Optional[PersistedTripSnapshot]:
        """
        Load the snapshot.

        Returns:
            The snapshot, or None if absent or unreadable. Unreadable files
            are moved aside to ``*.broken`` so they stop blocking tracking.
        """
        if not self._snapshot_path.exists():
            return None

        try:
            text = self._snapshot_path.read_text(encoding="utf-8")
            return PersistedTripSnapshot.from_dict(json.loads(text))
        except OSError as e:
            logger.warning("Failed to read trip state: %s", e)
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding corrupt trip state: %s", e)
            self._quarantine()
            return None

    def has_snapshot(self) -> bool:
        return self.load() is not None

    def clear(self) -> None:
        """
        Remove the snapshot and the route log. No-op when nothing is stored.

        Raises:
            PersistenceError: if the state could not be removed
        """
        try:
            self._snapshot_path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to clear trip state: {e}") from e

        if self._conn is None and not self._db_path.exists():
            return
        try:
            self._connection().execute("DELETE FROM active_route_points")
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to clear route log: {e}") from e

    def _quarantine(self) -> None:
        backup = self._snapshot_path.with_suffix(self._snapshot_path.suffix + ".broken")
        try:
            self._snapshot_path.replace(backup)
        except OSError as e:
            logger.warning("Could not move corrupt trip state aside: %s", e)

    # ---------- Route log ----------

    def append_route_points(self, trip_id: str, points: Iterable[RoutePoint]) -> int:
        """
        Append points to the route log in one transaction.

        Returns:
            Number of points written

        Raises:
            PersistenceError: if the write failed (nothing is written)
        """
        rows = [
            (trip_id, p.timestamp, p.latitude, p.longitude, p.altitude, p.speed, p.course)
            for p in points
        ]
        if not rows:
            return 0

        conn = self._connection()
        try:
            conn.execute("BEGIN")
            conn.executemany(
                """
                INSERT INTO active_route_points (
                    trip_id, ts, lat, lon, altitude_m, speed_mps, course_deg
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.execute("COMMIT")
            return len(rows)
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise PersistenceError(f"Failed to save route points: {e}") from e

    def load_route_points(self, trip_id: str) -> List[RoutePoint]:
        """Route points logged for a trip, in timestamp order ([] on error)."""
        if self._conn is None and not self._db_path.exists():
            return []

        try:
            cursor = self._connection().execute(
                """
                SELECT ts, lat, lon, altitude_m, speed_mps, course_deg
                FROM active_route_points
                WHERE trip_id = ?
                ORDER BY ts, id
                """,
                (trip_id,),
            )
            return [
                RoutePoint(
                    timestamp=row[0],
                    latitude=row[1],
                    longitude=row[2],
                    altitude=row[3],
                    speed=row[4],
                    course=row[5],
                )
                for row in cursor.fetchall()
            ]
        except (PersistenceError, sqlite3.Error) as e:
            logger.warning("Failed to load route points: %s", e)
            return []

    def persisted_distance_m(self, trip_id: str) -> float:
        """Path length of the logged route in meters."""
        return path_length_meters(self.load_route_points(trip_id))
