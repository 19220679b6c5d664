"""SQLite mileage log for finalized trip records and their routes."""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
import sqlite3
from typing import List, Optional

from PySide6.QtCore import QObject, Signal

from mileage_tracker.models.data_records import RoutePoint
from mileage_tracker.models.trip_record import TrackingMode, TripRecord
from mileage_tracker.services import deduction

logger = logging.getLogger(__name__)


def get_data_dir() -> Path:
    """Get the data directory, creating if needed."""
    if sys.platform.startswith("linux"):
        data_dir = Path.home() / ".local" / "share" / "mileage_tracker"
    else:
        # Windows/Mac
        data_dir = Path.home() / ".mileage_tracker"

    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


# SQL schema
SCHEMA = """
-- Finalized trips
CREATE TABLE IF NOT EXISTS mileage_logs (
    id TEXT PRIMARY KEY,
    date REAL NOT NULL,
    tracking_mode TEXT NOT NULL,
    distance_km REAL DEFAULT 0,
    is_round_trip INTEGER DEFAULT 0,
    start_location TEXT DEFAULT '',
    end_location TEXT DEFAULT '',
    start_lat REAL,
    start_lon REAL,
    end_lat REAL,
    end_lon REAL,
    trip_start_ts REAL,
    trip_end_ts REAL,
    duration_secs REAL,
    purpose TEXT DEFAULT '',
    notes TEXT DEFAULT '',
    client_id TEXT,
    job_id TEXT,
    was_route_calculated INTEGER DEFAULT 0,
    calculated_distance_km REAL,
    expected_travel_time REAL,
    destination_name TEXT,
    destination_lat REAL,
    destination_lon REAL,
    destination_source TEXT,
    created_at REAL NOT NULL
);

-- Route points owned by a trip
CREATE TABLE IF NOT EXISTS trip_route_points (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trip_id TEXT NOT NULL,
    ts REAL NOT NULL,
    lat REAL NOT NULL,
    lon REAL NOT NULL,
    altitude_m REAL,
    speed_mps REAL,
    course_deg REAL,
    FOREIGN KEY (trip_id) REFERENCES mileage_logs(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_route_points_trip ON trip_route_points(trip_id);
CREATE INDEX IF NOT EXISTS idx_mileage_logs_date ON mileage_logs(date);
"""

TRIP_COLUMNS = """
    id, date, tracking_mode, distance_km, is_round_trip,
    start_location, end_location, start_lat, start_lon, end_lat, end_lon,
    trip_start_ts, trip_end_ts, duration_secs, purpose, notes, client_id, job_id,
    was_route_calculated, calculated_distance_km, expected_travel_time,
    destination_name, destination_lat, destination_lon, destination_source, created_at
"""


class MileageLogService(QObject):
    """
    SQLite store for finalized trips.

    This is where a TripRecord ends up once a tracking session stops, a
    recovered trip is saved, or a capture mode produces one.
    """

    # Signals
    trip_saved = Signal(str)  # trip id
    trip_deleted = Signal(str)  # trip id
    error_occurred = Signal(str)  # error message

    def __init__(self, db_path: Optional[Path] = None):
        super().__init__()
        self._db_path = db_path or (get_data_dir() / "mileage_tracker.db")
        self._conn: Optional[sqlite3.Connection] = None
        self._initialized = False

    def initialize(self) -> bool:
        """Initialize the database connection and schema."""
        try:
            self._conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,  # We handle threading via Qt
                isolation_level=None,  # Autocommit mode
            )
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")  # Write-ahead logging
            self._conn.executescript(SCHEMA)
            self._initialized = True
            return True
        except sqlite3.Error as e:
            self._report(f"Database init failed: {e}")
            return False

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            self._initialized = False

    def _report(self, message: str) -> None:
        logger.error(message)
        self.error_occurred.emit(message)

    def insert_trip(self, record: TripRecord) -> bool:
        """
        Insert a finalized trip and its route points.

        Args:
            record: The trip to store

        Returns:
            True if successful
        """
        if not self._initialized:
            if not self.initialize():
                return False

        try:
            self._conn.execute("BEGIN")
            self._conn.execute(
                f"INSERT INTO mileage_logs ({TRIP_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.date,
                    record.tracking_mode.value,
                    record.distance_km,
                    int(record.is_round_trip),
                    record.start_location,
                    record.end_location,
                    record.start_latitude,
                    record.start_longitude,
                    record.end_latitude,
                    record.end_longitude,
                    record.trip_start_time,
                    record.trip_end_time,
                    record.duration_secs,
                    record.purpose,
                    record.notes,
                    record.client_id,
                    record.job_id,
                    int(record.was_route_calculated),
                    record.calculated_distance_km,
                    record.expected_travel_time,
                    record.destination_name,
                    record.destination_latitude,
                    record.destination_longitude,
                    record.destination_source_raw,
                    record.created_at,
                ),
            )
            self._conn.executemany(
                """
                INSERT INTO trip_route_points (
                    trip_id, ts, lat, lon, altitude_m, speed_mps, course_deg
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (record.id, p.timestamp, p.latitude, p.longitude, p.altitude, p.speed, p.course)
                    for p in record.route_points
                ],
            )
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            self._report(f"Insert trip failed: {e}")
            return False

        logger.info(
            "Saved %s trip %s: %.1f km", record.tracking_mode.value, record.id, record.effective_distance_km
        )
        self.trip_saved.emit(record.id)
        return True

    def get_trip(self, trip_id: str) -> Optional[TripRecord]:
        """
        Get a trip with its route points.

        Args:
            trip_id: The trip to query

        Returns:
            The trip, or None if not found
        """
        if not self._initialized:
            return None

        try:
            cursor = self._conn.execute(
                f"SELECT {TRIP_COLUMNS} FROM mileage_logs WHERE id = ?",
                (trip_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            record = self._row_to_record(row)
            record.route_points = self.get_route_points(trip_id)
            return record
        except sqlite3.Error as e:
            self._report(f"Get trip failed: {e}")
            return None

    def get_route_points(self, trip_id: str) -> List[RoutePoint]:
        """Route points for a trip in timestamp order."""
        if not self._initialized:
            return []

        try:
            cursor = self._conn.execute(
                """
                SELECT ts, lat, lon, altitude_m, speed_mps, course_deg
                FROM trip_route_points
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
        except sqlite3.Error as e:
            self._report(f"Get route points failed: {e}")
            return []

    def get_recent_trips(self, limit: int = 20) -> List[TripRecord]:
        """
        Get recent trips (without route points), newest first.

        Args:
            limit: Maximum number of trips to return
        """
        if not self._initialized:
            if not self.initialize():
                return []

        try:
            cursor = self._conn.execute(
                f"SELECT {TRIP_COLUMNS} FROM mileage_logs ORDER BY date DESC LIMIT ?",
                (limit,),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            self._report(f"Get trips failed: {e}")
            return []

    def get_trips_for_year(self, year: int) -> List[TripRecord]:
        """Trips dated within a calendar year, oldest first."""
        if not self._initialized:
            if not self.initialize():
                return []

        start_ts = datetime(year, 1, 1).timestamp()
        end_ts = datetime(year + 1, 1, 1).timestamp()

        try:
            cursor = self._conn.execute(
                f"SELECT {TRIP_COLUMNS} FROM mileage_logs WHERE date >= ? AND date < ? ORDER BY date",
                (start_ts, end_ts),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            self._report(f"Get trips for year failed: {e}")
            return []

    def get_yearly_summary(
        self,
        year: int,
        first_tier_limit_km: float = deduction.FIRST_TIER_LIMIT_KM,
        first_tier_rate: float = deduction.FIRST_TIER_RATE,
        second_tier_rate: float = deduction.SECOND_TIER_RATE,
    ) -> deduction.MileageSummary:
        """Mileage and deduction for a tax year, tiers applied to the yearly total."""
        return deduction.summarize(
            self.get_trips_for_year(year), first_tier_limit_km, first_tier_rate, second_tier_rate
        )

    def get_trip_deduction(
        self,
        record: TripRecord,
        first_tier_limit_km: float = deduction.FIRST_TIER_LIMIT_KM,
        first_tier_rate: float = deduction.FIRST_TIER_RATE,
        second_tier_rate: float = deduction.SECOND_TIER_RATE,
    ) -> float:
        """Marginal deduction of one trip given the trips logged before it that year."""
        year = datetime.fromtimestamp(record.date).year
        year_to_date_km = sum(
            r.effective_distance_km
            for r in self.get_trips_for_year(year)
            if r.id != record.id and r.date < record.date
        )
        return deduction.trip_deduction(
            record, year_to_date_km, first_tier_limit_km, first_tier_rate, second_tier_rate
        )

    def delete_trip(self, trip_id: str) -> bool:
        """
        Delete a trip and its route points.

        Args:
            trip_id: The trip to delete

        Returns:
            True if a trip was deleted
        """
        if not self._initialized:
            return False

        try:
            # Foreign key cascade handles route points
            cursor = self._conn.execute("DELETE FROM mileage_logs WHERE id = ?", (trip_id,))
        except sqlite3.Error as e:
            self._report(f"Delete trip failed: {e}")
            return False

        if cursor.rowcount > 0:
            self.trip_deleted.emit(trip_id)
            return True
        return False

    @staticmethod
    def _row_to_record(row: tuple) -> TripRecord:
        return TripRecord(
            id=row[0],
            date=row[1],
            tracking_mode=TrackingMode(row[2]),
            distance_km=row[3] or 0.0,
            is_round_trip=bool(row[4]),
            start_location=row[5] or "",
            end_location=row[6] or "",
            start_latitude=row[7],
            start_longitude=row[8],
            end_latitude=row[9],
            end_longitude=row[10],
            trip_start_time=row[11],
            trip_end_time=row[12],
            duration_secs=row[13],
            purpose=row[14] or "",
            notes=row[15] or "",
            client_id=row[16],
            job_id=row[17],
            was_route_calculated=bool(row[18]),
            calculated_distance_km=row[19],
            expected_travel_time=row[20],
            destination_name=row[21],
            destination_latitude=row[22],
            destination_longitude=row[23],
            destination_source_raw=row[24],
            created_at=row[25],
        )
