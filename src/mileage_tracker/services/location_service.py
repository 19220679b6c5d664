"""Location providers: gpsd for real hardware and a simulated drive for development."""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from datetime import datetime
from typing import Optional, Protocol

from PySide6.QtCore import QObject, Signal, Slot

from mileage_tracker.models.data_records import GeoSample
from mileage_tracker.services.errors import LocationDeniedError, LocationUnavailableError

logger = logging.getLogger(__name__)


class LocationProvider(Protocol):
    """
    What the trip manager needs from a location source.

    Implementations are QObjects exposing a ``sample_received = Signal(object)``
    that carries GeoSamples while updates are on.
    """

    sample_received: Signal

    def request_authorization(self) -> bool: ...

    async def current_sample(self) -> GeoSample: ...

    def start_updates(self) -> None: ...

    def stop_updates(self) -> None: ...


def parse_tpv(report: dict) -> Optional[GeoSample]:
    """
    Parse a gpsd TPV (Time-Position-Velocity) report.

    Args:
        report: The gpsd TPV report dictionary

    Returns:
        GeoSample, or None if the report has no 2D/3D fix
    """
    # Mode: 0=unknown, 1=no fix, 2=2D fix, 3=3D fix
    mode = report.get("mode", 0)
    lat = report.get("lat")
    lon = report.get("lon")
    if mode < 2 or lat is None or lon is None:
        return None

    sample = GeoSample(latitude=lat, longitude=lon, timestamp=_report_time(report))

    speed = report.get("speed")
    if speed is not None:
        sample.speed = float(speed)

    track = report.get("track")
    if track is not None:
        sample.course = float(track) % 360

    # Altitude only meaningful with 3D fix
    if mode >= 3:
        alt = report.get("altMSL", report.get("alt"))
        if alt is not None:
            sample.altitude = float(alt)

    # Horizontal error estimate (meters); gpsd reports eph or per-axis epx/epy
    eph = report.get("eph")
    if eph is None and report.get("epx") is not None and report.get("epy") is not None:
        eph = max(report["epx"], report["epy"])
    if eph is not None:
        sample.horizontal_accuracy = float(eph)

    return sample


def _report_time(report: dict) -> float:
    stamp = report.get("time")
    if isinstance(stamp, str):
        try:
            return datetime.fromisoformat(stamp.replace("Z", "+00:00")).timestamp()
        except ValueError:
            pass
    return time.time()


class GpsdLocationProvider(QObject):
    """
    Location provider backed by gpsd.

    ``start`` runs a blocking poll loop, so move the provider to a QThread
    and connect ``QThread.started`` to it. Samples are only emitted while
    updates are on (``start_updates``), and cross back to the consumer's
    thread through a queued signal connection.

    Handles connection failures with automatic retry.
    """

    # Signals
    sample_received = Signal(object)  # GeoSample
    connection_status = Signal(bool, str)  # connected, message

    # Configuration
    RECONNECT_DELAY = 5.0  # seconds

    def __init__(self, host: str = "localhost", port: int = 2947):
        super().__init__()
        self._host = host
        self._port = port
        self._running = False
        self._delivering = False
        self._connected = False
        self._gpsd = None

    def request_authorization(self) -> bool:
        """gpsd has no permission model; access is always granted."""
        return True

    def start_updates(self) -> None:
        self._delivering = True

    def stop_updates(self) -> None:
        self._delivering = False

    @Slot()
    def start(self) -> None:
        """Start the GPS polling loop."""
        self._running = True
        self._run_loop()

    @Slot()
    def stop(self) -> None:
        """Stop the GPS polling loop."""
        self._running = False
        self._disconnect()

    def _open_session(self):
        import gps

        return gps.gps(host=self._host, port=self._port, mode=gps.WATCH_ENABLE)

    def _connect(self) -> bool:
        """Connect to gpsd."""
        try:
            self._gpsd = self._open_session()
            self._connected = True
            self.connection_status.emit(True, "Connected to gpsd")
            return True
        except ImportError:
            self.connection_status.emit(False, "gps client module not installed")
            return False
        except Exception as e:
            self.connection_status.emit(False, f"gpsd connection failed: {e}")
            self._connected = False
            return False

    def _disconnect(self) -> None:
        """Disconnect from gpsd."""
        if self._gpsd:
            try:
                self._gpsd.close()
            except Exception as e:
                logger.debug("gpsd close failed: %s", e)
            self._gpsd = None
        self._connected = False

    def _run_loop(self) -> None:
        """Main polling loop."""
        while self._running:
            try:
                if not self._connected:
                    if not self._connect():
                        time.sleep(self.RECONNECT_DELAY)
                        continue

                report = self._gpsd.next()

                if report.get("class") == "TPV":
                    sample = parse_tpv(report)
                    if sample is not None and self._delivering:
                        self.sample_received.emit(sample)

                # Small sleep to prevent tight loop
                time.sleep(0.05)

            except StopIteration:
                # No data available, wait briefly
                time.sleep(0.1)
            except Exception as e:
                self.connection_status.emit(False, f"GPS error: {e}")
                self._disconnect()
                if self._running:
                    time.sleep(self.RECONNECT_DELAY)

    async def current_sample(self) -> GeoSample:
        """
        Read one fix from gpsd on a worker thread.

        Raises:
            LocationUnavailableError: gpsd unreachable or no fix produced
        """
        return await asyncio.to_thread(self._read_single_fix)

    def _read_single_fix(self, max_reports: int = 50) -> GeoSample:
        try:
            session = self._open_session()
        except ImportError as e:
            raise LocationUnavailableError("gps client module not installed") from e
        except Exception as e:
            raise LocationUnavailableError(f"gpsd connection failed: {e}") from e

        try:
            for _ in range(max_reports):
                report = session.next()
                if report.get("class") == "TPV":
                    sample = parse_tpv(report)
                    if sample is not None:
                        return sample
        except StopIteration as e:
            raise LocationUnavailableError("gpsd stream ended") from e
        except Exception as e:
            raise LocationUnavailableError(f"GPS error: {e}") from e
        finally:
            session.close()

        raise LocationUnavailableError("No GPS fix")


class MockLocationProvider(QObject):
    """
    Mock location provider for development/testing without GPS hardware.

    Simulates driving away from a starting point. Each ``mock_tick`` advances
    a simulated clock by ``tick_secs`` and emits a sample while updates are on.
    """

    # Signals (same as real provider)
    sample_received = Signal(object)  # GeoSample
    connection_status = Signal(bool, str)  # connected, message

    def __init__(
        self,
        lat: float = 53.5461,
        lon: float = -113.4938,
        tick_secs: float = 1.0,
        seed: Optional[int] = None,
    ):
        super().__init__()
        self._delivering = False
        self._rng = random.Random(seed)

        # Starting position (Edmonton area)
        self._lat = lat
        self._lon = lon
        self._altitude = 670.0
        self._heading = 45.0
        self._speed_mps = 0.0

        self._clock = time.time()
        self._tick_secs = tick_secs
        self._time_counter = 0

        # Failure simulation
        self.denied = False
        self.available = True
        self.fix_delay = 0.0  # seconds before current_sample answers

    def request_authorization(self) -> bool:
        return not self.denied

    @Slot()
    def start_updates(self) -> None:
        self._delivering = True
        self.connection_status.emit(True, "Mock GPS active")

    @Slot()
    def stop_updates(self) -> None:
        self._delivering = False

    def _sample(self) -> GeoSample:
        return GeoSample(
            latitude=self._lat,
            longitude=self._lon,
            altitude=self._altitude,
            speed=self._speed_mps,
            course=self._heading,
            horizontal_accuracy=5.0,
            timestamp=self._clock,
        )

    async def current_sample(self) -> GeoSample:
        """
        Return the simulated current position.

        Raises:
            LocationDeniedError: if ``denied`` is set
            LocationUnavailableError: if ``available`` is cleared
        """
        if self.denied:
            raise LocationDeniedError()
        if self.fix_delay > 0:
            await asyncio.sleep(self.fix_delay)
        if not self.available:
            raise LocationUnavailableError()
        return self._sample()

    def mock_tick(self) -> None:
        """
        Advance the simulation and emit a sample.

        Call this from a QTimer.
        """
        self._time_counter += 1
        self._clock += self._tick_secs

        # Stopped at a light every 30 ticks, otherwise 40-100 km/h
        if self._time_counter % 30 < 3:
            self._speed_mps = self._rng.uniform(0, 0.5)
        else:
            self._speed_mps = self._rng.uniform(11, 28)

        distance_m = self._speed_mps * self._tick_secs
        if distance_m > 0:
            # Meters to degrees (small-distance approximation)
            dlat = distance_m * math.cos(math.radians(self._heading)) / 111_320
            dlon = (
                distance_m
                * math.sin(math.radians(self._heading))
                / (111_320 * math.cos(math.radians(self._lat)))
            )
            self._lat += dlat
            self._lon += dlon

            # Slowly vary heading (simulates turns)
            self._heading = (self._heading + self._rng.uniform(-5, 5)) % 360

        self._altitude += self._rng.uniform(-1, 1)

        if self._delivering:
            self.sample_received.emit(self._sample())
