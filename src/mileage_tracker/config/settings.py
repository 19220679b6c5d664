"""Application settings with persistence."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class BatteryProfile(Enum):
    """GPS accuracy versus battery trade-off."""

    HIGH = "high"  # Best accuracy, most battery usage
    BALANCED = "balanced"  # Good accuracy, moderate battery
    LOW = "low"  # Basic accuracy, battery saver


# (max horizontal accuracy m, minimum movement m) per profile
BATTERY_PROFILES = {
    BatteryProfile.HIGH: (65.0, 5.0),
    BatteryProfile.BALANCED: (100.0, 20.0),
    BatteryProfile.LOW: (200.0, 100.0),
}


@dataclass
class Settings:
    """
    Application settings with defaults and JSON persistence.

    All distances are in meters unless the name says km.
    All speeds are in meters per second.
    """

    # Sample filtering
    max_horizontal_accuracy_m: float = 100.0
    max_plausible_speed_mps: float = 70.0  # ~250 km/h
    min_movement_m: float = 0.0  # 0 disables the jitter filter

    # Crash-recovery snapshots
    snapshot_interval_sec: int = 30
    snapshot_batch_size: int = 20  # unflushed points that force an early snapshot
    stale_after_hours: float = 24.0

    # Single location capture
    location_timeout_sec: float = 30.0

    # CRA mileage rates (2024/2025): first 5,000 km at $0.70, remainder at $0.64
    first_tier_limit_km: float = 5000.0
    first_tier_rate: float = 0.70
    second_tier_rate: float = 0.64

    # Routing/geocoding providers
    routing_base_url: str = "https://router.project-osrm.org"
    geocoding_base_url: str = "https://nominatim.openstreetmap.org"
    http_timeout_sec: float = 20.0

    @classmethod
    def load(cls, path: Optional[Path] = None) -> Settings:
        """
        Load settings from JSON file.

        Args:
            path: Optional custom path. Uses default if None.

        Returns:
            Settings instance (defaults if file doesn't exist or fails)
        """
        if path is None:
            path = cls._default_path()

        try:
            if path.exists():
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
                # Filter to only known fields (ignore obsolete settings)
                known_fields = {f.name for f in cls.__dataclass_fields__.values()}
                filtered = {k: v for k, v in data.items() if k in known_fields}
                return cls(**filtered)
        except Exception as e:
            logger.warning("Failed to load settings: %s", e)

        return cls()

    def save(self, path: Optional[Path] = None) -> bool:
        """
        Save settings to JSON file.

        Args:
            path: Optional custom path. Uses default if None.

        Returns:
            True if saved successfully
        """
        if path is None:
            path = self._default_path()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(asdict(self), f, indent=2)
            return True
        except Exception as e:
            logger.warning("Failed to save settings: %s", e)
            return False

    @staticmethod
    def _default_path() -> Path:
        """Get default settings file location."""
        if sys.platform.startswith("linux"):
            base = Path.home() / ".local" / "share" / "mileage_tracker"
        else:
            base = Path.home() / ".mileage_tracker"
        return base / "settings.json"

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        defaults = Settings()
        for field_name in self.__dataclass_fields__:
            setattr(self, field_name, getattr(defaults, field_name))

    def apply_battery_profile(self, profile: BatteryProfile) -> None:
        """Set accuracy threshold and jitter filter from a battery profile."""
        accuracy, movement = BATTERY_PROFILES[profile]
        self.max_horizontal_accuracy_m = accuracy
        self.min_movement_m = movement

    @property
    def stale_after_secs(self) -> float:
        """Get stale threshold in seconds (for trip recovery)."""
        return self.stale_after_hours * 60 * 60

    @property
    def snapshot_interval_ms(self) -> int:
        """Get snapshot interval in milliseconds (for QTimer)."""
        return int(self.snapshot_interval_sec * 1000)
