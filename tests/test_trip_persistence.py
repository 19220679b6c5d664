"""
Trip State Store Tests
======================

Snapshot file and route log for the active trip slot.
"""

import json

import pytest

from mileage_tracker.models.data_records import RoutePoint
from mileage_tracker.models.snapshot import PersistedTripSnapshot
from mileage_tracker.models.trip_record import TrackingMode
from mileage_tracker.services.errors import PersistenceError
from mileage_tracker.services.trip_persistence import TripStateStore, is_stale


def _snapshot(**kwargs):
    return PersistedTripSnapshot(tracking_mode=TrackingMode.ACTIVE_TRACKING, purpose="Site visit", **kwargs)


class TestSnapshot:
    """Tests for save/load/clear of the snapshot file."""

    def test_load_when_absent(self, store):
        assert store.load() is None
        assert not store.has_snapshot()

    def test_save_and_load(self, store):
        snap = _snapshot(start_latitude=53.5, start_longitude=-113.5, distance_m=1234.5, client_id="c1")
        store.save(snap)

        loaded = store.load()
        assert loaded.trip_id == snap.trip_id
        assert loaded.tracking_mode is TrackingMode.ACTIVE_TRACKING
        assert loaded.purpose == "Site visit"
        assert loaded.distance_m == 1234.5
        assert loaded.client_id == "c1"
        assert loaded.start_coordinate.latitude == 53.5

    def test_save_stamps_last_saved_at(self, store):
        snap = _snapshot(last_saved_at=0.0)
        store.save(snap)
        assert snap.last_saved_at > 0
        assert store.load().last_saved_at == snap.last_saved_at

    def test_corrupt_snapshot_treated_as_absent(self, store):
        store.snapshot_path.write_text("{not json", encoding="utf-8")
        assert store.load() is None
        # Moved aside so it no longer blocks tracking
        assert not store.snapshot_path.exists()
        assert store.snapshot_path.with_suffix(".json.broken").exists()

    def test_snapshot_missing_fields_treated_as_absent(self, store):
        store.snapshot_path.write_text('{"purpose": "x"}', encoding="utf-8")
        assert store.load() is None

    @pytest.mark.parametrize("text", ["null", "[]", "42", '"trip"'])
    def test_snapshot_not_an_object_treated_as_absent(self, store, text):
        store.snapshot_path.write_text(text, encoding="utf-8")
        assert store.load() is None
        assert not store.has_snapshot()
        assert store.snapshot_path.with_suffix(".json.broken").exists()

    @pytest.mark.parametrize(
        "field_name, value",
        [
            ("distance_m", "1200"),
            ("route_point_count", "12"),
            ("route_point_count", 1.5),
            ("calculated_distance_m", [1.0]),
            ("start_latitude", "53.5"),
            ("last_saved_at", None),
        ],
    )
    def test_mistyped_field_treated_as_absent(self, store, field_name, value):
        data = _snapshot().to_dict()
        data[field_name] = value
        store.snapshot_path.write_text(json.dumps(data), encoding="utf-8")
        assert store.load() is None

    def test_unknown_fields_ignored(self, store):
        snap = _snapshot()
        data = snap.to_dict()
        data["added_in_a_later_version"] = True
        assert PersistedTripSnapshot.from_dict(data).trip_id == snap.trip_id

    def test_clear_is_idempotent(self, store):
        store.save(_snapshot())
        store.clear()
        store.clear()
        assert store.load() is None

    def test_clear_on_fresh_directory(self, tmp_path):
        TripStateStore(tmp_path / "nothing-here").clear()

    def test_save_failure_raises_persistence_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        # Parent "directory" is a regular file
        bad = TripStateStore(blocker)
        with pytest.raises(PersistenceError):
            bad.save(_snapshot())


class TestRouteLog:
    """Tests for the append-only route point log."""

    def test_append_and_load_in_order(self, store):
        written = store.append_route_points(
            "t1",
            [
                RoutePoint(53.001, -113.0, 10.0, speed=12.5),
                RoutePoint(53.0, -113.0, 0.0),
            ],
        )
        assert written == 2
        points = store.load_route_points("t1")
        assert [p.timestamp for p in points] == [0.0, 10.0]
        assert points[1].speed == 12.5

    def test_empty_batch_writes_nothing(self, store):
        assert store.append_route_points("t1", []) == 0

    def test_points_are_per_trip(self, store):
        store.append_route_points("t1", [RoutePoint(53.0, -113.0, 0.0)])
        store.append_route_points("t2", [RoutePoint(54.0, -113.0, 0.0)])
        assert len(store.load_route_points("t1")) == 1
        assert store.load_route_points("t3") == []

    def test_persisted_distance(self, store):
        store.append_route_points("t1", [RoutePoint(53.0, -113.0, 0.0), RoutePoint(53.001, -113.0, 10.0)])
        assert store.persisted_distance_m("t1") == pytest.approx(111.2, abs=0.5)

    def test_clear_removes_route_log(self, store):
        store.append_route_points("t1", [RoutePoint(53.0, -113.0, 0.0)])
        store.clear()
        assert store.load_route_points("t1") == []

    def test_route_log_survives_reopen(self, tmp_path):
        first = TripStateStore(tmp_path)
        first.initialize()
        first.append_route_points("t1", [RoutePoint(53.0, -113.0, 0.0)])
        first.close()

        second = TripStateStore(tmp_path)
        assert len(second.load_route_points("t1")) == 1
        second.close()


class TestStaleness:
    """Tests for is_stale."""

    def test_fresh_snapshot(self):
        snap = _snapshot(last_saved_at=1000.0)
        assert not is_stale(snap, now=1000.0 + 3600)

    def test_stale_after_24_hours(self):
        snap = _snapshot(last_saved_at=1000.0)
        assert is_stale(snap, now=1000.0 + 24 * 3600 + 1)

    def test_custom_threshold(self):
        snap = _snapshot(last_saved_at=1000.0)
        assert is_stale(snap, now=1061.0, max_age_secs=60)
