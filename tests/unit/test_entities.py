"""
Unit tests for domain entities and the error taxonomy.
"""
from datetime import datetime, timezone

from site_aggregator.domain.entities import QualityFlags, Reading, SourceUpdate
from site_aggregator.exceptions import (
    CollectorError,
    ConfigError,
    PersistenceError,
    UnknownCollectorError,
)
from tests.factories import SourceFactory


class TestSource:

    def test_collector_key(self):
        assert SourceFactory(name="current_time", test_type=None).collector_key == "current_time"
        assert SourceFactory(name="gateway", test_type="ping").collector_key == "ping"

    def test_signature_ignores_argument_order(self):
        a = SourceFactory(id=1, name="s", arguments={"x": 1, "y": 2})
        b = SourceFactory(id=1, name="s", arguments={"y": 2, "x": 1})

        assert a.config_signature() == b.config_signature()

    def test_signature_ignores_bookkeeping(self):
        source = SourceFactory()
        touched = SourceFactory(
            id=source.id,
            name=source.name,
            description="changed",
            last_run=datetime.now(timezone.utc),
        )

        assert source.config_signature() == touched.config_signature()

    def test_to_dict(self):
        source = SourceFactory(name="probe", arguments={"path": "/tmp"})

        data = source.to_dict()

        assert data["name"] == "probe"
        assert data["arguments"] == {"path": "/tmp"}
        assert data["last_run"] is None


class TestSourceUpdate:

    def test_only_set_fields(self):
        assert SourceUpdate(active=False, interval_seconds=5).changes() == {
            "active": False,
            "interval_seconds": 5,
        }
        assert SourceUpdate().changes() == {}


class TestReading:

    def test_flags(self):
        flags = QualityFlags.COLLECTOR_ERROR | QualityFlags.STALE

        assert int(flags) == 3
        assert QualityFlags.STALE in flags
        assert QualityFlags.PARSE_ERROR not in flags

    def test_to_dict(self):
        reading = Reading(
            id=1,
            source_id=2,
            timestamp=datetime(2025, 8, 4, tzinfo=timezone.utc),
            data={"v": 1},
            quality_flags=QualityFlags.PARSE_ERROR,
        )

        assert not reading.is_ok
        assert reading.to_dict() == {
            "id": 1,
            "source_id": 2,
            "timestamp": "2025-08-04T00:00:00+00:00",
            "data": {"v": 1},
            "quality_flags": 4,
        }


class TestExceptions:

    def test_unknown_collector(self):
        error = UnknownCollectorError("mystery", source_id=3)

        assert isinstance(error, CollectorError)
        assert error.to_dict() == {
            "error": "COLLECTOR_ERROR",
            "message": "Unknown collector type: mystery",
            "details": {"kind": "unknown", "collector": "mystery", "source_id": 3},
        }

    def test_codes(self):
        assert ConfigError("x").code == "CONFIG_ERROR"
        assert PersistenceError("x", operation="record_poll").details["operation"] == "record_poll"
