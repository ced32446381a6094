"""Tests for payload parsing and the ingestion pipeline."""

import datetime
import logging
from unittest.mock import MagicMock, patch

import pytest

from auth import AuthState, compute_mac
from config import RealtimeConfig, ServerConfig, TrackerApiConfig
from errors import IngestionError, TransactionFailure, ValidationError
from models import Event, EventExtensionType, EventExtensionValue, EventLocation, EventSession, Tracker
from parsing import is_extension_key, parse_coordinate, parse_timestamp
from pipeline import IngestionPipeline, map_api_event_to_internal


# =====================================================================
# Parsing
# =====================================================================

class TestParsing:
    def test_timestamp_with_offset_normalized_to_utc(self):
        assert parse_timestamp("2012-01-08T12:30:01.000+0200") == datetime.datetime(2012, 1, 8, 10, 30, 1)

    def test_timestamp_zulu(self):
        assert parse_timestamp("2024-01-15T08:00:00Z") == datetime.datetime(2024, 1, 15, 8, 0, 0)

    def test_naive_timestamp_kept(self):
        assert parse_timestamp("2024-01-15T08:00:00.250") == datetime.datetime(2024, 1, 15, 8, 0, 0, 250000)

    def test_bad_timestamp(self):
        with pytest.raises(ValidationError):
            parse_timestamp("yesterday")

    def test_decimal_degrees(self):
        assert parse_coordinate("60.1671") == 60.1671
        assert parse_coordinate(-24.5) == -24.5

    def test_nmea_coordinates(self):
        assert parse_coordinate("6010.026,N") == pytest.approx(60.1671)
        assert parse_coordinate("02457.144,E") == pytest.approx(24.9524)
        assert parse_coordinate("3345.000,S") == pytest.approx(-33.75)

    @pytest.mark.parametrize("value", ["north", "nan", "", "12,Q"])
    def test_bad_coordinate(self, value):
        with pytest.raises(ValidationError):
            parse_coordinate(value)

    def test_extension_key_predicate(self):
        assert is_extension_key("X-temperature")
        assert not is_extension_key("X-")
        assert not is_extension_key("x-temperature")
        assert not is_extension_key("latitude")


class TestMapApiEvent:
    def test_typed_fields_mapped(self):
        data = map_api_event_to_internal({
            "tracker_code": "t1",
            "time": "2024-01-15T08:00:00Z",
            "latitude": "60.1671",
            "longitude": "24.9524",
            "accuracy": "8.5",
            "vertical-accuracy": "12",
            "speed": "1.5",
            "heading": "270",
            "satellite-count": "7",
            "altitude": "4.5",
            "annotation": "hello",
            "session_code": "morning",
            "X-temperature": "21.5",
            "mac": "abc",
        })
        assert data == {
            "tracker_code": "t1",
            "event_time": datetime.datetime(2024, 1, 15, 8, 0, 0),
            "latitude": 60.1671,
            "longitude": 24.9524,
            "horizontal_accuracy": 8.5,
            "vertical_accuracy": 12.0,
            "speed": 1.5,
            "heading": 270.0,
            "satellite_count": 7,
            "altitude": 4.5,
            "annotation": "hello",
            "session_code": "morning",
            "X-temperature": "21.5",
        }

    def test_missing_tracker_code(self):
        with pytest.raises(ValidationError):
            map_api_event_to_internal({"latitude": "60.0"})

    def test_bad_field_names_the_field(self):
        with pytest.raises(ValidationError) as exc_info:
            map_api_event_to_internal({"tracker_code": "t1", "speed": "fast"})
        assert exc_info.value.details == {"field": "speed"}

    def test_blank_optional_fields_skipped(self):
        data = map_api_event_to_internal({"tracker_code": "t1", "latitude": "", "annotation": ""})
        assert data == {"tracker_code": "t1"}


# =====================================================================
# Pipeline
# =====================================================================

class TestIngestionPipeline:
    def test_unknown_tracker_created_when_allowed(self, db, permissive_config):
        result = IngestionPipeline(db, permissive_config).ingest({"tracker_code": "t1"})

        assert result.status_code == 200
        assert result.body == "accepted"
        assert db.query(Tracker).one().code == "t1"
        assert db.query(EventSession).one().session_code == "default"
        assert db.query(Event).count() == 1
        assert db.query(EventLocation).count() == 0

    def test_unknown_tracker_denied_under_strict_policy(self, db, strict_config):
        result = IngestionPipeline(db, strict_config).ingest({"tracker_code": "t1", "latitude": "60", "longitude": "24"})

        assert result.status_code == 401
        assert result.body == "not authorized"
        assert not result.accepted
        assert db.query(Tracker).count() == 0
        assert db.query(Event).count() == 0

    def test_signed_event_accepted_under_strict_policy(self, db, strict_config, test_tracker):
        payload = {"tracker_code": "TRACKER-1", "latitude": "60.1671", "longitude": "24.9524"}
        payload["mac"] = compute_mac(payload, "s3cret")

        result = IngestionPipeline(db, strict_config).ingest(payload)

        assert result.accepted
        assert result.event.tracker_id == test_tracker.id
        assert db.query(EventLocation).one().latitude == 60.1671

    def test_unsigned_event_denied_when_authentication_required(self, db, strict_config, test_tracker):
        result = IngestionPipeline(db, strict_config).ingest({"tracker_code": "tracker-1"})
        assert result.status_code == 401
        assert db.query(Event).count() == 0

    def test_bad_mac_always_denied(self, db, permissive_config, test_tracker):
        payload = {"tracker_code": "tracker-1", "mac": "0" * 40}
        result = IngestionPipeline(db, permissive_config).ingest(payload)
        assert result.status_code == 401

    def test_verifier_receives_raw_payload_and_tracker(self, db, permissive_config, test_tracker):
        verifier = MagicMock(return_value=AuthState.AUTHENTICATED_TRACKER)
        payload = {"tracker_code": "Tracker-1", "speed": "2"}
        IngestionPipeline(db, permissive_config, verifier=verifier).ingest(payload)
        args = verifier.call_args.args
        assert args[0] is payload
        assert args[1].id == test_tracker.id

    def test_extension_attributes_stored(self, db, permissive_config):
        pipeline = IngestionPipeline(db, permissive_config)
        pipeline.ingest({"tracker_code": "t1", "X-temperature": "21.5"})
        pipeline.ingest({"tracker_code": "t1", "X-temperature": "22.0"})

        assert db.query(EventExtensionType).one().name == "X-temperature"
        assert sorted(v.value for v in db.query(EventExtensionValue)) == ["21.5", "22.0"]

    def test_malformed_payload_raises_before_storage(self, db, permissive_config):
        with pytest.raises(ValidationError):
            IngestionPipeline(db, permissive_config).ingest({"tracker_code": "t1", "time": "not a time"})
        assert db.query(Event).count() == 0

    def test_storage_failure_becomes_ingestion_error(self, db, permissive_config):
        pipeline = IngestionPipeline(db, permissive_config)
        with patch.object(pipeline.store, "create", side_effect=TransactionFailure("database is locked")):
            with pytest.raises(IngestionError) as exc_info:
                pipeline.ingest({"tracker_code": "t1"})
        assert "database is locked" in exc_info.value.message


class TestPublishing:
    @pytest.fixture
    def realtime_config(self):
        return ServerConfig(
            tracker_api=TrackerApiConfig(allow_tracker_creation=True),
            realtime=RealtimeConfig(enabled=True, publish_url="http://localhost:9999/events"),
        )

    def test_publisher_called_with_tracker_and_event(self, db, realtime_config):
        publisher = MagicMock()
        result = IngestionPipeline(db, realtime_config, publisher=publisher).ingest(
            {"tracker_code": "t1", "latitude": "60.0", "longitude": "24.0", "X-battery": "98"}
        )

        publisher.assert_called_once()
        tracker_id, message = publisher.call_args.args
        assert tracker_id == result.event.tracker_id
        event = message["events"][0]
        assert event["id"] == result.event.id
        assert event["location"]["latitude"] == 60.0
        assert event["extensionValues"] == [{"name": "X-battery", "value": "98"}]

    def test_publisher_not_called_when_disabled(self, db, permissive_config):
        publisher = MagicMock()
        IngestionPipeline(db, permissive_config, publisher=publisher).ingest({"tracker_code": "t1"})
        publisher.assert_not_called()

    def test_publisher_not_called_on_denial(self, db, realtime_config):
        publisher = MagicMock()
        realtime_config.tracker_api.allow_tracker_creation = False
        IngestionPipeline(db, realtime_config, publisher=publisher).ingest({"tracker_code": "t1"})
        publisher.assert_not_called()

    def test_failing_publisher_keeps_event_accepted(self, db, realtime_config, caplog):
        publisher = MagicMock(side_effect=RuntimeError("socket closed"))
        with caplog.at_level(logging.ERROR, logger="pipeline"):
            result = IngestionPipeline(db, realtime_config, publisher=publisher).ingest({"tracker_code": "t1"})

        assert result.accepted
        assert result.status_code == 200
        assert db.query(Event).count() == 1
        assert "Publishing event" in caplog.text
