"""Ingestion pipeline for a single inbound tracker event.

Steps:
1. Parse the raw payload into typed internal fields
2. Classify authentication with the verifier and apply the write policy
3. Store the event and its child rows in one transaction
4. Publish the stored event when real-time distribution is enabled
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.orm import Session

from auth import AuthState, authentication_state, is_create_event_allowed
from config import ServerConfig
from errors import ConflictRetryExhausted, IngestionError, TransactionFailure, ValidationError
from event_store import EventStore
from messages import events_message
from models import Event, Tracker
from parsing import is_extension_key, parse_coordinate, parse_decimal, parse_integer, parse_timestamp

logger = logging.getLogger(__name__)

Verifier = Callable[[Mapping[str, Any], Optional[Tracker]], AuthState]
Publisher = Callable[[int, dict], Any]

# payload key -> (internal key, parser)
TYPED_FIELDS = {
    "time": ("event_time", parse_timestamp),
    "latitude": ("latitude", parse_coordinate),
    "longitude": ("longitude", parse_coordinate),
    "accuracy": ("horizontal_accuracy", parse_decimal),
    "vertical-accuracy": ("vertical_accuracy", parse_decimal),
    "speed": ("speed", parse_decimal),
    "heading": ("heading", parse_decimal),
    "satellite-count": ("satellite_count", parse_integer),
    "altitude": ("altitude", parse_decimal),
}


def map_api_event_to_internal(payload: Mapping[str, Any]) -> dict:
    """Convert an inbound payload into the field names and types EventStore expects."""
    tracker_code = payload.get("tracker_code")
    if not isinstance(tracker_code, str) or not tracker_code.strip():
        raise ValidationError("tracker_code is required", details={"field": "tracker_code"})

    data = {"tracker_code": tracker_code}
    for key, (internal_key, parse) in TYPED_FIELDS.items():
        value = payload.get(key)
        if value is None or value == "":
            continue
        try:
            data[internal_key] = parse(value)
        except ValidationError as e:
            raise ValidationError(f"{key}: {e.message}", details={"field": key}) from e

    for key in ("session_code", "annotation"):
        if payload.get(key):
            data[key] = str(payload[key])

    data.update((key, value) for key, value in payload.items() if is_extension_key(key))
    return data


@dataclass
class IngestionResult:
    status_code: int
    body: str
    event: Optional[Event] = None

    @property
    def accepted(self) -> bool:
        return self.status_code == 200


ACCEPTED_BODY = "accepted"
DENIED_BODY = "not authorized"


class IngestionPipeline:
    def __init__(
        self,
        db: Session,
        config: ServerConfig,
        verifier: Verifier = authentication_state,
        publisher: Optional[Publisher] = None,
        clock: Callable[[], datetime.datetime] = datetime.datetime.utcnow,
    ):
        self.config = config
        self.verifier = verifier
        self.publisher = publisher
        self.store = EventStore(db, clock=clock)

    def ingest(self, payload: Mapping[str, Any]) -> IngestionResult:
        """Run one payload through the pipeline.

        Raises ValidationError for malformed fields and IngestionError when
        the event could not be stored. Denial is returned, not raised.
        """
        data = map_api_event_to_internal(payload)
        tracker = self.store.trackers.resolve_by_code(data["tracker_code"])
        state = self.verifier(payload, tracker)

        if not is_create_event_allowed(state, self.config.tracker_api):
            logger.info("Event from tracker %r not authorized (%s)", data["tracker_code"], state)
            return IngestionResult(401, DENIED_BODY)

        try:
            event = self.store.create(data)
        except (TransactionFailure, ConflictRetryExhausted) as e:
            raise IngestionError(f"Storing event failed: {e.message}") from e

        if self.config.realtime.enabled and self.publisher is not None:
            try:
                self.publisher(event.tracker_id, events_message([event]))
            except Exception:
                # The event is committed; publishing is best-effort
                logger.exception("Publishing event %d for tracker %d failed", event.id, event.tracker_id)
        return IngestionResult(200, ACCEPTED_BODY, event)
