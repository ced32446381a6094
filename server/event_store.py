"""Transactional event write path.

``EventStore.create`` resolves the tracker, session and extension types and
writes the event with its location, annotation and extension values in one
database transaction. Either all of those rows exist afterwards or none do.
"""

import datetime
import logging
from typing import Any, Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import TransactionFailure
from models import Event, EventAnnotation, EventExtensionValue, EventLocation
from parsing import is_extension_key
from registries import ExtensionTypeRegistry, SessionRegistry, TrackerRegistry

logger = logging.getLogger(__name__)

DEFAULT_SESSION_CODE = "default"

LOCATION_FIELDS = (
    "horizontal_accuracy",
    "vertical_accuracy",
    "speed",
    "heading",
    "satellite_count",
    "altitude",
)


class EventStore:
    def __init__(self, db: Session, clock: Callable[[], datetime.datetime] = datetime.datetime.utcnow):
        self.db = db
        self.clock = clock
        self.trackers = TrackerRegistry(db, clock=clock)
        self.sessions = SessionRegistry(db)
        self.extension_types = ExtensionTypeRegistry(db)

    def create(self, data: Mapping[str, Any]) -> Event:
        """Persist one event from already-parsed ``data`` and return it with its id."""
        try:
            event = self._write(data)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Event for tracker %r rolled back: %s", data.get("tracker_code"), e)
            raise TransactionFailure(str(e)) from e
        except Exception:
            # ConflictRetryExhausted or anything unexpected; no flushed rows may survive
            self.db.rollback()
            logger.error("Event for tracker %r rolled back", data.get("tracker_code"), exc_info=True)
            raise
        self.db.refresh(event)
        logger.info("Event %d stored for tracker %d (session %d)", event.id, event.tracker_id, event.event_session_id)
        return event

    def _write(self, data: Mapping[str, Any]) -> Event:
        now = self.clock()
        event_time = data.get("event_time") or now
        tracker = self.trackers.resolve_or_create(data["tracker_code"])
        session = self.sessions.resolve_or_create_for_code(
            tracker.id, data.get("session_code") or DEFAULT_SESSION_CODE, event_time,
        )
        self.trackers.touch_activity(tracker.id)

        event = Event(
            tracker_id=tracker.id,
            event_session_id=session.id,
            event_time=event_time,
            created_on=now,
        )
        self.db.add(event)
        self.db.flush()

        latitude, longitude = data.get("latitude"), data.get("longitude")
        if latitude is not None and longitude is not None:
            self.db.add(EventLocation(
                event_id=event.id,
                latitude=latitude,
                longitude=longitude,
                **{field: data.get(field) for field in LOCATION_FIELDS},
            ))

        annotation = data.get("annotation")
        if annotation:
            self.db.add(EventAnnotation(event_id=event.id, annotation=annotation))
        self.db.flush()

        for key in sorted(k for k in data if is_extension_key(k)):
            extension_type = self.extension_types.resolve_or_create(key)
            value = data[key]
            self.db.add(EventExtensionValue(
                event_id=event.id,
                event_extension_type_id=extension_type.id,
                value=None if value is None else str(value),
            ))
        self.db.flush()
        return event
