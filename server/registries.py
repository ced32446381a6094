"""Resolve-or-create registries for trackers, event sessions and extension types.

All three follow the same pattern: look the key up, insert it when absent.
Two concurrent first sightings of a key can both miss the lookup; the unique
constraint on the key turns the losing insert into an IntegrityError. The
insert runs in a SAVEPOINT so the caller's transaction survives, and the whole
lookup-then-insert is retried exactly once before giving up.
"""

import datetime
import logging
from typing import Callable, Iterable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import hash_password
from errors import ConflictError, ConflictRetryExhausted
from models import EventExtensionType, EventSession, Tracker

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXTENSION_TYPE_DESCRIPTION = "Autogenerated"
RESOLVE_ATTEMPTS = 2  # first try plus one retry


def normalize_code(code: str) -> str:
    return code.strip().lower()


def _insert(db: Session, entity: T) -> T:
    """Flush ``entity`` inside a SAVEPOINT; an IntegrityError rolls back only the savepoint."""
    with db.begin_nested():
        db.add(entity)
    return entity


def resolve_or_create(db: Session, lookup: Callable[[], Optional[T]], build: Callable[[], T], what: str) -> T:
    for attempt in range(1, RESOLVE_ATTEMPTS + 1):
        existing = lookup()
        if existing is not None:
            return existing
        try:
            entity = _insert(db, build())
        except IntegrityError as e:
            logger.warning("Conflict creating %s (attempt %d/%d): %s", what, attempt, RESOLVE_ATTEMPTS, e.orig)
            continue
        logger.info("Created %s (id=%d)", what, entity.id)
        return entity
    raise ConflictRetryExhausted(f"Could not resolve or create {what}", details={"attempts": RESOLVE_ATTEMPTS})


class TrackerRegistry:
    def __init__(self, db: Session, clock: Callable[[], datetime.datetime] = datetime.datetime.utcnow):
        self.db = db
        self.clock = clock

    def resolve_by_code(self, code: str) -> Optional[Tracker]:
        return self.db.query(Tracker).filter(Tracker.code == normalize_code(code)).first()

    def resolve_or_create(self, code: str, name: Optional[str] = None) -> Tracker:
        code = normalize_code(code)
        return resolve_or_create(
            self.db,
            lambda: self.resolve_by_code(code),
            lambda: Tracker(code=code, name=name or code),
            f"tracker {code!r}",
        )

    def create(self, code: str, name: str, shared_secret: Optional[str], password: Optional[str]) -> Tracker:
        """Explicitly register a tracker; raises ConflictError if the code is taken."""
        code = normalize_code(code)
        if self.resolve_by_code(code) is not None:
            raise ConflictError(f"Tracker code {code!r} already exists")
        tracker = Tracker(
            code=code,
            name=name,
            shared_secret=shared_secret,
            password=hash_password(password) if password else None,
        )
        try:
            _insert(self.db, tracker)
        except IntegrityError as e:
            raise ConflictError(f"Tracker code {code!r} already exists") from e
        logger.info("Create new tracker %s (%s)", name, code)
        return tracker

    def touch_activity(self, tracker_id: int) -> None:
        self.db.query(Tracker).filter(Tracker.id == tracker_id).update(
            {Tracker.latest_activity: self.clock()}, synchronize_session="fetch",
        )

    def get(self, tracker_id: int) -> Optional[Tracker]:
        return self.db.query(Tracker).filter(Tracker.id == tracker_id).first()

    def get_many(self, tracker_ids: Iterable[int]) -> list[Tracker]:
        return self.db.query(Tracker).filter(Tracker.id.in_(list(tracker_ids))).order_by(Tracker.id).all()

    def list_all(self) -> list[Tracker]:
        return self.db.query(Tracker).order_by(Tracker.id).all()


class SessionRegistry:
    def __init__(self, db: Session):
        self.db = db

    def resolve_for_code(self, tracker_id: int, session_code: str) -> Optional[EventSession]:
        return (
            self.db.query(EventSession)
            .filter(EventSession.tracker_id == tracker_id, EventSession.session_code == session_code)
            .first()
        )

    def resolve_or_create_for_code(self, tracker_id: int, session_code: str, event_time: datetime.datetime) -> EventSession:
        """Existing sessions are returned as-is: latest_event_time is only set on creation."""
        return resolve_or_create(
            self.db,
            lambda: self.resolve_for_code(tracker_id, session_code),
            lambda: EventSession(
                tracker_id=tracker_id,
                session_code=session_code,
                first_event_time=event_time,
                latest_event_time=event_time,
            ),
            f"session {session_code!r} for tracker {tracker_id}",
        )

    def search(self, tracker_ids: Optional[Iterable[int]] = None, session_ids: Optional[Iterable[int]] = None) -> list[EventSession]:
        query = self.db.query(EventSession)
        if tracker_ids is not None:
            query = query.filter(EventSession.tracker_id.in_(list(tracker_ids)))
        if session_ids is not None:
            query = query.filter(EventSession.id.in_(list(session_ids)))
        return query.order_by(EventSession.id).all()


class ExtensionTypeRegistry:
    def __init__(self, db: Session):
        self.db = db

    def resolve_by_name(self, name: str) -> Optional[EventExtensionType]:
        return self.db.query(EventExtensionType).filter(EventExtensionType.name == name).first()

    def resolve_or_create(self, name: str) -> EventExtensionType:
        return resolve_or_create(
            self.db,
            lambda: self.resolve_by_name(name),
            lambda: EventExtensionType(name=name, description=EXTENSION_TYPE_DESCRIPTION),
            f"extension type {name!r}",
        )

    def get(self, type_id: int) -> Optional[EventExtensionType]:
        return self.db.query(EventExtensionType).filter(EventExtensionType.id == type_id).first()
