"""REST API endpoints: tracker event ingestion, event search, tracker and session administration."""

import datetime
import logging
from functools import lru_cache
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config import ServerConfig, load_config
from database import get_db
from errors import ConflictError, IngestionError, ValidationError
from event_query import EventQuery, SearchCriteria
from messages import events_message
from parsing import parse_timestamp
from pipeline import IngestionPipeline
from publish import WebhookPublisher
from registries import SessionRegistry, TrackerRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class TrackerCreate(BaseModel):
    code: str
    name: str
    shared_secret: Optional[str] = None
    password: Optional[str] = None


class TrackerResponse(BaseModel):
    id: int
    code: str
    name: str
    latest_activity: Optional[str] = None
    created_on: Optional[str] = None

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    id: int
    tracker_id: int
    session_code: str
    first_event_time: Optional[str] = None
    latest_event_time: Optional[str] = None

    class Config:
        from_attributes = True


def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _tracker_response(t) -> TrackerResponse:
    return TrackerResponse(
        id=t.id,
        code=t.code,
        name=t.name,
        latest_activity=_iso(t.latest_activity),
        created_on=_iso(t.created_on),
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

@lru_cache
def get_config() -> ServerConfig:
    return load_config()


def get_publisher(config: ServerConfig = Depends(get_config)) -> Optional[WebhookPublisher]:
    if not config.realtime.enabled:
        return None
    return WebhookPublisher(config.realtime)


def _parse_ids(value: Optional[str], name: str) -> Optional[list[int]]:
    if value is None:
        return None
    try:
        return [int(v) for v in value.split(",") if v.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")


def _parse_time(value: Optional[str], name: str) -> Optional[datetime.datetime]:
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValidationError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")


def search_criteria(
    event_time_start: Optional[str] = Query(None, alias="eventTimeStart"),
    event_time_end: Optional[str] = Query(None, alias="eventTimeEnd"),
    store_time_start: Optional[str] = Query(None, alias="storeTimeStart"),
    store_time_end: Optional[str] = Query(None, alias="storeTimeEnd"),
    tracker_ids: Optional[str] = Query(None, alias="trackerIds"),
    session_ids: Optional[str] = Query(None, alias="sessionIds"),
    max_results: Optional[int] = Query(None, alias="maxResults"),
    order_by: Optional[str] = Query(None, alias="orderBy"),
) -> SearchCriteria:
    return SearchCriteria(
        event_time_start=_parse_time(event_time_start, "eventTimeStart"),
        event_time_end=_parse_time(event_time_end, "eventTimeEnd"),
        store_time_start=_parse_time(store_time_start, "storeTimeStart"),
        store_time_end=_parse_time(store_time_end, "storeTimeEnd"),
        tracker_ids=_parse_ids(tracker_ids, "trackerIds"),
        session_ids=_parse_ids(session_ids, "sessionIds"),
        max_results=max_results,
        order_by=order_by,
    )


# ---------------------------------------------------------------------------
# Tracker API: event ingestion
# ---------------------------------------------------------------------------

@router.post("/events", response_class=PlainTextResponse)
def create_event(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    config: ServerConfig = Depends(get_config),
    publisher: Optional[WebhookPublisher] = Depends(get_publisher),
):
    pipeline = IngestionPipeline(db, config, publisher=publisher)
    try:
        result = pipeline.ingest(payload)
    except ValidationError as e:
        logger.info("Rejected malformed event: %s", e.message)
        return PlainTextResponse(e.message, status_code=400)
    except IngestionError as e:
        logger.error("Error storing event: %s", e.message)
        return PlainTextResponse(f"Internal server error: {e.message}", status_code=500)
    return PlainTextResponse(result.body, status_code=result.status_code)


# ---------------------------------------------------------------------------
# Client API: event queries
# ---------------------------------------------------------------------------

@router.get("/events")
def search_events(
    criteria: SearchCriteria = Depends(search_criteria),
    db: Session = Depends(get_db),
    config: ServerConfig = Depends(get_config),
):
    events = EventQuery(db, config.client_api).search(criteria)
    return events_message(events)


@router.get("/events/{event_ids}")
def get_events(event_ids: str, db: Session = Depends(get_db), config: ServerConfig = Depends(get_config)):
    events = EventQuery(db, config.client_api).get(_parse_ids(event_ids, "event ids"))
    if not events:
        raise HTTPException(status_code=404, detail="Event not found")
    return events_message(events)


@router.get("/trackers", response_model=list[TrackerResponse])
def list_trackers(db: Session = Depends(get_db)):
    return [_tracker_response(t) for t in TrackerRegistry(db).list_all()]


@router.post("/trackers", response_model=TrackerResponse, status_code=201)
def create_tracker(req: TrackerCreate, db: Session = Depends(get_db)):
    registry = TrackerRegistry(db)
    try:
        tracker = registry.create(req.code, req.name, req.shared_secret, req.password)
        db.commit()
    except ConflictError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=e.message)
    db.refresh(tracker)
    return _tracker_response(tracker)


@router.get("/trackers/{tracker_ids}", response_model=list[TrackerResponse])
def get_trackers(tracker_ids: str, db: Session = Depends(get_db)):
    trackers = TrackerRegistry(db).get_many(_parse_ids(tracker_ids, "tracker ids"))
    if not trackers:
        raise HTTPException(status_code=404, detail="Tracker not found")
    return [_tracker_response(t) for t in trackers]


@router.get("/trackers/{tracker_id}/events")
def get_tracker_events(
    tracker_id: int,
    criteria: SearchCriteria = Depends(search_criteria),
    db: Session = Depends(get_db),
    config: ServerConfig = Depends(get_config),
):
    if TrackerRegistry(db).get(tracker_id) is None:
        raise HTTPException(status_code=404, detail="Tracker not found")
    criteria.tracker_ids = [tracker_id]
    return events_message(EventQuery(db, config.client_api).search(criteria))


@router.get("/sessions", response_model=list[SessionResponse])
def list_sessions(
    tracker_ids: Optional[str] = Query(None, alias="trackerIds"),
    session_ids: Optional[str] = Query(None, alias="sessionIds"),
    db: Session = Depends(get_db),
):
    sessions = SessionRegistry(db).search(
        tracker_ids=_parse_ids(tracker_ids, "trackerIds"),
        session_ids=_parse_ids(session_ids, "sessionIds"),
    )
    return [
        SessionResponse(
            id=s.id,
            tracker_id=s.tracker_id,
            session_code=s.session_code,
            first_event_time=_iso(s.first_event_time),
            latest_event_time=_iso(s.latest_event_time),
        )
        for s in sessions
    ]
