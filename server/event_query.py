"""Filtered, bounded event search."""

import datetime
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session, joinedload, selectinload

from config import ClientApiConfig
from models import Event, EventExtensionValue

logger = logging.getLogger(__name__)

ORDER_LATEST_STORE_TIME = "latest-store-time"
ORDER_LATEST_EVENT_TIME = "latest-event-time"


@dataclass
class SearchCriteria:
    """Search filters. Time bounds are inclusive.

    ``max_results`` and ``order_by`` shape the result but are not filters:
    criteria without any filter field match nothing.
    """

    event_time_start: Optional[datetime.datetime] = None
    event_time_end: Optional[datetime.datetime] = None
    store_time_start: Optional[datetime.datetime] = None
    store_time_end: Optional[datetime.datetime] = None
    tracker_ids: Optional[list[int]] = None
    session_ids: Optional[list[int]] = None
    max_results: Optional[int] = None
    order_by: Optional[str] = None


def _with_children(query, include_tracker: bool = False):
    query = query.options(
        selectinload(Event.location),
        selectinload(Event.annotation),
        selectinload(Event.extension_values).joinedload(EventExtensionValue.extension_type),
    )
    if include_tracker:
        query = query.options(joinedload(Event.tracker))
    return query


class EventQuery:
    def __init__(self, db: Session, config: ClientApiConfig):
        self.db = db
        self.config = config

    def result_limit(self, requested: Optional[int]) -> int:
        if requested is None:
            requested = self.config.default_search_results
        return max(0, min(requested, self.config.max_search_results))

    def search(self, criteria: SearchCriteria) -> list[Event]:
        conditions = []
        if criteria.event_time_start is not None:
            conditions.append(Event.event_time >= criteria.event_time_start)
        if criteria.event_time_end is not None:
            conditions.append(Event.event_time <= criteria.event_time_end)
        if criteria.store_time_start is not None:
            conditions.append(Event.created_on >= criteria.store_time_start)
        if criteria.store_time_end is not None:
            conditions.append(Event.created_on <= criteria.store_time_end)
        if criteria.tracker_ids is not None:
            conditions.append(Event.tracker_id.in_(criteria.tracker_ids))
        if criteria.session_ids is not None:
            conditions.append(Event.event_session_id.in_(criteria.session_ids))

        if not conditions:
            logger.debug("Event search without filters, returning no results")
            return []

        if criteria.order_by == ORDER_LATEST_STORE_TIME:
            order = (Event.created_on.desc(), Event.id.desc())
        elif criteria.order_by == ORDER_LATEST_EVENT_TIME:
            order = (Event.event_time.desc(), Event.id.desc())
        else:
            order = (Event.event_time.asc(), Event.id.asc())

        return (
            _with_children(self.db.query(Event))
            .filter(*conditions)
            .order_by(*order)
            .limit(self.result_limit(criteria.max_results))
            .all()
        )

    def get(self, event_ids: Iterable[int]) -> list[Event]:
        return (
            _with_children(self.db.query(Event), include_tracker=True)
            .filter(Event.id.in_(list(event_ids)))
            .order_by(Event.id)
            .all()
        )

    def get_all(self) -> list[Event]:
        """Every stored event, unbounded. Meant for administration and debugging."""
        return _with_children(self.db.query(Event)).order_by(Event.id).all()
