"""SQLAlchemy models for trackers, event sessions, events and their child rows."""

import datetime
from sqlalchemy import Column, Integer, Float, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base


class Tracker(Base):
    """A reporting device. ``code`` is always stored lowercase."""

    __tablename__ = "trackers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(256), unique=True, nullable=False, index=True)
    name = Column(String(256), nullable=False)
    shared_secret = Column(String(256), nullable=True)
    password = Column(String(256), nullable=True)
    latest_activity = Column(DateTime, nullable=True)
    created_on = Column(DateTime, default=datetime.datetime.utcnow)

    sessions = relationship("EventSession", back_populates="tracker")
    events = relationship("Event", back_populates="tracker")


class EventSession(Base):
    __tablename__ = "event_sessions"
    __table_args__ = (UniqueConstraint("tracker_id", "session_code", name="uq_event_sessions_tracker_code"),)

    id = Column(Integer, primary_key=True, index=True)
    tracker_id = Column(Integer, ForeignKey("trackers.id"), nullable=False, index=True)
    session_code = Column(String(256), nullable=False)
    first_event_time = Column(DateTime, nullable=True)
    latest_event_time = Column(DateTime, nullable=True)

    tracker = relationship("Tracker", back_populates="sessions")
    events = relationship("Event", back_populates="session")


class Event(Base):
    """One telemetry reading. Rows are never updated after insert."""

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    tracker_id = Column(Integer, ForeignKey("trackers.id"), nullable=False, index=True)
    event_session_id = Column(Integer, ForeignKey("event_sessions.id"), nullable=False, index=True)
    event_time = Column(DateTime, nullable=False, index=True)
    created_on = Column(DateTime, nullable=False, default=datetime.datetime.utcnow, index=True)

    tracker = relationship("Tracker", back_populates="events")
    session = relationship("EventSession", back_populates="events")
    location = relationship("EventLocation", back_populates="event", uselist=False)
    annotation = relationship("EventAnnotation", back_populates="event", uselist=False)
    extension_values = relationship("EventExtensionValue", back_populates="event", order_by="EventExtensionValue.id")


class EventLocation(Base):
    __tablename__ = "event_locations"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), unique=True, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    horizontal_accuracy = Column(Float, nullable=True)
    vertical_accuracy = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    satellite_count = Column(Integer, nullable=True)
    altitude = Column(Float, nullable=True)

    event = relationship("Event", back_populates="location")


class EventAnnotation(Base):
    __tablename__ = "event_annotations"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), unique=True, nullable=False)
    annotation = Column(Text, nullable=False)

    event = relationship("Event", back_populates="annotation")


class EventExtensionType(Base):
    """A lazily registered extension attribute name, e.g. ``X-temperature``."""

    __tablename__ = "event_extension_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(256), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    values = relationship("EventExtensionValue", back_populates="extension_type")


class EventExtensionValue(Base):
    __tablename__ = "event_extension_values"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    event_extension_type_id = Column(Integer, ForeignKey("event_extension_types.id"), nullable=False)
    value = Column(Text, nullable=True)

    event = relationship("Event", back_populates="extension_values")
    extension_type = relationship("EventExtensionType", back_populates="values")
