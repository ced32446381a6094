"""JSON-ready representations of events, shared by the HTTP API and the publisher."""

from typing import Iterable

from models import Event


def _isoformat(value):
    return value.isoformat() if value else None


def event_to_dict(event: Event) -> dict:
    data = {
        "id": event.id,
        "trackerId": event.tracker_id,
        "eventSessionId": event.event_session_id,
        "eventTime": _isoformat(event.event_time),
        "storeTime": _isoformat(event.created_on),
    }
    loc = event.location
    if loc is not None:
        data["location"] = {
            "latitude": loc.latitude,
            "longitude": loc.longitude,
            "accuracy": loc.horizontal_accuracy,
            "verticalAccuracy": loc.vertical_accuracy,
            "speed": loc.speed,
            "heading": loc.heading,
            "satelliteCount": loc.satellite_count,
            "altitude": loc.altitude,
        }
    if event.annotation is not None:
        data["annotation"] = event.annotation.annotation
    if event.extension_values:
        data["extensionValues"] = [
            {"name": ev.extension_type.name, "value": ev.value} for ev in event.extension_values
        ]
    return data


def events_message(events: Iterable[Event]) -> dict:
    return {"events": [event_to_dict(e) for e in events]}
