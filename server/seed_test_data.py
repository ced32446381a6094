#!/usr/bin/env python3
"""Seed the database with a demo tracker and events for development.

Usage:
    python seed_test_data.py

This registers the "demo" tracker and stores the fixture trace from
tests/event_fixtures.py through the same EventStore the server uses.
"""

from database import init_db, SessionLocal
from event_store import EventStore
from registries import TrackerRegistry
from tests.event_fixtures import DEMO_TRACE


def seed():
    init_db()
    db = SessionLocal()
    try:
        registry = TrackerRegistry(db)
        if registry.resolve_by_code("demo"):
            print("Demo tracker already exists. Skipping seed.")
            return

        tracker = registry.create("demo", "Demo tracker", shared_secret="demo-secret", password="demo")
        db.commit()
        print(f"Created tracker: demo (id={tracker.id})")

        store = EventStore(db)
        for data in DEMO_TRACE:
            store.create({"tracker_code": "demo", **data})
        print(f"Stored {len(DEMO_TRACE)} events")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
