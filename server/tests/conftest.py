"""Shared pytest fixtures: in-memory DB, server configs, a fixed clock, a registered tracker."""

import sys
import os

# Add server root to path so imports work
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import datetime
import threading

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, make_engine
from config import ClientApiConfig, ServerConfig, TrackerApiConfig
from registries import TrackerRegistry
import models  # noqa: F401


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite database for each test."""
    engine = make_engine("sqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db(engine):
    """Provide a DB session, closed after each test."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def file_engine(tmp_path):
    """A file-backed database, so several sessions get their own connections."""
    engine = make_engine(f"sqlite:///{tmp_path / 'trackers.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def run_concurrently(file_engine):
    """Run ``work(db)`` from several threads released together by a barrier.

    Each caller gets its own session, committed after ``work`` returns.
    Returns the list of results and the list of raised exceptions.
    """
    Session = sessionmaker(bind=file_engine)

    def _run(work, callers=8):
        barrier = threading.Barrier(callers)
        lock = threading.Lock()
        results, errors = [], []

        def caller():
            with Session() as session:
                try:
                    barrier.wait(timeout=10)
                    value = work(session)
                    session.commit()
                except Exception as e:
                    with lock:
                        errors.append(e)
                else:
                    with lock:
                        results.append(value)

        threads = [threading.Thread(target=caller) for _ in range(callers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)
        return results, errors

    return _run


class Clock:
    """Deterministic server clock; every call advances one second."""

    def __init__(self, start=datetime.datetime(2024, 1, 15, 8, 0, 0)):
        self.now = start

    def __call__(self):
        current = self.now
        self.now += datetime.timedelta(seconds=1)
        return current


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def permissive_config():
    return ServerConfig(
        tracker_api=TrackerApiConfig(require_authentication=False, allow_tracker_creation=True),
    )


@pytest.fixture
def strict_config():
    return ServerConfig(
        tracker_api=TrackerApiConfig(require_authentication=True, allow_tracker_creation=False),
        client_api=ClientApiConfig(default_search_results=2, max_search_results=3),
    )


@pytest.fixture
def test_tracker(db):
    """An explicitly registered tracker with a shared secret."""
    tracker = TrackerRegistry(db).create("Tracker-1", "Test tracker", shared_secret="s3cret", password="pw")
    db.commit()
    db.refresh(tracker)
    return tracker
