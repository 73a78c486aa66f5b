"""Root conftest for all tests.

This file makes shared fixtures available across all test modules.
"""

from contextlib import contextmanager
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from activity_merge.db.models import Activity, Base, PlannedWorkout


@pytest.fixture
def owner_id() -> str:
    """Stable owner id used across tests."""
    return "owner-1"


@pytest.fixture(scope="function")
def db_session(monkeypatch):
    """
    Provides a transactional in-memory SQLite DB session for tests.

    This fixture:
    - Creates an isolated in-memory SQLite database per test
    - Patches the engine getters to return the test engine
    - Patches get_session() to yield the test session
    - Uses transaction rollback for cleanup
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    def mock_get_engine():
        return engine

    monkeypatch.setattr("activity_merge.db.session._get_engine", mock_get_engine)
    monkeypatch.setattr("activity_merge.db.session.get_engine", mock_get_engine)

    Base.metadata.create_all(engine)

    connection = engine.connect()
    transaction = connection.begin()

    test_session_local = sessionmaker(bind=connection, autocommit=False, autoflush=False)
    session = test_session_local()

    @contextmanager
    def mock_get_session():
        yield session

    import activity_merge.db.session as session_module
    import activity_merge.merge.jobs as jobs_module

    monkeypatch.setattr(session_module, "get_session", mock_get_session)
    monkeypatch.setattr(jobs_module, "get_session", mock_get_session)

    try:
        yield session
    finally:
        session.rollback()
        if transaction.is_active:
            transaction.rollback()
        session.close()
        connection.close()
        engine.dispose()


@pytest.fixture
def session_factory(db_session):
    """Context-manager factory yielding the test session, for scanners."""

    @contextmanager
    def factory():
        yield db_session

    return factory


@pytest.fixture
def make_activity(db_session, owner_id):
    """Factory inserting an Activity row and returning it."""
    counter = {"n": 0}

    def _make(
        source: str,
        start_time: datetime,
        distance_meters: float | None = 10000.0,
        duration_seconds: int | None = 3000,
        owner: str | None = None,
        **fields,
    ) -> Activity:
        counter["n"] += 1
        activity = Activity(
            owner_id=owner or owner_id,
            source=source,
            external_id=fields.pop("external_id", f"{source}-{counter['n']}"),
            activity_type=fields.pop("activity_type", "run"),
            start_time=start_time,
            distance_meters=distance_meters,
            duration_seconds=duration_seconds,
            **fields,
        )
        db_session.add(activity)
        db_session.flush()
        return activity

    return _make


@pytest.fixture
def make_workout(db_session, owner_id):
    """Factory inserting a PlannedWorkout row and returning it."""

    def _make(scheduled_date, owner: str | None = None, **fields) -> PlannedWorkout:
        workout = PlannedWorkout(
            owner_id=owner or owner_id,
            scheduled_date=scheduled_date,
            workout_type=fields.pop("workout_type", "run"),
            title=fields.pop("title", "Easy run"),
            **fields,
        )
        db_session.add(workout)
        db_session.flush()
        return workout

    return _make


@pytest.fixture
def client(db_session, session_factory, monkeypatch):
    """TestClient wired to the test session.

    Requests authenticate with the X-User-Id header; the lifespan (table
    creation, scheduler) is not run.
    """
    from fastapi.testclient import TestClient

    from activity_merge.config.settings import settings
    from activity_merge.db.session import get_db, get_session_factory
    from activity_merge.main import app

    monkeypatch.setattr(settings, "merge_scan_max_workers", 1)

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(owner_id) -> dict:
    return {"X-User-Id": owner_id}
