# tests_services/conftest.py
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import event as sa_event, text

from cpops.db.engine import make_engine, init_db
from cpops.services import catalog, lifecycle

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """T0 shifted by `seconds`; every engine call in the tests passes an explicit now."""
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def conn(engine):
    """One connection per test against a fresh in-memory database."""
    with engine.connect() as c:
        yield c


@pytest.fixture
def event(conn):
    """Event seeded with the default catalog plus an extra open and closed status and three teams."""
    event_id = catalog.create_event(conn, name="Summer Festival", date="2024-06-01", now=at(0))
    statuses = {s["name"]: s["id"] for s in catalog.list_statuses(conn, event_id)}
    s1 = statuses["Available at first-aid post"]
    s2 = statuses["Arrived at first-aid post"]  # closing
    s3 = catalog.create_status(conn, event_id, "Standby", "#000000", is_closed=False)
    t1 = catalog.create_team(conn, event_id, "Alpha", "Field")
    t2 = catalog.create_team(conn, event_id, "Bravo", "Field")
    t3 = catalog.create_team(conn, event_id, "Charlie", "Medical")
    return {
        "id": event_id,
        "S1": s1, "S2": s2, "S3": s3,
        "T1": t1, "T2": t2, "T3": t3,
    }


def closed_at(conn, intervention_id):
    from cpops.services.clock import as_utc
    return as_utc(conn.execute(
        text("SELECT closed_at FROM interventions WHERE id = :iid"), {"iid": intervention_id}
    ).scalar_one())


ROW_LOCK = "/* row lock */"


@pytest.fixture
def statements(engine, monkeypatch):
    """SQL sent to the database, whitespace-collapsed; intervention row locks are tagged ROW_LOCK."""
    monkeypatch.setattr(lifecycle, "for_update", lambda conn: f" {ROW_LOCK}")
    seen = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        seen.append(" ".join(statement.split()))

    sa_event.listen(engine, "before_cursor_execute", _record)
    yield seen
    sa_event.remove(engine, "before_cursor_execute", _record)
