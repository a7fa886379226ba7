# tests_routes/conftest.py
import jwt
import pytest

from cpops import create_app
from cpops.db.engine import init_db

SECRET = "test-secret-key-for-testing-only"


def make_token(role: str, sub: str = "1", username: str = "tester") -> str:
    return jwt.encode({"sub": sub, "role": role, "username": username}, SECRET, algorithm="HS256")


def auth(role: str, sub: str = "1", username: str = "tester") -> dict:
    return {"Authorization": f"Bearer {make_token(role, sub, username)}"}


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "DATABASE_URL": "sqlite://",
        "JWT_SECRET": SECRET,
        "REPAIR_NUMBERING_ON_STARTUP": False,
    })
    init_db(app.config["DB_ENGINE"])
    yield app
    app.config["DB_ENGINE"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def operator():
    return auth("OPERATOR", sub="2", username="olivia")


@pytest.fixture
def admin():
    return auth("ADMIN", sub="3", username="adrian")


@pytest.fixture
def viewer():
    return auth("VIEWER", sub="4", username="vera")


@pytest.fixture
def seeded(client, operator):
    """Event with its default catalog and two Field teams, created through the API."""
    res = client.post("/api/events", json={"name": "City Run", "date": "2024-05-05"}, headers=operator)
    assert res.status_code == 201
    event_id = res.get_json()["id"]

    statuses = client.get(f"/api/events/{event_id}/statuses", headers=operator).get_json()
    by_name = {s["name"]: s["id"] for s in statuses}

    teams = []
    for name in ("Alpha", "Bravo"):
        r = client.post(f"/api/events/{event_id}/teams", json={"name": name, "type": "Field"}, headers=operator)
        assert r.status_code == 201
        teams.append(r.get_json()["id"])

    return {
        "id": event_id,
        "open": by_name["Available at first-aid post"],
        "closed": by_name["Arrived at first-aid post"],
        "teams": teams,
    }
