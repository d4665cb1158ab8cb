"""
Tests for the FastAPI surface (calmplan/api.py)
"""

import pytest
from fastapi.testclient import TestClient

from calmplan.agents import get_planning_engine
from calmplan.api import app


PLAN_BODY = {
    "day_start": "2026-03-10T00:00:00",
    "day_end": "2026-03-11T00:00:00",
    "wake_time": "06:00",
    "bed_time": "22:00",
    "busy_blocks": [
        {"start": "2026-03-10T10:00:00", "end": "2026-03-10T18:00:00", "label": "Work"},
    ],
}


@pytest.fixture
def client(offline_engine):
    app.dependency_overrides[get_planning_engine] = lambda: offline_engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert "decision_service" in body["config"]
    assert body["config"]["engine"]["caps"]["open"] == 15


def test_plan(client):
    response = client.post("/api/plan", json=PLAN_BODY)
    assert response.status_code == 200
    body = response.json()
    assert body["intensity"]["ratio"] == 0.5
    assert body["intensity"]["tier"] == "medium"
    assert len(body["windows"]) == 2
    assert body["strategy_provenance"] == "from_fallback"
    assert body["activities"]
    assert all("buffer_minutes" in a for a in body["activities"])


def test_plan_with_utc_offsets(client):
    body = {
        "day_start": "2026-03-10T00:00:00-05:00",
        "day_end": "2026-03-11T00:00:00-05:00",
        "wake_time": "06:00",
        "bed_time": "22:00",
        "busy_blocks": [
            {"start": "2026-03-10T10:00:00Z", "end": "2026-03-10T18:00:00Z", "label": "Work"},
        ],
    }
    response = client.post("/api/plan", json=body)
    assert response.status_code == 200
    body = response.json()
    assert body["intensity"]["ratio"] == 0.5
    assert body["activities"]


def test_plan_events(client):
    response = client.post("/api/plan/events", json=PLAN_BODY)
    assert response.status_code == 200
    events = response.json()
    assert events
    assert {"summary", "description", "start", "end", "colorId"} <= set(events[0])


def test_plan_missing_bounds_is_bad_request(client):
    body = {k: v for k, v in PLAN_BODY.items() if k != "day_end"}
    response = client.post("/api/plan", json=body)
    assert response.status_code == 400
    assert "required" in response.json()["detail"]


def test_plan_malformed_block_is_bad_request(client):
    body = dict(PLAN_BODY, busy_blocks=[
        {"start": "2026-03-10T12:00:00", "end": "2026-03-10T11:00:00", "label": "Backwards"},
    ])
    assert client.post("/api/plan", json=body).status_code == 400


def test_plan_unknown_level_is_unprocessable(client):
    body = dict(PLAN_BODY, stress_level="furious")
    assert client.post("/api/plan", json=body).status_code == 422


def test_mood(client):
    today = {"tier": "high", "ratio": 0.9, "busy_minutes": 864, "total_minutes": 960, "band": "overloaded"}
    yesterday = {"tier": "high", "ratio": 0.8, "busy_minutes": 768, "total_minutes": 960, "band": "overloaded"}
    response = client.post("/api/mood", json={"today": today, "yesterday": yesterday})
    assert response.status_code == 200
    body = response.json()
    assert body["pattern"] == "burnout"
    assert 3 <= body["mood_score"] <= 5
    assert body["stress_level"] == "high"
