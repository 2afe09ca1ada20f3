"""HTTP API tests for difficulty_app.py using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

import session_model
from difficulty_app import app

EXCELLING_MESSAGE = (
    "I believe that empathy is crucial because it helps us understand others' "
    "emotions and respond appropriately. This creates better relationships and "
    "a more supportive environment."
)


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(session_model, "DATA_DIR", tmp_path / "sessions")
    return TestClient(app)


def start(client, session_id="alex", difficulty="moderate"):
    return client.post("/api/sessions", json={"session_id": session_id, "difficulty": difficulty})


# ---------------------------------------------------------------------------
# /api/assess
# ---------------------------------------------------------------------------

class TestAssess:
    def test_steps_up(self, client):
        resp = client.post("/api/assess", json={
            "message": EXCELLING_MESSAGE,
            "performance_metrics": {"exchange_count": 5, "response_time": 1.0},
            "current_difficulty": "moderate",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["should_adjust"] is True
        assert body["new_level"] == "hard"
        assert body["previous_level"] == "moderate"
        assert set(body["analysis"]) == {
            "response_length", "response_time", "help_requests", "quality", "patterns",
        }

    def test_defaults(self, client):
        resp = client.post("/api/assess", json={"message": "I think this is okay"})
        assert resp.status_code == 200
        assert resp.json()["should_adjust"] is False

    def test_history_round_trip(self, client):
        first = client.post("/api/assess", json={
            "message": EXCELLING_MESSAGE,
            "performance_metrics": {"exchange_count": 5, "response_time": 1.0},
        }).json()
        resp = client.post("/api/assess", json={
            "message": EXCELLING_MESSAGE,
            "performance_metrics": {
                "exchange_count": 6,
                "response_time": 1.0,
                "previous_assessments": [first, first],
            },
            "current_difficulty": "hard",
        })
        assert resp.status_code == 200
        assert "Recent adjustments" in resp.json()["reasoning"]

    @pytest.mark.parametrize("payload", [{"message": ""}, {}])
    def test_missing_message(self, client, payload):
        resp = client.post("/api/assess", json=payload)
        assert resp.status_code == 400
        assert "required" in resp.json()["error"]

    def test_camel_case_body(self, client):
        resp = client.post("/api/assess", json={
            "message": EXCELLING_MESSAGE,
            "performanceMetrics": {"exchangeCount": 5, "responseTime": 1.0},
            "currentDifficulty": "moderate",
        })
        assert resp.status_code == 200
        assert resp.json()["new_level"] == "hard"

    def test_unknown_metric_key(self, client):
        resp = client.post("/api/assess", json={
            "message": "Hello there",
            "performance_metrics": {"exchange_cnt": 5},
        })
        assert resp.status_code == 422

    def test_bad_metrics(self, client):
        resp = client.post("/api/assess", json={
            "message": "Hello there",
            "performance_metrics": {"exchange_count": -1},
        })
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# /api/sessions
# ---------------------------------------------------------------------------

class TestSessions:
    def test_start(self, client):
        resp = start(client, difficulty="beginner")
        assert resp.status_code == 201
        assert resp.json() == {"session_id": "alex", "difficulty": "easy"}

    def test_start_generates_id(self, client):
        resp = client.post("/api/sessions", json={})
        assert resp.status_code == 201
        assert len(resp.json()["session_id"]) == 32

    def test_start_twice(self, client):
        start(client)
        assert start(client).status_code == 409

    def test_start_rejects_path_ids(self, client, tmp_path):
        resp = start(client, "../escaped")
        assert resp.status_code == 400
        assert "Invalid session id" in resp.json()["error"]
        assert not (tmp_path / "escaped.json").exists()
        assert list(tmp_path.rglob("*.json")) == []

    def test_list(self, client):
        start(client, "b")
        start(client, "a")
        resp = client.get("/api/sessions")
        assert [s["session_id"] for s in resp.json()] == ["a", "b"]

    def test_turns_adjust_level(self, client):
        start(client)
        for _ in range(3):
            resp = client.post(
                "/api/sessions/alex/turns",
                json={"message": EXCELLING_MESSAGE, "response_time": 1.0},
            )
            assert resp.status_code == 200

        body = resp.json()
        assert body["exchange_count"] == 3
        assert body["difficulty"] == "hard"
        assert body["assessment"]["should_adjust"] is True

        session = client.get("/api/sessions/alex").json()
        assert len(session["history"]) == 3
        assert session["level_changes"][0]["to_level"] == "hard"

    def test_invalid_turn(self, client):
        start(client)
        resp = client.post("/api/sessions/alex/turns", json={"message": ""})
        assert resp.status_code == 400
        assert client.get("/api/sessions/alex").json()["exchange_count"] == 0

    def test_override_and_end(self, client):
        start(client)
        resp = client.put("/api/sessions/alex/difficulty", json={"difficulty": "expert"})
        assert resp.json()["difficulty"] == "hard"

        resp = client.post("/api/sessions/alex/end")
        assert resp.status_code == 200
        summary = resp.json()["summary"]
        assert summary["manual_overrides"] == 1
        assert summary["end_time"] is not None

    def test_delete(self, client):
        start(client)
        assert client.delete("/api/sessions/alex").status_code == 200
        assert client.get("/api/sessions/alex").status_code == 404
        assert client.delete("/api/sessions/alex").status_code == 404

    def test_unknown_session(self, client):
        resp = client.post("/api/sessions/nobody/turns", json={"message": "Hi there"})
        assert resp.status_code == 404
        assert "nobody" in resp.json()["error"]

    def test_corrupt_session(self, client, tmp_path):
        data_dir = tmp_path / "sessions"
        data_dir.mkdir()
        (data_dir / "broken.json").write_text("{}")
        assert client.get("/api/sessions/broken").status_code == 500
        assert client.get("/api/sessions").json() == []
