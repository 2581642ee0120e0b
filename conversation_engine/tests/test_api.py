"""
Tests for the FastAPI surface
=============================
"""

import pytest
from fastapi.testclient import TestClient

from conversation_engine.api import create_app
from conversation_engine.completion import MockCompletionClient
from conversation_engine.config import EngineSettings
from conversation_engine.factory import create_engine


@pytest.fixture
def client():
    engine = create_engine(
        settings=EngineSettings(completion_base_delay=0.0),
        completion=MockCompletionClient(),
    )
    return TestClient(create_app(engine))


def start_contact(client, user_id="u1"):
    response = client.post("/agents/workflows/contact/start", json={"session_id": "s1", "user_id": user_id})
    assert response.status_code == 200
    return response.json()["data"]["workflow_id"]


class TestTurnEndpoint:
    def test_turn(self, client):
        response = client.post("/agents/turn", json={
            "session_id": "s1",
            "message": "I found a bug and the app shows an error",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["routed_to"] == "support"
        assert body["should_handoff"] is True
        assert body["response_text"] == "I'm a support agent. I'll help you with this issue."

    def test_blank_message_rejected(self, client):
        response = client.post("/agents/turn", json={"session_id": "s1", "message": "   "})
        assert response.status_code == 400

    def test_missing_session_id(self, client):
        response = client.post("/agents/turn", json={"message": "hi"})
        assert response.status_code == 422

    def test_escalation(self, client):
        body = client.post("/agents/turn", json={
            "session_id": "s1",
            "message": "URGENT!!! I want to cancel my account",
        }).json()
        assert body["routed_to"] == "human"
        assert body["should_handoff"] is True


class TestWorkflowEndpoints:
    def test_full_workflow(self, client):
        workflow_id = start_contact(client)
        for field, value in [
            ("first_name", "Ada"),
            ("last_name", "Lovelace"),
            ("email", "ada@example.com"),
            ("phone", "555-123-4567"),
        ]:
            response = client.post(f"/agents/workflows/{workflow_id}/fields", json={"field": field, "value": value})
            assert response.json()["success"] is True

        confirmed = client.post(f"/agents/workflows/{workflow_id}/confirm").json()
        assert confirmed["success"] is True
        assert confirmed["data"]["record"]["last_name"] == "Lovelace"

        listed = client.post("/agents/entities/contact", json={"action": "list", "user_id": "u1"}).json()
        assert listed["data"]["total"] == 1

    def test_invalid_value_is_not_an_http_error(self, client):
        workflow_id = start_contact(client)
        response = client.post(f"/agents/workflows/{workflow_id}/fields", json={"value": ""})
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_cancel(self, client):
        workflow_id = start_contact(client)
        assert client.post(f"/agents/workflows/{workflow_id}/cancel").json()["success"] is True

    def test_unknown_workflow_404(self, client):
        response = client.post("/agents/workflows/wf_missing/fields", json={"value": "x"})
        assert response.status_code == 404
        assert response.json()["detail"] == "Workflow not found"

    def test_unknown_entity_type_404(self, client):
        assert client.post("/agents/workflows/invoice/start", json={}).status_code == 404
        assert client.post("/agents/entities/invoice", json={"action": "list"}).status_code == 404


class TestSessionEndpoints:
    def test_state_and_clear(self, client):
        client.post("/agents/turn", json={"session_id": "s9", "message": "I found a bug"})
        state = client.get("/agents/sessions/s9").json()
        assert state["current_agent"] == "support"
        assert state["message_count"] == 2

        cleared = client.delete("/agents/sessions/s9/history").json()
        assert cleared["cleared"] is True
        assert client.get("/agents/sessions/s9").json()["message_count"] == 0


class TestIntrospection:
    def test_health(self, client):
        body = client.get("/agents/health").json()
        assert body["status"] == "ok"
        assert body["domains"] == 6
        assert body["skills_loaded"] == 7
        assert body["mock_mode"] is False

    def test_skills(self, client):
        domains = client.get("/agents/skills").json()["domains"]
        assert [s["id"] for s in domains["entities"]] == ["crud:contact"]
        assert domains["support"][0]["category"] == "conversation"
