"""
LiveTriage - API Endpoint Tests

Tests for REST API endpoints using FastAPI TestClient.
These tests verify:
- Health and root endpoints
- Call init (credential exchange with the voice platform)
- Webhook, function-call and client-push triage writers
- Triage readers
- Error bodies

Run with: pytest tests/test_api_endpoints.py -v
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from livetriage.core.types import TriageEntry
from livetriage.services.live_aggregator import to_dispatch_call


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_returns_200(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_reports_store(self, client: TestClient):
        client.post("/triage", json={"category": "fire"})

        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["checks"]["triage_store"]["entries"] == 1

    def test_health_degraded_without_key(self, make_client):
        data = make_client(api_key=None).get("/health").json()
        assert data["status"] == "degraded"
        assert data["checks"]["voice_platform"]["status"] == "not_configured"

    def test_ready(self, client: TestClient):
        data = client.get("/ready").json()
        assert data["ready"] is True
        assert data["timestamp"].endswith("Z")


class TestRootEndpoint:
    """Tests for the root endpoint."""

    def test_root_returns_service_info(self):
        from main import app
        with TestClient(app) as root_client:
            data = root_client.get("/").json()

        assert data["service"] == "LiveTriage"
        assert data["status"] == "operational"


class TestCallInit:
    """Tests for POST /call-init."""

    def test_returns_credentials(self, client: TestClient, atoms_upstream):
        response = client.post("/call-init", json={"agentId": "agent-7"})

        assert response.status_code == 200
        assert response.json() == {
            "token": "tok-123",
            "host": "wss://voice.example",
            "conversationId": "conv-1",
            "callId": "call-1",
        }

        sent = atoms_upstream.requests[-1]
        assert sent.headers["Authorization"] == "Bearer sk-test-key"
        assert json.loads(sent.content) == {"agentId": "agent-7"}

    def test_falls_back_to_configured_agent(self, client: TestClient, atoms_upstream):
        response = client.post("/call-init", json={})

        assert response.status_code == 200
        assert atoms_upstream.last_json() == {"agentId": "agent-default"}

    def test_empty_body_uses_configured_agent(self, client: TestClient, atoms_upstream):
        response = client.post("/call-init")
        assert response.status_code == 200
        assert atoms_upstream.last_json() == {"agentId": "agent-default"}

    def test_missing_api_key_is_500(self, make_client, atoms_upstream):
        response = make_client(api_key=None).post("/call-init", json={"agentId": "a"})

        assert response.status_code == 500
        assert "SMALLEST_API_KEY" in response.json()["error"]
        assert atoms_upstream.requests == []

    def test_no_agent_id_is_400(self, client: TestClient):
        client.app.state.settings.atoms_agent_id = None

        response = client.post("/call-init", json={})
        assert response.status_code == 400
        assert "agentId" in response.json()["error"]

    def test_upstream_error_status_propagates(self, client: TestClient, atoms_upstream):
        atoms_upstream.reply(
            "POST", "/api/v1/conversation/webcall",
            status=403, json_body={"errors": ["Agent not found"], "message": "ignored"},
        )

        response = client.post("/call-init", json={"agentId": "nope"})

        assert response.status_code == 403
        assert response.json() == {"error": "Failed to create webcall session: Agent not found"}

    @pytest.mark.parametrize("body, expected", [
        ({"message": "Bad key"}, "Bad key"),
        ({"error": "Quota exceeded"}, "Quota exceeded"),
        ({"msg": "Nope"}, "Nope"),
    ])
    def test_upstream_message_keys(self, client: TestClient, atoms_upstream, body, expected):
        atoms_upstream.reply("POST", "/api/v1/conversation/webcall", status=401, json_body=body)

        response = client.post("/call-init", json={})
        assert response.json()["error"].endswith(expected)

    def test_upstream_short_text_body(self, client: TestClient, atoms_upstream):
        atoms_upstream.reply("POST", "/api/v1/conversation/webcall", status=503, text="upstream down")

        response = client.post("/call-init", json={})
        assert response.status_code == 503
        assert response.json()["error"] == "Failed to create webcall session: upstream down"

    def test_upstream_unreachable_is_502(self, client: TestClient, atoms_upstream):
        atoms_upstream.raise_error = httpx.ConnectError("connection refused")

        response = client.post("/call-init", json={})
        assert response.status_code == 502
        assert "error" in response.json()

    def test_malformed_json_is_400(self, client: TestClient):
        response = client.post(
            "/call-init", content=b"{oops", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400


class TestTriageWebhook:
    """Tests for POST /triage-webhook."""

    def test_fire_high_scenario(self, client: TestClient):
        """Wrapped JSON string in variables lands in the store and projects to Fire/P1."""
        response = client.post("/triage-webhook", json={
            "event": "post-conversation",
            "metadata": {"variables": {"triage_state": '{"category":"FIRE","urgency":"HIGH"}'}},
        })

        assert response.status_code == 200
        assert response.json() == {"received": True, "event": "post-conversation"}

        calls = client.get("/triage-calls").json()["calls"]
        assert len(calls) == 1
        assert calls[0]["state"]["category"] == "FIRE"
        assert calls[0]["state"]["urgency"] == "HIGH"
        assert calls[0]["state"]["_source"] == "webhook"
        assert calls[0]["state"]["_event"] == "post-conversation"

        dispatch = to_dispatch_call(TriageEntry.from_dict(calls[0]))
        assert dispatch.emergency_type.value == "Fire"
        assert dispatch.priority.value == "P1"

    def test_call_id_from_metadata(self, client: TestClient):
        client.post("/triage-webhook", json={
            "event": "post-conversation",
            "metadata": {"callId": "c-77", "variables": {"triageState": {"category": "police"}}},
        })

        call = client.get("/triage-calls").json()["calls"][0]
        assert call["callId"] == "c-77"
        assert call["state"]["_callId"] == "c-77"

    def test_transcript_fallback(self, client: TestClient):
        """Without usable variables, the last agent line is scanned."""
        client.post("/triage-webhook", json={
            "event": "post-conversation",
            "metadata": {
                "variables": {"unrelated": 1},
                "transcript": [
                    {"role": "agent", "content": 'Noted {"location_raw": "Old", "category": "fire"}'},
                    {"role": "user", "content": "Thanks"},
                    {"role": "agent", "content": 'Final {"location_raw": "Pier 9", "category": "fire"}'},
                ],
            },
        })

        latest = client.get("/triage").json()["triage"]
        assert latest["location_raw"] == "Pier 9"
        assert latest["_source"] == "webhook_transcript"

    def test_variables_take_precedence_over_transcript(self, client: TestClient):
        client.post("/triage-webhook", json={
            "event": "post-conversation",
            "metadata": {
                "variables": {"triage_state": {"category": "medical"}},
                "transcript": [{"role": "agent", "content": '{"location_raw": "X", "category": "fire"}'}],
            },
        })

        calls = client.get("/triage-calls").json()["calls"]
        assert len(calls) == 1
        assert calls[0]["state"]["category"] == "medical"

    def test_no_triage_still_acknowledged(self, client: TestClient):
        response = client.post("/triage-webhook", json={"event": "pre-conversation", "metadata": {}})

        assert response.json() == {"received": True, "event": "pre-conversation"}
        assert client.get("/triage-calls").json()["calls"] == []

    def test_malformed_body_is_200_with_error_flag(self, client: TestClient):
        response = client.post(
            "/triage-webhook", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "error": "Parse error"}

    def test_non_object_body_is_200_with_error_flag(self, client: TestClient):
        response = client.post("/triage-webhook", json=[1, 2])
        assert response.status_code == 200
        assert response.json()["error"] == "Parse error"


class TestTriageFunction:
    """Tests for POST /triage-function and its alias."""

    def test_c42_scenario(self, client: TestClient):
        response = client.post("/triage-function", json={
            "call_id": "c-42",
            "triage_state": {"location_raw": "5th & Main"},
        })

        assert response.status_code == 200
        assert response.json() == {"ok": True, "callId": "c-42"}

        calls = client.get("/triage-calls").json()["calls"]
        match = [c for c in calls if c["callId"] == "c-42"]
        assert len(match) == 1
        assert match[0]["state"]["location_raw"] == "5th & Main"
        assert match[0]["state"]["_source"] == "function"

    def test_json_string_and_numbers(self, client: TestClient):
        response = client.post("/triage-function", json={
            "callId": "c-1",
            "triageState": '{"category": "fire"}',
            "userNumber": "+15550100",
            "agent_number": "+15550199",
        })
        assert response.status_code == 200

        call = client.get("/triage-calls").json()["calls"][0]
        assert call["userNumber"] == "+15550100"
        assert call["agentNumber"] == "+15550199"

    def test_alias_route(self, client: TestClient):
        response = client.post("/webhook/triage", json={"call_id": "c-5", "triage_state": {"category": "fire"}})
        assert response.json() == {"ok": True, "callId": "c-5"}

    @pytest.mark.parametrize("body, message", [
        ({"triage_state": {"category": "fire"}}, "Missing call_id"),
        ({"call_id": "c-1"}, "Missing triage_state"),
        ({"call_id": "c-1", "triage_state": "{broken"}, "triage_state is not valid JSON"),
        ({"call_id": "c-1", "triage_state": 12}, "triage_state must be a JSON string or object"),
        ({"call_id": "c-1", "triage_state": "[1]"}, "triage_state must be a JSON string or object"),
    ])
    def test_invalid_bodies(self, client: TestClient, body, message):
        response = client.post("/triage-function", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": message}

    def test_malformed_json_is_400(self, client: TestClient):
        response = client.post(
            "/triage-function", content=b"{", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_out_of_range_timestamp_ignored(self, client: TestClient):
        response = client.post(
            "/triage-function",
            json={"call_id": "c-6", "triage_state": {"category": "fire", "_at": 1e20}},
        )

        assert response.status_code == 200
        state = client.get("/triage-calls").json()["calls"][0]["state"]
        assert state["category"] == "fire"
        assert state["_at"].endswith("Z")

    def test_deeply_nested_body_is_400(self, client: TestClient):
        response = client.post(
            "/triage-function", content=b"[" * 100000, headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400


class TestTriagePush:
    """Tests for POST /triage and GET /triage."""

    def test_latest_empty(self, client: TestClient):
        assert client.get("/triage").json() == {"triage": None}

    def test_wrapped_object(self, client: TestClient):
        response = client.post("/triage", json={"triage_state": {"category": "fire", "urgency": "high"}})

        assert response.json() == {"ok": True}
        latest = client.get("/triage").json()["triage"]
        assert latest["category"] == "fire"
        assert latest["_source"] == "client"
        assert "_at" in latest

    def test_wrapped_string_with_call_id(self, client: TestClient):
        client.post("/triage", json={"triage_state": '{"category": "police"}', "call_id": "c-3"})

        call = client.get("/triage-calls").json()["calls"][0]
        assert call["callId"] == "c-3"
        assert call["state"]["category"] == "police"

    def test_bare_object(self, client: TestClient):
        client.post("/triage", json={"location_raw": "Main St", "callId": "c-4"})

        call = client.get("/triage-calls").json()["calls"][0]
        assert call["callId"] == "c-4"
        assert call["state"]["location_raw"] == "Main St"
        assert "callId" not in call["state"]

    def test_existing_source_kept(self, client: TestClient):
        client.post("/triage", json={"triage_state": {"category": "fire", "_source": "sdk"}})
        assert client.get("/triage").json()["triage"]["_source"] == "sdk"

    @pytest.mark.parametrize("body", [
        {},
        {"foo": "bar"},
        {"triage_state": "{nope"},
        {"triage_state": "[1]"},
        {"triage_state": 5},
    ])
    def test_invalid_shapes(self, client: TestClient, body):
        response = client.post("/triage", json=body)

        assert response.status_code == 400
        assert "error" in response.json()

    def test_malformed_json(self, client: TestClient):
        response = client.post("/triage", content=b"{", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON or triage_state"}

    def test_deeply_nested_body(self, client: TestClient):
        response = client.post(
            "/triage", content=b"[" * 100000, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON or triage_state"}

    @pytest.mark.parametrize("stamp", [1e20, -1e20, 10 ** 400])
    def test_out_of_range_timestamp_ignored(self, client: TestClient, stamp):
        response = client.post("/triage", json={"triage_state": {"category": "fire", "_at": stamp}})

        assert response.status_code == 200
        latest = client.get("/triage").json()["triage"]
        assert latest["category"] == "fire"
        assert latest["_at"].endswith("Z")


class TestTriageCalls:
    """Tests for GET /triage-calls."""

    def test_newest_first_and_one_per_call(self, client: TestClient):
        client.post("/triage-function", json={"call_id": "a", "triage_state": {"category": "fire"}})
        client.post("/triage-function", json={"call_id": "b", "triage_state": {"category": "fire"}})
        client.post("/triage-function", json={"call_id": "a", "triage_state": {"category": "police"}})

        calls = client.get("/triage-calls").json()["calls"]
        assert [c["callId"] for c in calls][0] == "a"
        assert len(calls) == 2
        assert calls[0]["state"]["category"] == "police"

    def test_entries_parse_back(self, client: TestClient):
        client.post("/triage-function", json={"call_id": "a", "triage_state": {"category": "fire"}})

        raw = client.get("/triage-calls").json()["calls"][0]
        entry = TriageEntry.from_dict(raw)
        assert entry is not None
        assert entry.call_id == "a"
