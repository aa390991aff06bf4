"""
LiveTriage - Test Configuration and Fixtures

Shared fixtures for all test modules.
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

# Ensure backend package is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from livetriage.config import Settings
from livetriage.core.triage_store import InMemoryTriageStore
from livetriage.core.types import TriageEntry, TriageState
from livetriage.services.atoms_api import AtomsWebcallClient
from livetriage.services.speech_capture import (
    SimulatedRecognitionBackend,
    SpeechCaptureService,
)
from livetriage.services.remote_session import SimulatedVoiceSession
from livetriage.services.triage_client import TriageApiClient


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")


# =============================================================================
# Clock
# =============================================================================

class FakeClock:
    """Manually advanced clock for store and dashboard tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """
    Create test settings with safe defaults.

    The .env file is ignored so a developer's local keys never leak in.
    """
    return Settings(
        _env_file=None,
        app_env="testing",
        app_debug=True,
        app_log_level="WARNING",  # Reduce noise in tests
        smallest_api_key="sk-test-key",
        atoms_agent_id="agent-default",
        triage_entry_ttl_seconds=0,
    )


# =============================================================================
# Store Fixtures
# =============================================================================

@pytest.fixture
def triage_store(clock: FakeClock) -> InMemoryTriageStore:
    """Create a fresh in-memory store on the fake clock."""
    return InMemoryTriageStore(max_entries=50, clock=clock)


def make_entry(
    call_id: str,
    at: datetime,
    category: Optional[str] = "medical",
    urgency: Optional[str] = "low",
    **fields,
) -> TriageEntry:
    """Build a TriageEntry with a small triage state."""
    return TriageEntry(
        call_id=call_id,
        state=TriageState(category=category, urgency=urgency, **fields),
        at=at,
    )


@pytest.fixture
def entry_factory() -> Callable[..., TriageEntry]:
    return make_entry


# =============================================================================
# Upstream HTTP Fakes
# =============================================================================

class FakeUpstream:
    """
    Programmable handler for httpx.MockTransport.

    Records every request; replies with the queued response or a default.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes = {}
        self.raise_error: Optional[Exception] = None

    def reply(self, method: str, path: str, status: int = 200, json_body=None, text: Optional[str] = None):
        self.routes[(method, path)] = (status, json_body, text)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        status, json_body, text = self.routes.get(
            (request.method, request.url.path), (404, {"error": "not found"}, None)
        )
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=json_body)

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)

    def client(self, base_url: str = "") -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(self.handle))


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def api_client(upstream: FakeUpstream) -> TriageApiClient:
    """TriageApiClient talking to the fake upstream."""
    return TriageApiClient(client=upstream.client("http://livetriage.test"))


# =============================================================================
# Call Session Fixtures
# =============================================================================

@pytest.fixture
def recognition() -> SimulatedRecognitionBackend:
    return SimulatedRecognitionBackend()


@pytest.fixture
def speech(recognition: SimulatedRecognitionBackend) -> SpeechCaptureService:
    return SpeechCaptureService(recognition)


@pytest.fixture
def remote() -> SimulatedVoiceSession:
    return SimulatedVoiceSession()


# =============================================================================
# FastAPI App Fixture
# =============================================================================

@pytest.fixture
def app(test_settings: Settings):
    """Create a FastAPI app instance with test settings."""
    # Import here so the module-level app is built after sys.path is set
    from main import create_app

    return create_app(test_settings)


@pytest.fixture
def atoms_upstream(upstream: FakeUpstream, test_settings: Settings) -> FakeUpstream:
    """Fake voice platform answering webcall requests with a valid session."""
    upstream.reply(
        "POST",
        "/api/v1/conversation/webcall",
        json_body={"data": {
            "token": "tok-123",
            "host": "wss://voice.example",
            "conversationId": "conv-1",
            "callId": "call-1",
        }},
    )
    return upstream


@pytest.fixture
def make_client(app, test_settings: Settings, atoms_upstream: FakeUpstream) -> Callable[..., TestClient]:
    """
    Factory for a TestClient whose webcall client talks to the fake upstream.

    Pass ``api_key=None`` to simulate a server without the platform key.
    """
    from livetriage.api.routes import get_atoms_client

    clients = []

    def factory(api_key: Optional[str] = "sk-test-key") -> TestClient:
        atoms = AtomsWebcallClient(
            api_key=api_key,
            base_url=test_settings.atoms_api_base,
            client=atoms_upstream.client(),
        )
        app.dependency_overrides[get_atoms_client] = lambda: atoms
        test_client = TestClient(app)
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    yield factory

    for test_client in clients:
        test_client.__exit__(None, None, None)
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    yield make_client()
