"""
LiveTriage - Triage API Client

HTTP client for the LiveTriage server, used by the caller-side call
controller (call-init, triage push) and the dashboard aggregator (polling).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from livetriage.core.exceptions import CallInitError
from livetriage.core.types import TriageEntry, TriageState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallCredentials:
    """Session credential returned by call-init."""
    token: str
    host: str
    conversation_id: Optional[str] = None
    call_id: Optional[str] = None


class TriageApiClient:
    """
    Async client for the LiveTriage HTTP API.

    Args:
        base_url: Server root, e.g. http://localhost:8000
        timeout: Per-request timeout in seconds
        client: Pre-built httpx client (tests inject one with a MockTransport)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def init_call(self, agent_id: Optional[str] = None) -> CallCredentials:
        """
        Request a session credential.

        Raises:
            CallInitError: Server refused, was unreachable, or returned no token
        """
        body: Dict[str, Any] = {"agentId": agent_id} if agent_id else {}
        try:
            response = await self._client.post("/call-init", json=body)
        except httpx.HTTPError as e:
            raise CallInitError(f"Failed to initiate call: {e}") from e

        if response.status_code >= 400:
            raise CallInitError(
                _error_message(response) or "Failed to initiate call",
                details={"status": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CallInitError("Call-init returned an invalid response") from e

        token = data.get("token") if isinstance(data, dict) else None
        host = data.get("host") if isinstance(data, dict) else None
        if not token or not host:
            raise CallInitError("Call-init response is missing token or host")

        return CallCredentials(
            token=token,
            host=host,
            conversation_id=data.get("conversationId"),
            call_id=data.get("callId"),
        )

    async def push_triage(self, state: TriageState, call_id: Optional[str] = None) -> None:
        """
        Push a triage state to the server.

        Raises:
            httpx.HTTPError: On transport failure or non-2xx response
        """
        body: Dict[str, Any] = {"triage_state": state.to_dict()}
        if call_id:
            body["call_id"] = call_id
        response = await self._client.post("/triage", json=body)
        response.raise_for_status()

    async def fetch_calls(self) -> List[TriageEntry]:
        """
        Fetch all stored entries.

        A non-2xx response yields an empty list; transport errors raise
        httpx.HTTPError.
        """
        response = await self._client.get("/triage-calls")
        if response.status_code >= 400:
            logger.warning("Triage calls fetch returned %d", response.status_code)
            return []

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Triage calls fetch returned invalid JSON")
            return []

        raw_calls = payload.get("calls") if isinstance(payload, dict) else None
        if not isinstance(raw_calls, list):
            return []

        entries = []
        for item in raw_calls:
            entry = TriageEntry.from_dict(item) if isinstance(item, dict) else None
            if entry is not None:
                entries.append(entry)
        return entries


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None
