"""
LiveTriage - Atoms Webcall Client

Server-side client for the remote voice platform's webcall API. Exchanges
the server's API key for a short-lived session credential the caller's
client can use to open an audio session.

The API key never leaves the server.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from livetriage.core.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebcallSession:
    """Credential for one caller session."""
    token: str
    host: str
    conversation_id: Optional[str] = None
    call_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "host": self.host,
            "conversationId": self.conversation_id,
            "callId": self.call_id,
        }


class AtomsWebcallClient:
    """
    Async client for ``POST {base_url}/conversation/webcall``.

    Args:
        api_key: Platform API key (None means not configured)
        base_url: API root
        timeout: Request timeout in seconds
        client: Pre-built httpx client (tests inject a MockTransport)
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://atoms-api.smallest.ai/api/v1",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def create_webcall(self, agent_id: str) -> WebcallSession:
        """
        Create a webcall session for ``agent_id``.

        Raises:
            ConfigurationError: API key is not configured
            UpstreamError: Non-2xx response (carries upstream status),
                transport failure (502), or malformed body (502)
        """
        if not self._api_key:
            raise ConfigurationError("SMALLEST_API_KEY is not configured on the server")

        url = f"{self._base_url}/conversation/webcall"
        logger.info("Requesting webcall: agent=%s", agent_id)

        try:
            response = await self._client.post(
                url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"agentId": agent_id},
            )
        except httpx.HTTPError as e:
            logger.error("Webcall request failed: %s", e)
            raise UpstreamError(f"Failed to reach voice platform: {e}") from e

        if response.status_code >= 400:
            message = extract_upstream_message(response)
            logger.error(
                "Atoms API error: status=%d, message=%s", response.status_code, message
            )
            raise UpstreamError(
                f"Failed to create webcall session: {message}",
                status_code=response.status_code,
            )

        try:
            data = response.json()["data"]
            return WebcallSession(
                token=data["token"],
                host=data["host"],
                conversation_id=data.get("conversationId"),
                call_id=data.get("callId"),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamError("Voice platform returned a malformed webcall response") from e


def extract_upstream_message(response: httpx.Response) -> str:
    """
    Best-effort error message from an upstream error body.

    Preference: errors[0], message, error, msg; a short non-JSON body is
    used verbatim; otherwise the HTTP reason phrase.
    """
    fallback = response.reason_phrase or f"HTTP {response.status_code}"
    text = response.text

    try:
        parsed = json.loads(text)
    except ValueError:
        if text and len(text) < 200:
            return text
        return fallback

    if not isinstance(parsed, dict):
        return fallback

    errors = parsed.get("errors")
    if isinstance(errors, list) and errors:
        return str(errors[0])
    for key in ("message", "error", "msg"):
        if parsed.get(key):
            return str(parsed[key])
    return fallback
