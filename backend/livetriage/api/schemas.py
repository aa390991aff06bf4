"""
LiveTriage - API Schemas

Pydantic models for the HTTP responses.
These define the contract between the voice platform, the caller client
and the dashboard.

Request bodies are not modelled here: inbound triage payloads come in
several loosely-specified shapes and are parsed by the route handlers and
the extractor, which report problems as ``{"error": ...}``.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""
    error: str


# ===========================================
# Call Init
# ===========================================

class WebcallResponse(BaseModel):
    """Session credential for the caller's client."""

    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(description="Short-lived session token")
    host: str = Field(description="Voice platform host to connect to")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    call_id: Optional[str] = Field(default=None, alias="callId")


# ===========================================
# Triage Writes
# ===========================================

class WebhookAck(BaseModel):
    """Acknowledgement for platform webhooks. Always sent with status 200."""
    received: bool = True
    event: Optional[str] = None
    error: Optional[str] = None


class FunctionCallAck(BaseModel):
    """Acknowledgement for the triage function-call webhook."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    call_id: str = Field(alias="callId")


class OkResponse(BaseModel):
    ok: bool = True


# ===========================================
# Triage Reads
# ===========================================

class TriageEntrySchema(BaseModel):
    """One call's most recent triage write."""

    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(alias="callId")
    state: Dict[str, Any] = Field(description="Triage state, wire shape")
    at: str = Field(description="ISO-8601 write time")
    user_number: Optional[str] = Field(default=None, alias="userNumber")
    agent_number: Optional[str] = Field(default=None, alias="agentNumber")


class LatestTriageResponse(BaseModel):
    """Most recent write across all calls, or null."""
    triage: Optional[Dict[str, Any]] = None


class TriageCallsResponse(BaseModel):
    """All stored entries, newest first."""
    calls: List[TriageEntrySchema] = Field(default_factory=list)


# ===========================================
# Health
# ===========================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="Overall system status")
    version: str = Field(description="API version")
    environment: str
    timestamp: str
    checks: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
