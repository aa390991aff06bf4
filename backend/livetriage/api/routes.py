"""
LiveTriage - REST API Routes

Endpoints for call initiation, triage ingestion and triage queries.

Architecture:
    All triage writes and reads go through the TriageStore created at
    startup and held on app.state; the Atoms webcall client lives there
    too. Handlers never touch module-level state.

Writers:
    - /triage-webhook:   platform lifecycle webhook (never errors)
    - /triage-function:  agent function-call webhook (keyed by call id)
    - /triage:           caller client push
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request

from livetriage.config import Settings
from livetriage.core.exceptions import (
    ConfigurationError,
    InvalidTriagePayloadError,
    ValidationError,
)
from livetriage.core.extractor import (
    extract_triage,
    extract_triage_from_text,
    parse_triage_json,
)
from livetriage.core.logging import LogContext, mask_call_id, mask_phone_number
from livetriage.core.triage_store import TriageStore
from livetriage.core.types import TriageState
from livetriage.services.atoms_api import AtomsWebcallClient

from .schemas import (
    ErrorResponse,
    FunctionCallAck,
    LatestTriageResponse,
    OkResponse,
    TriageCallsResponse,
    WebcallResponse,
    WebhookAck,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["triage"])

ERROR_RESPONSES = {400: {"model": ErrorResponse}}

# Transcript roles that count as the agent speaking
AGENT_ROLES = ("agent", "assistant")


# =============================================================================
# Dependencies
# =============================================================================

def get_store(request: Request) -> TriageStore:
    """Dependency to get the triage store from app state."""
    return request.app.state.triage_store


def get_settings(request: Request) -> Settings:
    """Dependency to get settings from app state."""
    return request.app.state.settings


def get_atoms_client(request: Request) -> AtomsWebcallClient:
    """Dependency to get the webcall client from app state."""
    return request.app.state.atoms_client


async def read_json_object(request: Request, message: str = "Invalid request body") -> Dict[str, Any]:
    """
    Decode the request body as a JSON object.

    An empty body decodes as ``{}``.

    Raises:
        ValidationError: Body is not JSON or not an object
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except (ValueError, RecursionError):
        raise ValidationError(message)
    if not isinstance(body, dict):
        raise ValidationError(message)
    return body


def _first_present(body: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if body.get(key) is not None:
            return body[key]
    return None


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


# =============================================================================
# Call Init
# =============================================================================

@router.post(
    "/call-init",
    response_model=WebcallResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def call_init(
    request: Request,
    settings: Settings = Depends(get_settings),
    atoms: AtomsWebcallClient = Depends(get_atoms_client),
):
    """
    Exchange the server's platform API key for a caller session credential.

    The agent id comes from the body (``agentId``) or ATOMS_AGENT_ID.
    Upstream failures are returned with the upstream status.
    """
    if not atoms.is_configured:
        raise ConfigurationError("SMALLEST_API_KEY is not configured on the server")

    body = await read_json_object(request)
    agent_id = body.get("agentId") or settings.atoms_agent_id
    if not agent_id:
        raise ValidationError("No agentId provided and ATOMS_AGENT_ID is not set")

    session = await atoms.create_webcall(str(agent_id))
    logger.info("Webcall created: call=%s", mask_call_id(session.call_id))
    return session.to_dict()


# =============================================================================
# Triage Writers
# =============================================================================

@router.post(
    "/triage-webhook",
    response_model=WebhookAck,
    response_model_exclude_none=True,
)
async def triage_webhook(
    request: Request,
    store: TriageStore = Depends(get_store),
):
    """
    Platform lifecycle webhook (pre-conversation, post-conversation, ...).

    Extraction order:
        1. ``metadata.variables`` through the extractor
        2. Otherwise the last agent transcript line, free-text heuristic

    Always answers 200 so the sender never retries.
    """
    try:
        body = json.loads(await request.body())
        event = _optional_str(body.get("event"))
        metadata = body.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        call_id = _optional_str(metadata.get("callId"))

        with LogContext(call_id=call_id):
            state = None
            source = "webhook"
            variables = metadata.get("variables")
            if isinstance(variables, dict):
                state = extract_triage(variables)

            if state is None:
                state = _triage_from_transcript(metadata.get("transcript"))
                source = "webhook_transcript"

            if state is not None:
                await store.save(state.with_metadata(source=source, call_id=call_id, event=event))
                logger.info("Webhook triage saved: event=%s, source=%s", event, source)
            else:
                logger.debug("Webhook carried no triage: event=%s", event)

        return WebhookAck(event=event)

    except Exception as e:
        logger.error("Triage webhook parse error: %s", e)
        return WebhookAck(error="Parse error")


def _triage_from_transcript(transcript: Any) -> Optional[TriageState]:
    """Free-text triage from the last agent line of a transcript list."""
    if not isinstance(transcript, list):
        return None
    for message in reversed(transcript):
        if (
            isinstance(message, dict)
            and message.get("role") in AGENT_ROLES
            and message.get("content")
        ):
            return extract_triage_from_text(message["content"])
    return None


@router.post(
    "/triage-function",
    response_model=FunctionCallAck,
    responses=ERROR_RESPONSES,
)
@router.post(
    "/webhook/triage",
    response_model=FunctionCallAck,
    responses=ERROR_RESPONSES,
    include_in_schema=False,
)
async def triage_function(
    request: Request,
    store: TriageStore = Depends(get_store),
):
    """
    Agent function-call webhook (``triage_update``).

    Body: ``{call_id, triage_state, agent_number?, user_number?}``; camelCase
    keys are accepted too. ``triage_state`` is a JSON string or an object.
    """
    body = await read_json_object(request)

    call_id = _first_present(body, "call_id", "callId")
    if not call_id:
        raise ValidationError("Missing call_id")
    call_id = str(call_id)

    raw = _first_present(body, "triage_state", "triageState")
    if raw is None:
        raise InvalidTriagePayloadError("Missing triage_state")

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise InvalidTriagePayloadError("triage_state is not valid JSON")
    if not isinstance(raw, dict):
        raise InvalidTriagePayloadError("triage_state must be a JSON string or object")

    state = TriageState.from_dict(raw).with_metadata(source="function")
    user_number = _optional_str(_first_present(body, "user_number", "userNumber"))
    await store.save_by_call_id(
        call_id,
        state,
        user_number=user_number,
        agent_number=_optional_str(_first_present(body, "agent_number", "agentNumber")),
    )

    with LogContext(call_id=call_id):
        logger.info(
            "Function-call triage saved: caller=%s",
            mask_phone_number(user_number),
            extra={"data": {"category": state.category, "urgency": state.urgency}},
        )
    return {"ok": True, "callId": call_id}


@router.post(
    "/triage",
    response_model=OkResponse,
    responses=ERROR_RESPONSES,
)
async def push_triage(
    request: Request,
    store: TriageStore = Depends(get_store),
):
    """
    Client push of a triage state.

    Body: ``{triage_state}`` (object or JSON string) or a bare triage object
    with ``location_raw``/``category``; optional ``call_id``/``callId``.
    """
    invalid = "Invalid JSON or triage_state"
    body = await read_json_object(request, message=invalid)

    raw = body.get("triage_state")
    if raw is not None:
        if isinstance(raw, str):
            state = parse_triage_json(raw)
            if state is None:
                raise InvalidTriagePayloadError(invalid)
        elif isinstance(raw, dict):
            state = TriageState.from_dict(raw)
        else:
            raise InvalidTriagePayloadError(invalid)
    elif "location_raw" in body or "category" in body:
        state = TriageState.from_dict(
            {k: v for k, v in body.items() if k not in ("call_id", "callId")}
        )
    else:
        raise InvalidTriagePayloadError(
            "Send triage_state (object or JSON string) or triage fields"
        )

    state = state.with_metadata(source=state.source or "client")
    call_id = _first_present(body, "call_id", "callId")

    if isinstance(call_id, str) and call_id:
        await store.save_by_call_id(call_id, state)
    else:
        await store.save(state)
    return {"ok": True}


# =============================================================================
# Triage Readers
# =============================================================================

@router.get("/triage", response_model=LatestTriageResponse)
async def get_latest_triage(store: TriageStore = Depends(get_store)):
    """Most recent triage write across all calls."""
    latest = await store.get_latest()
    return {"triage": latest.to_dict() if latest is not None else None}


@router.get("/triage-calls", response_model=TriageCallsResponse)
async def list_triage_calls(store: TriageStore = Depends(get_store)):
    """All stored entries, newest first. Polled by the dashboard."""
    entries = await store.list_all()
    return {"calls": [entry.to_dict() for entry in entries]}
