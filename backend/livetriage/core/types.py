"""
LiveTriage - Core Domain Types

Internal type definitions shared by the store, the extractor, the call
session controller and the dashboard aggregator.

Design Notes:
- Triage payloads arrive from several uncoordinated sources (webhooks,
  function calls, client pushes) so every TriageState field is optional.
  Absence means "unknown", never "false".
- Unrecognized keys are preserved in ``extra`` so nothing an agent writes
  is silently dropped on the way to the dashboard.
- Wire (JSON) shape uses the agent's snake_case keys; bookkeeping keys are
  prefixed with an underscore (``_source``, ``_callId``, ``_event``, ``_at``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 with millisecond precision and a trailing Z."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or epoch milliseconds into an aware datetime.

    Returns None for anything that cannot be interpreted.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            if not math.isfinite(value):
                return None
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


# =============================================================================
# Triage State
# =============================================================================

@dataclass(frozen=True)
class SuggestedUnits:
    """Which responder units the agent suggests dispatching."""
    police: Optional[bool] = None
    fire: Optional[bool] = None
    ems: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SuggestedUnits":
        return cls(**{
            key: data[key]
            for key in ("police", "fire", "ems")
            if isinstance(data.get(key), bool)
        })

    def to_dict(self) -> Dict[str, bool]:
        return {
            key: value
            for key, value in (("police", self.police), ("fire", self.fire), ("ems", self.ems))
            if value is not None
        }


# Known triage keys and the JSON type each must have to populate its field.
_STRING_FIELDS = (
    "location_raw",
    "callback_number",
    "category",
    "urgency",
    "one_sentence_summary",
    "last_caller_message",
    "last_assistant_message",
)
_BOOL_FIELDS = ("location_confirmed", "is_emergency")

# Bookkeeping keys: wire name -> attribute name
_META_FIELDS = {
    "_source": "source",
    "_callId": "call_id",
    "_event": "event",
}


@dataclass(frozen=True)
class TriageState:
    """
    Structured extraction of an emergency call's classification.

    Attributes:
        location_raw: Location as described by the caller
        location_confirmed: Whether the caller confirmed the location
        callback_number: Number to call back
        is_emergency: Whether the agent judged this a real emergency
        category: medical | fire | police | other (free-form, case varies)
        urgency: high | medium | low | other (free-form, case varies)
        suggested_units: Responder units suggested by the agent
        red_flags: Ordered red-flag tags
        one_sentence_summary: Agent's one-line summary
        last_caller_message: Most recent caller utterance seen by the agent
        last_assistant_message: Most recent agent utterance
        source: Which writer produced this state
        call_id: Call id embedded by the writer, if any
        event: Webhook event name, if any
        recorded_at: Store write time (set by the store)
        extra: Unrecognized keys, preserved verbatim
    """
    location_raw: Optional[str] = None
    location_confirmed: Optional[bool] = None
    callback_number: Optional[str] = None
    is_emergency: Optional[bool] = None
    category: Optional[str] = None
    urgency: Optional[str] = None
    suggested_units: Optional[SuggestedUnits] = None
    red_flags: Optional[List[str]] = None
    one_sentence_summary: Optional[str] = None
    last_caller_message: Optional[str] = None
    last_assistant_message: Optional[str] = None
    source: Optional[str] = None
    call_id: Optional[str] = None
    event: Optional[str] = None
    recorded_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriageState":
        """
        Build a state from a decoded JSON object.

        A known key only populates its field when the value has the expected
        JSON type; otherwise it is kept in ``extra`` untouched.
        """
        values: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}

        for key, value in data.items():
            if key in _STRING_FIELDS and isinstance(value, str):
                values[key] = value
            elif key in _BOOL_FIELDS and isinstance(value, bool):
                values[key] = value
            elif key == "suggested_units" and isinstance(value, dict):
                values[key] = SuggestedUnits.from_dict(value)
            elif key == "red_flags" and isinstance(value, list):
                values[key] = [str(flag) for flag in value if isinstance(flag, str)]
            elif key in _META_FIELDS and isinstance(value, str):
                values[_META_FIELDS[key]] = value
            elif key == "_at":
                # Bookkeeping only; an unreadable stamp is dropped
                recorded_at = parse_timestamp(value)
                if recorded_at is not None:
                    values["recorded_at"] = recorded_at
            else:
                extra[key] = value

        return cls(extra=extra, **values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire shape. Unknown fields are omitted."""
        data: Dict[str, Any] = dict(self.extra)

        for key in _STRING_FIELDS + _BOOL_FIELDS:
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.suggested_units is not None:
            data["suggested_units"] = self.suggested_units.to_dict()
        if self.red_flags is not None:
            data["red_flags"] = list(self.red_flags)
        for wire_key, attr in _META_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[wire_key] = value
        if self.recorded_at is not None:
            data["_at"] = format_timestamp(self.recorded_at)

        return data

    def with_metadata(self, **changes: Any) -> "TriageState":
        """Copy with bookkeeping fields replaced (source, call_id, event, recorded_at)."""
        return replace(self, **changes)


# =============================================================================
# Store Entry
# =============================================================================

@dataclass(frozen=True)
class TriageEntry:
    """
    One call's most recent triage write.

    Identity is ``call_id``; the entry is replaced wholesale on every write.
    """
    call_id: str
    state: TriageState
    at: datetime
    user_number: Optional[str] = None
    agent_number: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "callId": self.call_id,
            "state": self.state.to_dict(),
            "at": format_timestamp(self.at),
        }
        if self.user_number is not None:
            data["userNumber"] = self.user_number
        if self.agent_number is not None:
            data["agentNumber"] = self.agent_number
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["TriageEntry"]:
        """Parse the wire shape; returns None for malformed entries."""
        call_id = data.get("callId")
        state = data.get("state")
        at = parse_timestamp(data.get("at"))
        if not isinstance(call_id, str) or not isinstance(state, dict) or at is None:
            return None
        user_number = data.get("userNumber")
        agent_number = data.get("agentNumber")
        return cls(
            call_id=call_id,
            state=TriageState.from_dict(state),
            at=at,
            user_number=user_number if isinstance(user_number, str) else None,
            agent_number=agent_number if isinstance(agent_number, str) else None,
        )


# =============================================================================
# Call Session
# =============================================================================

class CallStatus(str, Enum):
    """Lifecycle of the caller-side voice session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    WAITING_FOR_AGENT = "waiting_for_agent"
    ACTIVE = "active"
    ENDED = "ended"
    ERROR = "error"


class Sender(str, Enum):
    """Who spoke a transcript line."""
    CALLER = "caller"
    DISPATCHER = "dispatcher"


@dataclass(frozen=True)
class TranscriptMessage:
    """One transcript line. ``id`` is monotonic within a controller."""
    id: int
    sender: Sender
    text: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CallSession:
    """Read-only snapshot of a CallSessionController."""
    status: CallStatus = CallStatus.IDLE
    status_message: str = "Ready"
    call_id: Optional[str] = None
    is_muted: bool = False
    is_agent_speaking: bool = False
    transcript: tuple = ()
    triage_state: Optional[TriageState] = None
    error: Optional[str] = None
    interim_transcript: str = ""
    speech_supported: bool = False
    transcript_window: int = 12

    @property
    def recent_transcript(self) -> List[TranscriptMessage]:
        """The last ``transcript_window`` lines, for display."""
        return list(self.transcript[-self.transcript_window:])


# =============================================================================
# Dashboard Projection
# =============================================================================

class EmergencyType(str, Enum):
    MEDICAL = "Medical"
    FIRE = "Fire"
    POLICE = "Police"


class Priority(str, Enum):
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"
    P5 = "P5"

    @property
    def weight(self) -> int:
        """Sort weight; P1 sorts first."""
        return int(self.value[1:])


class DispatchStatus(str, Enum):
    ONGOING = "ongoing"
    DISPATCH_SENT = "dispatch_sent"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class TranscriptLine:
    """A transcript line as shown on the dashboard."""
    id: str
    speaker: Sender
    text: str
    timestamp: datetime


@dataclass(frozen=True)
class DispatchCall:
    """
    Dashboard record for one call.

    Derived data: the aggregator never mutates one, it builds a new record
    whenever the underlying TriageEntry changes.
    """
    id: str
    phone_number: str
    caller_name: str
    location_text: str
    latitude: float
    longitude: float
    emergency_type: EmergencyType
    priority: Priority
    status: DispatchStatus
    started_at: datetime
    tags: List[str] = field(default_factory=list)
    urgency_score: int = 50
    confidence: float = 0.9
    transcript: List[TranscriptLine] = field(default_factory=list)
    notes: str = ""
    dispatch_sent_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
