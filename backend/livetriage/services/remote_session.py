"""
LiveTriage - Remote Voice Session

Interface to the remote voice-AI platform's caller session (audio transport,
agent speech, transcript and update channels) plus a scripted simulator.

The platform itself is an external collaborator: this module only defines
the typed events it produces and the operations the call controller needs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


# =============================================================================
# Session Events
# =============================================================================

@dataclass(frozen=True)
class SessionStarted:
    """Remote session established; agent not yet on the line."""


@dataclass(frozen=True)
class AgentConnected:
    """Agent joined; the call is live."""


@dataclass(frozen=True)
class AgentStartTalking:
    """Agent audio playback began."""


@dataclass(frozen=True)
class AgentStopTalking:
    """Agent audio playback stopped."""


@dataclass(frozen=True)
class TranscriptReceived:
    """A dispatcher line from the remote transcript channel."""
    text: str


@dataclass(frozen=True)
class UpdateReceived:
    """Generic update payload (may carry triage)."""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MetadataReceived:
    """Metadata payload (may carry triage)."""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MicrophonePermissionGranted:
    """Microphone access granted."""


@dataclass(frozen=True)
class MicrophonePermissionError:
    """Microphone permission denied."""
    error: str


@dataclass(frozen=True)
class MicrophoneAccessFailed:
    """Microphone could not be opened."""
    error: str


@dataclass(frozen=True)
class SessionErrored:
    """Transport or platform error."""
    error: str


@dataclass(frozen=True)
class SessionEnded:
    """Remote session closed."""


SessionEvent = Union[
    SessionStarted,
    AgentConnected,
    AgentStartTalking,
    AgentStopTalking,
    TranscriptReceived,
    UpdateReceived,
    MetadataReceived,
    MicrophonePermissionGranted,
    MicrophonePermissionError,
    MicrophoneAccessFailed,
    SessionErrored,
    SessionEnded,
]

EventSink = Callable[[SessionEvent], None]


# =============================================================================
# Session Interface
# =============================================================================

class RemoteVoiceSession(ABC):
    """
    Abstract caller session on the remote voice platform.

    Implementations push SessionEvents into the sink installed with
    ``set_event_sink``.
    """

    @abstractmethod
    def set_event_sink(self, sink: Optional[EventSink]) -> None:
        """Install (or clear) the receiver for session events."""
        ...

    @abstractmethod
    async def start_session(self, access_token: str, host: str, mode: str = "webcall") -> None:
        """
        Open the session with a credential from call-init.

        Raises:
            Exception: If the session cannot be established
        """
        ...

    @abstractmethod
    async def start_audio_playback(self) -> None:
        """Begin playing agent audio."""
        ...

    @abstractmethod
    def stop_session(self) -> None:
        """Close the session. May raise if it is already stopped."""
        ...

    @abstractmethod
    def mute(self) -> None:
        ...

    @abstractmethod
    def unmute(self) -> None:
        ...


# =============================================================================
# Simulated Session
# =============================================================================

class SimulatedVoiceSession(RemoteVoiceSession):
    """
    Scripted stand-in for the remote platform.

    Records every operation and lets a driver (demo script or test) play
    the platform's side of the call.

    Usage:
        session = SimulatedVoiceSession()
        controller = CallSessionController(session, api_client)
        await controller.start_call()
        session.connect_agent()
        session.agent_says("911, what is your emergency?")
    """

    def __init__(
        self,
        fail_on_start: Optional[str] = None,
        auto_start_event: bool = True,
    ):
        self._sink: Optional[EventSink] = None
        self._fail_on_start = fail_on_start
        self._auto_start_event = auto_start_event

        self.started = False
        self.playing = False
        self.muted = False
        self.access_token: Optional[str] = None
        self.host: Optional[str] = None
        self.calls: List[str] = []

    def set_event_sink(self, sink: Optional[EventSink]) -> None:
        self._sink = sink

    async def start_session(self, access_token: str, host: str, mode: str = "webcall") -> None:
        self.calls.append("start_session")
        if self._fail_on_start:
            raise ConnectionError(self._fail_on_start)
        self.access_token = access_token
        self.host = host
        self.started = True
        if self._auto_start_event:
            self.emit(SessionStarted())
            self.emit(MicrophonePermissionGranted())

    async def start_audio_playback(self) -> None:
        self.calls.append("start_audio_playback")
        self.playing = True

    def stop_session(self) -> None:
        self.calls.append("stop_session")
        if not self.started:
            raise RuntimeError("Session is not running")
        self.started = False
        self.playing = False
        self.emit(SessionEnded())

    def mute(self) -> None:
        self.calls.append("mute")
        self.muted = True

    def unmute(self) -> None:
        self.calls.append("unmute")
        self.muted = False

    # --- Driver helpers -----------------------------------------------------

    def emit(self, event: SessionEvent) -> None:
        if self._sink is not None:
            self._sink(event)

    def connect_agent(self) -> None:
        self.emit(AgentConnected())

    def agent_says(self, text: str) -> None:
        """Agent speaks one line: talking starts, transcript arrives, talking stops."""
        self.emit(AgentStartTalking())
        self.emit(TranscriptReceived(text))
        self.emit(AgentStopTalking())

    def push_update(self, data: Dict[str, Any]) -> None:
        self.emit(UpdateReceived(data))

    def hang_up(self) -> None:
        self.started = False
        self.playing = False
        self.emit(SessionEnded())
