"""
LiveTriage - Call Session Controller

Finite-state machine owning one caller-side voice session.

Lifecycle:
    idle → connecting → waiting_for_agent → active → ended
    error is reachable from connecting / waiting_for_agent / active.
    ended and error return to idle only through end_call().

Inputs:
    - Caller commands: start_call(), end_call(), toggle_mute()
    - Typed SessionEvents from the remote platform, posted to an inbox
      queue and applied one at a time by handle()
    - Finalized caller speech from SpeechCaptureService

Responsibilities:
    1. Acquire a session credential and open the remote session
    2. Start speech capture exactly when the agent connects
    3. Suppress speech capture while the agent is talking
    4. Reconcile transcript lines from the transcript channel, caller
       speech and triage payloads
    5. Extract triage from update events and push it to the server
       (fire-and-forget)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from livetriage.config import Settings
from livetriage.core.exceptions import InvalidTransitionError
from livetriage.core.extractor import extract_triage
from livetriage.core.logging import mask_call_id
from livetriage.core.types import (
    CallSession,
    CallStatus,
    Sender,
    TranscriptMessage,
    TriageState,
    utcnow,
)
from livetriage.services.remote_session import (
    AgentConnected,
    AgentStartTalking,
    AgentStopTalking,
    MetadataReceived,
    MicrophoneAccessFailed,
    MicrophonePermissionError,
    MicrophonePermissionGranted,
    RemoteVoiceSession,
    SessionEnded,
    SessionErrored,
    SessionEvent,
    SessionStarted,
    TranscriptReceived,
    UpdateReceived,
)
from livetriage.services.speech_capture import RecognitionBackend, SpeechCaptureService
from livetriage.services.triage_client import TriageApiClient

logger = logging.getLogger(__name__)

SessionListener = Callable[[CallSession], None]

STARTABLE: FrozenSet[CallStatus] = frozenset({CallStatus.IDLE, CallStatus.ENDED, CallStatus.ERROR})
LIVE: FrozenSet[CallStatus] = frozenset({
    CallStatus.CONNECTING,
    CallStatus.WAITING_FOR_AGENT,
    CallStatus.ACTIVE,
})
CONNECTED: FrozenSet[CallStatus] = frozenset({CallStatus.WAITING_FOR_AGENT, CallStatus.ACTIVE})

# Source states in which each event is applied. Anything else is ignored.
TRANSITIONS: Dict[type, FrozenSet[CallStatus]] = {
    SessionStarted: frozenset({CallStatus.CONNECTING}),
    AgentConnected: frozenset({CallStatus.CONNECTING, CallStatus.WAITING_FOR_AGENT}),
    AgentStartTalking: CONNECTED,
    AgentStopTalking: CONNECTED,
    TranscriptReceived: LIVE,
    UpdateReceived: LIVE | {CallStatus.ENDED},
    MetadataReceived: LIVE | {CallStatus.ENDED},
    MicrophonePermissionGranted: LIVE,
    MicrophonePermissionError: LIVE,
    MicrophoneAccessFailed: LIVE,
    SessionErrored: LIVE,
    SessionEnded: LIVE,
}


class CallSessionController:
    """
    State machine for one caller-side call.

    Attributes:
        remote: Remote platform session (audio transport and events)
        api: LiveTriage server client (call-init and triage push)
        speech: Caller speech capture; a no-op service when unsupported

    Usage:
        controller = CallSessionController(remote, api, speech)
        await controller.start_call()
        ...
        controller.end_call()
    """

    def __init__(
        self,
        remote: RemoteVoiceSession,
        api: TriageApiClient,
        speech: Optional[SpeechCaptureService] = None,
        agent_id: Optional[str] = None,
        transcript_window: int = 12,
    ):
        self._remote = remote
        self._api = api
        self._speech = speech or SpeechCaptureService()
        self._agent_id = agent_id
        self._transcript_window = transcript_window

        self._speech.set_result_callback(self._on_caller_speech)
        self._remote.set_event_sink(self.post)

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None
        self._push_tasks: Set[asyncio.Task] = set()
        self._listeners: List[SessionListener] = []

        # Bumped on every start/end; async continuations from an older
        # generation are abandoned.
        self._generation = 0

        self._status = CallStatus.IDLE
        self._status_message = "Ready"
        self._error: Optional[str] = None
        self._call_id: Optional[str] = None
        self._muted = False
        self._agent_speaking = False
        self._transcript: List[TranscriptMessage] = []
        self._message_id = 0
        self._triage_state: Optional[TriageState] = None
        self._last_caller_from_triage: Optional[str] = None
        self._last_assistant_from_triage: Optional[str] = None

    # =========================================================================
    # Snapshot
    # =========================================================================

    @property
    def status(self) -> CallStatus:
        return self._status

    @property
    def session(self) -> CallSession:
        """Immutable snapshot of the current session."""
        return CallSession(
            status=self._status,
            status_message=self._status_message,
            call_id=self._call_id,
            is_muted=self._muted,
            is_agent_speaking=self._agent_speaking,
            transcript=tuple(self._transcript),
            triage_state=self._triage_state,
            error=self._error,
            interim_transcript=self._speech.interim_transcript,
            speech_supported=self._speech.is_supported,
            transcript_window=self._transcript_window,
        )

    def add_listener(self, listener: SessionListener) -> None:
        """Register a callback receiving a snapshot after every change."""
        self._listeners.append(listener)

    # =========================================================================
    # Commands
    # =========================================================================

    async def start_call(self, agent_id: Optional[str] = None) -> None:
        """
        Start a new call.

        From any state other than idle/ended/error the previous call is
        fully torn down first; calls are never queued. Failures at any step
        move the session to ``error`` without retrying.
        """
        if self._status not in STARTABLE:
            logger.warning(
                "start_call while %s; resetting previous call", self._status.value
            )
        if self._status != CallStatus.IDLE:
            self.end_call()
        else:
            # Events queued while idle belong to no call
            self._stop_pump()

        self._generation += 1
        generation = self._generation

        self._transcript = []
        self._triage_state = None
        self._last_caller_from_triage = None
        self._last_assistant_from_triage = None
        self._error = None
        self._call_id = None
        self._muted = False
        self._agent_speaking = False
        self._set_status(CallStatus.CONNECTING, "Initiating call...")
        self._start_pump()

        try:
            credentials = await self._api.init_call(agent_id or self._agent_id)
            if generation != self._generation:
                return

            self._call_id = credentials.call_id
            self._set_message("Connecting to dispatcher...")
            logger.info("Call credential acquired: call=%s", mask_call_id(self._call_id))

            await self._remote.start_session(
                access_token=credentials.token,
                host=credentials.host,
                mode="webcall",
            )
            if generation != self._generation:
                return

            await self._remote.start_audio_playback()
        except Exception as e:
            if generation != self._generation:
                return
            logger.error("Call failed to start: %s", e)
            self._fail(str(e) or type(e).__name__, "Failed to connect")

    def end_call(self) -> None:
        """Stop capture, close the remote session, reset to idle."""
        self._generation += 1
        self._speech.stop()

        try:
            self._remote.stop_session()
        except Exception as e:
            logger.debug("Remote session already stopped: %s", e)

        self._stop_pump()

        self._status = CallStatus.IDLE
        self._status_message = "Ready"
        self._error = None
        self._call_id = None
        self._muted = False
        self._agent_speaking = False
        self._last_caller_from_triage = None
        self._last_assistant_from_triage = None
        self._notify()

    def toggle_mute(self) -> bool:
        """
        Flip the caller's mute state.

        Returns:
            The new mute state

        Raises:
            InvalidTransitionError: If the call is not connected
        """
        if self._status not in CONNECTED:
            raise InvalidTransitionError(
                f"Cannot toggle mute while {self._status.value}"
            )

        if self._muted:
            self._remote.unmute()
            self._muted = False
        else:
            self._remote.mute()
            self._muted = True
        self._notify()
        return self._muted

    async def shutdown(self) -> None:
        """End the call and wait for outstanding triage pushes."""
        self.end_call()
        if self._push_tasks:
            await asyncio.gather(*self._push_tasks, return_exceptions=True)

    # =========================================================================
    # Event Handling
    # =========================================================================

    def post(self, event: SessionEvent) -> None:
        """Queue a remote event for the state machine."""
        self._inbox.put_nowait(event)

    def process_pending(self) -> int:
        """Apply all queued events now. Returns how many were applied."""
        count = 0
        while not self._inbox.empty():
            self.handle(self._inbox.get_nowait())
            count += 1
        return count

    def handle(self, event: SessionEvent) -> bool:
        """
        Apply one event.

        Returns:
            True if the event was legal in the current state and applied
        """
        allowed = TRANSITIONS.get(type(event))
        if allowed is None or self._status not in allowed:
            logger.debug(
                "Ignoring %s in state %s", type(event).__name__, self._status.value
            )
            return False

        if isinstance(event, SessionStarted):
            self._set_status(CallStatus.WAITING_FOR_AGENT, "Connecting to dispatcher...")

        elif isinstance(event, AgentConnected):
            self._set_status(CallStatus.ACTIVE, "Dispatcher connected")
            self._speech.start()

        elif isinstance(event, AgentStartTalking):
            self._agent_speaking = True
            self._speech.set_suppressed(True)
            self._set_message("Dispatcher speaking...")

        elif isinstance(event, AgentStopTalking):
            self._agent_speaking = False
            self._speech.set_suppressed(False)
            self._set_message("Listening...")

        elif isinstance(event, TranscriptReceived):
            self._append(Sender.DISPATCHER, event.text)

        elif isinstance(event, (UpdateReceived, MetadataReceived)):
            self._apply_triage_payload(event.data)

        elif isinstance(event, MicrophonePermissionGranted):
            logger.debug("Microphone permission granted")

        elif isinstance(event, MicrophonePermissionError):
            self._fail(f"Microphone error: {event.error}", "Microphone access denied")

        elif isinstance(event, MicrophoneAccessFailed):
            self._fail(f"Microphone access failed: {event.error}", "Microphone access failed")

        elif isinstance(event, SessionErrored):
            self._fail(str(event.error), "Connection error")

        elif isinstance(event, SessionEnded):
            self._speech.stop()
            self._agent_speaking = False
            self._muted = False
            self._set_status(CallStatus.ENDED, "Call ended")
            logger.info("Call ended: call=%s", mask_call_id(self._call_id))

        return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _on_caller_speech(self, text: str) -> None:
        self._append(Sender.CALLER, text)

    def _apply_triage_payload(self, data: dict) -> None:
        triage = extract_triage(data)
        if triage is None:
            return

        self._triage_state = triage

        caller = triage.last_caller_message
        if caller and caller.strip() and caller != self._last_caller_from_triage:
            self._last_caller_from_triage = caller
            self._append(Sender.CALLER, caller.strip(), notify=False)

        assistant = triage.last_assistant_message
        if assistant and assistant.strip() and assistant != self._last_assistant_from_triage:
            self._last_assistant_from_triage = assistant
            self._append(Sender.DISPATCHER, assistant.strip(), notify=False)

        self._notify()
        self._schedule_push(triage)

    def _schedule_push(self, state: TriageState) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; triage push skipped")
            return
        task = loop.create_task(self._push_triage(state, self._call_id))
        self._push_tasks.add(task)
        task.add_done_callback(self._push_tasks.discard)

    async def _push_triage(self, state: TriageState, call_id: Optional[str]) -> None:
        try:
            await self._api.push_triage(state, call_id=call_id)
        except Exception as e:
            logger.warning("Failed to store triage on server: %s", e)

    def _append(self, sender: Sender, text: str, notify: bool = True) -> None:
        self._message_id += 1
        self._transcript.append(
            TranscriptMessage(
                id=self._message_id,
                sender=sender,
                text=text,
                timestamp=utcnow(),
            )
        )
        if notify:
            self._notify()

    def _fail(self, error: str, status_message: str) -> None:
        self._speech.stop()
        self._agent_speaking = False
        self._error = error
        self._set_status(CallStatus.ERROR, status_message)

    def _set_status(self, status: CallStatus, message: str) -> None:
        self._status = status
        self._status_message = message
        self._notify()

    def _set_message(self, message: str) -> None:
        self._status_message = message
        self._notify()

    def _start_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.get_running_loop().create_task(self._pump())

    def _stop_pump(self) -> None:
        if self._pump_task is not None:
            self._pump_task.cancel()
            self._pump_task = None
        while not self._inbox.empty():
            self._inbox.get_nowait()

    async def _pump(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                self.handle(event)
            except Exception:
                logger.exception("Session event handling failed: %s", type(event).__name__)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.session
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(
                    "Session listener failed [%s]: %s",
                    getattr(listener, "__name__", "unknown"), e,
                )


def create_call_controller(
    settings: Settings,
    remote: RemoteVoiceSession,
    recognition: Optional[RecognitionBackend] = None,
    api: Optional[TriageApiClient] = None,
) -> CallSessionController:
    """
    Build a caller-side controller from settings.

    Without a recognition backend, caller speech capture is disabled.
    """
    api = api or TriageApiClient(
        base_url=settings.triage_api_base_url,
        timeout=settings.http_timeout_seconds,
    )
    speech = SpeechCaptureService(recognition, language=settings.speech_language)
    return CallSessionController(
        remote,
        api,
        speech,
        agent_id=settings.atoms_agent_id,
        transcript_window=settings.transcript_window,
    )
