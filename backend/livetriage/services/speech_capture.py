"""
LiveTriage - Speech Capture Service

Continuous caller speech-to-text with a suppression gate and auto-restart.

Architecture:
    - RecognitionBackend protocol abstracts the platform's recognition
      capability (continuous, interim results enabled)
    - NullRecognitionBackend: capability absent; everything is a no-op
    - SimulatedRecognitionBackend: driver-fed backend for simulated sessions
      and tests
    - SpeechCaptureService: the stateful wrapper used by the call controller

Suppression:
    While the remote agent's audio is playing, the caller's microphone picks
    up the speaker. Every result delivered while suppressed (interim and
    final) is discarded so bleed-through is never attributed to the caller.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, runtime_checkable

logger = logging.getLogger(__name__)

# Errors that are routine during a call and must not be reported.
RECOVERABLE_ERRORS = frozenset({"no-speech", "aborted"})


@dataclass(frozen=True)
class RecognitionSegment:
    """One recognized segment of a result batch."""
    text: str
    is_final: bool = False


class RecognitionListener(Protocol):
    """Callbacks a RecognitionBackend delivers into."""

    def on_start(self) -> None: ...

    def on_result(self, segments: Sequence[RecognitionSegment]) -> None: ...

    def on_error(self, error: str) -> None: ...

    def on_end(self) -> None: ...


# =============================================================================
# Backend Protocol
# =============================================================================

@runtime_checkable
class RecognitionBackend(Protocol):
    """
    Platform speech recognition capability.

    Implementations deliver events to the listener given to ``start``.
    ``is_supported`` is False when the platform has no recognizer.
    """

    @property
    @abstractmethod
    def is_supported(self) -> bool:
        ...

    @abstractmethod
    def start(self, listener: RecognitionListener, language: str) -> None:
        """Begin continuous recognition with interim results."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop gracefully; a final end event may follow."""
        ...

    @abstractmethod
    def abort(self) -> None:
        """Stop immediately, discarding pending results."""
        ...


class NullRecognitionBackend:
    """Backend for targets without speech recognition."""

    @property
    def is_supported(self) -> bool:
        return False

    def start(self, listener: RecognitionListener, language: str) -> None:
        pass

    def stop(self) -> None:
        pass

    def abort(self) -> None:
        pass


class SimulatedRecognitionBackend:
    """
    Recognition backend driven programmatically.

    ``emit_*`` methods deliver events to whichever listener is currently
    attached, the way a platform recognizer would.
    """

    def __init__(self):
        self._listener: Optional[RecognitionListener] = None
        self.running = False
        self.start_count = 0
        self.language: Optional[str] = None

    @property
    def is_supported(self) -> bool:
        return True

    def start(self, listener: RecognitionListener, language: str) -> None:
        if self.running:
            raise RuntimeError("recognition already started")
        self._listener = listener
        self.language = language
        self.running = True
        self.start_count += 1
        listener.on_start()

    def stop(self) -> None:
        self._finish()

    def abort(self) -> None:
        self._finish()

    def emit_result(self, *segments: RecognitionSegment) -> None:
        if self._listener and self.running:
            self._listener.on_result(list(segments))

    def emit_final(self, text: str) -> None:
        self.emit_result(RecognitionSegment(text, is_final=True))

    def emit_interim(self, text: str) -> None:
        self.emit_result(RecognitionSegment(text, is_final=False))

    def emit_error(self, error: str) -> None:
        if self._listener:
            self._listener.on_error(error)

    def emit_end(self) -> None:
        """Simulate the platform ending recognition on its own (e.g. timeout)."""
        self._finish()

    def _finish(self) -> None:
        if not self.running:
            return
        self.running = False
        if self._listener:
            self._listener.on_end()


# =============================================================================
# Service
# =============================================================================

class SpeechCaptureService:
    """
    Caller speech capture with suppression and transparent restart.

    Usage:
        capture = SpeechCaptureService(backend, on_result=handle_line)
        capture.start()
        capture.set_suppressed(True)   # agent talking
        capture.set_suppressed(False)
        capture.stop()
    """

    def __init__(
        self,
        backend: Optional[RecognitionBackend] = None,
        on_result: Optional[Callable[[str], None]] = None,
        language: str = "en-US",
    ):
        self._backend = backend or NullRecognitionBackend()
        self._on_result = on_result
        self._language = language

        self._should_listen = False
        self._suppressed = False
        self._listening = False
        self._interim = ""

    # --- Public state -------------------------------------------------------

    @property
    def is_supported(self) -> bool:
        return self._backend.is_supported

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def is_suppressed(self) -> bool:
        return self._suppressed

    @property
    def interim_transcript(self) -> str:
        return self._interim

    def set_result_callback(self, on_result: Optional[Callable[[str], None]]) -> None:
        self._on_result = on_result

    # --- Control ------------------------------------------------------------

    def start(self) -> None:
        """Start listening. Any running recognition is aborted first."""
        if not self.is_supported:
            return

        if self._listening:
            self._should_listen = False
            try:
                self._backend.abort()
            except Exception as e:
                logger.debug("Abort before restart failed: %s", e)

        self._should_listen = True
        self._start_backend()

    def stop(self) -> None:
        """Stop listening and disable auto-restart."""
        if not self.is_supported:
            return

        self._should_listen = False
        self._interim = ""
        try:
            self._backend.stop()
        except Exception as e:
            logger.debug("Recognition stop failed: %s", e)
        self._listening = False

    def set_suppressed(self, suppressed: bool) -> None:
        """Gate results while remote agent audio is playing."""
        self._suppressed = suppressed
        if suppressed:
            self._interim = ""

    # --- RecognitionListener ------------------------------------------------

    def on_start(self) -> None:
        self._listening = True

    def on_result(self, segments: Sequence[RecognitionSegment]) -> None:
        if self._suppressed:
            self._interim = ""
            return

        interim: List[str] = []
        for segment in segments:
            if segment.is_final:
                text = segment.text.strip()
                if text and self._on_result:
                    self._on_result(text)
            else:
                interim.append(segment.text)
        self._interim = "".join(interim)

    def on_error(self, error: str) -> None:
        if error in RECOVERABLE_ERRORS:
            return
        logger.warning("Speech recognition error: %s", error)

    def on_end(self) -> None:
        self._listening = False
        self._interim = ""
        if self._should_listen:
            logger.debug("Recognition ended while listening; restarting")
            self._start_backend()

    # ------------------------------------------------------------------------

    def _start_backend(self) -> None:
        try:
            self._backend.start(self, self._language)
        except Exception as e:
            logger.debug("Recognition start failed: %s", e)
