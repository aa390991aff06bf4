"""
LiveTriage - Services Package

Contains the client-side and integration services:
- Speech capture (local caller recognition)
- Remote voice session interface and simulator
- Atoms webcall client (server side)
- Triage API client, call session controller
- Live call aggregator and dispatch dashboard state

Design Pattern:
    External capabilities (speech recognition, the remote voice platform,
    HTTP) are defined as interfaces with a real and a simulated or no-op
    implementation, injected into the components that use them.
"""

from .speech_capture import (
    RecognitionBackend,
    NullRecognitionBackend,
    SimulatedRecognitionBackend,
    SpeechCaptureService,
)
from .remote_session import (
    RemoteVoiceSession,
    SimulatedVoiceSession,
)
from .atoms_api import AtomsWebcallClient, WebcallSession
from .triage_client import TriageApiClient, CallCredentials
from .call_session import CallSessionController, create_call_controller
from .live_aggregator import (
    LiveCallAggregator,
    LocalTriageCache,
    create_live_aggregator,
    merge_entries,
    to_dispatch_call,
)
from .dispatch_state import (
    DispatchStateStore,
    format_elapsed,
    sort_calls,
    status_label,
)

__all__ = [
    # Speech capture
    "RecognitionBackend",
    "NullRecognitionBackend",
    "SimulatedRecognitionBackend",
    "SpeechCaptureService",
    # Remote session
    "RemoteVoiceSession",
    "SimulatedVoiceSession",
    # HTTP clients
    "AtomsWebcallClient",
    "WebcallSession",
    "TriageApiClient",
    "CallCredentials",
    # Call controller
    "CallSessionController",
    "create_call_controller",
    # Dashboard
    "LiveCallAggregator",
    "LocalTriageCache",
    "create_live_aggregator",
    "merge_entries",
    "to_dispatch_call",
    "DispatchStateStore",
    "format_elapsed",
    "sort_calls",
    "status_label",
]
