"""
LiveTriage - Core Package

Contains the domain types and the server-side triage machinery:
- types: Internal domain types
- extractor: Canonical triage extraction from inbound payloads
- triage_store: Bounded per-call triage store
"""

from .types import (
    CallStatus,
    DispatchCall,
    TriageEntry,
    TriageState,
    TranscriptMessage,
)
from .extractor import TriageExtractor, extract_triage, extract_triage_from_text
from .triage_store import (
    TriageStore,
    InMemoryTriageStore,
    create_triage_store,
)

__all__ = [
    # Types
    "CallStatus",
    "DispatchCall",
    "TriageEntry",
    "TriageState",
    "TranscriptMessage",
    # Extraction
    "TriageExtractor",
    "extract_triage",
    "extract_triage_from_text",
    # Store
    "TriageStore",
    "InMemoryTriageStore",
    "create_triage_store",
]
