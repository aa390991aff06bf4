"""
LiveTriage - Triage Extractor

Turns an arbitrary inbound payload (webhook variables, SDK update events,
function-call bodies, client pushes) into a canonical TriageState.

Architecture:
    Extraction is an ordered chain of matchers. Each matcher inspects the
    payload and returns a definite MatchResult:

    - MATCHED:  a state was found, stop
    - REJECTED: the payload claims to carry triage but it is unusable, stop
                and return None
    - PASS:     not my shape, try the next matcher

    Chain for structured payloads:
        1. StringWrappedMatcher  - wrapper key holding a JSON string
        2. ObjectWrappedMatcher  - wrapper key holding an object
        3. InlineFieldsMatcher   - triage fields directly on the payload

    FreeTextFallbackMatcher is used on its own for natural-language
    transcript text and is never part of the structured chain.

All matchers are pure and never raise.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

from livetriage.core.types import TriageState

logger = logging.getLogger(__name__)

# Keys an agent may use to carry the triage payload, in precedence order.
WRAPPER_KEYS = ("triage_state", "triageState", "triage_raw")

_JSON_WITH_LOCATION = re.compile(r'\{[\s\S]*"location_raw"[\s\S]*\}')


class MatchStatus(str, Enum):
    MATCHED = "matched"
    REJECTED = "rejected"
    PASS = "pass"


@dataclass(frozen=True)
class MatchResult:
    status: MatchStatus
    state: Optional[TriageState] = None

    @classmethod
    def matched(cls, state: TriageState) -> "MatchResult":
        return cls(MatchStatus.MATCHED, state)

    @classmethod
    def rejected(cls) -> "MatchResult":
        return cls(MatchStatus.REJECTED)

    @classmethod
    def passed(cls) -> "MatchResult":
        return cls(MatchStatus.PASS)


def parse_triage_json(raw: str) -> Optional[TriageState]:
    """Parse a JSON string into a TriageState; None unless it decodes to an object."""
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        return None
    if not isinstance(parsed, dict):
        return None
    return TriageState.from_dict(parsed)


def find_wrapped_candidate(payload: dict) -> Any:
    """
    Return the first non-null wrapper value, or None.

    The generic ``triage`` key only counts when it holds a string.
    """
    for key in WRAPPER_KEYS:
        if payload.get(key) is not None:
            return payload[key]
    if isinstance(payload.get("triage"), str):
        return payload["triage"]
    return None


# =============================================================================
# Matchers
# =============================================================================

class StringWrappedMatcher:
    """Wrapper key whose value is a JSON-encoded triage object."""

    def match(self, payload: dict) -> MatchResult:
        candidate = find_wrapped_candidate(payload)
        if not isinstance(candidate, str):
            return MatchResult.passed()
        state = parse_triage_json(candidate)
        if state is None:
            logger.debug("Wrapped triage string is not a JSON object")
            return MatchResult.rejected()
        return MatchResult.matched(state)


class ObjectWrappedMatcher:
    """Wrapper key whose value is already a decoded object."""

    def match(self, payload: dict) -> MatchResult:
        candidate = find_wrapped_candidate(payload)
        if candidate is None:
            return MatchResult.passed()
        if isinstance(candidate, dict):
            return MatchResult.matched(TriageState.from_dict(candidate))
        return MatchResult.rejected()


class InlineFieldsMatcher:
    """Triage fields written directly on the payload itself."""

    def match(self, payload: dict) -> MatchResult:
        if find_wrapped_candidate(payload) is not None:
            return MatchResult.passed()
        if (
            isinstance(payload.get("location_raw"), str)
            or isinstance(payload.get("category"), str)
            or "is_emergency" in payload
        ):
            return MatchResult.matched(TriageState.from_dict(payload))
        return MatchResult.passed()


class FreeTextFallbackMatcher:
    """
    Best-effort scan of natural-language text for an embedded triage object.

    Only objects that mention ``"location_raw"`` are considered.
    """

    def match(self, text: Any) -> MatchResult:
        if not isinstance(text, str):
            return MatchResult.passed()
        found = _JSON_WITH_LOCATION.search(text)
        if not found:
            return MatchResult.passed()
        state = parse_triage_json(found.group(0))
        if state is None:
            return MatchResult.rejected()
        return MatchResult.matched(state)


# =============================================================================
# Extractor
# =============================================================================

class TriageExtractor:
    """Runs a matcher chain; the first non-PASS result decides."""

    def __init__(self, matchers: Optional[Sequence] = None):
        self._matchers = list(matchers) if matchers is not None else [
            StringWrappedMatcher(),
            ObjectWrappedMatcher(),
            InlineFieldsMatcher(),
        ]

    def extract(self, payload: Any) -> Optional[TriageState]:
        if not isinstance(payload, dict):
            return None
        for matcher in self._matchers:
            result = matcher.match(payload)
            if result.status is MatchStatus.PASS:
                continue
            return result.state
        return None


_default_extractor = TriageExtractor()
_text_matcher = FreeTextFallbackMatcher()


def extract_triage(payload: Any) -> Optional[TriageState]:
    """Extract a TriageState from a structured payload, or None."""
    return _default_extractor.extract(payload)


def extract_triage_from_text(text: Any) -> Optional[TriageState]:
    """Extract a TriageState embedded in free text, or None. Never raises."""
    return _text_matcher.match(text).state
