"""
LiveTriage - Dispatch Dashboard State

Holds the call list the operator works from: seeded calls composed with
the live aggregator's output, plus the operator's own edits.

Live calls are rebuilt from scratch on every poll, so operator edits
(status, notes, dispatch/resolve timestamps, appended transcript lines)
are kept in a per-call overlay and re-applied to each published list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from livetriage.core.types import (
    DispatchCall,
    DispatchStatus,
    TranscriptLine,
    utcnow,
)

logger = logging.getLogger(__name__)

TRANSCRIPT_WINDOW = 12

STATUS_RANK: Dict[DispatchStatus, int] = {
    DispatchStatus.ONGOING: 0,
    DispatchStatus.DISPATCH_SENT: 1,
    DispatchStatus.RESOLVED: 2,
}

STATUS_LABELS: Dict[DispatchStatus, str] = {
    DispatchStatus.ONGOING: "Ongoing",
    DispatchStatus.DISPATCH_SENT: "Dispatch Sent",
    DispatchStatus.RESOLVED: "Resolved",
}


# =============================================================================
# Helpers
# =============================================================================

def sort_calls(calls: Iterable[DispatchCall]) -> List[DispatchCall]:
    """Ongoing first, then by priority (P1 first), then newest first."""
    return sorted(
        calls,
        key=lambda c: (STATUS_RANK[c.status], c.priority.weight, -c.started_at.timestamp()),
    )


def format_elapsed(started_at: datetime, now: Optional[datetime] = None) -> str:
    """Elapsed time as MM:SS; minutes are not capped at 59."""
    now = now or utcnow()
    total = max(0, int((now - started_at).total_seconds()))
    minutes, seconds = divmod(total, 60)
    return f"{minutes:02d}:{seconds:02d}"


def status_label(status: DispatchStatus) -> str:
    return STATUS_LABELS[DispatchStatus(status)]


@dataclass
class _OperatorEdits:
    status: Optional[DispatchStatus] = None
    notes: Optional[str] = None
    dispatch_sent_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    transcript: Optional[List[TranscriptLine]] = None

    def apply(self, call: DispatchCall) -> DispatchCall:
        changes = {}
        if self.status is not None:
            changes["status"] = self.status
        if self.notes is not None:
            changes["notes"] = self.notes
        if self.dispatch_sent_at is not None:
            changes["dispatch_sent_at"] = self.dispatch_sent_at
        if self.resolved_at is not None:
            changes["resolved_at"] = self.resolved_at
        if self.transcript is not None:
            changes["transcript"] = list(self.transcript)
        return replace(call, **changes) if changes else call


# =============================================================================
# Store
# =============================================================================

class DispatchStateStore:
    """
    Operator-facing call list.

    Usage:
        state = DispatchStateStore(seed_calls)
        aggregator.subscribe(state.apply_live_calls)
        state.update_call_status("c-42", DispatchStatus.DISPATCH_SENT)

    Args:
        seed_calls: Initial (demo) calls; live calls with the same id replace them
        clock: Returns the current time; injectable for tests
    """

    def __init__(
        self,
        seed_calls: Optional[Iterable[DispatchCall]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._seed: Dict[str, DispatchCall] = {c.id: c for c in (seed_calls or [])}
        self._live: Dict[str, DispatchCall] = {}
        self._edits: Dict[str, _OperatorEdits] = {}
        self._clock = clock or utcnow
        self._selected_call_id: Optional[str] = next(iter(self._seed), None)

    # --- Composition --------------------------------------------------------

    def apply_live_calls(self, live_calls: Iterable[DispatchCall]) -> None:
        """Replace the live layer with a fresh aggregator snapshot."""
        self._live = {c.id: c for c in live_calls}
        if self._selected_call_id is None and self._live:
            self._selected_call_id = next(iter(self._live))

    @property
    def calls(self) -> List[DispatchCall]:
        """Live calls then remaining seeded calls, with operator edits applied."""
        composed = list(self._live.values())
        composed.extend(c for cid, c in self._seed.items() if cid not in self._live)
        return [self._with_edits(c) for c in composed]

    def get_call(self, call_id: str) -> Optional[DispatchCall]:
        base = self._live.get(call_id) or self._seed.get(call_id)
        return self._with_edits(base) if base is not None else None

    # --- Selection ----------------------------------------------------------

    def select_call(self, call_id: str) -> None:
        self._selected_call_id = call_id

    @property
    def selected_call_id(self) -> Optional[str]:
        return self._selected_call_id

    @property
    def selected_call(self) -> Optional[DispatchCall]:
        if self._selected_call_id is None:
            return None
        return self.get_call(self._selected_call_id)

    # --- Operator edits -----------------------------------------------------

    def update_call_status(self, call_id: str, status: DispatchStatus) -> Optional[DispatchCall]:
        """
        Set a call's status.

        dispatch_sent stamps ``dispatch_sent_at`` once; resolved stamps
        ``resolved_at`` and back-fills ``dispatch_sent_at`` when unset.
        Unknown ids are ignored.
        """
        current = self.get_call(call_id)
        if current is None:
            logger.debug("Status update for unknown call ignored: %s", call_id)
            return None

        status = DispatchStatus(status)
        edits = self._edits.setdefault(call_id, _OperatorEdits())
        edits.status = status
        now = self._clock()
        if status in (DispatchStatus.DISPATCH_SENT, DispatchStatus.RESOLVED):
            if current.dispatch_sent_at is None:
                edits.dispatch_sent_at = now
        if status == DispatchStatus.RESOLVED:
            edits.resolved_at = now

        logger.info("Call %s status -> %s", call_id, status.value)
        return self.get_call(call_id)

    def update_call_notes(self, call_id: str, notes: str) -> Optional[DispatchCall]:
        if self.get_call(call_id) is None:
            return None
        self._edits.setdefault(call_id, _OperatorEdits()).notes = notes
        return self.get_call(call_id)

    def append_transcript_line(self, call_id: str, line: TranscriptLine) -> Optional[DispatchCall]:
        """Append a line, keeping the last 12."""
        current = self.get_call(call_id)
        if current is None:
            return None
        lines = list(current.transcript) + [line]
        self._edits.setdefault(call_id, _OperatorEdits()).transcript = lines[-TRANSCRIPT_WINDOW:]
        return self.get_call(call_id)

    def _with_edits(self, call: DispatchCall) -> DispatchCall:
        edits = self._edits.get(call.id)
        return edits.apply(call) if edits is not None else call
