"""
LiveTriage - Triage Store

Process-wide store of triage writes, keyed by call id.

Writers (webhook delivery, function-call delivery, client push) are
uncoordinated and may arrive in any order. Reconciliation is
last-write-by-timestamp: each write replaces the call's entry wholesale
and is stamped with the server's wall clock at write time.

Notes:
    - In-memory store is bounded; oldest entries are evicted first
    - The "latest" pointer is a value, not a reference to an entry, so
      eviction never changes it
    - All data is ephemeral (lost on restart); one instance per process
"""

from __future__ import annotations

import itertools
import logging
from abc import abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol, runtime_checkable

from livetriage.config import Settings
from livetriage.core.logging import mask_call_id
from livetriage.core.types import TriageEntry, TriageState, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


# =============================================================================
# Protocol
# =============================================================================

@runtime_checkable
class TriageStore(Protocol):
    """
    Protocol for triage storage.

    Implementations must hold at most one entry per call id and keep
    the latest pointer independent of the per-call entries.
    """

    @abstractmethod
    async def save(self, state: TriageState) -> TriageEntry:
        """Store a write keyed by the state's embedded call id (or a synthetic id)."""
        ...

    @abstractmethod
    async def save_by_call_id(
        self,
        call_id: str,
        state: TriageState,
        user_number: Optional[str] = None,
        agent_number: Optional[str] = None,
    ) -> TriageEntry:
        """Store a write under an explicit call id."""
        ...

    @abstractmethod
    async def get_latest(self) -> Optional[TriageState]:
        """Most recent write across all call ids."""
        ...

    @abstractmethod
    async def list_all(self) -> List[TriageEntry]:
        """All entries, newest first."""
        ...

    @abstractmethod
    async def get_by_call_id(self, call_id: str) -> Optional[TriageEntry]:
        """Entry for one call id."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Drop all entries and the latest pointer."""
        ...

    @abstractmethod
    def count(self) -> int:
        """Number of call entries currently held."""
        ...


# =============================================================================
# In-Memory Implementation
# =============================================================================

class InMemoryTriageStore:
    """
    In-memory implementation of TriageStore.

    Features:
        - Bounded storage (max_entries, oldest write evicted first)
        - Optional age limit on entries (ttl_seconds, 0 disables)
        - Injectable clock for deterministic tests

    Entries are kept in write order: an upsert moves the call id to the end,
    so ties on timestamp evict the earliest write.
    """

    def __init__(
        self,
        max_entries: int = 50,
        ttl_seconds: int = 0,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the in-memory store.

        Args:
            max_entries: Maximum number of call entries to keep
            ttl_seconds: Drop entries older than this (0 = never)
            clock: Returns the current time (defaults to UTC now)
        """
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")

        self._max_entries = max_entries
        self._ttl = timedelta(seconds=ttl_seconds) if ttl_seconds > 0 else None
        self._clock = clock or utcnow

        self._entries: Dict[str, TriageEntry] = {}
        self._latest: Optional[TriageState] = None
        self._sequence = itertools.count(1)

        logger.info(
            "InMemoryTriageStore initialized: max_entries=%d, ttl=%s",
            max_entries, self._ttl,
        )

    async def save(self, state: TriageState) -> TriageEntry:
        """
        Stamp the write, set latest, upsert by embedded call id.

        Writes without an embedded call id get a synthetic id derived from
        the write time so each one is still retrievable.
        """
        at = self._clock()
        call_id = state.call_id or self._synthetic_id(at)
        return self._write(call_id, state, at)

    async def save_by_call_id(
        self,
        call_id: str,
        state: TriageState,
        user_number: Optional[str] = None,
        agent_number: Optional[str] = None,
    ) -> TriageEntry:
        """Upsert under ``call_id`` regardless of the state's embedded id."""
        if not call_id:
            raise ValueError("call_id must be a non-empty string")
        return self._write(
            call_id,
            state,
            self._clock(),
            user_number=user_number,
            agent_number=agent_number,
        )

    async def get_latest(self) -> Optional[TriageState]:
        return self._latest

    async def list_all(self) -> List[TriageEntry]:
        self._prune_expired()
        return sorted(self._entries.values(), key=lambda e: e.at, reverse=True)

    async def get_by_call_id(self, call_id: str) -> Optional[TriageEntry]:
        self._prune_expired()
        return self._entries.get(call_id)

    async def clear(self) -> None:
        self._entries.clear()
        self._latest = None
        logger.info("Triage store cleared")

    def count(self) -> int:
        """Number of call entries currently held."""
        return len(self._entries)

    # -------------------------------------------------------------------------

    def _write(
        self,
        call_id: str,
        state: TriageState,
        at: datetime,
        user_number: Optional[str] = None,
        agent_number: Optional[str] = None,
    ) -> TriageEntry:
        stamped = state.with_metadata(recorded_at=at)
        entry = TriageEntry(
            call_id=call_id,
            state=stamped,
            at=at,
            user_number=user_number,
            agent_number=agent_number,
        )

        # Re-insert so dict order tracks write order
        self._entries.pop(call_id, None)
        self._entries[call_id] = entry
        self._latest = stamped

        logger.debug(
            "Triage saved: call=%s, source=%s, entries=%d",
            mask_call_id(call_id), state.source, len(self._entries),
        )

        self._prune_expired()
        self._evict_overflow()
        return entry

    def _evict_overflow(self) -> None:
        excess = len(self._entries) - self._max_entries
        if excess <= 0:
            return

        # Stable sort: equal timestamps keep write order
        oldest = sorted(self._entries.values(), key=lambda e: e.at)[:excess]
        for entry in oldest:
            del self._entries[entry.call_id]

        logger.debug("Evicted %d oldest triage entries", excess)

    def _prune_expired(self) -> None:
        if self._ttl is None:
            return
        cutoff = self._clock() - self._ttl
        stale_ids = [cid for cid, entry in self._entries.items() if entry.at < cutoff]
        for call_id in stale_ids:
            del self._entries[call_id]
        if stale_ids:
            logger.info("Expired %d stale triage entries", len(stale_ids))

    def _synthetic_id(self, at: datetime) -> str:
        return f"anon-{int(at.timestamp() * 1000)}-{next(self._sequence)}"


# =============================================================================
# Factory Function
# =============================================================================

def create_triage_store(settings: Settings) -> TriageStore:
    """
    Create the process-wide triage store from settings.

    Currently only supports in-memory storage.
    """
    logger.info(
        "Creating InMemoryTriageStore: max_entries=%d, ttl_seconds=%d",
        settings.triage_store_max_entries,
        settings.triage_entry_ttl_seconds,
    )

    return InMemoryTriageStore(
        max_entries=settings.triage_store_max_entries,
        ttl_seconds=settings.triage_entry_ttl_seconds,
    )
