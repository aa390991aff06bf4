"""
LiveTriage - Live Call Aggregator

Feeds the dashboard with DispatchCall records built from live triage data.

Each refresh:
    1. Fetch all entries from the server (GET /triage-calls)
    2. Merge with the local cache by call id; the later write wins
    3. Project each entry to a DispatchCall via fixed mapping tables
    4. Publish to subscribers

Fetch failures degrade to cache-only output; nothing is raised to the
dashboard.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import httpx

from livetriage.config import Settings
from livetriage.core.types import (
    DispatchCall,
    DispatchStatus,
    EmergencyType,
    Priority,
    TriageEntry,
)
from livetriage.services.triage_client import TriageApiClient

logger = logging.getLogger(__name__)

CallsSubscriber = Callable[[List[DispatchCall]], None]

DEFAULT_LATITUDE = 43.4712
DEFAULT_LONGITUDE = -80.5324
UNKNOWN_TEXT = "—"

CATEGORY_TO_EMERGENCY_TYPE: Dict[str, EmergencyType] = {
    "EMS": EmergencyType.MEDICAL,
    "MEDICAL": EmergencyType.MEDICAL,
    "FIRE": EmergencyType.FIRE,
    "POLICE": EmergencyType.POLICE,
}
URGENCY_TO_PRIORITY: Dict[str, Priority] = {
    "HIGH": Priority.P1,
    "MEDIUM": Priority.P2,
    "LOW": Priority.P3,
}
URGENCY_TO_SCORE: Dict[str, int] = {
    "HIGH": 90,
    "MEDIUM": 70,
}


# =============================================================================
# Projection
# =============================================================================

def map_category(category: Optional[str]) -> EmergencyType:
    """Category → emergency type; unrecognized values are Medical."""
    return CATEGORY_TO_EMERGENCY_TYPE.get((category or "").upper(), EmergencyType.MEDICAL)


def map_urgency(urgency: Optional[str]) -> Priority:
    """Urgency → priority tier; unrecognized values are P3."""
    return URGENCY_TO_PRIORITY.get((urgency or "").upper(), Priority.P3)


def to_dispatch_call(entry: TriageEntry) -> DispatchCall:
    """Project a triage entry into a dashboard record."""
    state = entry.state
    urgency = (state.urgency or "").upper()
    return DispatchCall(
        id=entry.call_id,
        phone_number=state.callback_number or entry.user_number or UNKNOWN_TEXT,
        caller_name="Caller",
        location_text=state.location_raw or UNKNOWN_TEXT,
        latitude=DEFAULT_LATITUDE,
        longitude=DEFAULT_LONGITUDE,
        emergency_type=map_category(state.category),
        priority=map_urgency(state.urgency),
        status=DispatchStatus.ONGOING,
        started_at=entry.at,
        tags=list(state.red_flags or []),
        urgency_score=URGENCY_TO_SCORE.get(urgency, 50),
        confidence=0.9,
        transcript=[],
        notes=state.one_sentence_summary or "",
    )


def merge_entries(
    api_entries: Iterable[TriageEntry],
    local_entries: Iterable[TriageEntry],
) -> List[TriageEntry]:
    """
    Merge server and local entries by call id, newest first.

    For ids present in both, the later write wins; on a tie the server
    copy is kept.
    """
    by_call_id: Dict[str, TriageEntry] = {}
    for entry in api_entries:
        by_call_id[entry.call_id] = entry
    for entry in local_entries:
        existing = by_call_id.get(entry.call_id)
        if existing is None or entry.at > existing.at:
            by_call_id[entry.call_id] = entry
    return sorted(by_call_id.values(), key=lambda e: e.at, reverse=True)


# =============================================================================
# Local Cache
# =============================================================================

class LocalTriageCache:
    """
    Client-local triage entries, optionally persisted as a JSON list.

    Unreadable or malformed cache data reads as empty; it never raises.
    """

    def __init__(self, path: Optional[str] = None):
        self._path = Path(path) if path else None
        self._entries: Dict[str, TriageEntry] = {}
        if self._path is not None:
            self._load()

    def entries(self) -> List[TriageEntry]:
        return list(self._entries.values())

    def record(self, entry: TriageEntry) -> None:
        """Add or replace an entry, keeping whichever write is newer."""
        existing = self._entries.get(entry.call_id)
        if existing is not None and existing.at > entry.at:
            return
        self._entries[entry.call_id] = entry
        self._save()

    def _load(self) -> None:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, ValueError, RecursionError) as e:
            logger.warning("Ignoring unreadable triage cache %s: %s", self._path, e)
            return

        if not isinstance(raw, list):
            return
        for item in raw:
            entry = TriageEntry.from_dict(item) if isinstance(item, dict) else None
            if entry is not None:
                self._entries[entry.call_id] = entry

    def _save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.write_text(
                json.dumps([e.to_dict() for e in self._entries.values()]),
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning("Could not write triage cache %s: %s", self._path, e)


# =============================================================================
# Aggregator
# =============================================================================

class LiveCallAggregator:
    """
    Polls the server and publishes merged DispatchCall lists.

    Usage:
        aggregator = LiveCallAggregator(api, cache, poll_interval=2.0)
        aggregator.subscribe(dashboard.apply_live_calls)
        aggregator.start()
        ...
        await aggregator.stop()
    """

    def __init__(
        self,
        api: TriageApiClient,
        cache: Optional[LocalTriageCache] = None,
        poll_interval: float = 2.0,
    ):
        self._api = api
        self._cache = cache or LocalTriageCache()
        self._poll_interval = poll_interval
        self._subscribers: List[CallsSubscriber] = []
        self._calls: List[DispatchCall] = []
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def calls(self) -> List[DispatchCall]:
        """Most recently published list."""
        return list(self._calls)

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, subscriber: CallsSubscriber) -> None:
        self._subscribers.append(subscriber)

    async def refresh(self) -> List[DispatchCall]:
        """Fetch, merge and publish once."""
        try:
            api_entries = await self._api.fetch_calls()
            merged = merge_entries(api_entries, self._cache.entries())
        except httpx.HTTPError as e:
            logger.debug("Triage poll failed, using local cache: %s", e)
            merged = merge_entries([], self._cache.entries())
        except Exception as e:
            logger.warning("Unexpected triage poll failure, using local cache: %s", e)
            merged = merge_entries([], self._cache.entries())

        calls = [to_dispatch_call(entry) for entry in merged]
        if not self._cancelled:
            self._publish(calls)
        return calls

    def start(self) -> None:
        """Refresh now and then every ``poll_interval`` seconds."""
        if self.is_running:
            return
        self._cancelled = False
        self._task = asyncio.get_running_loop().create_task(self._poll_loop())
        logger.info("Live call polling started: interval=%.1fs", self._poll_interval)

    async def stop(self) -> None:
        """Cancel polling; an in-flight refresh will not publish."""
        self._cancelled = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Live call polling stopped")

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in triage poll loop: %s", e)
            await asyncio.sleep(self._poll_interval)

    def _publish(self, calls: List[DispatchCall]) -> None:
        self._calls = calls
        for subscriber in self._subscribers:
            try:
                subscriber(list(calls))
            except Exception as e:
                logger.error("Live calls subscriber failed: %s", e)


def create_live_aggregator(
    settings: Settings,
    api: Optional[TriageApiClient] = None,
) -> LiveCallAggregator:
    """Build the dashboard aggregator from settings."""
    api = api or TriageApiClient(
        base_url=settings.triage_api_base_url,
        timeout=settings.http_timeout_seconds,
    )
    return LiveCallAggregator(
        api,
        cache=LocalTriageCache(settings.local_cache_path),
        poll_interval=settings.poll_interval_seconds,
    )
