"""
Synchronization engine: a process-wide cache of server collections.

Each logical query (a tuple key such as ``("jobs",)`` or
``("runs", "job", job_id)``) owns one CacheEntry. Entries are refreshed by
a polling table driven by ``tick()``, by explicit ``refresh()`` calls and by
``invalidate()`` after mutations.

Ordering: every fetch gets a per-key sequence number when it is issued. A
completed fetch is applied only if its number is greater than the last one
applied (``settled_seq``), so an older fetch that resolves late can never
overwrite what a newer one already wrote. ``invalidate()`` also supersedes
fetches that were in flight when it was called.

Failures keep the previous data (stale-while-error), set the entry's error
and leave the polling schedule alone.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Set, Tuple

from jobdash.core.config import get_settings
from jobdash.core.exceptions import AppException, FetchException
from jobdash.auth.models import SessionState
from jobdash.auth.session import SessionStore
from jobdash.sync.clock import SystemClock

logger = logging.getLogger(__name__)

QueryKey = Tuple[Hashable, ...]
Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class Query:
    """What to fetch for a key and how often (ms, 0 = manual only)."""
    key: QueryKey
    fetcher: Fetcher
    interval_ms: int = 0


class QueryStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryResult:
    """Read-only snapshot of one cache entry."""
    key: QueryKey
    status: QueryStatus
    data: Any = None
    error: Optional[AppException] = None
    updated_at: Optional[float] = None
    is_fetching: bool = False
    is_stale: bool = False

    @property
    def is_pending(self) -> bool:
        return self.status == QueryStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self.status == QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == QueryStatus.ERROR

    @property
    def has_data(self) -> bool:
        return self.updated_at is not None


def key_matches(key: QueryKey, prefix: QueryKey) -> bool:
    return tuple(key[: len(prefix)]) == tuple(prefix)


class CacheEntry:
    def __init__(self, key: QueryKey, fetcher: Fetcher):
        self.key = key
        self.fetcher = fetcher
        self.data: Any = None
        self.error: Optional[AppException] = None
        self.updated_at: Optional[float] = None
        self.stale = False
        self.issued_seq = 0
        self.settled_seq = 0
        self.tasks: Set[asyncio.Task] = set()
        self.intervals: Dict[int, int] = {}
        self.next_due: Optional[float] = None

    @property
    def interval_ms(self) -> int:
        """Fastest positive interval any subscriber asked for, else 0."""
        positive = [ms for ms in self.intervals.values() if ms > 0]
        return min(positive) if positive else 0

    @property
    def is_fetching(self) -> bool:
        return bool(self.tasks)

    @property
    def subscribed(self) -> bool:
        return bool(self.intervals)

    def reset(self) -> None:
        self.data = None
        self.error = None
        self.updated_at = None
        self.stale = False
        self.settled_seq = self.issued_seq
        self.next_due = None

    def snapshot(self) -> QueryResult:
        if self.error is not None:
            status = QueryStatus.ERROR
        elif self.updated_at is not None:
            status = QueryStatus.SUCCESS
        else:
            status = QueryStatus.PENDING
        return QueryResult(
            key=self.key,
            status=status,
            data=self.data,
            error=self.error,
            updated_at=self.updated_at,
            is_fetching=self.is_fetching,
            is_stale=self.stale,
        )


class Subscription:
    """A view's handle on one cache entry. Close it when the view goes away."""

    def __init__(self, engine: "SyncEngine", key: QueryKey, sub_id: int):
        self.engine = engine
        self.key = key
        self.sub_id = sub_id
        self.closed = False

    @property
    def result(self) -> QueryResult:
        return self.engine.get(self.key)

    @property
    def data(self) -> Any:
        return self.result.data

    async def refresh(self) -> bool:
        return await self.engine.refresh(self.key)

    def set_interval(self, interval_ms: int) -> None:
        if not self.closed:
            self.engine._set_interval(self.key, self.sub_id, interval_ms)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.engine._unsubscribe(self.key, self.sub_id)


class SyncEngine:
    """Owns every cache entry. Nothing else writes cached server state."""

    def __init__(self, clock=None, tick_ms: Optional[int] = None):
        self._clock = clock or SystemClock()
        self._tick_ms = tick_ms if tick_ms is not None else get_settings().SCHEDULER_TICK_MS
        self._entries: Dict[QueryKey, CacheEntry] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._sub_ids = itertools.count(1)
        self._active = False
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def clock(self):
        return self._clock

    @property
    def polling(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def keys(self) -> List[QueryKey]:
        return list(self._entries)

    # ==================== Reads ====================

    def get(self, key: QueryKey) -> QueryResult:
        entry = self._entries.get(tuple(key))
        if entry is None:
            return QueryResult(key=tuple(key), status=QueryStatus.PENDING)
        return entry.snapshot()

    # ==================== Subscriptions ====================

    def subscribe(self, query: Query, interval_ms: Optional[int] = None) -> Subscription:
        """Attach a view to a query. Fetches right away if nothing is cached."""
        key = tuple(query.key)
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key, query.fetcher)
            self._entries[key] = entry
        else:
            entry.fetcher = query.fetcher

        previous_interval = entry.interval_ms
        sub_id = next(self._sub_ids)
        entry.intervals[sub_id] = max(0, int(query.interval_ms if interval_ms is None else interval_ms))
        if entry.next_due is None or entry.interval_ms != previous_interval:
            self._reschedule(entry)

        if self._active and (entry.updated_at is None or entry.stale) and not entry.is_fetching:
            self._issue(entry, reason="subscribe")
        return Subscription(self, key, sub_id)

    def _set_interval(self, key: QueryKey, sub_id: int, interval_ms: int) -> None:
        entry = self._entries.get(key)
        if entry is None or sub_id not in entry.intervals:
            return
        entry.intervals[sub_id] = max(0, int(interval_ms))
        self._reschedule(entry)

    def _unsubscribe(self, key: QueryKey, sub_id: int) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.intervals.pop(sub_id, None)
        if not entry.subscribed:
            # In-flight fetches may still finish; _accepts() drops their results.
            del self._entries[key]
            logger.debug(f"Dropped cache entry {key}: no subscribers")
        else:
            self._reschedule(entry)

    def _reschedule(self, entry: CacheEntry) -> None:
        interval = entry.interval_ms
        entry.next_due = self._clock.now() + interval if interval > 0 else None

    # ==================== Refresh / invalidate ====================

    async def refresh(self, key: QueryKey) -> bool:
        """Fetch now unless a fetch for this key is already in flight.

        Returns True if a new request was issued.
        """
        entry = self._entries.get(tuple(key))
        if entry is None or not self._active:
            return False
        if entry.is_fetching:
            logger.debug(f"Refresh of {entry.key} coalesced into in-flight fetch")
            return False
        self._issue(entry, reason="refresh")
        return True

    async def invalidate(self, *prefixes: QueryKey, wait: bool = False) -> List[QueryKey]:
        """Mark every entry under the prefixes stale and re-fetch immediately.

        Fetches already in flight for those entries are superseded. With
        ``wait`` the call returns only once the re-fetches have settled.
        """
        matched = [
            entry for entry in list(self._entries.values())
            if any(key_matches(entry.key, tuple(p)) for p in prefixes)
        ]
        issued: List[asyncio.Task] = []
        for entry in matched:
            entry.stale = True
            if not self._active:
                continue
            entry.settled_seq = entry.issued_seq
            issued.append(self._issue(entry, reason="invalidate"))
            self._reschedule(entry)

        if matched:
            logger.debug(f"Invalidated {[e.key for e in matched]}")
        if wait and issued:
            await asyncio.gather(*issued)
        return [entry.key for entry in matched]

    # ==================== Polling ====================

    async def tick(self) -> int:
        """Issue a fetch for every entry whose poll is due. Returns how many."""
        if not self._active:
            return 0
        now = self._clock.now()
        issued = 0
        for entry in list(self._entries.values()):
            interval = entry.interval_ms
            if interval <= 0 or entry.next_due is None or now < entry.next_due:
                continue
            entry.next_due = now + interval
            if entry.is_fetching:
                continue
            self._issue(entry, reason="poll")
            issued += 1
        return issued

    async def run(self) -> None:
        while True:
            await self.tick()
            await self._clock.sleep(self._tick_ms)

    def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        await self.drain()

    async def drain(self) -> None:
        """Wait until no fetch is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # ==================== Session gating ====================

    async def suspend(self) -> None:
        """Stop all fetching and forget cached data (signed out)."""
        was_active = self._active
        self._active = False
        for entry in self._entries.values():
            entry.reset()
        if was_active:
            logger.info(f"Sync suspended ({len(self._entries)} entries cleared)")

    async def resume(self) -> None:
        """Start fetching again, immediately rather than on the next tick."""
        self._active = True
        for entry in list(self._entries.values()):
            if entry.subscribed:
                self._issue(entry, reason="resume")
                self._reschedule(entry)
        logger.info(f"Sync resumed ({len(self._entries)} entries)")

    def bind_session(self, session: SessionStore) -> Callable[[], None]:
        """Follow the session: fetch only while authenticated.

        Switching to another user drops the previous user's data and
        re-fetches, the same as a logout followed by a login.
        """

        async def on_transition(old: SessionState, new: SessionState) -> None:
            if not new.is_authenticated:
                await self.suspend()
            elif not old.is_authenticated:
                await self.resume()
            elif old.user.id != new.user.id:
                logger.info(f"Session user changed to {new.user.username}")
                await self.suspend()
                await self.resume()

        self._active = session.is_authenticated
        return session.subscribe(on_transition)

    # ==================== Fetching ====================

    def _issue(self, entry: CacheEntry, reason: str) -> asyncio.Task:
        entry.issued_seq += 1
        seq = entry.issued_seq
        task = asyncio.create_task(self._fetch(entry, seq, reason))
        entry.tasks.add(task)
        self._tasks.add(task)
        task.add_done_callback(entry.tasks.discard)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Fetch #{seq} for {entry.key} ({reason})")
        return task

    async def _fetch(self, entry: CacheEntry, seq: int, reason: str) -> None:
        try:
            data = await entry.fetcher()
        except FetchException as e:
            self._settle_error(entry, seq, e)
        except AppException as e:
            error = FetchException(e.detail, e.status_code)
            error.__cause__ = e
            self._settle_error(entry, seq, error)
        except Exception as e:
            logger.exception(f"Unexpected error fetching {entry.key}")
            error = FetchException(f"Unexpected error: {type(e).__name__}")
            error.__cause__ = e
            self._settle_error(entry, seq, error)
        else:
            self._settle_success(entry, seq, data)

    def _accepts(self, entry: CacheEntry, seq: int) -> bool:
        if self._entries.get(entry.key) is not entry:
            logger.debug(f"Discarding fetch #{seq} for {entry.key}: no longer subscribed")
            return False
        if not self._active:
            logger.debug(f"Discarding fetch #{seq} for {entry.key}: sync suspended")
            return False
        if seq <= entry.settled_seq:
            logger.debug(f"Discarding fetch #{seq} for {entry.key}: superseded by #{entry.settled_seq}")
            return False
        return True

    def _settle_success(self, entry: CacheEntry, seq: int, data: Any) -> None:
        if not self._accepts(entry, seq):
            return
        entry.settled_seq = seq
        entry.data = data
        entry.error = None
        entry.updated_at = self._clock.now()
        if seq == entry.issued_seq:
            entry.stale = False

    def _settle_error(self, entry: CacheEntry, seq: int, error: FetchException) -> None:
        if not self._accepts(entry, seq):
            return
        entry.settled_seq = seq
        entry.error = error
        logger.warning(f"Fetch #{seq} for {entry.key} failed: {error.detail}")
