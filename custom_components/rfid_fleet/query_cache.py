"""
QueryCache - per-key cache with topic invalidation and single-flight refreshes.

This is a pure asyncio concurrency primitive with no HA or network dependencies.

State machine per key:

    STALE ──get()──▶ FETCHING ──ok──▶ FRESH ──invalidate()──▶ STALE
                        │
                        └──fail/timeout──▶ ERROR ──backoff elapsed / invalidate()──▶ STALE

- At most one fetch is in flight per key; the FETCHING state is the guard.
- An invalidation that arrives while a fetch is in flight sets a single pending
  flag; when the fetch completes its result is applied, the key goes STALE and
  exactly one follow-up fetch starts.
- A failed fetch keeps the previous data visible and records the error; the
  next attempt is allowed after min(base * 2**(failures-1), cap) seconds.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from .const import FETCH_TIMEOUT, RETRY_BACKOFF_BASE, RETRY_BACKOFF_CAP

_LOGGER = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
UpdateListener = Callable[[str], None]


class CacheState(StrEnum):
    FRESH = "fresh"
    STALE = "stale"
    FETCHING = "fetching"
    ERROR = "error"


@dataclasses.dataclass
class _CacheEntry:
    key: str
    fetcher: Fetcher
    topics: frozenset[str]
    state: CacheState = CacheState.STALE
    data: Any = None
    has_data: bool = False
    fetched_at: float | None = None
    updated_at: datetime | None = None
    error: Exception | None = None
    failures: int = 0
    retry_at: float = 0.0
    pending_refetch: bool = False
    fetch_count: int = 0
    task: asyncio.Task | None = None


@dataclasses.dataclass(frozen=True)
class EntryStatus:
    """Read-only view of one cache entry."""

    key: str
    state: CacheState
    has_data: bool
    updated_at: datetime | None
    error: Exception | None
    failures: int
    fetch_count: int
    pending_refetch: bool


class QueryCache:
    """
    Cache of query results keyed by query identity.

    Constructed once per coordinator and handed the static subscription table
    through register(); there is no module-level instance.
    """

    def __init__(
        self,
        timeout: float = FETCH_TIMEOUT,
        backoff_base: float = RETRY_BACKOFF_BASE,
        backoff_cap: float = RETRY_BACKOFF_CAP,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._listeners: list[UpdateListener] = []

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def register(self, key: str, fetcher: Fetcher, topics: Iterable[str]) -> None:
        """Add a key with the coroutine factory that loads it and the topics that invalidate it."""
        if key in self._entries:
            raise ValueError(f"Cache key {key!r} is already registered")
        self._entries[key] = _CacheEntry(key=key, fetcher=fetcher, topics=frozenset(topics))

    def add_listener(self, listener: UpdateListener) -> Callable[[], None]:
        """Call listener(key) after each successful apply. Returns a remover."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def subscriptions(self) -> dict[str, tuple[str, ...]]:
        return {key: tuple(sorted(e.topics)) for key, e in self._entries.items()}

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def invalidate(self, topic: str) -> list[str]:
        """Mark every key subscribed to topic as stale. Returns the affected keys."""
        affected = [key for key, e in self._entries.items() if topic in e.topics]
        for key in affected:
            self.invalidate_key(key)
        if not affected:
            _LOGGER.debug("No cache keys subscribed to topic %s", topic)
        return affected

    def invalidate_key(self, key: str) -> None:
        entry = self._entry(key)
        if entry.state is CacheState.FETCHING:
            # Collapses any number of invalidations into one follow-up fetch
            entry.pending_refetch = True
            return
        if entry.state is CacheState.ERROR and self._clock() < entry.retry_at:
            # Still backing off: the retry that get() starts covers this invalidation
            entry.pending_refetch = True
            return
        entry.state = CacheState.STALE

    async def get(self, key: str) -> Any:
        """
        Return the cached value for key, refreshing it when needed.

        Serves the previous value while a refresh runs. Only a key that has never
        loaded suspends the caller until its first fetch resolves; if that fetch
        fails the result is None rather than an exception.
        """
        entry = self._entry(key)
        if entry.state is CacheState.ERROR and self._clock() >= entry.retry_at:
            entry.pending_refetch = False
            entry.state = CacheState.STALE
        if entry.state is CacheState.STALE:
            self._start_fetch(entry)

        if entry.has_data:
            return entry.data
        if entry.task is not None and not entry.task.done():
            await asyncio.shield(entry.task)
        return entry.data if entry.has_data else None

    def peek(self, key: str) -> Any:
        """Return the cached value without triggering a fetch."""
        return self._entry(key).data

    def status(self, key: str) -> EntryStatus:
        entry = self._entry(key)
        return EntryStatus(
            key=entry.key,
            state=entry.state,
            has_data=entry.has_data,
            updated_at=entry.updated_at,
            error=entry.error,
            failures=entry.failures,
            fetch_count=entry.fetch_count,
            pending_refetch=entry.pending_refetch,
        )

    def stats(self) -> dict[str, dict[str, Any]]:
        """Per-key diagnostics."""
        return {
            key: {
                "state": e.state.value,
                "has_data": e.has_data,
                "updated_at": e.updated_at.isoformat() if e.updated_at else None,
                "failures": e.failures,
                "fetch_count": e.fetch_count,
                "last_error": str(e.error) if e.error else None,
            }
            for key, e in self._entries.items()
        }

    async def wait_idle(self) -> None:
        """Wait until no key has a fetch in flight, follow-ups included."""
        while True:
            tasks = [e.task for e in self._entries.values() if e.task and not e.task.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight fetches."""
        tasks = [e.task for e in self._entries.values() if e.task and not e.task.done()]
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _LOGGER.debug("QueryCache fetch error during shutdown: %s", result)
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _entry(self, key: str) -> _CacheEntry:
        try:
            return self._entries[key]
        except KeyError:
            raise KeyError(f"Unknown cache key {key!r}") from None

    def _start_fetch(self, entry: _CacheEntry) -> None:
        entry.state = CacheState.FETCHING
        entry.fetch_count += 1
        entry.task = asyncio.ensure_future(self._run_fetch(entry))

    async def _run_fetch(self, entry: _CacheEntry) -> None:
        try:
            result = await asyncio.wait_for(entry.fetcher(), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._apply_failure(entry, TimeoutError(f"timed out after {self._timeout}s"))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self._apply_failure(entry, exc)
        else:
            self._apply_success(entry, result)

    def _apply_success(self, entry: _CacheEntry, result: Any) -> None:
        entry.data = result
        entry.has_data = True
        entry.fetched_at = self._clock()
        entry.updated_at = datetime.now(timezone.utc)
        entry.error = None
        entry.failures = 0
        entry.retry_at = 0.0

        if entry.pending_refetch:
            entry.pending_refetch = False
            entry.state = CacheState.STALE
            _LOGGER.debug("Key %s invalidated during fetch, starting follow-up", entry.key)
            self._start_fetch(entry)
        else:
            entry.state = CacheState.FRESH

        self._notify(entry.key)

    def _apply_failure(self, entry: _CacheEntry, exc: Exception) -> None:
        entry.failures += 1
        entry.error = exc
        delay = min(self._backoff_base * 2 ** (entry.failures - 1), self._backoff_cap)
        entry.retry_at = self._clock() + delay
        # The retry after backoff fetches the latest state, so a pending follow-up is folded into it
        entry.pending_refetch = False
        entry.state = CacheState.ERROR
        _LOGGER.warning(
            "Failed to fetch %s (attempt %s, retry in %.0fs): %s",
            entry.key, entry.failures, delay, exc,
        )

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("QueryCache listener failed for key %s", key)
