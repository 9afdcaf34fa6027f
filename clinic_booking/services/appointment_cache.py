from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from clinic_booking.core.errors import CacheError

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROVIDER_BOOKINGS = "provider_bookings"
PROVIDER_BLOCKING_BOOKINGS = "provider_blocking_bookings"
PROVIDER_STATS = "provider_stats"
SUBJECT_BOOKINGS = "subject_bookings"
STATUS_SUMMARY = "status_summary"
STATUS_HISTORY = "status_history"

PROVIDER_SCOPED_KINDS = frozenset({PROVIDER_BOOKINGS, PROVIDER_BLOCKING_BOOKINGS, PROVIDER_STATS})
SUBJECT_SCOPED_KINDS = frozenset({SUBJECT_BOOKINGS})
BOOKING_SCOPED_KINDS = frozenset({STATUS_SUMMARY, STATUS_HISTORY})


@dataclass(frozen=True)
class CacheKey:
    kind: str
    scope_id: str
    qualifier: str | None = None

    def render(self) -> str:
        return f"{self.kind}:{self.scope_id}:{self.qualifier or 'all'}"


@dataclass
class CacheEntry:
    payload: Any
    inserted_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl_seconds


class AppointmentCache:
    """Process-local read-through cache for appointment queries.

    Every mutation of the entry map happens under one lock. Entries are
    logically gone once their ttl has elapsed, even before a purge removes
    them. A load that races with an invalidation of its own scope, or with
    ``clear``, is returned to its caller but never stored. Scope epochs are
    only tracked while a load for that scope is in flight.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        eviction_ratio: float = 0.2,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        if not 0 < eviction_ratio <= 1:
            raise ValueError("eviction_ratio must be in (0, 1]")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.eviction_ratio = eviction_ratio
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._generation = 0
        self._scope_epochs: dict[str, int] = {}
        self._loads_in_flight: dict[str, int] = {}
        self._hits = 0
        self._misses = 0

    def get_or_load(
        self,
        key: CacheKey,
        loader: Callable[[], T],
        *,
        ttl_seconds: float | None = None,
    ) -> T:
        try:
            found, payload, ticket = self._lookup(key)
        except CacheError as exc:
            logger.warning("Cache lookup failed key=%s error=%s; reading directly", key, exc)
            return loader()

        if found:
            logger.debug("Cache hit key=%s", key.render())
            return payload

        logger.debug("Cache miss key=%s", key.render())
        try:
            payload = loader()
            try:
                self._store(key, payload, ttl_seconds or self.ttl_seconds, ticket=ticket)
            except CacheError as exc:
                logger.warning("Cache store failed key=%s error=%s", key, exc)
            return payload
        finally:
            self._finish_load(key.scope_id)

    def invalidate(self, key: CacheKey) -> bool:
        with self._lock:
            self._bump_scope_locked(key.scope_id)
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("Invalidated cache entry key=%s", key.render())
        return removed

    def invalidate_scope(self, scope_id: str, kinds: frozenset[str] | None = None) -> int:
        with self._lock:
            self._bump_scope_locked(scope_id)
            doomed = [
                key
                for key in self._entries
                if key.scope_id == scope_id and (kinds is None or key.kind in kinds)
            ]
            for key in doomed:
                del self._entries[key]
        for key in doomed:
            logger.debug("Invalidated cache entry key=%s", key.render())
        return len(doomed)

    def invalidate_provider(self, provider_id: str) -> int:
        return self.invalidate_scope(provider_id, PROVIDER_SCOPED_KINDS)

    def invalidate_subject(self, subject_id: str) -> int:
        return self.invalidate_scope(subject_id, SUBJECT_SCOPED_KINDS)

    def invalidate_booking(self, booking_id: str) -> int:
        return self.invalidate_scope(booking_id, BOOKING_SCOPED_KINDS)

    def invalidate_booking_scopes(
        self,
        *,
        provider_id: str,
        subject_id: str,
        booking_id: str | None = None,
    ) -> int:
        removed = self.invalidate_provider(provider_id) + self.invalidate_subject(subject_id)
        if booking_id:
            removed += self.invalidate_booking(booking_id)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()
        logger.info("Cache cleared")

    def stats(self) -> dict[str, int]:
        now = self._clock()
        with self._lock:
            entries = list(self._entries.values())
            hits, misses = self._hits, self._misses
        expired = sum(1 for entry in entries if entry.is_expired(now))
        return {
            "total_entries": len(entries),
            "valid_entries": len(entries) - expired,
            "expired_entries": expired,
            "max_entries": self.max_entries,
            "hits": hits,
            "misses": misses,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lookup(self, key: CacheKey) -> tuple[bool, Any, tuple[int, int] | None]:
        now = self._clock()
        with self._lock:
            try:
                entry = self._entries.get(key)
            except TypeError as exc:
                raise CacheError(f"Unusable cache key: {key!r}") from exc
            if entry is not None and not entry.is_expired(now):
                self._hits += 1
                return True, entry.payload, None
            self._misses += 1
            scope_id = key.scope_id
            self._loads_in_flight[scope_id] = self._loads_in_flight.get(scope_id, 0) + 1
            return False, None, self._ticket_locked(scope_id)

    def _store(
        self,
        key: CacheKey,
        payload: Any,
        ttl_seconds: float,
        *,
        ticket: tuple[int, int] | None,
    ) -> None:
        now = self._clock()
        with self._lock:
            if ticket != self._ticket_locked(key.scope_id):
                logger.debug("Skipping cache store after concurrent invalidation key=%s", key.render())
                return
            self._purge_expired(now)
            if len(self._entries) >= self.max_entries:
                self._evict_oldest()
            try:
                self._entries[key] = CacheEntry(payload=payload, inserted_at=now, ttl_seconds=ttl_seconds)
            except TypeError as exc:
                raise CacheError(f"Unusable cache key: {key!r}") from exc

    def _ticket_locked(self, scope_id: str) -> tuple[int, int]:
        return self._generation, self._scope_epochs.get(scope_id, 0)

    def _bump_scope_locked(self, scope_id: str) -> None:
        if scope_id in self._loads_in_flight:
            self._scope_epochs[scope_id] = self._scope_epochs.get(scope_id, 0) + 1

    def _finish_load(self, scope_id: str) -> None:
        with self._lock:
            remaining = self._loads_in_flight.get(scope_id, 0) - 1
            if remaining > 0:
                self._loads_in_flight[scope_id] = remaining
            else:
                self._loads_in_flight.pop(scope_id, None)
                self._scope_epochs.pop(scope_id, None)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %s expired cache entries", len(expired))

    def _evict_oldest(self) -> None:
        evict_count = max(1, math.floor(self.max_entries * self.eviction_ratio))
        oldest = sorted(self._entries.items(), key=lambda item: item[1].inserted_at)[:evict_count]
        for key, _ in oldest:
            del self._entries[key]
        logger.debug("Evicted %s oldest cache entries", len(oldest))
