"""TTL cache of generated occurrences keyed by template and window.

Entries are indexed per template id so that invalidating one series touches
only that series' windows:

    {template_id: {(window_start, window_end): CacheEntry}}

Generation runs outside the lock. One cache-wide generation counter is bumped
by ``invalidate`` and ``clear``. Callers that read the template from a store
take ``snapshot_generation()`` before that read and pass it to
``get_or_generate``; a result computed against an older counter is still
returned to the caller that computed it but is not stored, so once
``invalidate`` returns no later lookup can observe pre-invalidation data.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..calendar.instance_generator import InstanceGenerator
from ..calendar.models import EventTemplate, EventWindow, Occurrence

logger = logging.getLogger(__name__)

WindowKey = tuple[datetime, datetime]


@dataclass(frozen=True)
class CacheEntry:
    """Frozen generation result for one (template, window) pair."""

    occurrences: tuple[Occurrence, ...]
    expires_at: float


class InstanceCache:
    """Process-scoped memo of ``InstanceGenerator.generate`` results.

    Example:
        cache = InstanceCache(ttl_seconds=300, generator=InstanceGenerator())
        occurrences = cache.get_or_generate(template, window)

        # After the parent row changes
        cache.invalidate(template.id)
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 2048,
        generator: Optional[InstanceGenerator] = None,
        time_provider: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            ttl_seconds: Entry lifetime; values <= 0 disable storage entirely
            max_entries: Total entries across all templates (FIFO eviction when full)
            generator: Generator used on a miss
            time_provider: Monotonic clock in seconds
        """
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.generator = generator or InstanceGenerator()
        self._clock = time_provider

        self._lock = threading.RLock()
        self._index: dict[str, dict[WindowKey, CacheEntry]] = {}
        # Insertion order across all templates, for FIFO eviction
        self._order: OrderedDict[tuple[str, WindowKey], None] = OrderedDict()
        self._generation = 0
        self._last_purge = self._clock()
        self.stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "invalidations": 0,
            "expirations": 0,
        }

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def snapshot_generation(self) -> int:
        """Current cache-wide generation; take it before reading templates from a store."""
        with self._lock:
            return self._generation

    def get_or_generate(
        self,
        template: EventTemplate,
        window: EventWindow,
        generation: Optional[int] = None,
    ) -> list[Occurrence]:
        """Return occurrences for ``template`` over ``window``, generating on a miss.

        Cache failures are treated as misses; this method only fails if the
        generator itself does.

        Args:
            template: Recurring parent to expand
            window: Query window
            generation: ``snapshot_generation()`` taken before ``template`` was
                read; defaults to the generation at lookup time
        """
        key: WindowKey = (window.start, window.end)

        try:
            cached, current = self._lookup(template.id, key)
        except Exception:
            logger.warning("Instance cache lookup failed for %s; regenerating", template.id, exc_info=True)
            return self.generator.generate(template, window)

        if cached is not None:
            logger.debug("Cache hit for recurring event %s", template.id)
            return list(cached.occurrences)

        if generation is None:
            generation = current

        occurrences = self.generator.generate(template, window)
        logger.debug("Generated %d instances for event %s", len(occurrences), template.id)

        if self.enabled:
            try:
                self._store(template.id, key, occurrences, generation)
            except Exception:
                logger.warning("Instance cache store failed for %s", template.id, exc_info=True)

        return occurrences

    def invalidate(self, template_id: str) -> int:
        """Drop every cached window for ``template_id``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            self._generation += 1
            windows = self._index.pop(template_id, {})
            for key in windows:
                self._order.pop((template_id, key), None)
            self.stats["invalidations"] += 1

        if windows:
            logger.debug("Invalidated %d cached windows for event %s", len(windows), template_id)
        return len(windows)

    def purge_expired(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for template_id in list(self._index):
                windows = self._index[template_id]
                for key in [k for k, entry in windows.items() if entry.expires_at <= now]:
                    self._remove(template_id, key)
                    removed += 1
            self.stats["expirations"] += removed
        return removed

    def clear(self) -> None:
        """Drop all entries and bump the generation."""
        with self._lock:
            self._generation += 1
            self._index.clear()
            self._order.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with hits, misses, hit_rate (0-100), evictions, invalidations,
            expirations, current_size, max_entries and ttl_seconds
        """
        with self._lock:
            total_requests = self.stats["hits"] + self.stats["misses"]
            hit_rate = (self.stats["hits"] / total_requests * 100) if total_requests > 0 else 0.0
            return {
                **self.stats,
                "hit_rate": round(hit_rate, 2),
                "current_size": len(self._order),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
            }

    def clear_stats(self) -> None:
        """Clear cache statistics (useful for testing)."""
        with self._lock:
            for name in self.stats:
                self.stats[name] = 0

    def _lookup(self, template_id: str, key: WindowKey) -> tuple[Optional[CacheEntry], int]:
        with self._lock:
            generation = self._generation
            entry = self._index.get(template_id, {}).get(key)
            if entry is not None and entry.expires_at <= self._clock():
                self._remove(template_id, key)
                self.stats["expirations"] += 1
                entry = None
            self.stats["hits" if entry is not None else "misses"] += 1
            return entry, generation

    def _store(
        self,
        template_id: str,
        key: WindowKey,
        occurrences: list[Occurrence],
        generation: int,
    ) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding stale generation for event %s", template_id)
                return

            now = self._clock()
            if now - self._last_purge >= self.ttl_seconds:
                self._last_purge = now
                self.purge_expired()

            entry = CacheEntry(tuple(occurrences), now + self.ttl_seconds)
            self._index.setdefault(template_id, {})[key] = entry
            self._order[(template_id, key)] = None
            self._order.move_to_end((template_id, key))

            while len(self._order) > self.max_entries:
                oldest_id, oldest_key = next(iter(self._order))
                self._remove(oldest_id, oldest_key)
                self.stats["evictions"] += 1

    def _remove(self, template_id: str, key: WindowKey) -> None:
        windows = self._index.get(template_id)
        if windows is not None:
            windows.pop(key, None)
            if not windows:
                del self._index[template_id]
        self._order.pop((template_id, key), None)


class NullInstanceCache(InstanceCache):
    """Cache that never stores; every call regenerates."""

    def __init__(self, generator: Optional[InstanceGenerator] = None):
        super().__init__(ttl_seconds=0, max_entries=0, generator=generator)

    def get_or_generate(
        self,
        template: EventTemplate,
        window: EventWindow,
        generation: Optional[int] = None,
    ) -> list[Occurrence]:
        with self._lock:
            self.stats["misses"] += 1
        return self.generator.generate(template, window)
