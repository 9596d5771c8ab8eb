"""LRU + TTL cache for raw completion text keyed by context fingerprint.

The cache stores the unprocessed model output rather than classified
suggestions so a hit can be re-classified exactly like a fresh stream.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from .types import CompletionContext

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "ContextFingerprint",
    "SuggestionCache",
    "make_key",
]

LOGGER = logging.getLogger(__name__)

PREFIX_TAIL_BYTES = 300
SUFFIX_HEAD_BYTES = 100
MAX_KEY_LENGTH = 200


# -----------------------------------------------------------------------------
# Fingerprint
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ContextFingerprint:
    """Cache key summarizing the text around the cursor.

    Attributes:
        filetype: Language of the buffer.
        prefix_tail: Text in the last UTF-8 bytes before the cursor.
        suffix_head: Text in the first UTF-8 bytes after the cursor.
    """

    filetype: str
    prefix_tail: str
    suffix_head: str

    @classmethod
    def from_context(cls, context: CompletionContext) -> ContextFingerprint:
        before = context.before_cursor or ""
        after = context.after_cursor or ""
        return cls(
            filetype=context.filetype or "",
            prefix_tail=_utf8_slice(before, -PREFIX_TAIL_BYTES, None),
            suffix_head=_utf8_slice(after, None, SUFFIX_HEAD_BYTES),
        )

    @property
    def key(self) -> str:
        # Length markers keep ("a|b", "c") and ("a", "b|c") apart.
        raw = (
            f"{self.filetype}:{len(self.prefix_tail)}:{self.prefix_tail}"
            f":{len(self.suffix_head)}:{self.suffix_head}"
        )
        if len(raw) <= MAX_KEY_LENGTH:
            return raw
        digest = hashlib.sha1(raw.encode("utf-8", errors="surrogatepass")).hexdigest()
        return f"{self.filetype}_{len(self.prefix_tail)}_{digest}"


def _utf8_slice(text: str, start: int | None, stop: int | None) -> str:
    # A character cut at the byte boundary is dropped whole.
    data = text.encode("utf-8", errors="surrogatepass")
    return data[start:stop].decode("utf-8", errors="ignore")


def make_key(context: CompletionContext) -> str:
    """Return the cache key for ``context``."""

    return ContextFingerprint.from_context(context).key


# -----------------------------------------------------------------------------
# Configuration / entries / statistics
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Configuration for the suggestion cache.

    Attributes:
        max_entries: Maximum number of cached completions (0 disables storage).
        ttl_seconds: Time-to-live for entries in seconds (0 = no expiry).
    """

    max_entries: int = 50
    ttl_seconds: float = 300.0


@dataclass(slots=True, frozen=True)
class CacheEntry:
    """Cached raw completion text and its creation time."""

    value: str
    created_at: float


@dataclass(slots=True)
class CacheStats:
    """Point-in-time view of the cache surfaced to status commands."""

    size: int
    max_size: int
    ttl: float
    oldest_age: float = 0.0
    newest_age: float = 0.0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for logging/telemetry."""
        return {
            "size": self.size,
            "max_size": self.max_size,
            "ttl": self.ttl,
            "oldest_age": self.oldest_age,
            "newest_age": self.newest_age,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "hit_rate": self.hit_rate,
        }


@dataclass(slots=True)
class _Counters:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0


# -----------------------------------------------------------------------------
# Suggestion Cache
# -----------------------------------------------------------------------------


class SuggestionCache:
    """Bounded, time-limited LRU store for completion text.

    ``OrderedDict`` order is the recency list: the first key is the least
    recently touched one and is always the next to be evicted.

    Example:
        >>> cache = SuggestionCache(CacheConfig(max_entries=2))
        >>> cache.set("k", "print('hi')")
        >>> cache.get("k")
        "print('hi')"
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            config: Optional cache configuration.
            clock: Time source in seconds; injectable for tests.
        """
        config = config or CacheConfig()
        self._max_size = max(0, int(config.max_entries))
        self._ttl = max(0.0, float(config.ttl_seconds))
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._counters = _Counters()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> str | None:
        """Return the cached value for ``key``, or ``None`` if absent or expired."""

        entry = self._entries.get(key)
        if entry is None:
            self._counters.misses += 1
            return None

        if self._ttl > 0 and self._clock() - entry.created_at > self._ttl:
            del self._entries[key]
            self._counters.expirations += 1
            self._counters.misses += 1
            LOGGER.debug("Cache entry expired for %.60s", key)
            return None

        self._entries.move_to_end(key)
        self._counters.hits += 1
        return entry.value

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, evicting the LRU entry when full."""

        if self._max_size == 0:
            return
        entry = CacheEntry(value=value, created_at=self._clock())
        if key in self._entries:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            return

        while len(self._entries) >= self._max_size:
            self._evict_oldest()
        self._entries[key] = entry

    def invalidate(self, key: str) -> bool:
        """Remove ``key``; return whether it was present."""

        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Remove all entries and return how many were dropped."""

        count = len(self._entries)
        self._entries.clear()
        if count:
            LOGGER.debug("Cleared %d cached completion(s)", count)
        return count

    def resize(self, max_size: int) -> None:
        """Change the capacity, evicting the oldest entries that no longer fit."""

        self._max_size = max(0, int(max_size))
        while len(self._entries) > self._max_size:
            self._evict_oldest()

    def set_ttl(self, seconds: float | None) -> None:
        """Change the time-to-live; ``0`` disables expiry."""

        self._ttl = max(0.0, float(seconds or 0))

    def stats(self) -> CacheStats:
        now = self._clock()
        ages = [max(0.0, now - entry.created_at) for entry in self._entries.values()]
        return CacheStats(
            size=len(self._entries),
            max_size=self._max_size,
            ttl=self._ttl,
            oldest_age=max(ages) if ages else 0.0,
            newest_age=min(ages) if ages else 0.0,
            hits=self._counters.hits,
            misses=self._counters.misses,
            evictions=self._counters.evictions,
            expirations=self._counters.expirations,
        )

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""

        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _evict_oldest(self) -> None:
        evicted_key, _ = self._entries.popitem(last=False)
        self._counters.evictions += 1
        LOGGER.debug("Evicted cache entry for %.60s", evicted_key)
