"""Tests for the suggestion cache and context fingerprinting."""

from __future__ import annotations

import pytest

from ghosttext.completion.cache import (
    CacheConfig,
    CacheStats,
    ContextFingerprint,
    SuggestionCache,
    make_key,
)

from helpers import FakeClock, make_context


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _cache(clock: FakeClock, *, size: int = 3, ttl: float = 300.0) -> SuggestionCache:
    return SuggestionCache(CacheConfig(max_entries=size, ttl_seconds=ttl), clock=clock)


# =============================================================================
# Fingerprint
# =============================================================================


class TestFingerprint:
    def test_key_contains_filetype_and_surrounding_text(self) -> None:
        key = make_key(make_context(filetype="lua", before="local x = ", after="\nend"))
        assert key == "lua:10:local x = :4:\nend"

    def test_only_tail_and_head_participate(self) -> None:
        shared_tail = "x" * 296 + "tail"
        a = make_context(before="A" * 500 + shared_tail, after="head" + "B" * 500)
        b = make_context(before="C" * 500 + shared_tail, after="head" + "B" * 96 + "D" * 400)
        fa = ContextFingerprint.from_context(a)
        fb = ContextFingerprint.from_context(b)

        assert len(fa.prefix_tail) == 300
        assert len(fa.suffix_head) == 100
        assert fa.prefix_tail == shared_tail
        assert fa.key == fb.key

    def test_tail_and_head_are_measured_in_utf8_bytes(self) -> None:
        # "é" is two bytes, so 300 bytes hold 150 of them.
        context = make_context(before="x" * 10 + "é" * 200, after="ü" * 80)
        fingerprint = ContextFingerprint.from_context(context)

        assert fingerprint.prefix_tail == "é" * 150
        assert fingerprint.suffix_head == "ü" * 50

    def test_character_split_at_byte_boundary_is_dropped(self) -> None:
        fingerprint = ContextFingerprint.from_context(make_context(before="a" * 10, after="b" * 99 + "€"))

        assert fingerprint.suffix_head == "b" * 99

    def test_cursor_position_is_not_part_of_key(self) -> None:
        assert make_key(make_context(row=1, col=2)) == make_key(make_context(row=9, col=0))

    def test_different_filetype_changes_key(self) -> None:
        assert make_key(make_context(filetype="python")) != make_key(make_context(filetype="lua"))

    def test_separator_inside_text_does_not_collide(self) -> None:
        first = make_key(make_context(before="a|b", after="c"))
        second = make_key(make_context(before="a", after="b|c"))
        third = make_key(make_context(before="a:1:b", after="c"))
        fourth = make_key(make_context(before="a", after="1:b:c"))

        assert first != second
        assert third != fourth

    def test_long_keys_are_hashed(self) -> None:
        key = make_key(make_context(before="x" * 300, after="y" * 100))

        assert len(key) < 200
        assert key.startswith("python_300_")
        assert key == make_key(make_context(before="x" * 300, after="y" * 100))


# =============================================================================
# LRU behaviour
# =============================================================================


class TestLru:
    def test_get_missing_returns_none(self, clock: FakeClock) -> None:
        assert _cache(clock).get("nope") is None

    def test_set_then_get(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        cache.set("k", "value")
        assert cache.get("k") == "value"
        assert "k" in cache
        assert len(cache) == 1

    def test_evicts_least_recently_used(self, clock: FakeClock) -> None:
        cache = _cache(clock, size=2)
        cache.set("a", "1")
        cache.set("b", "2")
        cache.set("c", "3")

        assert cache.get("a") is None
        assert cache.get("b") == "2"
        assert cache.get("c") == "3"

    def test_get_protects_entry_from_eviction(self, clock: FakeClock) -> None:
        cache = _cache(clock, size=2)
        cache.set("a", "1")
        cache.set("b", "2")
        assert cache.get("a") == "1"
        cache.set("c", "3")

        assert cache.get("a") == "1"
        assert cache.get("b") is None

    def test_set_existing_key_updates_without_eviction(self, clock: FakeClock) -> None:
        cache = _cache(clock, size=2)
        cache.set("a", "1")
        cache.set("b", "2")
        cache.set("a", "updated")

        assert len(cache) == 2
        assert cache.keys() == ["b", "a"]
        assert cache.get("a") == "updated"

    def test_size_never_exceeds_capacity(self, clock: FakeClock) -> None:
        cache = _cache(clock, size=3)
        for index in range(10):
            cache.set(f"k{index}", str(index))
            assert len(cache) <= 3
        assert cache.keys() == ["k7", "k8", "k9"]

    def test_zero_capacity_stores_nothing(self, clock: FakeClock) -> None:
        cache = _cache(clock, size=0)
        cache.set("a", "1")
        assert len(cache) == 0
        assert cache.get("a") is None

    def test_resize_evicts_oldest(self, clock: FakeClock) -> None:
        cache = _cache(clock, size=3)
        for key in ("a", "b", "c"):
            cache.set(key, key)
        cache.resize(1)

        assert cache.keys() == ["c"]
        assert cache.max_size == 1

    def test_invalidate_and_clear(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        cache.set("a", "1")
        cache.set("b", "2")

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        assert cache.clear() == 1
        assert len(cache) == 0


# =============================================================================
# Expiry
# =============================================================================


class TestExpiry:
    def test_entry_expires_after_ttl(self, clock: FakeClock) -> None:
        cache = _cache(clock, ttl=2)
        cache.set("k", "v")

        clock.advance(1)
        assert cache.get("k") == "v"

        clock.advance(2)
        assert cache.get("k") is None
        assert "k" not in cache

    def test_entry_at_exact_ttl_is_still_valid(self, clock: FakeClock) -> None:
        cache = _cache(clock, ttl=2)
        cache.set("k", "v")
        clock.advance(2)
        assert cache.get("k") == "v"

    def test_reading_does_not_refresh_age(self, clock: FakeClock) -> None:
        cache = _cache(clock, ttl=2)
        cache.set("k", "v")
        clock.advance(1.5)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None

    def test_zero_ttl_disables_expiry(self, clock: FakeClock) -> None:
        cache = _cache(clock, ttl=0)
        cache.set("k", "v")
        clock.advance(10_000)
        assert cache.get("k") == "v"

    def test_set_ttl_applies_to_existing_entries(self, clock: FakeClock) -> None:
        cache = _cache(clock, ttl=300)
        cache.set("k", "v")
        clock.advance(5)
        cache.set_ttl(1)
        assert cache.get("k") is None


# =============================================================================
# Statistics
# =============================================================================


class TestStats:
    def test_stats_track_hits_misses_and_evictions(self, clock: FakeClock) -> None:
        cache = _cache(clock, size=1, ttl=10)
        cache.set("a", "1")
        clock.advance(4)
        cache.get("a")
        cache.get("missing")
        cache.set("b", "2")

        stats = cache.stats()
        assert isinstance(stats, CacheStats)
        assert stats.size == 1
        assert stats.max_size == 1
        assert stats.ttl == 10
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.evictions == 1
        assert stats.hit_rate == pytest.approx(0.5)

    def test_stats_report_entry_ages(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        cache.set("old", "1")
        clock.advance(3)
        cache.set("new", "2")
        clock.advance(1)

        stats = cache.stats()
        assert stats.oldest_age == pytest.approx(4)
        assert stats.newest_age == pytest.approx(1)

    def test_expiration_counts_as_miss(self, clock: FakeClock) -> None:
        cache = _cache(clock, ttl=1)
        cache.set("a", "1")
        clock.advance(5)
        cache.get("a")

        payload = cache.stats().to_dict()
        assert payload["expirations"] == 1
        assert payload["misses"] == 1
        assert payload["hit_rate"] == 0.0
