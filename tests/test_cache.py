"""Tests for the LRU + TTL query cache."""

from bearnotes.search.cache import (
    ENTRY_OVERHEAD_BYTES,
    UNSERIALIZABLE_ENTRY_BYTES,
    CacheStore,
    compile_wildcard,
    generate_query_key,
    normalize_statement,
)


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestCacheBasics:
    """Test get/set/delete/has/clear."""

    def test_set_then_get_returns_value(self):
        """A fresh entry is returned unchanged."""
        cache = CacheStore(max_size=10, default_ttl=60)
        value = [{"Z_PK": 1, "ZTITLE": "Project Plan"}]

        cache.set("k", value)

        assert cache.get("k") is value
        assert cache.stats().hits == 1

    def test_get_missing_counts_miss(self):
        """A missing key is absent and counted as a miss."""
        cache = CacheStore()

        assert cache.get("missing") is None
        assert cache.stats().misses == 1

    def test_set_replaces_existing_value(self):
        """Setting an existing key replaces it without growing the store."""
        cache = CacheStore(max_size=10)
        cache.set("k", 1)
        cache.set("k", 2)

        assert cache.get("k") == 2
        assert len(cache) == 1

    def test_delete(self):
        """Delete reports whether the key existed."""
        cache = CacheStore()
        cache.set("k", 1)

        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.stats().deletes == 1

    def test_clear_counts_deletes(self):
        """Clearing removes everything and counts each entry as a delete."""
        cache = CacheStore()
        cache.set("a", 1)
        cache.set("b", 2)

        cache.clear()

        assert len(cache) == 0
        assert cache.stats().deletes == 2

    def test_has_does_not_touch_recency(self):
        """has() leaves LRU order alone."""
        cache = CacheStore(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.has("a") is True
        cache.set("c", 3)

        assert cache.has("a") is False
        assert cache.keys() == ["b", "c"]


class TestCacheEviction:
    """Test LRU eviction."""

    def test_max_size_two_scenario(self):
        """Inserting a third entry into a two-slot cache evicts the first."""
        cache = CacheStore(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.has("a") is False
        assert cache.has("b") is True
        assert cache.has("c") is True

    def test_get_refreshes_recency(self):
        """A read entry survives over an older untouched one."""
        cache = CacheStore(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.get("a")
        cache.set("c", 3)

        assert cache.keys() == ["a", "c"]
        assert cache.stats().evictions == 1

    def test_never_exceeds_max_size(self):
        """Size stays bounded and the least recently touched keys go first."""
        cache = CacheStore(max_size=3)

        for i in range(20):
            cache.set(f"k{i}", i)
            cache.get("k0")
            assert len(cache) <= 3

        assert cache.keys() == ["k18", "k19", "k0"]
        assert cache.stats().evictions == 17

    def test_access_count_tracks_hits(self):
        """Each hit increments the entry's access counter."""
        cache = CacheStore()
        cache.set("k", 1)
        cache.get("k")
        cache.get("k")

        assert cache._cache["k"].access_count == 2


class TestCacheTTL:
    """Test TTL expiry and disabled storage."""

    def test_zero_ttl_is_never_stored(self):
        """A zero TTL makes set a metrics-only no-op."""
        cache = CacheStore()
        cache.set("k", 1, ttl=0)

        assert cache.get("k") is None
        assert len(cache) == 0
        assert cache.stats().sets == 1

    def test_zero_ttl_drops_existing_value(self):
        """A zero-TTL set over an existing key leaves nothing to serve."""
        cache = CacheStore()
        cache.set("k", "old")
        cache.set("k", "new", ttl=0)

        assert cache.get("k") is None
        assert len(cache) == 0
        assert cache.stats().sets == 2

    def test_zero_max_size_is_never_stored(self):
        """A zero-sized cache stores nothing."""
        cache = CacheStore(max_size=0)
        cache.set("k", 1)

        assert cache.get("k") is None
        assert cache.stats().sets == 1
        assert cache.stats().evictions == 0

    def test_expired_get_counts_miss_and_eviction_once(self):
        """An expired get is one miss and one eviction."""
        clock = FakeClock()
        cache = CacheStore(default_ttl=10, clock=clock)
        cache.set("k", 1)

        clock.advance(10.5)

        assert cache.get("k") is None
        stats = cache.stats()
        assert stats.misses == 1
        assert stats.evictions == 1
        assert stats.size == 0

    def test_entry_alive_at_exact_ttl(self):
        """Expiry is strictly after the TTL has elapsed."""
        clock = FakeClock()
        cache = CacheStore(default_ttl=10, clock=clock)
        cache.set("k", 1)

        clock.advance(10)

        assert cache.get("k") == 1

    def test_per_entry_ttl_overrides_default(self):
        """An explicit TTL wins over the default."""
        clock = FakeClock()
        cache = CacheStore(default_ttl=100, clock=clock)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2)

        clock.advance(6)

        assert cache.has("short") is False
        assert cache.has("long") is True

    def test_stats_purges_expired_entries(self):
        """stats() drops expired entries before counting."""
        clock = FakeClock()
        cache = CacheStore(default_ttl=10, clock=clock)
        cache.set("old", 1)
        clock.advance(5)
        cache.set("new", 2)
        clock.advance(6)

        stats = cache.stats()

        assert stats.size == 1
        assert stats.evictions == 1
        assert stats.oldest_entry_age == 6
        assert stats.newest_entry_age == 6


class TestCacheInvalidation:
    """Test wildcard invalidation."""

    def test_invalidate_pattern_by_kind(self):
        """Only keys of the matching kind are removed."""
        cache = CacheStore()
        note_key = generate_query_key("note", "SELECT * FROM ZSFNOTE")
        tag_key = generate_query_key("tag", "SELECT * FROM ZSFNOTETAG")
        cache.set(note_key, [])
        cache.set(tag_key, [])

        removed = cache.invalidate_pattern("query:note:*")

        assert removed == 1
        assert cache.has(note_key) is False
        assert cache.has(tag_key) is True
        assert cache.stats().deletes == 1

    def test_wildcard_matches_whole_key(self):
        """Patterns are anchored at both ends."""
        regex = compile_wildcard("query:note:*")

        assert regex.fullmatch("query:note:abc")
        assert not regex.fullmatch("xquery:note:abc")
        assert not regex.fullmatch("query:notes")

    def test_wildcard_escapes_other_characters(self):
        """Regex metacharacters in a pattern are literal."""
        cache = CacheStore()
        cache.set("a.b", 1)
        cache.set("axb", 2)

        assert cache.invalidate_pattern("a.b") == 1
        assert cache.keys() == ["axb"]


class TestQueryKeys:
    """Test cache key derivation."""

    def test_whitespace_and_case_insensitive_shape(self):
        """Identical reads with different formatting collide."""
        a = generate_query_key("note", "SELECT *\n  FROM ZSFNOTE WHERE Z_PK = ?", [1])
        b = generate_query_key("note", "select * from zsfnote where z_pk = ?", [1])

        assert a == b

    def test_params_distinguish_keys(self):
        """Different parameters never collide."""
        sql = "SELECT * FROM ZSFNOTE WHERE Z_PK = ?"

        assert generate_query_key("note", sql, [1]) != generate_query_key("note", sql, [2])
        assert generate_query_key("note", sql, [1]) != generate_query_key("note", sql, ["1"])

    def test_kind_prefix(self):
        """Keys start with the entity kind."""
        assert generate_query_key("tag", "SELECT 1").startswith("query:tag:")

    def test_normalize_statement(self):
        assert normalize_statement("  SELECT\t*\n FROM x ") == "select * from x"


class TestCacheMemory:
    """Test the memory estimate."""

    def test_memory_estimate_and_peak(self):
        """Memory covers key, payload and overhead; the peak never decreases."""
        cache = CacheStore()
        cache.set("k", "vv")

        stats = cache.stats()
        assert stats.memory_usage_bytes == len("k") * 2 + len('"vv"') * 2 + ENTRY_OVERHEAD_BYTES

        cache.clear()
        stats = cache.stats()
        assert stats.memory_usage_bytes == 0
        assert stats.memory_peak_bytes > 0

    def test_unserializable_value_uses_fixed_estimate(self):
        """Values json cannot encode are counted at a fixed size."""
        cache = CacheStore()
        circular = []
        circular.append(circular)
        cache.set("k", circular)

        stats = cache.stats()

        assert stats.memory_usage_bytes == 2 + UNSERIALIZABLE_ENTRY_BYTES + ENTRY_OVERHEAD_BYTES

    def test_hit_rate(self):
        cache = CacheStore()
        cache.set("k", 1)
        cache.get("k")
        cache.get("k")
        cache.get("missing")

        assert abs(cache.stats().hit_rate - 2 / 3) < 1e-9
