from search_cache import SearchCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestSearchCache:
    def test_hit_until_expiry(self):
        clock = FakeClock()
        cache = SearchCache(ttl_seconds=300, clock=clock)
        key = SearchCache.key("u1", "  Jane ", 20)
        cache.set(key, [{"contact_id": "c1"}])

        assert cache.get(SearchCache.key("u1", "jane", 20)) == [{"contact_id": "c1"}]
        clock.now += 299
        assert cache.get(key) is not None
        clock.now += 1
        assert cache.get(key) is None
        assert len(cache) == 0

    def test_key_includes_paging(self):
        assert SearchCache.key("u1", "jane", 20, 0) != SearchCache.key("u1", "jane", 20, 20)

    def test_clear_user_cache_only_touches_that_user(self):
        cache = SearchCache()
        cache.set(SearchCache.key("u1", "a", 10), [])
        cache.set(SearchCache.key("u1", "b", 10), [])
        cache.set(SearchCache.key("u2", "a", 10), [])

        assert cache.clear_user_cache("u1") == 2
        assert len(cache) == 1
        assert cache.get(SearchCache.key("u2", "a", 10)) == []

    def test_zero_ttl_disables_storage(self):
        cache = SearchCache(ttl_seconds=0)
        cache.set(SearchCache.key("u1", "a", 10), ["x"])
        assert len(cache) == 0

    def test_expired_entries_purged_on_write(self):
        clock = FakeClock()
        cache = SearchCache(ttl_seconds=1, max_size=10000, clock=clock)
        for i in range(5000):
            cache.set(SearchCache.key("u1", f"q{i}", 10), [])
        clock.now += 10
        cache.set(SearchCache.key("u1", "fresh", 10), ["x"])

        assert len(cache) == 1
        assert cache.get(SearchCache.key("u1", "fresh", 10)) == ["x"]

    def test_oldest_entries_evicted_over_max_size(self):
        cache = SearchCache(ttl_seconds=300, max_size=3, clock=FakeClock())
        for q in ("a", "b", "c", "d"):
            cache.set(SearchCache.key("u1", q, 10), [q])

        assert len(cache) == 3
        assert cache.get(SearchCache.key("u1", "a", 10)) is None
        assert cache.get(SearchCache.key("u1", "d", 10)) == ["d"]

    def test_rewriting_a_key_refreshes_its_position(self):
        cache = SearchCache(ttl_seconds=300, max_size=2, clock=FakeClock())
        cache.set(SearchCache.key("u1", "a", 10), ["a"])
        cache.set(SearchCache.key("u1", "b", 10), ["b"])
        cache.set(SearchCache.key("u1", "a", 10), ["a2"])
        cache.set(SearchCache.key("u1", "c", 10), ["c"])

        assert cache.get(SearchCache.key("u1", "b", 10)) is None
        assert cache.get(SearchCache.key("u1", "a", 10)) == ["a2"]
