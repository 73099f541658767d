from smartthreads.summary_cache import SummaryCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_cache():
    clock = FakeClock()
    return SummaryCache(ttl=60, timer=clock), clock


def test_put_then_get():
    cache, _ = make_cache()
    cache.put(1, "All", ["a", "b"])
    assert cache.get(1, "All") == ["a", "b"]


def test_keys_are_thread_and_filter():
    cache, _ = make_cache()
    cache.put(1, "All", ["all"])
    cache.put(1, "Decision", ["decision"])
    assert cache.get(1, "Decision") == ["decision"]
    assert cache.get(2, "All") is None
    assert cache.get("1", "All") == ["all"]


def test_entry_expires_after_ttl_and_is_purged():
    cache, clock = make_cache()
    cache.put(1, "All", ["a"])

    clock.advance(59)
    assert cache.get(1, "All") == ["a"]

    clock.advance(2)
    assert cache.get(1, "All") is None
    assert len(cache) == 0


def test_reads_do_not_extend_lifetime():
    cache, clock = make_cache()
    cache.put(1, "All", ["a"])
    for _ in range(5):
        clock.advance(11)
        cache.get(1, "All")
    clock.advance(6)
    assert cache.get(1, "All") is None


def test_invalidate_bypasses_ttl():
    cache, _ = make_cache()
    cache.put(1, "All", ["a"])
    cache.invalidate(1, "All")
    assert cache.get(1, "All") is None
    cache.invalidate(1, "All")


def test_returned_bullets_are_a_copy():
    cache, _ = make_cache()
    cache.put(1, "All", ["a"])
    cache.get(1, "All").append("mutated")
    assert cache.get(1, "All") == ["a"]


def test_membership_check_follows_expiry():
    cache, clock = make_cache()
    cache.put(7, "Decision", ["a"])
    assert ("7", "Decision") in cache
    assert (7, "All") not in cache
    clock.advance(61)
    assert (7, "Decision") not in cache
