"""Unit tests for PlanCache TTL, LRU eviction and stats."""

import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from cowork.models.cache import PlanCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


_PLAN = {"goal": "g", "steps": [{"type": "readFiles", "params": {"path": "."}}]}


class TestPlanCache:

    def test_miss_then_hit(self):
        cache = PlanCache()
        assert cache.get("g", "/ws") is None
        cache.set("g", "/ws", _PLAN)
        assert cache.get("g", "/ws") == _PLAN
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 50.0

    def test_goal_is_normalized_but_workspace_is_not(self):
        cache = PlanCache()
        cache.set("Organize Files", "/ws", _PLAN)
        assert cache.get("  organize files ", "/ws") == _PLAN
        assert cache.get("organize files", "/other") is None

    def test_returns_copies(self):
        cache = PlanCache()
        cache.set("g", "/ws", _PLAN)
        first = cache.get("g", "/ws")
        first["steps"].append({"type": "writeFile"})
        assert len(cache.get("g", "/ws")["steps"]) == 1

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = PlanCache(ttl_seconds=60, clock=clock)
        cache.set("g", "/ws", _PLAN)
        clock.now += 59
        assert cache.get("g", "/ws") is not None
        clock.now += 1
        assert cache.get("g", "/ws") is None
        assert cache.get_stats()["cached_entries"] == 0

    def test_lru_eviction(self):
        cache = PlanCache(max_size=2)
        cache.set("a", "/ws", _PLAN)
        cache.set("b", "/ws", _PLAN)
        cache.get("a", "/ws")
        cache.set("c", "/ws", _PLAN)
        assert cache.get("b", "/ws") is None
        assert cache.get("a", "/ws") is not None
        assert cache.get("c", "/ws") is not None

    def test_unbounded(self):
        cache = PlanCache(max_size=0)
        for i in range(300):
            cache.set(f"goal {i}", "/ws", _PLAN)
        assert cache.get_stats()["cached_entries"] == 300

    def test_clear(self):
        cache = PlanCache()
        cache.set("g", "/ws", _PLAN)
        cache.clear()
        assert cache.get("g", "/ws") is None
