from __future__ import annotations

from assessment_engine.services.cache import DerivedCache, VersionedCache
from assessment_engine.services.staleness import StaleGuard


def test_versioned_cache_computes_once_per_version() -> None:
    cache = VersionedCache()
    calls: list[int] = []

    def compute() -> str:
        calls.append(1)
        return "value"

    assert cache.get_or_compute(1, "k", compute) == "value"
    assert cache.get_or_compute(1, "k", compute) == "value"
    assert len(calls) == 1
    assert (cache.hits, cache.misses) == (1, 1)


def test_new_version_drops_every_entry() -> None:
    cache = VersionedCache()
    cache.get_or_compute(1, "a", lambda: 1)
    cache.get_or_compute(1, "b", lambda: 2)
    assert len(cache) == 2
    assert cache.get_or_compute(2, "a", lambda: 10) == 10
    assert len(cache) == 1
    assert cache.version == 2


def test_falsy_values_are_cached() -> None:
    cache = VersionedCache()
    calls: list[int] = []
    cache.get_or_compute(1, "k", lambda: calls.append(1))
    cache.get_or_compute(1, "k", lambda: calls.append(1))
    assert calls == [1]


def test_clear_resets_version() -> None:
    cache = VersionedCache()
    cache.get_or_compute(3, "k", lambda: 1)
    cache.clear()
    assert len(cache) == 0
    assert cache.version is None


def test_versioned_cache_satisfies_protocol() -> None:
    assert isinstance(VersionedCache(), DerivedCache)


# ---- stale guard ----


def test_newer_ticket_supersedes_older() -> None:
    guard = StaleGuard()
    old = guard.begin("courses")
    new = guard.begin("courses")
    assert not guard.is_current(old)
    assert guard.is_current(new)


def test_keys_are_independent() -> None:
    guard = StaleGuard()
    courses = guard.begin("courses")
    guard.begin("modules")
    assert guard.is_current(courses)


def test_invalidate_makes_outstanding_ticket_stale() -> None:
    guard = StaleGuard()
    ticket = guard.begin("session-1")
    guard.invalidate("session-1")
    assert not guard.is_current(ticket)
