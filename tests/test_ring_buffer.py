from __future__ import annotations

import pytest

from devagent.engine.ring_buffer import RecentEventCache


def test_empty_snapshot() -> None:
    cache = RecentEventCache(5)
    assert cache.snapshot() == []
    assert len(cache) == 0


@pytest.mark.parametrize("count", [0, 1, 4, 5, 6, 23])
def test_snapshot_length_is_min_of_count_and_capacity(count: int) -> None:
    cache = RecentEventCache(5)
    for i in range(count):
        cache.push(i)
    snapshot = cache.snapshot()
    assert len(snapshot) == min(count, 5)
    assert snapshot == list(range(count))[-5:]


def test_overwrites_oldest_once_full() -> None:
    cache = RecentEventCache(100)
    for i in range(1, 151):
        cache.push(f"e{i}")
    snapshot = cache.snapshot()
    assert len(snapshot) == 100
    assert snapshot[0] == "e51"
    assert snapshot[-1] == "e150"


def test_recent_returns_newest_oldest_first() -> None:
    cache = RecentEventCache(10)
    for i in range(7):
        cache.push(i)
    assert cache.recent(3) == [4, 5, 6]
    assert cache.recent(0) == []
    assert cache.recent(50) == list(range(7))


def test_clear_resets() -> None:
    cache = RecentEventCache(3)
    cache.push("a")
    cache.push("b")
    cache.clear()
    assert cache.snapshot() == []
    cache.push("c")
    assert cache.snapshot() == ["c"]


def test_snapshot_is_a_copy() -> None:
    cache = RecentEventCache(3)
    cache.push("a")
    snapshot = cache.snapshot()
    snapshot.append("x")
    assert cache.snapshot() == ["a"]


@pytest.mark.parametrize("capacity", [0, -1])
def test_invalid_capacity(capacity: int) -> None:
    with pytest.raises(ValueError):
        RecentEventCache(capacity)
