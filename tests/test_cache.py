from unittest import mock

import pytest

from trading.cache import TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_two_reads_within_ttl_fetch_once(clock):
    cache = TTLCache(5.0, clock=clock)
    fetch = mock.Mock(return_value={"v": 1})

    assert cache.get_or_fetch(fetch) == {"v": 1}
    clock.now += 4.9
    assert cache.get_or_fetch(fetch) == {"v": 1}
    assert fetch.call_count == 1


def test_reads_straddling_ttl_fetch_twice(clock):
    cache = TTLCache(5.0, clock=clock)
    fetch = mock.Mock(side_effect=["old", "new"])

    assert cache.get_or_fetch(fetch) == "old"
    clock.now += 5.0
    assert cache.get_or_fetch(fetch) == "new"
    assert fetch.call_count == 2


def test_fetch_error_propagates_and_keeps_previous_value(clock):
    cache = TTLCache(5.0, clock=clock)
    cache.get_or_fetch(lambda: "first")
    clock.now += 10

    def boom():
        raise RuntimeError("backend down")

    with pytest.raises(RuntimeError):
        cache.get_or_fetch(boom)

    # stale value is not served, but it was not overwritten either
    assert cache.peek() is None
    clock.now -= 10
    assert cache.peek() == "first"


def test_invalidate_forces_refetch(clock):
    cache = TTLCache(5.0, clock=clock)
    fetch = mock.Mock(side_effect=[1, 2])
    cache.get_or_fetch(fetch)
    cache.invalidate()
    assert cache.get_or_fetch(fetch) == 2
