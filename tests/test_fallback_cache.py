"""Tests for the keyword-fallback candidate cache."""

import pytest

from consultant.core.fallback_cache import CandidateCache
from consultant.core.schemas_chat import SourceKind
from tests.fakes.fake_store import make_source


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class _Loader:
    def __init__(self):
        self.calls = []

    async def __call__(self, user_id):
        self.calls.append(user_id)
        return [make_source(SourceKind.TASK, f"{user_id}-{len(self.calls)}", 0.0)]


@pytest.mark.asyncio
async def test_cached_until_ttl_expires():
    clock, loader = _Clock(), _Loader()
    cache = CandidateCache(loader, ttl_seconds=60, clock=clock)

    first = await cache.get("u1")
    clock.now += 59
    second = await cache.get("u1")
    clock.now += 2
    third = await cache.get("u1")

    assert [s.id for s in first] == [s.id for s in second] == ["u1-1"]
    assert [s.id for s in third] == ["u1-2"]
    assert loader.calls == ["u1", "u1"]


@pytest.mark.asyncio
async def test_callers_cannot_mutate_cached_entry():
    cache = CandidateCache(_Loader(), clock=_Clock())

    got = await cache.get("u1")
    got.clear()

    assert len(await cache.get("u1")) == 1


@pytest.mark.asyncio
async def test_users_are_cached_separately_and_bounded():
    clock, loader = _Clock(), _Loader()
    cache = CandidateCache(loader, ttl_seconds=60, max_users=2, clock=clock)

    await cache.get("a")
    clock.now += 1
    await cache.get("b")
    clock.now += 1
    await cache.get("c")  # evicts "a", the entry expiring first
    await cache.get("b")
    await cache.get("a")

    assert loader.calls == ["a", "b", "c", "a"]


@pytest.mark.asyncio
async def test_loader_failure_propagates_and_is_not_cached():
    calls = []

    async def flaky(user_id):
        calls.append(user_id)
        if len(calls) == 1:
            raise ConnectionError("db down")
        return []

    cache = CandidateCache(flaky, clock=_Clock())

    with pytest.raises(ConnectionError):
        await cache.get("u1")
    assert await cache.get("u1") == []
