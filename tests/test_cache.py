import asyncio

import pytest

from goodreads_rec.cache import Cache


@pytest.mark.asyncio
async def test_fetch_caches_values(fresh_db):
    cache = Cache("data")
    calls = []

    async def produce():
        calls.append(1)
        return {"value": len(calls)}

    first = await cache.fetch(["books", "1"], produce)
    second = await cache.fetch(["books", "1"], produce)

    assert first == second == {"value": 1}
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_disabled_cache_recomputes_and_stores(fresh_db):
    disabled = Cache("data", enabled=False)
    values = iter(["before", "after"])

    async def produce():
        return next(values)

    assert await disabled.fetch(["books", "1"], produce) == "before"
    assert await disabled.fetch(["books", "1"], produce) == "after"

    enabled = Cache("data")

    async def fail():
        raise AssertionError("should be cached")

    assert await enabled.fetch(["books", "1"], fail) == "after"


@pytest.mark.asyncio
async def test_concurrent_fetches_coalesce(fresh_db):
    cache = Cache("response")
    started = asyncio.Event()
    release = asyncio.Event()
    calls = []

    async def produce():
        calls.append(1)
        started.set()
        await release.wait()
        return "value"

    first = asyncio.create_task(cache.fetch(["books", "7"], produce))
    await started.wait()
    second = asyncio.create_task(cache.fetch(["books", "7"], produce))
    release.set()

    assert await asyncio.gather(first, second) == ["value", "value"]
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_failures_are_not_cached(fresh_db):
    cache = Cache("response")

    async def fail():
        raise RuntimeError("boom")

    async def succeed():
        return "ok"

    with pytest.raises(RuntimeError):
        await cache.fetch(["books", "1"], fail)

    assert await cache.fetch(["books", "1"], succeed) == "ok"


@pytest.mark.asyncio
async def test_multi_part_keys_entries_clear_and_stats(fresh_db):
    cache = Cache("response")

    async def value(v):
        return v

    await cache.fetch(["review-ids", "1", 5, 10], lambda: value(["a"]))
    await cache.fetch(["books", "2"], lambda: value("b"))
    await cache.fetch(["books", "1"], lambda: value("a"))

    assert await cache.entries("books") == ["a", "b"]
    assert await cache.stats() == {"books": 2, "review-ids": 1}

    assert await cache.clear(["books"]) == 2
    assert await cache.stats() == {"review-ids": 1}
    assert await cache.clear() == 1


@pytest.mark.asyncio
async def test_key_requires_namespace(fresh_db):
    cache = Cache("data")

    async def produce():
        return 1

    with pytest.raises(ValueError):
        await cache.fetch(["lonely"], produce)
