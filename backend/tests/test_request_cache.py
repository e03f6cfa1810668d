"""
Tests for request deduplication and the response cache
"""
import asyncio
import time

import pytest

from autorest.core.errors import QueryExecutionError
from autorest.services.auto_rest.request_cache import RequestDeduplicator, ResponseCache, request_fingerprint


def fingerprint(**overrides):
    values = dict(
        service_id="svc-1",
        entity="orders",
        environment="production",
        caller_mode="modern",
        dialect="postgresql",
        query='SELECT "id" FROM "public"."orders" LIMIT $1 OFFSET $2',
        params=[25, 0],
        masked_fields=(),
    )
    values.update(overrides)
    return request_fingerprint(**values)


class TestFingerprint:
    """Test request fingerprints"""

    def test_stable(self):
        assert fingerprint() == fingerprint()
        assert fingerprint(masked_fields=("a", "b")) == fingerprint(masked_fields=("b", "a"))

    @pytest.mark.parametrize("field,value", [
        ("service_id", "svc-2"),
        ("entity", "customers"),
        ("environment", "staging"),
        ("caller_mode", "legacy"),
        ("dialect", "mysql"),
        ("params", [25, 25]),
        ("masked_fields", ("total",)),
    ])
    def test_every_input_matters(self, field, value):
        assert fingerprint(**{field: value}) != fingerprint()


class TestRequestDeduplicator:
    """Test single-flight execution"""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_execution(self):
        dedup = RequestDeduplicator(grace_seconds=0.05)
        calls = 0
        release = asyncio.Event()

        async def factory():
            nonlocal calls
            calls += 1
            await release.wait()
            return {"data": [{"id": 1}]}

        tasks = [asyncio.create_task(dedup.run("k", factory)) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert dedup.executions == 1
        assert dedup.joins == 4
        assert all(result == {"data": [{"id": 1}]} for result in results)
        # Each caller gets its own copy
        results[0]["data"].append({"id": 2})
        assert results[1] == {"data": [{"id": 1}]}

    @pytest.mark.asyncio
    async def test_grace_window_then_expiry(self):
        dedup = RequestDeduplicator(grace_seconds=0.05)
        calls = 0

        async def factory():
            nonlocal calls
            calls += 1
            return calls

        assert await dedup.run("k", factory) == 1
        assert await dedup.run("k", factory) == 1
        await asyncio.sleep(0.1)
        assert len(dedup) == 0
        assert await dedup.run("k", factory) == 2

    @pytest.mark.asyncio
    async def test_failure_rejects_waiters_and_is_forgotten(self):
        dedup = RequestDeduplicator(grace_seconds=10)
        release = asyncio.Event()

        async def failing():
            await release.wait()
            raise QueryExecutionError("boom")

        tasks = [asyncio.create_task(dedup.run("k", failing)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(result, QueryExecutionError) for result in results)
        assert len(dedup) == 0

        async def succeeding():
            return "ok"

        assert await dedup.run("k", succeeding) == "ok"

    @pytest.mark.asyncio
    async def test_owner_cancellation_fails_joiners(self):
        dedup = RequestDeduplicator(grace_seconds=0)
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        owner = asyncio.create_task(dedup.run("k", slow))
        await started.wait()
        joiner = asyncio.create_task(dedup.run("k", slow))
        await asyncio.sleep(0)
        owner.cancel()

        with pytest.raises(QueryExecutionError):
            await joiner
        with pytest.raises(asyncio.CancelledError):
            await owner

    @pytest.mark.asyncio
    async def test_distinct_keys_run_separately(self):
        dedup = RequestDeduplicator(grace_seconds=0)

        async def factory():
            return object()

        first, second = await asyncio.gather(dedup.run("a", factory), dedup.run("b", factory))
        assert dedup.executions == 2
        assert dedup.joins == 0


class TestResponseCache:
    """Test the TTL response cache"""

    def test_hit_returns_copy(self):
        cache = ResponseCache(default_ttl=30)
        cache.set("k", {"data": [1]})
        first = cache.get("k")
        first["data"].append(2)
        assert cache.get("k") == {"data": [1]}
        assert cache.stats() == {"entries": 1, "hits": 2, "misses": 0}

    def test_miss_and_expiry(self):
        cache = ResponseCache(default_ttl=30)
        assert cache.get("k") is None
        cache.set("k", {"data": []}, ttl=0.01)
        time.sleep(0.03)
        assert cache.get("k") is None
        assert cache.misses == 2

    def test_ttl_resolution(self):
        cache = ResponseCache(default_ttl=30, max_ttl=60)
        assert cache.resolve_ttl(None) == 30
        assert cache.resolve_ttl("15") == 15
        assert cache.resolve_ttl("soon") == 30
        assert cache.resolve_ttl(-5) == 30
        assert cache.resolve_ttl(9999) == 60

    @pytest.mark.parametrize("requested", ["nan", float("nan"), "inf", float("-inf")])
    def test_non_finite_ttl_uses_default(self, requested):
        cache = ResponseCache(default_ttl=30, max_ttl=60)
        assert cache.resolve_ttl(requested) == 30

    def test_non_finite_ttl_entry_expires(self):
        cache = ResponseCache(default_ttl=0.01, max_ttl=60)
        cache.set("k", {"data": [1]}, ttl="nan")
        time.sleep(0.03)
        assert cache.get("k") is None

    def test_lru_bound(self):
        cache = ResponseCache(max_entries=2)
        cache.set("a", {})
        cache.set("b", {})
        cache.get("a")
        cache.set("c", {})
        assert cache.get("b") is None
        assert cache.get("a") == {}
        assert len(cache) == 2

    def test_invalidate_and_clear(self):
        cache = ResponseCache()
        cache.set("a", {})
        cache.set("b", {})
        cache.invalidate("a")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0
