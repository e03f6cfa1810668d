"""
Request deduplication and response caching

Identical concurrent list requests share one backend execution; completed
results linger for a short grace window so near-simultaneous followers join
too. The response cache is a separate, opt-in TTL store.
"""
import asyncio
from collections import OrderedDict
import copy
import hashlib
import json
import math
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

import structlog

from autorest.core.errors import QueryExecutionError

logger = structlog.get_logger()


def request_fingerprint(
    service_id: str,
    entity: str,
    environment: str,
    caller_mode: str,
    dialect: str,
    query: Any,
    params: Any,
    masked_fields: Sequence[str] = (),
) -> str:
    """
    SHA-256 over everything that influences the response.

    The built query already encodes the projection, filter (row policy
    included), sort and page; masked fields are added because they change
    the shape of the envelope without changing the query.
    """
    payload = {
        "service": service_id,
        "entity": entity,
        "environment": environment,
        "caller_mode": caller_mode,
        "dialect": dialect,
        "query": query,
        "params": params,
        "masked": sorted(masked_fields),
    }
    encoded = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class RequestDeduplicator:
    """
    Single-flight execution keyed by request fingerprint.

    Joiners receive deep copies so no caller can mutate another caller's
    result. Failures reject every waiter and are forgotten immediately.
    """

    def __init__(self, grace_seconds: float = 0.1, max_entries: int = 1024):
        self.grace_seconds = grace_seconds
        self.max_entries = max(1, max_entries)
        self._entries: "OrderedDict[str, asyncio.Future]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.executions = 0
        self.joins = 0

    def __len__(self) -> int:
        return len(self._entries)

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Execute ``factory`` once per in-flight ``key``.

        Args:
            key: Request fingerprint
            factory: Zero-argument coroutine function producing the result

        Returns:
            A private copy of the shared result
        """
        async with self._lock:
            future = self._entries.get(key)
            if future is not None:
                self._entries.move_to_end(key)
                self.joins += 1
                owner = False
            else:
                future = asyncio.get_running_loop().create_future()
                self._entries[key] = future
                self._evict_completed()
                self.executions += 1
                owner = True

        if not owner:
            logger.debug("request_deduplicated", fingerprint=key[:16])
            # Shield so one cancelled joiner cannot cancel the shared result
            result = await asyncio.shield(future)
            return copy.deepcopy(result)

        try:
            result = await factory()
        except BaseException as e:
            self._expire(key, future)
            if not future.done():
                if isinstance(e, Exception):
                    future.set_exception(e)
                else:
                    # Owner was cancelled; joiners fail instead of being cancelled
                    future.set_exception(QueryExecutionError("Shared execution was cancelled"))
                # Mark retrieved; joiners that exist will still see it
                future.exception()
            raise

        future.set_result(result)
        if self.grace_seconds > 0:
            asyncio.get_running_loop().call_later(self.grace_seconds, self._expire, key, future)
        else:
            self._expire(key, future)
        return copy.deepcopy(result)

    def _expire(self, key: str, future: asyncio.Future) -> None:
        # Runs on the loop thread outside any await, so no lock is needed
        if self._entries.get(key) is future:
            del self._entries[key]

    def _evict_completed(self) -> None:
        """Drop the oldest completed entries once over capacity; in-flight ones stay."""
        if len(self._entries) <= self.max_entries:
            return
        for key in list(self._entries):
            if len(self._entries) <= self.max_entries:
                break
            if self._entries[key].done():
                del self._entries[key]


class ResponseCache:
    """TTL + LRU store for list envelopes. Thread safe."""

    def __init__(self, default_ttl: float = 30, max_ttl: float = 3600, max_entries: int = 1024):
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl
        self.max_entries = max(1, max_entries)
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def resolve_ttl(self, requested: Any = None) -> float:
        """Requested TTL clamped to (0, max_ttl]; invalid values use the default."""
        try:
            ttl = float(requested) if requested is not None else float(self.default_ttl)
        except (TypeError, ValueError):
            ttl = float(self.default_ttl)
        if not math.isfinite(ttl) or ttl <= 0:
            ttl = float(self.default_ttl)
        return min(ttl, float(self.max_ttl))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
        return copy.deepcopy(value)

    def set(self, key: str, value: Dict[str, Any], ttl: Any = None) -> None:
        expires_at = time.monotonic() + self.resolve_ttl(ttl)
        stored = copy.deepcopy(value)
        with self._lock:
            self._entries[key] = (expires_at, stored)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
