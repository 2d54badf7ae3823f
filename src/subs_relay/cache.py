from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple

Clock = Callable[[], float]


class TTLCache:
    """Very small in-memory cache with TTL semantics.

    Entries are replaced wholesale on ``set`` and never mutated in place.
    Optionally bounds the number of items via ``max_size``; when exceeded,
    expired entries go first, then the ones closest to expiry.
    """

    def __init__(
        self,
        default_ttl: float = 600.0,
        max_size: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._store: Dict[str, Tuple[float, Any]] = {}

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def _now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            expiry, value = item
            if expiry <= self._now():
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl_value = self._default_ttl if ttl is None else ttl
        with self._lock:
            self._store[key] = (self._now() + ttl_value, value)
            if self._max_size is not None and len(self._store) > self._max_size:
                self._prune()

    def _prune(self) -> None:
        now = self._now()
        for key in [k for k, (exp, _v) in self._store.items() if exp <= now]:
            self._store.pop(key, None)
        if len(self._store) > self._max_size:
            by_expiry = sorted(self._store.items(), key=lambda kv: kv[1][0])
            for key, _item in by_expiry[: len(self._store) - self._max_size]:
                self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            now = self._now()
            return sum(1 for exp, _v in self._store.values() if exp > now)


class SingleFlight:
    """Coalesce concurrent async work per key.

    The first caller starts the producer as a task; every concurrent caller
    awaits the same task and sees the same value or exception. Waiters are
    shielded so one disconnecting caller cannot cancel the shared fetch. The
    registration is dropped as soon as the task completes.
    """

    def __init__(self) -> None:
        self._inflight: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def __contains__(self, key: str) -> bool:
        return key in self._inflight

    async def do(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, producer))
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def _run(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await producer()
        finally:
            self._inflight.pop(key, None)


class SlidingWindowRateLimiter:
    """Per-client sliding window. Rejected attempts are not recorded.

    Clients whose window has emptied are forgotten, so the table only holds
    keys seen during the last window.
    """

    def __init__(self, window: float = 60.0, max_requests: int = 10, clock: Clock | None = None) -> None:
        self.window = window
        self.max_requests = max_requests
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = self._clock()

    def _prune(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or now - hits[-1] >= self.window]
        for key in stale:
            del self._hits[key]
        self._last_sweep = now

    def allow(self, client_key: str) -> bool:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            hits = self._hits.setdefault(client_key, deque())
            self._prune(hits, now)
            if len(hits) >= self.max_requests:
                if not hits:
                    del self._hits[client_key]
                return False
            hits.append(now)
            return True

    def retry_after(self, client_key: str) -> float:
        now = self._clock()
        with self._lock:
            hits = self._hits.get(client_key)
            if hits is None:
                return 0.0
            self._prune(hits, now)
            if not hits:
                del self._hits[client_key]
                return 0.0
            if len(hits) < self.max_requests:
                return 0.0
            return max(0.0, self.window - (now - hits[0]))

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)


__all__ = ["SingleFlight", "SlidingWindowRateLimiter", "TTLCache"]
