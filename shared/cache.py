"""
In-process caches with read-time expiry.

- ExpiringCache: one entry per key, expiry decided by a predicate over the
  stored value and evaluated lazily on every read.
- LoadingCache: an ExpiringCache fronted by a request-coalescing table of
  in-flight loads, so concurrent misses on one key share a single fetch.
"""

import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

from shared.clock import ClockPolicy, system_clock
from shared.logging import get_logger

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ExpiringCache(Generic[K, V]):
    """Thread-safe map whose entries are evicted once they are observed expired."""

    def __init__(
        self,
        expiration_of: Callable[[V], Optional[datetime]],
        clock: Optional[ClockPolicy] = None,
        name: str = "cache",
    ):
        self.expiration_of = expiration_of
        self.clock = clock or system_clock
        self.name = name
        self.logger = get_logger(f"oidc.cache.{name}")
        self._entries: Dict[K, V] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> Optional[V]:
        """Return the live entry for ``key``; an expired entry is removed."""
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                return None
            if not self.clock.is_expired(self.expiration_of(value)):
                return value
            del self._entries[key]

        self.logger.debug("Evicted expired cache entry", cache=self.name)
        return None

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._entries[key] = value

    def invalidate(self, key: K) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            expired = [
                key for key, value in self._entries.items()
                if self.clock.is_expired(self.expiration_of(value))
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class _Loaded(Generic[V]):
    value: V
    expires_at: Optional[datetime]


class LoadAbandoned(Exception):
    """The task running a load was cancelled before producing a value."""


def _consume_exception(future: asyncio.Future) -> None:
    # Waiters may not exist; retrieving the exception keeps asyncio quiet.
    if not future.cancelled():
        future.exception()


class LoadingCache(Generic[K, V]):
    """Async loading cache with at most one outstanding load per key.

    ``loader`` returning None is treated as "no value": nothing is cached and
    the next lookup loads again. Exceptions raised by ``loader`` are
    delivered to every caller waiting on that load and are not cached either.

    Must be used from a single event loop.
    """

    def __init__(
        self,
        loader: Callable[[K], Awaitable[Optional[V]]],
        *,
        ttl_seconds: Optional[int] = None,
        clock: Optional[ClockPolicy] = None,
        name: str = "loading_cache",
    ):
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self.clock = clock or system_clock
        self.name = name
        self._values: ExpiringCache[K, _Loaded[V]] = ExpiringCache(
            lambda entry: entry.expires_at, self.clock, name
        )
        self._inflight: Dict[K, asyncio.Future] = {}

    async def get(self, key: K) -> Optional[V]:
        while True:
            cached = self._values.get(key)
            if cached is not None:
                return cached.value

            future = self._inflight.get(key)
            if future is None:
                return await self._load(key)

            try:
                return await asyncio.shield(future)
            except LoadAbandoned:
                # The loading task went away; take over the load ourselves.
                continue

    def get_if_present(self, key: K) -> Optional[V]:
        cached = self._values.get(key)
        return cached.value if cached is not None else None

    def invalidate(self, key: K) -> bool:
        return self._values.invalidate(key)

    def clear(self) -> None:
        self._values.clear()

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    def __len__(self) -> int:
        return len(self._values)

    async def _load(self, key: K) -> Optional[V]:
        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        self._inflight[key] = future

        try:
            value = await self.loader(key)
        except asyncio.CancelledError:
            future.set_exception(LoadAbandoned(key))
            raise
        except Exception as exc:
            future.set_exception(exc)
            raise
        else:
            if value is not None:
                self._values.put(key, _Loaded(value, self.clock.expiry_after(self.ttl_seconds)))
            future.set_result(value)
            return value
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]
