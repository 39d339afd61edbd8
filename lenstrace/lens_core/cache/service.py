from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Hashable, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from lenstrace.lens_core.models.interfaces import ExtractionResult
from lenstrace.services.logger import logger

T = TypeVar("T")

Clock = Callable[[], float]


def cache_key(image_url: str) -> str:
    """Canonical form of an image URL used as the cache key.

    Whitespace is trimmed, scheme and host are lowercased, query parameters
    are sorted, the fragment is dropped, and an empty path becomes ``/``.
    """
    parsed = urlsplit(image_url.strip())
    scheme = (parsed.scheme or "https").lower()
    netloc = parsed.netloc.lower()
    path = parsed.path or "/"
    query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))
    return urlunsplit((scheme, netloc, path, query, ""))


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    value: ExtractionResult
    expires_at: float


class ResultCache:
    """In-memory TTL cache with lazy expiry and LRU eviction."""

    def __init__(
        self,
        *,
        default_ttl: float = 3600.0,
        max_entries: int | None = 1000,
        clock: Clock = time.monotonic,
    ):
        self.default_ttl = float(default_ttl)
        self.max_entries = max_entries if max_entries and max_entries > 0 else None
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> ExtractionResult | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.value

    def put(self, key: str, value: ExtractionResult, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else float(ttl)
        if ttl <= 0:
            return
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)
        if self.max_entries is not None and len(self._entries) > self.max_entries:
            self.purge_expired()
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted}")

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)


class SingleFlight:
    """Collapse concurrent calls with the same key into one shared task."""

    def __init__(self):
        self._calls: dict[Hashable, asyncio.Task] = {}

    def in_flight(self) -> int:
        return len(self._calls)

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._calls.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._calls[key] = task
            task.add_done_callback(lambda done, k=key: self._forget(k, done))
        else:
            logger.debug(f"Joining in-flight call for {key}")
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._calls.get(key) is task:
            del self._calls[key]
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter went away.
            task.exception()
