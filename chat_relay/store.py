from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from chat_relay.schemas import Message


DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class CacheEntry:
    messages: List[Message]
    last_updated: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.last_updated >= self.ttl


class ConversationCache:
    """In-memory, asyncio-locked cache of recent message lists keyed by conversation id.

    Expired entries are dropped lazily on read. A put replaces the whole entry, so readers
    never see a half-written one. Suitable for single-process deployments.
    """

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._ttl = ttl
        self._clock = clock

    async def get(self, conversation_id: str) -> Optional[List[Message]]:
        async with self._lock:
            now = self._clock()
            for key in [k for k, entry in self._entries.items() if entry.is_expired(now)]:
                del self._entries[key]
            entry = self._entries.get(conversation_id)
            if entry is None:
                return None
            return list(entry.messages)

    async def put(self, conversation_id: str, messages: List[Message]) -> None:
        async with self._lock:
            self._entries[conversation_id] = CacheEntry(
                messages=list(messages),
                last_updated=self._clock(),
                ttl=self._ttl,
            )

    async def invalidate(self, conversation_id: str) -> None:
        async with self._lock:
            self._entries.pop(conversation_id, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


DEFAULT_RATE_WINDOW_SECONDS = 15 * 60.0
DEFAULT_RATE_LIMIT = 100


@dataclass
class _Window:
    started: float
    hits: int = 0


class RateLimiter:
    """Fixed-window request counter keyed by client address.

    A client gets `limit` hits per `window` seconds; the count resets when its window ends.
    Single-process only, like ConversationCache.
    """

    def __init__(
        self,
        limit: int = DEFAULT_RATE_LIMIT,
        window: float = DEFAULT_RATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._windows: Dict[str, _Window] = {}
        self._lock = asyncio.Lock()
        self._limit = limit
        self._window = window
        self._clock = clock

    async def hit(self, client: str) -> bool:
        """Record one request; False once the client is over its limit for the current window."""
        async with self._lock:
            now = self._clock()
            for key in [k for k, w in self._windows.items() if now - w.started >= self._window]:
                del self._windows[key]
            current = self._windows.setdefault(client, _Window(started=now))
            current.hits += 1
            return current.hits <= self._limit
