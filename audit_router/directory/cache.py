from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

from ..pipeline.models import Identity
from .base import IdentityResolver

_Resolved = Tuple[Identity, Optional[Identity]]


class CachingIdentityResolver(IdentityResolver):
    """TTL cache in front of another resolver, keyed by exact username.

    Only successful lookups are stored. Errors always reach the caller.
    """

    def __init__(self, inner: IdentityResolver, ttl_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._inner = inner
        self._ttl_s = float(ttl_s)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._entries: Dict[str, Tuple[float, _Resolved]] = {}

    def is_configured(self) -> bool:
        return self._inner.is_configured()

    async def resolve(self, username: str) -> _Resolved:
        async with self._lock:
            entry = self._entries.get(username)
            if entry is not None:
                expires_at, value = entry
                if expires_at > self._clock():
                    return value
                del self._entries[username]

        value = await self._inner.resolve(username)

        async with self._lock:
            now = self._clock()
            for key in [k for k, (exp, _) in self._entries.items() if exp <= now]:
                del self._entries[key]
            self._entries[username] = (now + self._ttl_s, value)
        return value

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def aclose(self) -> None:
        await self._inner.aclose()

    @property
    def name(self) -> str:
        return f"{self.__class__.__name__}({self._inner.name})"
