"""In-memory TTL cache for resolved playback context summaries."""

import asyncio
import time
from collections.abc import Awaitable, Callable

from spotbot.logging_config import get_logger, log_with_context
from spotbot.models import PlaybackContext

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 3600


class ContextCache:
    """Context URI -> PlaybackContext, each entry expiring after a TTL.

    Playlist, album and artist names rarely change, so every push update
    for the same context reuses one lookup. Safe for concurrent coroutines.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        self._ttl = ttl_seconds
        self._entries: dict[str, tuple[PlaybackContext, float]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, uri: str) -> PlaybackContext | None:
        """Return the summary for a context URI unless missing or expired."""
        async with self._lock:
            entry = self._entries.get(uri)
            if entry is None:
                return None
            context, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._entries[uri]
                log_with_context(logger, "debug", "Context summary expired", context_uri=uri, event_type="cache_expired")
                return None
            return context

    async def put(self, context: PlaybackContext) -> None:
        async with self._lock:
            self._entries[context.uri] = (context, time.monotonic() + self._ttl)

    async def get_or_lookup(self, uri: str, lookup: Callable[[], Awaitable[PlaybackContext]]) -> PlaybackContext:
        """Return the cached summary, or run the lookup and cache its result.

        Lookup errors propagate and nothing is cached.
        """
        context = await self.get(uri)
        if context is not None:
            log_with_context(logger, "debug", "Context summary cache hit", context_uri=uri, event_type="cache_hit")
            return context

        log_with_context(logger, "debug", "Context summary cache miss", context_uri=uri, event_type="cache_miss")
        context = await lookup()
        await self.put(context)
        return context


_cache = ContextCache()


def get_cache() -> ContextCache:
    """Get the process-wide context cache."""
    return _cache
