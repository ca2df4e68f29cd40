from __future__ import annotations

"""Time-boxed memoization for meeting store lookups."""

import functools
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


def json_cache_key(*args: Any, **kwargs: Any) -> str:
    """Serialize call arguments into a stable cache key."""
    return json.dumps({"args": args, "kwargs": kwargs}, sort_keys=True, default=str)


def ttl_memoize(
    ttl: float,
    key: Callable[..., str] = json_cache_key,
    clock: Callable[[], float] = time.monotonic,
):
    """Cache an async function's results for ``ttl`` seconds per key.

    The wrapped coroutine function gains ``cache_clear()`` and ``cache_size()``.
    Failures are not cached. Expired entries are pruned on every call.
    """

    def decorator(func: Callable[..., Awaitable[Any]]):
        entries: dict[str, _CacheEntry] = {}

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            cache_key = key(*args, **kwargs)
            now = clock()
            expired = [name for name, item in entries.items() if item.expires_at <= now]
            for name in expired:
                del entries[name]
            entry = entries.get(cache_key)
            if entry is not None:
                logger.debug("store_cache_hit", extra={"function": func.__name__})
                return entry.value
            value = await func(*args, **kwargs)
            entries[cache_key] = _CacheEntry(value=value, expires_at=clock() + ttl)
            return value

        def cache_clear() -> None:
            entries.clear()

        def cache_size() -> int:
            return len(entries)

        wrapper.cache_clear = cache_clear  # type: ignore[attr-defined]
        wrapper.cache_size = cache_size  # type: ignore[attr-defined]
        return wrapper

    return decorator
