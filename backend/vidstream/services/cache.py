"""Memoizing wrapper for async retrieval functions (backed by cachetools.TTLCache)."""
from typing import Any, Awaitable, Callable, Generic, Iterator, TypeVar

from cachetools import TTLCache

from vidstream.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Args = tuple[Any, ...]


class CacheView:
    """Read-only handle onto a cache, plus explicit invalidation."""

    def __init__(self, store: TTLCache) -> None:
        self._store = store

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._store.keys()))

    def keys(self) -> list[str]:
        return list(self._store.keys())

    def get(self, key: str, default: Any = None) -> Any:
        return self._store.get(key, default)

    def invalidate(self, key: str) -> bool:
        """Drop one entry; returns True if it was present."""
        return self._store.pop(key, None) is not None

    def clear(self) -> None:
        self._store.clear()


class MemoizingCache(Generic[T]):
    """Cache completed results of an async function.

    Entries expire after ``ttl`` seconds and the least recently used entry is
    evicted once ``maxsize`` is exceeded. Failures are never stored, and
    concurrent calls for the same key are not coalesced: each one that misses
    invokes ``fn``.

    Args:
        fn: Coroutine function to wrap
        key_fn: Builds the cache key from the (remapped) positional args
        remap_args: Normalises the call's positional args before keying, e.g.
            turning a link into a video id
        maxsize: Capacity; 0 disables caching
        ttl: Entry lifetime in seconds; 0 disables caching
    """

    def __init__(
        self,
        fn: Callable[..., Awaitable[T]],
        key_fn: Callable[[Args], str],
        remap_args: Callable[[Args], Args] | None = None,
        *,
        maxsize: int,
        ttl: float,
        timer: Callable[[], float] | None = None,
    ) -> None:
        self._fn = fn
        self._key_fn = key_fn
        self._remap_args = remap_args
        self.enabled = maxsize > 0 and ttl > 0
        cache_kwargs: dict[str, Any] = {"maxsize": max(1, maxsize), "ttl": max(1, ttl)}
        if timer is not None:
            cache_kwargs["timer"] = timer
        self._store: TTLCache = TTLCache(**cache_kwargs)
        self.view = CacheView(self._store)

    def key_for(self, *args: Any) -> str:
        """Return the key a call with ``args`` would use."""
        if self._remap_args:
            args = self._remap_args(args)
        return self._key_fn(args)

    async def call(self, *args: Any) -> T:
        if self._remap_args:
            args = self._remap_args(args)
        key = self._key_fn(args)

        if self.enabled:
            cached = self._store.get(key)
            if cached is not None:
                logger.debug(f"Cache hit: {key}")
                return cached

        result = await self._fn(*args)
        if self.enabled:
            self._store[key] = result
        return result

    __call__ = call
