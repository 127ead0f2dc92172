"""
Namespaced JSON cache backed by SQLite.

Keys are ordered tuples of strings; the first part names the namespace, so
related values can be listed or cleared together. Concurrent fetches of the
same key share one computation.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence

from . import database

logger = logging.getLogger(__name__)


class Cache:
    """
    A named cache.

    When disabled, every fetch recomputes its value; the fresh value is still
    stored so that a later enabled run can use it.
    """

    def __init__(self, name: str, enabled: bool = True):
        self.name = name
        self.enabled = enabled
        self._pending: dict[tuple[str, ...], asyncio.Task] = {}
        self._initialized = False

    async def fetch(self, key_parts: Sequence, producer: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for a key, computing and storing it on a miss."""
        key = tuple(str(part) for part in key_parts)
        if len(key) < 2:
            raise ValueError(f"Cache key needs a namespace and a name: {key}")

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, producer))
            self._pending[key] = task
            task.add_done_callback(lambda _: self._pending.pop(key, None))
        else:
            logger.debug(f"Joining in-flight fetch for {self.name}:{'/'.join(key)}")

        return await task

    async def entries(self, namespace: str) -> list:
        """All values stored in a namespace, ordered by key."""
        await self._ensure_db()
        return await asyncio.to_thread(database.list_entries, self.name, namespace)

    async def clear(self, namespaces: list[str] | None = None) -> int:
        """Remove all entries, or only those in the given namespaces."""
        await self._ensure_db()
        removed = await asyncio.to_thread(database.clear_entries, self.name, namespaces)
        logger.debug(f"Removed {removed} entries from the {self.name} cache")
        return removed

    async def stats(self) -> dict[str, int]:
        """Number of entries per namespace."""
        await self._ensure_db()
        return await asyncio.to_thread(database.count_entries, self.name)

    async def _load(self, key: tuple[str, ...], producer) -> Any:
        await self._ensure_db()
        namespace, name = key[0], "/".join(key[1:])

        if self.enabled:
            found, value = await asyncio.to_thread(database.read_entry, self.name, namespace, name)
            if found:
                logger.debug(f"Cache hit {self.name}:{namespace}/{name}")
                return value

        value = await producer()
        await asyncio.to_thread(database.write_entry, self.name, namespace, name, value)
        return value

    async def _ensure_db(self):
        if not self._initialized:
            await asyncio.to_thread(database.init_db)
            self._initialized = True
