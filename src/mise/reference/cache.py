"""
Mise - Single-flight reference cache.

Holds one of three states:
- None: unpopulated, the next get() starts a load
- asyncio.Task: a load is in flight, every caller awaits that same task
- any other value: the loaded table

The in-flight task is the only coordination primitive. It always settles
(success, failure, cancellation), so no caller can wait on it forever.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReferenceCache(Generic[T]):
    """
    Process-lifetime cache for one reference table.

    Usage:
        aliases = ReferenceCache("ingredient_aliases", load_aliases, dict)
        table = await aliases.get()
        aliases.clear()

    A failed load resolves every waiting caller to empty() and leaves the
    cache unpopulated so a later get() retries.
    """

    def __init__(
        self,
        name: str,
        loader: Callable[[], Awaitable[T]],
        empty: Callable[[], T],
    ):
        self.name = name
        self._loader = loader
        self._empty = empty
        self._value: T | asyncio.Task | None = None

    @property
    def is_populated(self) -> bool:
        return self._value is not None and not isinstance(self._value, asyncio.Task)

    @property
    def is_loading(self) -> bool:
        return isinstance(self._value, asyncio.Task)

    async def get(self) -> T:
        """Return the cached table, loading it once if needed."""
        value = self._value

        if value is None:
            value = asyncio.ensure_future(self._load())
            self._value = value

        if isinstance(value, asyncio.Task):
            # shield: one caller being cancelled must not cancel the shared load
            return await asyncio.shield(value)

        return value

    def clear(self) -> None:
        """Reset to unpopulated. An in-flight load will not repopulate."""
        self._value = None

    async def _load(self) -> T:
        task = asyncio.current_task()

        try:
            result = await self._loader()
        except asyncio.CancelledError:
            if self._value is task:
                self._value = None
            raise
        except Exception as e:
            logger.error(f"Failed to load {self.name}: {e}")
            if self._value is task:
                self._value = None
            return self._empty()

        if self._value is task:
            self._value = result
            logger.info(f"Loaded {len(result)} {self.name} entries")

        return result
