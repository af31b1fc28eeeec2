"""Read-through memo of values derived from one entity index.

Flow:  get_or_compute(version, key) → hit  → return
                                   → miss → compute → store → return

Every entry belongs to the index version it was derived from.  Asking with
a newer version drops the whole cache first: derived values (scopes,
rosters) are only ever valid for the exact index they were computed from,
so there is nothing to invalidate selectively.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from typing import Any, Protocol, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class DerivedCache(Protocol):
    def get_or_compute(self, version: int, key: Hashable, compute: Callable[[], T]) -> T:
        """Return the value for ``key`` at ``version``, computing it on a miss."""
        ...

    def clear(self) -> None: ...


class VersionedCache:
    def __init__(self) -> None:
        self._version: int | None = None
        self._store: dict[Hashable, Any] = {}
        self.hits = 0
        self.misses = 0

    @property
    def version(self) -> int | None:
        return self._version

    def get_or_compute(self, version: int, key: Hashable, compute: Callable[[], T]) -> T:
        if version != self._version:
            if self._store:
                logger.debug(
                    "Derived cache invalidated: v%s -> v%s (%d entries)",
                    self._version,
                    version,
                    len(self._store),
                )
            self._store.clear()
            self._version = version
        if key in self._store:
            self.hits += 1
            return self._store[key]
        self.misses += 1
        value = compute()
        self._store[key] = value
        return value

    def clear(self) -> None:
        self._store.clear()
        self._version = None

    def __len__(self) -> int:
        return len(self._store)
