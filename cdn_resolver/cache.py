from __future__ import annotations

import logging
from typing import Callable

from cdn_resolver.models import ResolvedURLEntry
from cdn_resolver.time_utils import now_utc

LOGGER = logging.getLogger(__name__)


class ResolverCache:
    """Logical path -> resolved URL memo, plus the memoized project base path.

    Entries are tagged with the generation they were built under. Bumping the
    generation invalidates every entry at once; stale entries are ignored on
    read and overwritten on the next store.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ResolvedURLEntry] = {}
        self._generation = 0
        self._base_path: str | None = None

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, logical_path: str) -> str | None:
        entry = self._entries.get(logical_path)
        if entry is None or entry.generation != self._generation:
            return None
        return entry.url

    def store(self, logical_path: str, url: str) -> ResolvedURLEntry:
        entry = ResolvedURLEntry(
            logical_path=logical_path,
            url=url,
            built_at=now_utc(),
            generation=self._generation,
        )
        self._entries[logical_path] = entry
        return entry

    def discard(self, logical_path: str) -> None:
        self._entries.pop(logical_path, None)

    def invalidate(self) -> int:
        self._generation += 1
        LOGGER.debug("cache generation -> %d", self._generation)
        return self._generation

    def clear(self) -> None:
        self._entries = {}
        self.invalidate()

    def project_base_path(self, compute: Callable[[], str]) -> str:
        if self._base_path is None:
            self._base_path = compute()
            LOGGER.debug("project base path: %r", self._base_path)
        return self._base_path

    def reset_base_path(self) -> None:
        self._base_path = None

    def stats(self) -> dict[str, object]:
        live = sorted(path for path, entry in self._entries.items() if entry.generation == self._generation)
        return {"size": len(live), "keys": live, "generation": self._generation}
