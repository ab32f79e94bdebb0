from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Loadable(Protocol):
    """A media type's single load-attempt primitive."""

    async def attempt_load(self, url: str) -> bool: ...
