from __future__ import annotations

import re
from typing import Iterable

_ABSOLUTE_URL = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_PASS_THROUGH_SCHEMES = ("data:", "blob:")


def is_absolute_url(value: str) -> bool:
    return bool(_ABSOLUTE_URL.match(value))


def is_pass_through(value: str) -> bool:
    return value.startswith(_PASS_THROUGH_SCHEMES)


def join_origin(base: str, path: str) -> str:
    """Join a base and a resource path with exactly one separating slash."""

    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def normalize_logical_path(path: str) -> str:
    """Collapse slashes and resolve ``.``/``..`` segments; query and fragment are kept as-is.

    >>> normalize_logical_path("/img//./a/../x.png?v=2")
    'img/x.png?v=2'
    """

    cut = len(path)
    for marker in ("?", "#"):
        pos = path.find(marker)
        if pos != -1:
            cut = min(cut, pos)
    head, suffix = path[:cut], path[cut:]

    segments: list[str] = []
    for segment in head.split("/"):
        if segment in {"", "."}:
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return "/".join(segments) + suffix


def strip_known_prefix(value: str, prefixes: Iterable[str]) -> str | None:
    """Return ``value`` relative to the first matching prefix, or ``None``."""

    for prefix in prefixes:
        if not prefix:
            continue
        bare = prefix.rstrip("/")
        if not bare:
            continue
        if value == bare:
            return ""
        if value.startswith(bare + "/"):
            return value[len(bare) + 1 :]
    return None
