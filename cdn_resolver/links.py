from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

from bs4 import BeautifulSoup

from cdn_resolver.errors import ResolverError

if TYPE_CHECKING:
    from cdn_resolver.resolver import ResourceResolver

LOGGER = logging.getLogger(__name__)

_PRELOAD_AS = {
    "jpg": "image",
    "jpeg": "image",
    "png": "image",
    "webp": "image",
    "gif": "image",
    "svg": "image",
    "css": "style",
    "js": "script",
    "woff": "font",
    "woff2": "font",
    "ttf": "font",
    "otf": "font",
}


@dataclass(frozen=True, slots=True)
class PreloadHint:
    href: str
    as_: str
    crossorigin: str | None = None

    def attrs(self) -> dict[str, str]:
        attrs = {"rel": "preload", "href": self.href, "as": self.as_}
        if self.crossorigin:
            attrs["crossorigin"] = self.crossorigin
        return attrs


def preload_kind(path: str) -> str:
    name = path.split("?", 1)[0].rsplit("/", 1)[-1].lower()
    ext = name.rsplit(".", 1)[-1] if "." in name else ""
    return _PRELOAD_AS.get(ext, "fetch")


def build_preload_hints(resolver: ResourceResolver, paths: Iterable[str], **resolve_kwargs: Any) -> list[PreloadHint]:
    hints: list[PreloadHint] = []
    for path in paths:
        try:
            url = resolver.resolve(path, **resolve_kwargs)
        except ResolverError as exc:
            LOGGER.warning("failed to preload %s: %s", path, exc)
            continue
        kind = preload_kind(path)
        crossorigin = "anonymous" if kind in {"font", "fetch"} else None
        hints.append(PreloadHint(href=url, as_=kind, crossorigin=crossorigin))
    return hints


def _head(soup: BeautifulSoup):
    head = soup.head
    if head is None:
        head = soup.new_tag("head")
        if soup.html is not None:
            soup.html.insert(0, head)
        else:
            soup.insert(0, head)
    return head


def inject_links(html: str, hints: Iterable[PreloadHint]) -> str:
    """Append ``<link rel="preload">`` tags to the document head, skipping hrefs already present."""

    soup = BeautifulSoup(html, "html.parser")
    head = _head(soup)
    existing = {link.get("href") for link in soup.find_all("link")}
    for hint in hints:
        if hint.href in existing:
            continue
        head.append(soup.new_tag("link", attrs=hint.attrs()))
        existing.add(hint.href)
    return str(soup)


def inject_stylesheet(html: str, url: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    head = _head(soup)
    for link in soup.find_all("link", rel="stylesheet"):
        if link.get("href") == url:
            return str(soup)
    head.append(soup.new_tag("link", attrs={"rel": "stylesheet", "href": url, "crossorigin": "anonymous"}))
    return str(soup)
