from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

import httpx

from cdn_resolver.errors import ConfigError, ResolverError
from cdn_resolver.links import inject_stylesheet

if TYPE_CHECKING:
    from cdn_resolver.resolver import ResourceResolver

LOGGER = logging.getLogger(__name__)


class FontType(str, Enum):
    ANCIENT_CHINESE = "ancient_chinese"
    MODERN_CHINESE = "modern_chinese"
    ENGLISH = "english"
    MIXED = "mixed"


# Mirror keys in the order they are tried.
MIRROR_ORDER = ("loli", "jsdelivr", "unpkg", "google_fonts")
_ENTRY_KEYS = {"name", "display_name", "font_family", "fallbacks", "stylesheet", "mirrors"}


@dataclass(frozen=True)
class FontEntry:
    name: str
    font_family: str
    display_name: str = ""
    fallbacks: tuple[str, ...] = ()
    # Logical path of the local stylesheet, resolved through the resource resolver.
    stylesheet: str | None = None
    mirrors: tuple[str, ...] = field(default_factory=tuple)

    def css_family(self) -> str:
        names = [f'"{self.font_family}"']
        names.extend(f'"{f}"' if " " in f else f for f in self.fallbacks)
        return ", ".join(names)


DEFAULT_FONT_CATALOG: dict[str, list[dict[str, Any]]] = {
    "ancient_chinese": [
        {
            "name": "kangxi",
            "display_name": "康熙字典体",
            "font_family": "Noto Serif SC",
            "fallbacks": ["STKaiti", "KaiTi", "SimKai", "FangSong", "serif"],
            "stylesheet": "fonts/kangxi.css",
            "mirrors": {
                "loli": "https://fonts.loli.net/css2?family=Noto+Serif+SC:wght@400;500;600;700&display=swap",
                "google_fonts": "https://fonts.googleapis.com/css2?family=Noto+Serif+SC:wght@400;500;600;700&display=swap",
            },
        },
        {
            "name": "hanyi_shangwei",
            "display_name": "汉仪尚巍手书",
            "font_family": "HYShangWeiShouShuW",
            "fallbacks": ["Ma Shan Zheng", "STKaiti", "KaiTi", "serif"],
            "stylesheet": "fonts/hanyi-shangwei.css",
            "mirrors": {
                "loli": "https://fonts.loli.net/css2?family=Ma+Shan+Zheng:wght@400&display=swap",
                "jsdelivr": "https://cdn.jsdelivr.net/npm/@fontsource/ma-shan-zheng@4.5.0/index.css",
                "unpkg": "https://unpkg.com/@fontsource/ma-shan-zheng@4.5.0/index.css",
                "google_fonts": "https://fonts.googleapis.com/css2?family=Ma+Shan+Zheng:wght@400&display=swap",
            },
        },
    ],
    "modern_chinese": [
        {
            "name": "noto_sans_sc",
            "display_name": "思源黑体",
            "font_family": "Noto Sans SC",
            "fallbacks": ["PingFang SC", "Microsoft YaHei", "SimHei", "sans-serif"],
            "stylesheet": "fonts/modern-sans.css",
            "mirrors": {
                "loli": "https://fonts.loli.net/css2?family=Noto+Sans+SC:wght@300;400;500;700&display=swap",
                "google_fonts": "https://fonts.googleapis.com/css2?family=Noto+Sans+SC:wght@300;400;500;700&display=swap",
            },
        },
    ],
    "english": [
        {"name": "georgia", "display_name": "Georgia", "font_family": "Georgia", "fallbacks": ["Times New Roman", "serif"]},
        {"name": "arial", "display_name": "Arial", "font_family": "Arial", "fallbacks": ["Helvetica", "sans-serif"]},
    ],
}


def _build_entry(font_type: FontType, raw: Mapping[str, Any]) -> FontEntry:
    unknown = sorted(set(raw) - _ENTRY_KEYS)
    if unknown:
        raise ConfigError(f"unknown font field(s) in {font_type.value!r}: {', '.join(unknown)}")
    if not raw.get("name") or not raw.get("font_family"):
        raise ConfigError(f"font entries in {font_type.value!r} need 'name' and 'font_family'")

    mirrors_raw = raw.get("mirrors") or {}
    bad = sorted(set(mirrors_raw) - set(MIRROR_ORDER) - {"custom"})
    if bad:
        raise ConfigError(f"unknown font mirror(s) for {raw['name']!r}: {', '.join(bad)}")
    mirrors = [mirrors_raw[key] for key in MIRROR_ORDER if mirrors_raw.get(key)]
    mirrors.extend(mirrors_raw.get("custom") or [])

    return FontEntry(
        name=raw["name"],
        font_family=raw["font_family"],
        display_name=raw.get("display_name", ""),
        fallbacks=tuple(raw.get("fallbacks") or ()),
        stylesheet=raw.get("stylesheet"),
        mirrors=tuple(mirrors),
    )


def build_font_catalog(raw: Mapping[str, list[Mapping[str, Any]]] | None = None) -> dict[FontType, tuple[FontEntry, ...]]:
    """Build the ``FontType``-keyed catalog; unknown types or fields raise ``ConfigError``."""

    source = DEFAULT_FONT_CATALOG if raw is None else raw
    catalog: dict[FontType, tuple[FontEntry, ...]] = {font_type: () for font_type in FontType}
    for key, entries in source.items():
        try:
            font_type = FontType(key)
        except ValueError as exc:
            raise ConfigError(f"unknown font type: {key!r}") from exc
        catalog[font_type] = tuple(_build_entry(font_type, entry) for entry in entries)
    return catalog


def find_font(
    catalog: Mapping[FontType, tuple[FontEntry, ...]],
    name: str,
    font_type: FontType | None = None,
) -> FontEntry | None:
    types = [font_type] if font_type is not None else list(FontType)
    for ft in types:
        for entry in catalog.get(ft, ()):
            if entry.name == name:
                return entry
    return None


class FontStylesheetLoader:
    """Load attempt for font stylesheets: 2xx, ``text/css``, and actual font rules."""

    name = "font"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client
        self.last_reason: str | None = None
        self.failed_urls: set[str] = set()
        self.loaded: dict[str, str] = {}

    async def attempt_load(self, url: str) -> bool:
        try:
            resp = await self.client.get(url, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            return self._fail(url, "DOWNLOAD_FAIL", f"{type(exc).__name__}: {exc}")

        content_type = (resp.headers.get("content-type") or "").split(";")[0].strip().lower()
        if content_type != "text/css":
            return self._fail(url, "NOT_CSS", f"content_type={content_type or 'unknown'}")
        body = resp.text
        if "@font-face" not in body and "@import" not in body:
            return self._fail(url, "NO_FONT_RULES", f"{len(body)} bytes without @font-face")

        self.last_reason = "OK"
        return True

    async def load_font(self, entry: FontEntry, resolver: ResourceResolver | None) -> str | None:
        """Return the stylesheet URL that loaded, or ``None`` for system-font fallback.

        Font-specific mirrors are tried first (skipping ones that already failed),
        then the resolver's URL for the entry's stylesheet, recovered through the
        shared retry policy when it fails.
        """

        if entry.name in self.loaded:
            return self.loaded[entry.name]

        for i, url in enumerate(entry.mirrors, start=1):
            if url in self.failed_urls:
                LOGGER.debug("skipping known failed font source: %s", url)
                continue
            LOGGER.info("font %r: trying source %d/%d: %s", entry.name, i, len(entry.mirrors), url)
            if await self.attempt_load(url):
                self.loaded[entry.name] = url
                return url
            self.failed_urls.add(url)

        if not entry.stylesheet or resolver is None:
            LOGGER.warning("font %r unavailable from %d source(s), using system fonts", entry.name, len(entry.mirrors))
            return None

        try:
            url = resolver.resolve(entry.stylesheet)
        except ResolverError as exc:
            LOGGER.warning("font %r: %s", entry.name, exc)
            return None

        if await self.attempt_load(url):
            self.loaded[entry.name] = url
            return url

        outcome = await resolver.recover(entry.stylesheet, self, failed_url=url)
        if outcome.ok:
            self.loaded[entry.name] = outcome.url
            return outcome.url
        LOGGER.warning("font %r unavailable, using system fonts", entry.name)
        return None

    def inject(self, html: str, entry: FontEntry) -> str:
        url = self.loaded.get(entry.name)
        if url is None:
            return html
        return inject_stylesheet(html, url)

    def _fail(self, url: str, reason: str, detail: str) -> bool:
        self.last_reason = reason
        LOGGER.warning("font stylesheet load failed: %s %s (%s)", url, reason, detail)
        return False
