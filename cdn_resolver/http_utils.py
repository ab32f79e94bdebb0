from __future__ import annotations

import logging
from typing import Protocol

import httpx

from cdn_resolver.errors import ProbeHTTPError, ProbeNetworkError, ProbeTimeout
from cdn_resolver.models import HostInfo, ProbeResult
from cdn_resolver.paths import host_info_from_env, host_info_from_url
from cdn_resolver.time_utils import elapsed_ms, monotonic_ms, now_utc

LOGGER = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )
}
PROBE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


class EnvironmentPort(Protocol):
    """What the resolver needs from its runtime: probing and host information."""

    async def probe(self, url: str, timeout_s: float) -> ProbeResult: ...

    def get_host_info(self) -> HostInfo: ...


class HttpxEnvironment:
    """Environment port backed by an ``httpx.AsyncClient``.

    The client is created lazily and closed by ``aclose`` unless it was
    supplied by the caller.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        page_url: str | None = None,
        host_info: HostInfo | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._page_url = page_url
        self._host_info = host_info

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=25.0, headers=DEFAULT_HEADERS, follow_redirects=True)
        return self._client

    def get_host_info(self) -> HostInfo:
        if self._host_info is None:
            self._host_info = host_info_from_url(self._page_url) if self._page_url else host_info_from_env()
        return self._host_info

    async def probe(self, url: str, timeout_s: float) -> ProbeResult:
        """HEAD the URL; a 405 answer gets one GET retry.

        Raises ``ProbeTimeout``, ``ProbeNetworkError`` or ``ProbeHTTPError``.
        """

        started = monotonic_ms()
        try:
            response = await self.client.request("HEAD", url, headers=PROBE_HEADERS, timeout=timeout_s)
            if response.status_code == 405:
                LOGGER.debug("HEAD not allowed for %s, retrying with GET", url)
                response = await self.client.request("GET", url, headers=PROBE_HEADERS, timeout=timeout_s)
        except httpx.TimeoutException as exc:
            raise ProbeTimeout(f"{type(exc).__name__}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ProbeNetworkError(f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            raise ProbeHTTPError(response.status_code, response.reason_phrase)

        return ProbeResult(
            origin=url,
            available=True,
            response_time_ms=elapsed_ms(started),
            checked_at=now_utc(),
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
