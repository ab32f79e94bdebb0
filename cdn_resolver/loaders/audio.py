from __future__ import annotations

import logging

import httpx

LOGGER = logging.getLogger(__name__)

AUDIO_CONTENT_TYPES = ("audio/", "application/ogg")


class AudioLoader:
    """Load attempt for audio: reads only the first body chunk, never plays anything."""

    name = "audio"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client
        self.last_reason: str | None = None

    async def attempt_load(self, url: str) -> bool:
        try:
            async with self.client.stream("GET", url, follow_redirects=True) as resp:
                resp.raise_for_status()
                content_type = (resp.headers.get("content-type") or "").split(";")[0].strip().lower()
                if not content_type.startswith(AUDIO_CONTENT_TYPES):
                    return self._fail(url, "NOT_AUDIO", f"content_type={content_type or 'unknown'}")
                async for chunk in resp.aiter_bytes():
                    if chunk:
                        self.last_reason = "OK"
                        LOGGER.debug("audio reachable: %s", url)
                        return True
        except httpx.HTTPError as exc:
            return self._fail(url, "DOWNLOAD_FAIL", f"{type(exc).__name__}: {exc}")

        return self._fail(url, "EMPTY_BODY", "no audio data")

    def _fail(self, url: str, reason: str, detail: str) -> bool:
        self.last_reason = reason
        LOGGER.warning("audio load failed: %s %s (%s)", url, reason, detail)
        return False
