from __future__ import annotations

import logging
from io import BytesIO

import httpx
from PIL import Image

LOGGER = logging.getLogger(__name__)


class ImageLoader:
    """Load attempt for images: 2xx, ``image/*`` content type, decodable body."""

    name = "image"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client
        self.last_reason: str | None = None
        self.last_size: tuple[int, int] | None = None

    async def attempt_load(self, url: str) -> bool:
        try:
            resp = await self.client.get(url, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            return self._fail(url, "DOWNLOAD_FAIL", f"{type(exc).__name__}: {exc}")

        content_type = (resp.headers.get("content-type") or "").split(";")[0].strip().lower()
        if not content_type.startswith("image/"):
            return self._fail(url, "NOT_IMAGE", f"content_type={content_type or 'unknown'}")

        # SVG is text; Pillow cannot decode it, the content type is enough.
        if content_type == "image/svg+xml":
            return self._ok(url, None)

        try:
            with Image.open(BytesIO(resp.content)) as img:
                size = img.size
                img.verify()
        except Exception as exc:  # noqa: BLE001
            return self._fail(url, "IMAGE_DECODE_FAIL", f"{type(exc).__name__}: {exc}")

        return self._ok(url, size)

    def _ok(self, url: str, size: tuple[int, int] | None) -> bool:
        self.last_reason = "OK"
        self.last_size = size
        LOGGER.debug("image loaded: %s %s", url, size or "")
        return True

    def _fail(self, url: str, reason: str, detail: str) -> bool:
        self.last_reason = reason
        LOGGER.warning("image load failed: %s %s (%s)", url, reason, detail)
        return False
