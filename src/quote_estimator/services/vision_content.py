"""Bounded image inlining for multimodal estimator requests.

Images are fetched concurrently, each under its own deadline and byte cap.
A failed fetch never fails the build: the original URL is emitted instead.
"""

import asyncio
import base64
from collections.abc import Sequence
from typing import Final

import httpx
from beartype import beartype

from ..core.config import Settings
from ..core.logging_utils import get_logger
from ..models.estimate import VisionContentItem
from ..models.quote import QuoteImage

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE: Final = "application/octet-stream"

_EXTENSION_CONTENT_TYPES: Final = (
    (".png", "image/png"),
    (".webp", "image/webp"),
    (".gif", "image/gif"),
    (".jpg", "image/jpeg"),
    (".jpeg", "image/jpeg"),
)


class ImageFetchError(Exception):
    """An image could not be inlined."""


@beartype
def guess_content_type(url: str) -> str:
    """Content type from the URL's file extension."""
    path = url.lower().split("?", 1)[0].split("#", 1)[0]
    for extension, content_type in _EXTENSION_CONTENT_TYPES:
        if path.endswith(extension):
            return content_type
    return DEFAULT_CONTENT_TYPE


@beartype
def to_data_url(payload: bytes, content_type: str) -> str:
    """Encode bytes as an inline ``data:`` URL."""
    return f"data:{content_type};base64,{base64.b64encode(payload).decode('ascii')}"


class VisionContentBuilder:
    """Turn a quote's image list into chat content parts."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize builder; ``client`` is injectable for tests."""
        self._max_images = settings.vision_max_images
        self._timeout = settings.image_fetch_timeout_seconds
        self._max_bytes = settings.image_max_bytes
        self._client = client

    @beartype
    async def build(self, images: Sequence[QuoteImage]) -> list[VisionContentItem]:
        """Inline up to the configured number of images, preserving order."""
        picked = [image.url for image in images if image.url][: self._max_images]
        if not picked:
            return []

        if self._client is not None:
            return await self._build_with(self._client, picked)

        async with httpx.AsyncClient(
            follow_redirects=True, timeout=httpx.Timeout(self._timeout)
        ) as client:
            return await self._build_with(client, picked)

    async def _build_with(
        self, client: httpx.AsyncClient, urls: list[str]
    ) -> list[VisionContentItem]:
        items = await asyncio.gather(*(self._content_item(client, url) for url in urls))
        inlined = sum(1 for item in items if item.inlined)
        logger.info("Vision content: %d/%d images inlined", inlined, len(items))
        return list(items)

    async def _content_item(
        self, client: httpx.AsyncClient, url: str
    ) -> VisionContentItem:
        if url.startswith("data:"):
            return VisionContentItem(url=url, inlined=True)

        try:
            data_url = await asyncio.wait_for(
                self._fetch_data_url(client, url), timeout=self._timeout
            )
        except Exception as e:
            # Any fetch failure, including malformed hosts, degrades to the URL.
            logger.warning(
                "Image inline failed, falling back to URL reference: %s (%s)",
                url,
                str(e) or type(e).__name__,
            )
            return VisionContentItem(url=url, inlined=False)

        return VisionContentItem(url=data_url, inlined=True)

    async def _fetch_data_url(self, client: httpx.AsyncClient, url: str) -> str:
        async with client.stream(
            "GET", url, timeout=httpx.Timeout(self._timeout)
        ) as response:
            if not response.is_success:
                raise ImageFetchError(f"HTTP {response.status_code}")

            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > self._max_bytes:
                raise ImageFetchError(f"Image too large: {declared} bytes")

            payload = bytearray()
            async for chunk in response.aiter_bytes():
                payload.extend(chunk)
                if len(payload) > self._max_bytes:
                    raise ImageFetchError(
                        f"Image too large: more than {self._max_bytes} bytes"
                    )

            header_type = response.headers.get("content-type", "").split(";", 1)[0].strip()

        return to_data_url(bytes(payload), header_type or guess_content_type(url))
