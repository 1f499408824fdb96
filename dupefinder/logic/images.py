"""Product image pipeline: fetch, enhance, re-encode and upload.

Each enhancement stage is optional and falls back to the bytes it was given.
Only a failed fetch, undecodable bytes or a failed upload abort the pipeline,
and those come back as ``None`` rather than an exception.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable, Protocol

import httpx
from PIL import Image, UnidentifiedImageError

from dupefinder.errors import ImagePipelineError
from dupefinder.utils.concurrency import run_sync
from dupefinder.utils.retry import retry_async

logger = logging.getLogger(__name__)

KEY_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_-]")


class Upscaler(Protocol):
    async def upscale(self, image: bytes) -> bytes: ...


class Segmenter(Protocol):
    async def remove_background(self, image: bytes) -> bytes: ...


class Uploader(Protocol):
    async def upload(self, key: str, data: bytes, content_type: str) -> str: ...


@dataclass(slots=True)
class EncodedImage:
    data: bytes
    content_type: str
    extension: str


def sanitize_key(key: str) -> str:
    return KEY_UNSAFE_RE.sub("_", key)


def has_transparency(image: Image.Image) -> bool:
    if image.mode == "P":
        return "transparency" in image.info
    if image.mode in ("RGBA", "LA", "PA"):
        alpha_min, _ = image.getchannel("A").getextrema()
        return alpha_min < 255
    return False


def encode_image(data: bytes) -> EncodedImage:
    """PNG when the image has transparent pixels, JPEG otherwise.

    Raises ``ImagePipelineError`` when Pillow cannot decode ``data``.
    """
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ImagePipelineError("Undecodable image bytes") from exc
    output = BytesIO()
    if has_transparency(image):
        image.convert("RGBA").save(output, format="PNG", optimize=True)
        return EncodedImage(output.getvalue(), "image/png", "png")
    image.convert("RGB").save(output, format="JPEG", quality=90)
    return EncodedImage(output.getvalue(), "image/jpeg", "jpg")


class ImagePipeline:
    def __init__(
        self,
        storage: Uploader,
        *,
        upscaler: Upscaler | None = None,
        segmenter: Segmenter | None = None,
        attempts: int = 3,
        base_delay: float = 1.0,
        timeout: float = 30.0,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.storage = storage
        self.upscaler = upscaler
        self.segmenter = segmenter
        self.attempts = attempts
        self.base_delay = base_delay
        self.session = session or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def close(self) -> None:
        await self.session.aclose()

    async def process(self, source_url: str, destination_key: str) -> str | None:
        """Return the public URL of the processed image, or ``None``."""
        data = await self._fetch(source_url)
        if data is None:
            return None
        if self.upscaler is not None:
            data = await self._optional_stage("upscale", self.upscaler.upscale, data, source_url)
        if self.segmenter is not None:
            data = await self._optional_stage("background removal", self.segmenter.remove_background, data, source_url)
        try:
            encoded = await run_sync(encode_image, data)
        except ImagePipelineError as exc:
            logger.warning("Dropping image %s: %s", source_url, exc)
            return None
        key = f"{sanitize_key(destination_key)}.{encoded.extension}"
        try:
            return await self.storage.upload(key, encoded.data, encoded.content_type)
        except ImagePipelineError as exc:
            logger.error("Upload of %s failed: %s", key, exc)
            return None

    async def process_first(self, candidates: Iterable[str], destination_key: str) -> str | None:
        """Try each distinct candidate in order until one makes it through."""
        seen: set[str] = set()
        for url in candidates:
            if not url or url in seen:
                continue
            seen.add(url)
            public_url = await self.process(url, destination_key)
            if public_url:
                return public_url
        return None

    async def _fetch(self, url: str) -> bytes | None:
        async def get() -> httpx.Response:
            response = await self.session.get(url)
            response.raise_for_status()
            return response

        try:
            response = await retry_async(get, attempts=self.attempts, base_delay=self.base_delay)()
        except httpx.HTTPError as exc:
            logger.warning("Image fetch failed for %s: %s", url, exc)
            return None
        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            logger.warning("Skipping %s: content type %r is not an image", url, content_type)
            return None
        return response.content

    async def _optional_stage(self, name, stage, data: bytes, source_url: str) -> bytes:
        try:
            return await stage(data)
        except (httpx.HTTPError, ImagePipelineError, ValueError) as exc:
            logger.warning("Image %s failed for %s, keeping previous bytes: %s", name, source_url, exc)
            return data
