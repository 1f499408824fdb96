"""Image enhancement services: GetImg upscaling and Hugging Face background removal."""

from __future__ import annotations

import base64
import logging

import httpx

from dupefinder.errors import ImagePipelineError
from dupefinder.utils.retry import retry_async

logger = logging.getLogger(__name__)

GETIMG_BASE_URL = "https://api.getimg.ai/v1"
HF_RMBG_URL = "https://api-inference.huggingface.co/models/briaai/RMBG-1.4"


class GetImgUpscaler:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = GETIMG_BASE_URL,
        scale: int = 4,
        attempts: int = 3,
        base_delay: float = 1.0,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.scale = scale
        self.attempts = attempts
        self.base_delay = base_delay
        self.session = session or httpx.AsyncClient(timeout=120.0)

    async def close(self) -> None:
        await self.session.aclose()

    async def upscale(self, image: bytes) -> bytes:
        payload = {
            "model": "real-esrgan-4x",
            "image": base64.b64encode(image).decode(),
            "scale": self.scale,
            "output_format": "jpeg",
            "response_format": "b64",
        }

        async def post() -> httpx.Response:
            response = await self.session.post(
                f"{self.base_url}/upscale", json=payload, headers={"Authorization": f"Bearer {self.api_key}"}
            )
            response.raise_for_status()
            return response

        response = await retry_async(post, attempts=self.attempts, base_delay=self.base_delay)()
        images = response.json().get("images") or []
        if not images or not images[0].get("b64"):
            raise ImagePipelineError("GetImg returned no image")
        return base64.b64decode(images[0]["b64"])


class HuggingFaceSegmenter:
    def __init__(
        self,
        api_key: str,
        *,
        url: str = HF_RMBG_URL,
        attempts: int = 3,
        base_delay: float = 1.0,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.attempts = attempts
        self.base_delay = base_delay
        self.session = session or httpx.AsyncClient(timeout=120.0)

    async def close(self) -> None:
        await self.session.aclose()

    async def remove_background(self, image: bytes) -> bytes:
        async def post() -> httpx.Response:
            response = await self.session.post(
                self.url,
                content=image,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/octet-stream"},
            )
            response.raise_for_status()
            return response

        response = await retry_async(post, attempts=self.attempts, base_delay=self.base_delay)()
        if not response.headers.get("content-type", "").startswith("image/"):
            raise ImagePipelineError(
                "Background removal returned a non-image payload",
                context={"content_type": response.headers.get("content-type")},
            )
        return response.content
