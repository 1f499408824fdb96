"""OpenAI chat client: entity enrichment, JSON repair and photo identification."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, TypeVar

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from dupefinder.clients import load_prompts
from dupefinder.clients.jsontext import loads_object
from dupefinder.errors import EnrichmentError, LLMResponseError
from dupefinder.schemas import BrandInfo, ImageIdentification, IngredientInfo
from dupefinder.utils.retry import retry_async

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class OpenAIClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "gpt-4o-mini",
        timeout: float = 120.0,
        attempts: int = 3,
        base_delay: float = 1.0,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.attempts = attempts
        self.base_delay = base_delay
        # Retries are ours; the SDK's own retry loop would multiply them.
        self.client = AsyncOpenAI(api_key=api_key or "missing", timeout=timeout, max_retries=0, http_client=session)
        self.prompts = load_prompts()

    async def close(self) -> None:
        await self.client.close()

    async def complete_json(self, messages: list[dict[str, Any]], *, max_tokens: int = 2000) -> dict[str, Any]:
        create = retry_async(self.client.chat.completions.create, attempts=self.attempts, base_delay=self.base_delay)
        try:
            response = await create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
                temperature=0.2,
                max_tokens=max_tokens,
            )
        except openai.APIError as exc:
            raise EnrichmentError("OpenAI request failed", context={"error": exc.__class__.__name__}) from exc
        content = response.choices[0].message.content or ""
        try:
            return loads_object(content)
        except ValueError as exc:
            raise LLMResponseError("OpenAI returned invalid JSON", context={"content": content[:200]}) from exc

    async def structured(self, prompt_name: str, schema: type[ModelT], **values: Any) -> ModelT:
        data = await self.complete_json(self.prompts[prompt_name].messages(**values))
        try:
            return schema.model_validate(data)
        except ValidationError as exc:
            raise LLMResponseError(f"{prompt_name} response failed validation", context={"errors": exc.error_count()}) from exc

    async def brand_info(self, name: str) -> BrandInfo:
        return await self.structured("brand_info", BrandInfo, name=name)

    async def ingredient_info(self, name: str) -> IngredientInfo:
        return await self.structured("ingredient_info", IngredientInfo, name=name)

    async def repair_json(self, content: str, *, hint: str = "") -> dict[str, Any]:
        """Ask the model to turn malformed JSON into a valid object."""
        messages = self.prompts["repair_json"].messages(content=content, hint=f" ({hint})" if hint else "")
        logger.info("Repairing malformed JSON (%s chars)", len(content))
        return await self.complete_json(messages, max_tokens=8000)

    async def identify_image(self, image: bytes, *, content_type: str = "image/jpeg") -> ImageIdentification:
        prompt = self.prompts["identify_image"]
        data_url = f"data:{content_type};base64,{base64.b64encode(image).decode()}"
        messages = [
            {"role": "system", "content": prompt.system.format()},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt.user.format()},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            },
        ]
        data = await self.complete_json(messages, max_tokens=500)
        try:
            return ImageIdentification.model_validate(data)
        except ValidationError as exc:
            raise LLMResponseError("Image identification failed validation", context={"data": json.dumps(data)[:200]}) from exc
