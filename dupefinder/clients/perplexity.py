"""Perplexity chat client for web-grounded product research."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from dupefinder.clients import load_prompts
from dupefinder.clients.jsontext import loads_object
from dupefinder.errors import EnrichmentError, IdentificationError, LLMResponseError
from dupefinder.schemas import (
    CoarseIdentification,
    DetailedAnalysis,
    IngredientBatch,
    ResourceBatch,
    ReviewBatch,
)
from dupefinder.utils.retry import retry_async

logger = logging.getLogger(__name__)

PERPLEXITY_ENDPOINT = "https://api.perplexity.ai/chat/completions"

ModelT = TypeVar("ModelT", bound=BaseModel)


class JSONRepairer(Protocol):
    async def repair_json(self, content: str, *, hint: str = "") -> dict[str, Any]: ...


class PerplexityClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "sonar-pro",
        repairer: JSONRepairer | None = None,
        timeout: float = 120.0,
        attempts: int = 3,
        base_delay: float = 1.0,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.repairer = repairer
        self.attempts = attempts
        self.base_delay = base_delay
        self.session = session or httpx.AsyncClient(timeout=timeout)
        self.prompts = load_prompts()

    async def close(self) -> None:
        await self.session.aclose()

    async def identify_dupes(self, search_text: str, *, max_dupes: int = 5) -> CoarseIdentification:
        """Name the product behind ``search_text`` and list candidate dupes.

        Anything short of a named, branded original raises
        :class:`IdentificationError`.
        """
        messages = self.prompts["identify_dupes"].messages(search_text=search_text, max_dupes=max_dupes)
        try:
            data = await self._complete_json(messages, max_tokens=2000, hint="product identification")
        except EnrichmentError as exc:
            raise IdentificationError("Could not identify product", context={"search": search_text}) from exc
        try:
            result = CoarseIdentification.model_validate(data)
        except ValidationError as exc:
            raise IdentificationError(
                "Product name or brand missing", context={"search": search_text}
            ) from exc
        result.dupes = result.dupes[:max_dupes]
        return result

    async def detailed_analysis(self, original: dict[str, Any], dupes: list[dict[str, Any]]) -> DetailedAnalysis:
        messages = self.prompts["detailed_analysis"].messages(
            original=json.dumps(original), dupes=json.dumps(dupes)
        )
        data = await self._complete_json(messages, max_tokens=8000, hint="detailed dupe analysis")
        return self._validate(DetailedAnalysis, data, "detailed analysis")

    async def batch_reviews(self, products: list[dict[str, Any]]) -> ReviewBatch:
        data = await self._batch("batch_reviews", products)
        return self._validate(ReviewBatch, data, "batch reviews")

    async def batch_resources(self, products: list[dict[str, Any]]) -> ResourceBatch:
        data = await self._batch("batch_resources", products)
        return self._validate(ResourceBatch, data, "batch resources")

    async def key_ingredients(self, products: list[dict[str, Any]]) -> IngredientBatch:
        data = await self._batch("key_ingredients", products)
        return self._validate(IngredientBatch, data, "key ingredients")

    async def _batch(self, prompt_name: str, products: list[dict[str, Any]]) -> dict[str, Any]:
        messages = self.prompts[prompt_name].messages(products=json.dumps(products, indent=2))
        return await self._complete_json(messages, max_tokens=4000, hint=prompt_name.replace("_", " "))

    def _validate(self, schema: type[ModelT], data: dict[str, Any], label: str) -> ModelT:
        try:
            return schema.model_validate(data)
        except ValidationError as exc:
            raise LLMResponseError(f"Perplexity {label} failed validation", context={"errors": exc.error_count()}) from exc

    async def _complete_json(self, messages: list[dict[str, str]], *, max_tokens: int, hint: str) -> dict[str, Any]:
        content = await self._chat(messages, max_tokens=max_tokens)
        try:
            return loads_object(content)
        except ValueError:
            logger.warning("Malformed JSON from Perplexity for %s; attempting repair", hint)
        if self.repairer is None:
            raise LLMResponseError("Perplexity returned invalid JSON", context={"hint": hint})
        try:
            return await self.repairer.repair_json(content, hint=hint)
        except EnrichmentError as exc:
            raise LLMResponseError("Perplexity JSON could not be repaired", context={"hint": hint}) from exc

    async def _chat(self, messages: list[dict[str, str]], *, max_tokens: int) -> str:
        if not self.api_key:
            raise EnrichmentError("PERPLEXITY_API_KEY is not configured")
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": 0.2,
            "top_p": 0.9,
            "stream": False,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        post = retry_async(self._post, attempts=self.attempts, base_delay=self.base_delay)
        try:
            data = await post(payload, headers)
            return data["choices"][0]["message"]["content"]
        except httpx.HTTPError as exc:
            raise EnrichmentError("Perplexity request failed", context={"error": str(exc)}) from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise LLMResponseError("Unexpected Perplexity response shape") from exc

    async def _post(self, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        response = await self.session.post(PERPLEXITY_ENDPOINT, json=payload, headers=headers)
        response.raise_for_status()
        return response.json()
