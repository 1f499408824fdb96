"""UPCItemDB product lookups."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dupefinder.schemas import ExternalProduct
from dupefinder.utils.retry import retry_async

logger = logging.getLogger(__name__)

BEAUTY_CATEGORY_WORDS = ("makeup", "cosmetic", "beauty")
MIN_MATCH_SCORE = 1


def score_item(item: dict[str, Any], brand: str, name: str) -> int:
    title = str(item.get("title") or "").lower()
    score = 0
    if brand and brand.lower() in title:
        score += 2
    for word in name.lower().split():
        if len(word) > 2 and word in title:
            score += 1
    category = str(item.get("category") or "").lower()
    if any(word in category for word in BEAUTY_CATEGORY_WORDS):
        score += 2
    return score


def find_closest_match(items: list[dict[str, Any]], brand: str, name: str) -> dict[str, Any] | None:
    """Pick the best scoring item; a lone result is accepted as is."""
    if not items:
        return None
    if len(items) == 1:
        return items[0]
    best = max(items, key=lambda item: score_item(item, brand, name))
    if score_item(best, brand, name) > MIN_MATCH_SCORE:
        return best
    return None


def to_external_product(item: dict[str, Any]) -> ExternalProduct:
    return ExternalProduct(
        name=item.get("title") or "",
        brand=item.get("brand") or "",
        upc=item.get("upc"),
        ean=item.get("ean"),
        description=item.get("description"),
        price=item.get("lowest_recorded_price"),
        highest_price=item.get("highest_recorded_price"),
        images=item.get("images") or [],
        offers=item.get("offers") or [],
        verified=True,
    )


class UPCItemDBClient:
    def __init__(
        self,
        *,
        endpoint: str = "https://api.upcitemdb.com/prod/trial",
        api_key: str | None = None,
        timeout: float = 30.0,
        attempts: int = 3,
        base_delay: float = 1.0,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.attempts = attempts
        self.base_delay = base_delay
        self.session = session or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self.session.aclose()

    async def search(self, name: str, brand: str) -> ExternalProduct:
        """Best external match for a product. Misses and errors come back unverified."""
        params = {"s": f"{brand} {name}".strip(), "match_mode": 0, "type": "product"}
        try:
            data = await self._get("/search", params)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("External lookup failed for %s %s: %s", brand, name, exc)
            return ExternalProduct.unverified(name, brand)
        item = find_closest_match(data.get("items") or [], brand, name)
        if item is None:
            logger.info("No external match for %s %s", brand, name)
            return ExternalProduct.unverified(name, brand)
        logger.info("External match for %s %s: %s", brand, name, item.get("title"))
        return to_external_product(item)

    async def lookup_upc(self, upc: str) -> ExternalProduct | None:
        try:
            data = await self._get("/lookup", {"upc": upc})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("UPC lookup failed for %s: %s", upc, exc)
            return None
        items = data.get("items") or []
        return to_external_product(items[0]) if items else None

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers.update({"user_key": self.api_key, "key_type": "3scale"})

        async def fetch() -> httpx.Response:
            response = await self.session.get(f"{self.endpoint}{path}", params=params, headers=headers)
            response.raise_for_status()
            return response

        response = await retry_async(fetch, attempts=self.attempts, base_delay=self.base_delay)()
        return response.json()
