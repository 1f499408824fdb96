"""Find-or-create resolution for brands and ingredients.

Both entities are keyed by their trimmed name and carry a unique slug. A miss
costs one enrichment call; concurrent first-time resolutions of the same name
converge on one row through insert-ignore followed by a re-select.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from pydantic import BaseModel
from sqlalchemy import Table

from dupefinder.db import tables
from dupefinder.db.store import Store
from dupefinder.errors import EnrichmentError, PersistenceError
from dupefinder.logic.slugs import keyed_slug, slugify
from dupefinder.schemas import BrandInfo, IngredientInfo
from dupefinder.utils.concurrency import gather_isolated, run_sync

logger = logging.getLogger(__name__)


class EntityResolver:
    table: Table
    entity: str = "entity"

    def __init__(self, store: Store, enrich: Callable[[str], Awaitable[BaseModel]] | None = None) -> None:
        self.store = store
        self.enrich = enrich

    def placeholder(self, name: str) -> BaseModel:
        raise NotImplementedError

    async def resolve(self, name: str) -> str:
        clean = (name or "").strip()
        if not clean:
            raise ValueError(f"{self.entity} name must not be empty")
        existing = await run_sync(self.store.find_entity_id, self.table, name=clean)
        if existing:
            return existing

        info = await self._describe(clean)
        slug = slugify(clean) or keyed_slug(self.entity, clean)
        values = {"name": clean, "slug": slug, **info.model_dump(exclude_none=True)}
        inserted = await run_sync(self.store.insert_entity, self.table, values)
        if inserted:
            logger.info("Created %s %s", self.entity, clean)

        resolved = await run_sync(self.store.find_entity_id, self.table, name=clean)
        if resolved is None:
            # Another spelling already owns the slug.
            resolved = await run_sync(self.store.find_entity_id, self.table, slug=slug)
        if resolved is None:
            raise PersistenceError(f"Could not resolve {self.entity}", context={"name": clean})
        return resolved

    async def _describe(self, name: str) -> BaseModel:
        if self.enrich is None:
            return self.placeholder(name)
        try:
            return await self.enrich(name)
        except EnrichmentError as exc:
            logger.warning("Enrichment failed for %s %s, using defaults: %s", self.entity, name, exc)
            return self.placeholder(name)


class BrandResolver(EntityResolver):
    table = tables.brands
    entity = "brand"

    def placeholder(self, name: str) -> BrandInfo:
        return BrandInfo.placeholder(name)


class IngredientResolver(EntityResolver):
    table = tables.ingredients
    entity = "ingredient"

    def placeholder(self, name: str) -> IngredientInfo:
        return IngredientInfo.placeholder(name)

    async def link_key_ingredients(self, product_id: str, names: list[str], *, limit: int = 8) -> int:
        """Resolve each name and link it to ``product_id``; returns how many links succeeded."""

        async def link(name: str) -> None:
            ingredient_id = await self.resolve(name)
            await run_sync(self.store.link_ingredient, product_id, ingredient_id, is_key=True)

        unique = dict.fromkeys(name.strip() for name in names if name and name.strip())
        results = await gather_isolated(
            (link(name) for name in unique), limit=limit, label=f"ingredient link for {product_id}"
        )
        return sum(1 for result in results if not isinstance(result, BaseException))
