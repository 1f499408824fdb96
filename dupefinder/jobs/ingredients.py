"""Key-ingredient population for an original and all of its dupes."""

from __future__ import annotations

import logging

from dupefinder.clients.perplexity import PerplexityClient
from dupefinder.db.store import Store
from dupefinder.jobs.base import NamedProduct, PopulationJob
from dupefinder.logic.resolvers import IngredientResolver
from dupefinder.schemas import JobPayload
from dupefinder.utils.concurrency import gather_isolated

logger = logging.getLogger(__name__)


class IngredientsJob(PopulationJob):
    name = "ingredients"
    flag = "loading_ingredients"

    def __init__(self, store: Store, perplexity: PerplexityClient, resolver: IngredientResolver, **kwargs) -> None:
        super().__init__(store, **kwargs)
        self.perplexity = perplexity
        self.resolver = resolver

    async def execute(self, payload: JobPayload) -> int:
        products = await self.named_products(payload, payload.product_ids())
        if not products:
            return 0
        batch = await self.perplexity.key_ingredients(
            [{"id": product.id, "name": product.name, "brand": product.brand} for product in products]
        )

        async def populate(product: NamedProduct) -> int:
            entry = batch.products.get(product.id)
            if entry is None or not entry.key_ingredients:
                logger.info("No key ingredients returned for %s", product.label())
                return 0
            return await self.resolver.link_key_ingredients(product.id, entry.key_ingredients, limit=self.fanout_limit)

        results = await gather_isolated(
            (populate(product) for product in products), limit=self.fanout_limit, label="ingredient population"
        )
        return sum(1 for result in results if isinstance(result, int) and result > 0)
