"""User reviews and rating summaries for an original and its top dupe."""

from __future__ import annotations

from dupefinder.clients.perplexity import PerplexityClient
from dupefinder.db.store import Store
from dupefinder.jobs.base import NamedProduct, PopulationJob
from dupefinder.schemas import JobPayload
from dupefinder.utils.concurrency import gather_isolated, run_sync


class ReviewsJob(PopulationJob):
    name = "reviews"
    flag = "loading_reviews"

    def __init__(self, store: Store, perplexity: PerplexityClient, **kwargs) -> None:
        super().__init__(store, **kwargs)
        self.perplexity = perplexity

    async def execute(self, payload: JobPayload) -> int:
        products = await self.named_products(payload, payload.top_product_ids())
        if not products:
            return 0
        batch = await self.perplexity.batch_reviews(
            [{"id": product.id, "name": product.name, "brand": product.brand} for product in products]
        )

        async def store_reviews(product: NamedProduct) -> bool:
            entry = batch.products.get(product.id)
            if entry is None:
                return False
            await run_sync(self.store.replace_reviews, product.id, entry.rating, entry.reviews)
            return True

        results = await gather_isolated(
            (store_reviews(product) for product in products), limit=self.fanout_limit, label="review persistence"
        )
        return sum(1 for result in results if result is True)
