"""Brand resolution for an original and all of its dupes."""

from __future__ import annotations

from dupefinder.db.store import Store
from dupefinder.jobs.base import NamedProduct, PopulationJob
from dupefinder.logic.resolvers import BrandResolver
from dupefinder.schemas import JobPayload
from dupefinder.utils.concurrency import gather_isolated, run_sync


class BrandsJob(PopulationJob):
    name = "brands"

    def __init__(self, store: Store, resolver: BrandResolver, **kwargs) -> None:
        super().__init__(store, **kwargs)
        self.resolver = resolver

    async def execute(self, payload: JobPayload) -> int:
        products = await self.named_products(payload, payload.product_ids())

        async def attach(product: NamedProduct) -> bool:
            if not product.brand.strip():
                return False
            brand_id = await self.resolver.resolve(product.brand)
            await run_sync(self.store.update_product, product.id, {"brand_id": brand_id})
            return True

        results = await gather_isolated(
            (attach(product) for product in products), limit=self.fanout_limit, label="brand attachment"
        )
        return sum(1 for result in results if result is True)
