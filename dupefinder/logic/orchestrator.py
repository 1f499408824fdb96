"""Resolve a search into an original product with persisted dupes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from dupefinder.clients.openai_client import OpenAIClient
from dupefinder.clients.perplexity import PerplexityClient
from dupefinder.clients.upcitemdb import UPCItemDBClient
from dupefinder.db.store import ProductRef, Store
from dupefinder.errors import EnrichmentError, IdentificationError
from dupefinder.logic.analysis import DetailedAnalysisStage
from dupefinder.logic.resolvers import BrandResolver
from dupefinder.logic.slugs import product_slug
from dupefinder.schemas import CandidateDupe, CoarseIdentification, DupeInfo, ImageIdentification, JobPayload
from dupefinder.utils.concurrency import gather_isolated, run_sync

logger = logging.getLogger(__name__)


class JobDispatcher(Protocol):
    def dispatch(self, payload: JobPayload) -> bool: ...


@dataclass(slots=True)
class SearchResult:
    name: str
    brand: str
    slug: str
    cached: bool = False

    def envelope(self) -> dict[str, Any]:
        return {"success": True, "data": {"name": self.name, "brand": self.brand, "slug": self.slug}}

    @classmethod
    def from_ref(cls, ref: ProductRef, *, cached: bool = False) -> "SearchResult":
        return cls(name=ref.name, brand=ref.brand, slug=ref.slug, cached=cached)


class ProductOrchestrator:
    def __init__(
        self,
        store: Store,
        perplexity: PerplexityClient,
        openai: OpenAIClient,
        external_db: UPCItemDBClient,
        brands: BrandResolver,
        analysis: DetailedAnalysisStage,
        dispatcher: JobDispatcher | None = None,
        *,
        max_dupes: int = 5,
        fanout_limit: int = 8,
    ) -> None:
        self.store = store
        self.perplexity = perplexity
        self.openai = openai
        self.external_db = external_db
        self.brands = brands
        self.analysis = analysis
        self.dispatcher = dispatcher
        self.max_dupes = max_dupes
        self.fanout_limit = fanout_limit

    async def search(self, search_text: str) -> SearchResult:
        query = (search_text or "").strip()
        if not query:
            raise IdentificationError("Search text must not be empty")

        existing = await run_sync(self.store.find_existing_product, query)
        if existing:
            logger.info("Cache hit for %r: %s", query, existing.slug)
            return SearchResult.from_ref(existing, cached=True)

        identification = await self.perplexity.identify_dupes(query, max_dupes=self.max_dupes)
        slug = product_slug(identification.original_brand, identification.original_name)
        existing = await run_sync(self.store.get_product_by_slug, slug)
        if existing:
            logger.info("Identified %r as existing product %s", query, slug)
            return SearchResult.from_ref(existing, cached=True)

        original = await self._persist_placeholders(identification, slug)
        try:
            await self.analysis.run(original)
            queued = await self._dispatch_jobs(original)
        except Exception:
            await self._clear_loading(original)
            raise
        if not queued:
            await self._clear_loading(original)
        return SearchResult.from_ref(original)

    async def search_image(self, image: bytes, *, content_type: str = "image/jpeg") -> SearchResult:
        identification = await self.identify_image(image, content_type=content_type)
        search_text = identification.search_text()
        if identification.barcode:
            external = await self.external_db.lookup_upc(identification.barcode)
            if external is not None and external.name:
                search_text = f"{external.brand} {external.name}".strip()
        if not search_text:
            raise IdentificationError("No product recognised in image")
        return await self.search(search_text)

    async def identify_image(self, image: bytes, *, content_type: str = "image/jpeg") -> ImageIdentification:
        try:
            return await self.openai.identify_image(image, content_type=content_type)
        except EnrichmentError as exc:
            raise IdentificationError("Could not identify product in image") from exc

    async def _persist_placeholders(self, identification: CoarseIdentification, slug: str) -> ProductRef:
        original_id = await run_sync(
            self.store.create_product,
            {
                "slug": slug,
                "name": identification.original_name,
                "brand": identification.original_brand,
                "category": identification.original_category,
                "loading_ingredients": True,
                "loading_reviews": True,
                "loading_resources": True,
            },
        )
        original = ProductRef(original_id, identification.original_name, identification.original_brand, slug)
        logger.info("Created original %s (%s)", slug, original_id)

        dupes = [dupe for dupe in identification.dupes if product_slug(dupe.brand, dupe.name) != slug]
        results = await gather_isolated(
            (self._persist_dupe(original, dupe, identification.original_category) for dupe in dupes),
            limit=self.fanout_limit,
            label="placeholder dupe",
        )
        created = sum(1 for result in results if isinstance(result, str))
        logger.info("Stored %s of %s placeholder dupes for %s", created, len(dupes), slug)

        brand_names = {identification.original_brand: [original_id]}
        for dupe, result in zip(dupes, results):
            if isinstance(result, str):
                brand_names.setdefault(dupe.brand, []).append(result)
        await gather_isolated(
            (self._attach_brand(name, ids) for name, ids in brand_names.items()),
            limit=self.fanout_limit,
            label="brand resolution",
        )
        return original

    async def _persist_dupe(self, original: ProductRef, dupe: CandidateDupe, category: str) -> str:
        dupe_id = await run_sync(
            self.store.create_product,
            {
                "slug": product_slug(dupe.brand, dupe.name),
                "name": dupe.name,
                "brand": dupe.brand,
                "category": category,
            },
        )
        await run_sync(self.store.create_dupe_edge, original.id, dupe_id, match_score=dupe.match_score, savings=0)
        return dupe_id

    async def _attach_brand(self, brand_name: str, product_ids: list[str]) -> None:
        brand_id = await self.brands.resolve(brand_name)
        for product_id in product_ids:
            await run_sync(self.store.update_product, product_id, {"brand_id": brand_id})

    async def _dispatch_jobs(self, original: ProductRef) -> bool:
        """Queue the population jobs; False when nothing will clear the loading flags."""
        if self.dispatcher is None:
            return False
        # Ranked after the detailed analysis rewrote the match scores.
        rows = await run_sync(self.store.list_dupes, original.id)
        payload = JobPayload(
            original_product_id=original.id,
            dupe_product_ids=[row["id"] for row in rows],
            original_name=original.name,
            original_brand=original.brand,
            dupe_info=[DupeInfo(name=row["name"], brand=row["brand"]) for row in rows],
        )
        try:
            return bool(self.dispatcher.dispatch(payload))
        except Exception:
            logger.exception("Failed to dispatch background jobs for %s", original.id)
            return False

    async def _clear_loading(self, original: ProductRef) -> None:
        try:
            dupe_ids = await run_sync(self.store.dupe_ids, original.id)
            await run_sync(self.store.clear_loading_flags, [original.id, *dupe_ids])
        except Exception:
            logger.exception("Failed to clear loading flags for %s", original.id)
        else:
            logger.info("Cleared loading flags for %s; no background jobs queued", original.id)
