"""Detailed comparative analysis of an original product and its placeholder dupes.

Covers external enrichment, the analysis call, reconciliation and detailed
persistence. The orchestrator runs it inline after placeholder persistence;
the ``/process-detailed-analysis`` endpoint runs it on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from dupefinder.clients.perplexity import PerplexityClient
from dupefinder.clients.upcitemdb import UPCItemDBClient
from dupefinder.db.store import ProductRef, Store
from dupefinder.errors import EnrichmentError
from dupefinder.logic.images import ImagePipeline
from dupefinder.logic.reconcile import ReconciliationResult, Reconciler
from dupefinder.logic.resolvers import IngredientResolver
from dupefinder.schemas import DetailedAnalysis, DupeAnalysis, ExternalProduct, ProductAnalysis
from dupefinder.utils.concurrency import gather_isolated, run_sync

logger = logging.getLogger(__name__)

DESCRIPTION_LIMIT = 300
PAYLOAD_IMAGE_LIMIT = 2

PRODUCT_COLUMNS = (
    "category",
    "price",
    "description",
    "attributes",
    "texture",
    "finish",
    "coverage",
    "spf",
    "skin_types",
    "country_of_origin",
    "longevity_rating",
    "oxidation_tendency",
    "free_of",
    "best_for",
    "cruelty_free",
    "vegan",
    "notes",
    "gtin",
    "asin",
    "model",
)
EDGE_COLUMNS = (
    "match_score",
    "color_match_score",
    "formula_match_score",
    "savings_percentage",
    "confidence_level",
    "dupe_type",
)


@dataclass(slots=True)
class ProductContext:
    id: str
    name: str
    brand: str
    slug: str
    external: ExternalProduct | None = None


@dataclass(slots=True)
class AnalysisOutcome:
    original: ProductContext
    dupes: list[ProductContext] = field(default_factory=list)
    analysis: DetailedAnalysis | None = None
    reconciliation: ReconciliationResult | None = None

    @property
    def succeeded(self) -> bool:
        return self.analysis is not None


def essential_payload(product: ProductContext) -> dict[str, Any]:
    """The fields the analysis call needs; everything else only costs tokens."""
    payload: dict[str, Any] = {"id": product.id, "name": product.name, "brand": product.brand}
    external = product.external
    if external is None or not external.verified:
        return payload
    payload.update(
        {
            "upc": external.upc,
            "ean": external.ean,
            "lowestPrice": external.price,
            "highestPrice": external.highest_price,
            "description": (external.description or "")[:DESCRIPTION_LIMIT] or None,
            "images": external.images[:PAYLOAD_IMAGE_LIMIT],
        }
    )
    return {key: value for key, value in payload.items() if value not in (None, [])}


def analysed_category(analysis: ProductAnalysis) -> str | None:
    """The category the analysis actually named; the model default is not an answer."""
    return analysis.category if "category" in analysis.model_fields_set else None


def product_values(
    analysis: ProductAnalysis, external: ExternalProduct | None, *, fallback_category: str | None = None
) -> dict[str, Any]:
    values = {
        column: getattr(analysis, column)
        for column in PRODUCT_COLUMNS
        if column != "category" and getattr(analysis, column) not in (None, [])
    }
    category = analysed_category(analysis) or fallback_category
    if category:
        values["category"] = category
    if isinstance(analysis, DupeAnalysis) and analysis.purchase_link:
        values["purchase_link"] = analysis.purchase_link
    if external is not None and external.verified:
        for column, value in (
            ("upc", external.upc),
            ("ean", external.ean),
            ("lowest_recorded_price", external.price),
            ("highest_recorded_price", external.highest_price),
        ):
            if value is not None:
                values[column] = value
        if "price" not in values and external.price is not None:
            values["price"] = external.price
    for column in ("ean", "upc", "lowest_recorded_price", "highest_recorded_price"):
        value = getattr(analysis, column)
        if value is not None:
            values.setdefault(column, value)
    return values


def edge_values(dupe: DupeAnalysis, original_price: float | None, external: ExternalProduct | None) -> dict[str, Any]:
    values = {column: getattr(dupe, column) for column in EDGE_COLUMNS}
    if values["savings_percentage"] is None and original_price and dupe.price is not None:
        values["savings_percentage"] = round((original_price - dupe.price) / original_price * 100, 1)
    values["verified"] = bool(external and external.verified)
    return values


class DetailedAnalysisStage:
    def __init__(
        self,
        store: Store,
        perplexity: PerplexityClient,
        external_db: UPCItemDBClient,
        reconciler: Reconciler,
        ingredients: IngredientResolver,
        images: ImagePipeline,
        *,
        fanout_limit: int = 8,
    ) -> None:
        self.store = store
        self.perplexity = perplexity
        self.external_db = external_db
        self.reconciler = reconciler
        self.ingredients = ingredients
        self.images = images
        self.fanout_limit = fanout_limit

    async def run(self, original: ProductRef) -> AnalysisOutcome:
        rows = await run_sync(self.store.list_dupes, original.id)
        outcome = AnalysisOutcome(
            original=ProductContext(original.id, original.name, original.brand, original.slug),
            dupes=[ProductContext(row["id"], row["name"], row["brand"], row["slug"]) for row in rows],
        )
        products = [outcome.original, *outcome.dupes]
        await self._enrich_external(products)

        try:
            analysis = await self.perplexity.detailed_analysis(
                essential_payload(outcome.original), [essential_payload(dupe) for dupe in outcome.dupes]
            )
        except EnrichmentError as exc:
            logger.error("Detailed analysis failed for %s; keeping placeholders: %s", original.id, exc)
            return outcome
        outcome.analysis = analysis

        outcome.reconciliation = await self.reconciler.reconcile(
            original.id, [dupe.id for dupe in outcome.dupes], analysis
        )
        confirmed = outcome.reconciliation.confirmed
        outcome.dupes = [dupe for dupe in outcome.dupes if dupe.id in confirmed]
        await self._persist(outcome)
        return outcome

    async def _enrich_external(self, products: list[ProductContext]) -> None:
        results = await gather_isolated(
            (self.external_db.search(product.name, product.brand) for product in products),
            limit=self.fanout_limit,
            label="external lookup",
        )
        for product, result in zip(products, results):
            product.external = (
                result if isinstance(result, ExternalProduct) else ExternalProduct.unverified(product.name, product.brand)
            )

    async def _persist(self, outcome: AnalysisOutcome) -> None:
        analysis = outcome.analysis
        original = outcome.original
        confirmed = outcome.reconciliation.confirmed

        original_values = product_values(analysis.original, original.external)
        if analysis.summary:
            original_values["summary"] = analysis.summary
        try:
            await run_sync(self.store.update_product, original.id, original_values)
        except SQLAlchemyError:
            logger.exception("Failed to store analysis of original %s", original.id)

        if analysis.resources:
            try:
                await run_sync(self.store.upsert_resources, original.id, analysis.resources)
            except SQLAlchemyError:
                logger.exception("Failed to store analysis resources for %s", original.id)

        original_price = original_values.get("price")
        original_category = analysed_category(analysis.original)
        await gather_isolated(
            (
                self._persist_dupe(original, dupe, confirmed[dupe.id], original_price, original_category)
                for dupe in outcome.dupes
            ),
            limit=self.fanout_limit,
            label="dupe persistence",
        )
        await self.ingredients.link_key_ingredients(original.id, analysis.original.key_ingredients, limit=self.fanout_limit)
        await self._persist_offers([original, *outcome.dupes])
        await self._process_images(outcome)

    async def _persist_dupe(
        self,
        original: ProductContext,
        dupe: ProductContext,
        entry: DupeAnalysis,
        original_price: float | None,
        original_category: str | None,
    ) -> None:
        values = product_values(entry, dupe.external, fallback_category=original_category)
        await run_sync(self.store.update_product, dupe.id, values)
        await run_sync(
            self.store.update_dupe_edge, original.id, dupe.id, edge_values(entry, original_price, dupe.external)
        )
        await self.ingredients.link_key_ingredients(dupe.id, entry.key_ingredients, limit=self.fanout_limit)

    async def _persist_offers(self, products: list[ProductContext]) -> None:
        async def save(product: ProductContext) -> None:
            await run_sync(self.store.save_offers, product.id, product.external.offers)

        await gather_isolated(
            (save(product) for product in products if product.external and product.external.verified and product.external.offers),
            limit=self.fanout_limit,
            label="offer persistence",
        )

    async def _process_images(self, outcome: AnalysisOutcome) -> None:
        analysis = outcome.analysis
        confirmed = outcome.reconciliation.confirmed
        targets = [(outcome.original, analysis.original)]
        targets.extend((dupe, confirmed[dupe.id]) for dupe in outcome.dupes)

        async def process(product: ProductContext, entry: ProductAnalysis) -> None:
            candidates = list(product.external.images if product.external else [])
            candidates.extend(entry.image_candidates())
            public_url = await self.images.process_first(candidates, product.slug)
            if public_url:
                await run_sync(self.store.update_product, product.id, {"image_url": public_url, "images": [public_url]})
            else:
                logger.info("No usable image for %s", product.id)

        await gather_isolated(
            (process(product, entry) for product, entry in targets),
            limit=self.fanout_limit,
            label="image processing",
        )
