from __future__ import annotations

import pytest
from sqlalchemy import create_engine, text

from dupefinder.db.store import Store
from dupefinder.db.tables import metadata
from dupefinder.errors import EnrichmentError
from dupefinder.logic.analysis import DetailedAnalysisStage
from dupefinder.logic.orchestrator import ProductOrchestrator
from dupefinder.logic.reconcile import Reconciler
from dupefinder.logic.resolvers import BrandResolver, IngredientResolver
from dupefinder.schemas import (
    CoarseIdentification,
    DetailedAnalysis,
    ExternalProduct,
    IngredientBatch,
    ResourceBatch,
    ReviewBatch,
)


@pytest.fixture()
def engine(tmp_path):
    # File-backed so executor threads get their own connections.
    engine = create_engine(f"sqlite:///{tmp_path / 'dupes.db'}", connect_args={"timeout": 30})
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(engine):
    return Store(engine)


def count(engine, sql: str, **params) -> int:
    with engine.connect() as conn:
        return conn.execute(text(sql), params).scalar_one()


class FakePerplexity:
    """Scripted stand-in for PerplexityClient; records every call."""

    def __init__(
        self,
        identification: dict | Exception | None = None,
        analysis: dict | Exception | None = None,
        reviews: dict | Exception | None = None,
        resources: dict | Exception | None = None,
        ingredients: dict | Exception | None = None,
    ) -> None:
        self.identification = identification
        self.analysis = analysis
        self.reviews = reviews
        self.resources = resources
        self.ingredients = ingredients
        self.calls: list[tuple[str, object]] = []

    @staticmethod
    def _answer(value, schema):
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise EnrichmentError("no scripted answer")
        return schema.model_validate(value)

    async def identify_dupes(self, search_text, *, max_dupes=5):
        self.calls.append(("identify_dupes", search_text))
        return self._answer(self.identification, CoarseIdentification)

    async def detailed_analysis(self, original, dupes):
        self.calls.append(("detailed_analysis", (original, dupes)))
        value = self.analysis(original, dupes) if callable(self.analysis) else self.analysis
        return self._answer(value, DetailedAnalysis)

    async def batch_reviews(self, products):
        self.calls.append(("batch_reviews", products))
        value = self.reviews(products) if callable(self.reviews) else self.reviews
        return self._answer(value, ReviewBatch)

    async def batch_resources(self, products):
        self.calls.append(("batch_resources", products))
        value = self.resources(products) if callable(self.resources) else self.resources
        return self._answer(value, ResourceBatch)

    async def key_ingredients(self, products):
        self.calls.append(("key_ingredients", products))
        value = self.ingredients(products) if callable(self.ingredients) else self.ingredients
        return self._answer(value, IngredientBatch)


class FakeExternalDB:
    def __init__(self, matches: dict[str, dict] | None = None) -> None:
        self.matches = matches or {}
        self.calls: list[tuple[str, str]] = []

    async def search(self, name, brand):
        self.calls.append((name, brand))
        match = self.matches.get(name)
        if match is None:
            return ExternalProduct.unverified(name, brand)
        return ExternalProduct(name=name, brand=brand, verified=True, **match)

    async def lookup_upc(self, upc):
        self.calls.append(("upc", upc))
        return None


class FakeImages:
    def __init__(self, public_url: str | None = None) -> None:
        self.public_url = public_url
        self.calls: list[tuple[list[str], str]] = []

    async def process_first(self, candidates, destination_key):
        self.calls.append((list(candidates), destination_key))
        return f"{self.public_url}/{destination_key}.jpg" if self.public_url else None


class RecordingDispatcher:
    def __init__(self) -> None:
        self.payloads = []

    def dispatch(self, payload):
        self.payloads.append(payload)
        return True


async def no_enrichment(name):
    raise EnrichmentError("offline")


def build_orchestrator(
    store,
    perplexity,
    *,
    external_db=None,
    images=None,
    dispatcher=None,
    openai=None,
    name_fallback=False,
):
    external_db = external_db or FakeExternalDB()
    brands = BrandResolver(store, no_enrichment)
    ingredients = IngredientResolver(store, no_enrichment)
    analysis = DetailedAnalysisStage(
        store,
        perplexity,
        external_db,
        Reconciler(store, name_fallback=name_fallback),
        ingredients,
        images or FakeImages(),
    )
    return ProductOrchestrator(
        store, perplexity, openai, external_db, brands, analysis, dispatcher or RecordingDispatcher()
    )
