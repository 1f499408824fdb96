"""Explicit construction of every long-lived collaborator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx
from sqlalchemy.engine import Engine

from dupefinder.clients.imaging import GetImgUpscaler, HuggingFaceSegmenter
from dupefinder.clients.openai_client import OpenAIClient
from dupefinder.clients.perplexity import PerplexityClient
from dupefinder.clients.storage import ObjectStorage
from dupefinder.clients.upcitemdb import UPCItemDBClient
from dupefinder.config import Settings
from dupefinder.db.session import create_engine_from_settings
from dupefinder.db.store import Store
from dupefinder.jobs.base import PopulationJob
from dupefinder.jobs.brands import BrandsJob
from dupefinder.jobs.dispatch import make_dispatcher
from dupefinder.jobs.ingredients import IngredientsJob
from dupefinder.jobs.resources import ResourcesJob
from dupefinder.jobs.reviews import ReviewsJob
from dupefinder.logic.analysis import DetailedAnalysisStage
from dupefinder.logic.images import ImagePipeline
from dupefinder.logic.orchestrator import ProductOrchestrator
from dupefinder.logic.reconcile import Reconciler
from dupefinder.logic.resolvers import BrandResolver, IngredientResolver

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    settings: Settings
    engine: Engine
    store: Store
    perplexity: PerplexityClient
    openai: OpenAIClient
    external_db: UPCItemDBClient
    images: ImagePipeline
    brands: BrandResolver
    ingredients: IngredientResolver
    analysis: DetailedAnalysisStage
    orchestrator: ProductOrchestrator
    jobs: dict[str, PopulationJob]
    dispatcher: object
    sessions: list[httpx.AsyncClient] = field(default_factory=list)
    owns_engine: bool = True

    async def aclose(self) -> None:
        drain = getattr(self.dispatcher, "drain", None)
        if drain is not None:
            await drain()
        await self.openai.close()
        for session in self.sessions:
            await session.aclose()
        if self.owns_engine:
            self.engine.dispose()


def build_services(
    settings: Settings,
    *,
    engine: Engine | None = None,
    storage: ObjectStorage | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Wire the object graph once per process.

    ``http_transport`` replaces the network for every httpx-based client,
    which is how tests route calls through respx.
    """
    owns_engine = engine is None
    engine = engine or create_engine_from_settings(settings)
    store = Store(engine)
    retry = {"attempts": settings.retry_attempts, "base_delay": settings.retry_base_delay}

    http = httpx.AsyncClient(timeout=settings.http_timeout, follow_redirects=True, transport=http_transport)
    llm_http = httpx.AsyncClient(timeout=settings.llm_timeout, transport=http_transport)

    openai = OpenAIClient(
        settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.llm_timeout,
        session=httpx.AsyncClient(timeout=settings.llm_timeout, transport=http_transport) if http_transport else None,
        **retry,
    )
    perplexity = PerplexityClient(
        settings.perplexity_api_key,
        model=settings.perplexity_model,
        repairer=openai,
        session=llm_http,
        **retry,
    )
    external_db = UPCItemDBClient(
        endpoint=settings.upcitemdb_endpoint, api_key=settings.upcitemdb_api_key, session=http, **retry
    )
    storage = storage or ObjectStorage(
        settings.storage_bucket,
        endpoint=settings.storage_endpoint,
        public_base_url=settings.storage_public_url,
        access_key_id=settings.aws_access_key_id,
        secret_access_key=settings.aws_secret_access_key,
        **retry,
    )
    images = ImagePipeline(
        storage,
        upscaler=GetImgUpscaler(settings.getimg_api_key, session=llm_http, **retry) if settings.getimg_api_key else None,
        segmenter=HuggingFaceSegmenter(settings.hf_api_key, session=llm_http, **retry) if settings.hf_api_key else None,
        session=http,
        **retry,
    )
    if images.upscaler is None:
        logger.info("GETIMG_API_KEY not set; image upscaling disabled")
    if images.segmenter is None:
        logger.info("HF_API_KEY not set; background removal disabled")

    brands = BrandResolver(store, openai.brand_info)
    ingredients = IngredientResolver(store, openai.ingredient_info)
    analysis = DetailedAnalysisStage(
        store,
        perplexity,
        external_db,
        Reconciler(store, name_fallback=settings.reconcile_name_fallback),
        ingredients,
        images,
        fanout_limit=settings.fanout_limit,
    )
    job_options = {"timeout": settings.job_timeout, "fanout_limit": settings.fanout_limit}
    jobs: dict[str, PopulationJob] = {
        "ingredients": IngredientsJob(store, perplexity, ingredients, **job_options),
        "reviews": ReviewsJob(store, perplexity, **job_options),
        "resources": ResourcesJob(store, perplexity, **job_options),
        "brands": BrandsJob(store, brands, **job_options),
    }
    dispatcher = make_dispatcher(settings.job_dispatch, jobs)
    orchestrator = ProductOrchestrator(
        store,
        perplexity,
        openai,
        external_db,
        brands,
        analysis,
        dispatcher,
        max_dupes=settings.max_dupes,
        fanout_limit=settings.fanout_limit,
    )
    return Services(
        settings=settings,
        engine=engine,
        store=store,
        perplexity=perplexity,
        openai=openai,
        external_db=external_db,
        images=images,
        brands=brands,
        ingredients=ingredients,
        analysis=analysis,
        orchestrator=orchestrator,
        jobs=jobs,
        dispatcher=dispatcher,
        sessions=[http, llm_http],
        owns_engine=owns_engine,
    )
