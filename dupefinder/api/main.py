"""FastAPI application exposing search and the background population jobs."""

from __future__ import annotations

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from dupefinder.config import Settings, configure_logging
from dupefinder.db.store import ProductRef
from dupefinder.errors import DupeFinderError, IdentificationError
from dupefinder.schemas import JobPayload, StageModel
from dupefinder.services import Services, build_services
from dupefinder.utils.concurrency import run_sync

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}


class SearchRequest(StageModel):
    search_text: str | None = None
    image: str | None = None


class ImageRequest(StageModel):
    image: str


class AnalysisRequest(StageModel):
    product_id: str | None = None
    original_product_id: str | None = None


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code, headers=CORS_HEADERS)


def decode_image(value: str) -> tuple[bytes, str]:
    """Decode a base64 image, with or without a ``data:`` URL prefix."""
    content_type = "image/jpeg"
    if value.startswith("data:"):
        header, _, value = value.partition(",")
        content_type = header[5:].split(";")[0] or content_type
    try:
        return base64.b64decode(value, validate=True), content_type
    except (binascii.Error, ValueError) as exc:
        raise IdentificationError("Image is not valid base64") from exc


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Services | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "services", None) is None:
            settings = Settings.from_env()
            configure_logging(settings.log_level)
            owned = app.state.services = build_services(settings)
        yield
        if owned is not None:
            await owned.aclose()

    app = FastAPI(title="Dupe Finder API", lifespan=lifespan)
    app.state.services = services

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = ", ".join(".".join(str(part) for part in err["loc"][1:]) or "body" for err in exc.errors())
        return error_response(400, f"Invalid request: {fields}")

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 405:
            return error_response(405, "Method not allowed")
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(IdentificationError)
    async def identification_error(request: Request, exc: IdentificationError) -> JSONResponse:
        logger.info("Identification failed for %s: %s", request.url.path, exc)
        return error_response(400, exc.message)

    @app.exception_handler(DupeFinderError)
    async def pipeline_error(request: Request, exc: DupeFinderError) -> JSONResponse:
        logger.error("%s failed (%s): %s", request.url.path, exc.kind, exc)
        return error_response(500, exc.message)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return error_response(500, "Internal server error")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/search-dupes")
    async def search_dupes(payload: SearchRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
        if payload.image:
            image, content_type = decode_image(payload.image)
            result = await services.orchestrator.search_image(image, content_type=content_type)
        elif payload.search_text and payload.search_text.strip():
            result = await services.orchestrator.search(payload.search_text)
        else:
            return error_response(400, "searchText or image is required")
        return result.envelope()

    @app.post("/analyze-image")
    async def analyze_image(payload: ImageRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
        image, content_type = decode_image(payload.image)
        identification = await services.orchestrator.identify_image(image, content_type=content_type)
        return {"success": True, "data": identification.model_dump(by_alias=True)}

    @app.post("/process-detailed-analysis")
    async def process_detailed_analysis(
        payload: AnalysisRequest, services: Services = Depends(get_services)
    ) -> dict[str, Any]:
        product_id = payload.product_id or payload.original_product_id
        if not product_id:
            return error_response(400, "productId is required")
        row = await run_sync(services.store.get_product, product_id)
        if row is None:
            return error_response(400, f"Unknown product {product_id}")
        outcome = await services.analysis.run(ProductRef(row["id"], row["name"], row["brand"], row["slug"]))
        data: dict[str, Any] = {"analyzed": outcome.succeeded, "dupeProductIds": [dupe.id for dupe in outcome.dupes]}
        if outcome.reconciliation is not None:
            data["deleted"] = outcome.reconciliation.deleted
            data["retained"] = outcome.reconciliation.retained
            data["dropped"] = len(outcome.reconciliation.dropped)
        return {"success": True, "data": data}

    def job_route(job: str):
        async def run(payload: JobPayload, services: Services = Depends(get_services)) -> JSONResponse:
            result = await services.jobs[job].run(payload)
            return JSONResponse(result.envelope(), status_code=200 if result.success else 500)

        run.__name__ = f"process_{job}"
        return run

    for job in ("ingredients", "reviews", "resources", "brands"):
        app.add_api_route(f"/process-{job}", job_route(job), methods=["POST"])

    return app


app = create_app()
