"""Celery worker entry points for background population jobs."""

from __future__ import annotations

import asyncio
import os
from typing import Any

from celery import Celery
from celery.signals import setup_logging

from dupefinder.config import Settings, configure_logging

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("dupefinder", broker=broker_url, backend=backend_url)
celery_app.conf.task_acks_late = True
celery_app.conf.task_time_limit = int(os.environ.get("JOB_TIMEOUT", "300")) + 60


@setup_logging.connect
def _configure_worker_logging(**_: Any) -> None:  # pragma: no cover - executed by worker
    configure_logging(os.environ.get("LOG_LEVEL", "INFO").upper())


async def run_job(job: str, payload: dict[str, Any], settings: Settings | None = None) -> dict[str, Any]:
    from dupefinder.schemas import JobPayload
    from dupefinder.services import build_services

    services = build_services(settings or Settings.from_env())
    try:
        result = await services.jobs[job].run(JobPayload.model_validate(payload))
    finally:
        await services.aclose()
    return result.envelope()


@celery_app.task(name="dupefinder.jobs.ingredients")
def run_ingredients_task(payload: dict[str, Any]) -> dict[str, Any]:  # pragma: no cover - executed by worker
    return asyncio.run(run_job("ingredients", payload))


@celery_app.task(name="dupefinder.jobs.reviews")
def run_reviews_task(payload: dict[str, Any]) -> dict[str, Any]:  # pragma: no cover - executed by worker
    return asyncio.run(run_job("reviews", payload))


@celery_app.task(name="dupefinder.jobs.resources")
def run_resources_task(payload: dict[str, Any]) -> dict[str, Any]:  # pragma: no cover - executed by worker
    return asyncio.run(run_job("resources", payload))


@celery_app.task(name="dupefinder.jobs.brands")
def run_brands_task(payload: dict[str, Any]) -> dict[str, Any]:  # pragma: no cover - executed by worker
    return asyncio.run(run_job("brands", payload))
