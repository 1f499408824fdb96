"""Hand background jobs to Celery, run them inline, or skip them."""

from __future__ import annotations

import asyncio
import logging

from dupefinder.jobs.base import PopulationJob
from dupefinder.schemas import JobPayload

logger = logging.getLogger(__name__)

JOB_NAMES = ("ingredients", "reviews", "resources", "brands")


def task_name(job: str) -> str:
    return f"dupefinder.jobs.{job}"


class CeleryDispatcher:
    def __init__(self, app=None) -> None:
        if app is None:
            from dupefinder.jobs.celery_app import celery_app as app
        self.app = app

    def dispatch(self, payload: JobPayload) -> bool:
        body = payload.model_dump(by_alias=True)
        for job in JOB_NAMES:
            self.app.send_task(task_name(job), args=[body])
        logger.info("Queued %s jobs for %s", len(JOB_NAMES), payload.original_product_id)
        return True


class InlineDispatcher:
    """Runs jobs as asyncio tasks on the current loop; keeps references until they finish."""

    def __init__(self, jobs: dict[str, PopulationJob]) -> None:
        self.jobs = jobs
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, payload: JobPayload) -> bool:
        loop = asyncio.get_running_loop()
        for name, job in self.jobs.items():
            task = loop.create_task(job.run(payload), name=f"{name}:{payload.original_product_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return bool(self.jobs)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class DisabledDispatcher:
    def dispatch(self, payload: JobPayload) -> bool:
        logger.info("Background jobs disabled; skipping %s", payload.original_product_id)
        return False


def make_dispatcher(mode: str, jobs: dict[str, PopulationJob]):
    if mode == "celery":
        return CeleryDispatcher()
    if mode == "inline":
        return InlineDispatcher(jobs)
    if mode == "disabled":
        return DisabledDispatcher()
    raise ValueError(f"Unknown job dispatch mode: {mode}")
