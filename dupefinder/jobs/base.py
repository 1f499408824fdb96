"""Shared lifecycle for background population jobs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from dupefinder.db.store import Store
from dupefinder.schemas import JobPayload
from dupefinder.utils.concurrency import run_sync

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class JobResult:
    success: bool
    processed: int = 0
    error: str | None = None

    def envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "processed": self.processed}
        if self.error:
            body["error"] = self.error
        return body


@dataclass(slots=True)
class NamedProduct:
    id: str
    name: str
    brand: str

    def label(self) -> str:
        return f"{self.brand} {self.name}".strip()


class PopulationJob:
    """Base class: subclasses implement :meth:`execute` and set ``flag``.

    ``run`` raises the loading flag on every product in the payload, runs the
    job under a timeout and clears the flag again in ``finally``, whatever
    happened in between.
    """

    name = "job"
    flag: str | None = None

    def __init__(self, store: Store, *, timeout: float = 300.0, fanout_limit: int = 8) -> None:
        self.store = store
        self.timeout = timeout
        self.fanout_limit = fanout_limit

    async def execute(self, payload: JobPayload) -> int:
        raise NotImplementedError

    async def run(self, payload: JobPayload) -> JobResult:
        product_ids = payload.product_ids()
        logger.info("Starting %s job for %s (%s products)", self.name, payload.original_product_id, len(product_ids))
        try:
            if self.flag:
                await run_sync(self.store.set_loading_flag, product_ids, self.flag, True)
            processed = await asyncio.wait_for(self.execute(payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("%s job for %s timed out after %ss", self.name, payload.original_product_id, self.timeout)
            return JobResult(success=False, error=f"{self.name} job timed out")
        except Exception as exc:
            logger.exception("%s job for %s failed", self.name, payload.original_product_id)
            return JobResult(success=False, error=str(exc))
        finally:
            if self.flag:
                await run_sync(self.store.set_loading_flag, product_ids, self.flag, False)
        logger.info("%s job for %s processed %s products", self.name, payload.original_product_id, processed)
        return JobResult(success=True, processed=processed)

    async def named_products(self, payload: JobPayload, product_ids: list[str]) -> list[NamedProduct]:
        """Names for ``product_ids``, from the payload where it has them, else from the store."""
        known = {pid: (name, brand) for pid, name, brand in payload.named_products() if name}
        products: list[NamedProduct] = []
        for product_id in product_ids:
            if product_id in known:
                name, brand = known[product_id]
            else:
                row = await run_sync(self.store.get_product, product_id)
                if row is None:
                    logger.warning("%s job: product %s no longer exists", self.name, product_id)
                    continue
                name, brand = row["name"], row["brand"]
            products.append(NamedProduct(product_id, name, brand))
        return products
