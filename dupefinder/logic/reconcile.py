"""Reconcile detailed analysis output with the placeholder dupes it was asked about."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from dupefinder.db.store import Store
from dupefinder.logic.slugs import product_slug
from dupefinder.schemas import DetailedAnalysis, DupeAnalysis
from dupefinder.utils.concurrency import run_sync

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconciliationResult:
    confirmed: dict[str, DupeAnalysis] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)
    retained: list[str] = field(default_factory=list)
    dropped: list[DupeAnalysis] = field(default_factory=list)
    low_confidence: dict[str, DupeAnalysis] = field(default_factory=dict)


class Reconciler:
    def __init__(self, store: Store, *, name_fallback: bool = False) -> None:
        self.store = store
        self.name_fallback = name_fallback

    async def reconcile(
        self, original_id: str, dupe_ids: list[str], analysis: DetailedAnalysis
    ) -> ReconciliationResult:
        """Confirm echoed ids and remove every placeholder the analysis left out.

        After this returns, the edges of ``original_id`` point exactly at the
        confirmed ids (plus any placeholder whose deletion failed and was logged).
        """
        result = ReconciliationResult()
        expected = set(dupe_ids)
        unmatched: list[DupeAnalysis] = []
        for entry in analysis.dupes:
            if entry.id in expected and entry.id not in result.confirmed:
                result.confirmed[entry.id] = entry
            else:
                unmatched.append(entry)

        if unmatched and self.name_fallback:
            unmatched = await self._match_by_name(unmatched, [pid for pid in dupe_ids if pid not in result.confirmed], result)

        for entry in unmatched:
            logger.warning(
                "Dropping low-confidence dupe %s / %s for %s (id %r not among placeholders)",
                entry.brand, entry.name, original_id, entry.id,
            )
            result.dropped.append(entry)

        for dupe_id in dupe_ids:
            if dupe_id in result.confirmed:
                continue
            try:
                removed = await run_sync(self.store.remove_dupe, original_id, dupe_id)
            except SQLAlchemyError:
                logger.exception("Failed to remove unconfirmed dupe %s of %s", dupe_id, original_id)
                continue
            (result.deleted if removed else result.retained).append(dupe_id)

        logger.info(
            "Reconciled %s: %s confirmed, %s deleted, %s retained, %s dropped",
            original_id, len(result.confirmed), len(result.deleted), len(result.retained), len(result.dropped),
        )
        return result

    async def _match_by_name(
        self, entries: list[DupeAnalysis], open_ids: list[str], result: ReconciliationResult
    ) -> list[DupeAnalysis]:
        by_slug: dict[str, str] = {}
        for product_id in open_ids:
            row = await run_sync(self.store.get_product, product_id)
            if row:
                by_slug.setdefault(row["slug"], product_id)
        remaining: list[DupeAnalysis] = []
        for entry in entries:
            product_id = by_slug.pop(product_slug(entry.brand, entry.name), None)
            if product_id is None:
                remaining.append(entry)
                continue
            logger.warning(
                "Matched dupe %s / %s to placeholder %s by name (id %r)", entry.brand, entry.name, product_id, entry.id
            )
            entry.id = product_id
            result.confirmed[product_id] = entry
            result.low_confidence[product_id] = entry
        return remaining
