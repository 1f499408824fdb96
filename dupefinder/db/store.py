"""Synchronous persistence layer.

Every public method opens its own transaction with ``engine.begin()``. Async
callers run them through :func:`dupefinder.utils.concurrency.run_sync`. Writes
are targeted: only the columns passed in are touched.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import urlparse

from sqlalchemy import Table, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from dupefinder.db import tables
from dupefinder.errors import PersistenceError
from dupefinder.schemas import ExternalOffer, RatingSummary, ResourceItem, UserReview
from dupefinder.utils.dates import parse_review_date, utcnow

logger = logging.getLogger(__name__)

# Order matters: children first, the product row last.
CASCADE_ORDER = (
    ("product_ingredients", "product_id = :pid"),
    ("resources", "product_id = :pid"),
    ("product_offers", "product_id = :pid"),
    ("reviews", "product_id = :pid"),
    ("product_dupes", "original_product_id = :pid OR dupe_product_id = :pid"),
    ("products", "id = :pid"),
)


@dataclass(slots=True)
class ProductRef:
    id: str
    name: str
    brand: str
    slug: str


def new_id() -> str:
    return str(uuid.uuid4())


def _like_pattern(value: str) -> str:
    escaped = value.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _columns(table: Table, values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if key in table.c}


def insert_ignore(conn: Connection, table: Table, values: dict[str, Any]) -> int:
    """Insert a row unless it violates a unique key. Returns the affected row count."""
    dialect_insert = sqlite_insert if conn.dialect.name == "sqlite" else pg_insert
    stmt = dialect_insert(table).values(**values).on_conflict_do_nothing()
    return conn.execute(stmt).rowcount


class Store:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # Products ---------------------------------------------------------------

    def find_existing_product(self, search_text: str) -> ProductRef | None:
        """Case-insensitive match on ``name`` or ``brand || ' ' || name``.

        Products that already have dupes win over bare placeholders.
        """
        query = text(
            """
            SELECT p.id, p.name, p.brand, p.slug
            FROM products p
            WHERE LOWER(p.name) LIKE :pattern ESCAPE '\\'
               OR LOWER(p.brand || ' ' || p.name) LIKE :pattern ESCAPE '\\'
            ORDER BY
              CASE WHEN EXISTS (
                SELECT 1 FROM product_dupes d WHERE d.original_product_id = p.id
              ) THEN 0 ELSE 1 END,
              p.created_at
            LIMIT 1
            """
        )
        with self.engine.connect() as conn:
            row = conn.execute(query, {"pattern": _like_pattern(search_text.strip())}).mappings().first()
        return ProductRef(**row) if row else None

    def get_product_by_slug(self, slug: str) -> ProductRef | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT id, name, brand, slug FROM products WHERE slug = :slug"), {"slug": slug}
            ).mappings().first()
        return ProductRef(**row) if row else None

    def get_product(self, product_id: str) -> dict[str, Any] | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(tables.products).where(tables.products.c.id == product_id)
            ).mappings().first()
        return dict(row) if row else None

    def list_dupes(self, original_id: str) -> list[dict[str, Any]]:
        """Dupe product rows of ``original_id``, best match first."""
        p, d = tables.products, tables.product_dupes
        query = (
            select(p, d.c.match_score)
            .join(d, d.c.dupe_product_id == p.c.id)
            .where(d.c.original_product_id == original_id)
            .order_by(d.c.match_score.desc(), p.c.name)
        )
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(query).mappings()]

    def create_product(self, values: dict[str, Any]) -> str:
        """Insert a product unless its slug exists; return the id of the row holding the slug."""
        row = _columns(tables.products, values)
        row.setdefault("id", new_id())
        with self.engine.begin() as conn:
            insert_ignore(conn, tables.products, row)
            product_id = conn.execute(
                text("SELECT id FROM products WHERE slug = :slug"), {"slug": row["slug"]}
            ).scalar_one_or_none()
        if product_id is None:
            raise PersistenceError("Product insert failed", context={"slug": row["slug"]})
        return product_id

    def update_product(self, product_id: str, values: dict[str, Any]) -> None:
        row = _columns(tables.products, values)
        row.pop("id", None)
        if not row:
            return
        row["updated_at"] = utcnow()
        with self.engine.begin() as conn:
            conn.execute(update(tables.products).where(tables.products.c.id == product_id).values(**row))

    def set_loading_flag(self, product_ids: Iterable[str], flag: str, value: bool) -> None:
        if flag not in tables.LOADING_FLAGS:
            raise ValueError(f"Unknown loading flag: {flag}")
        ids = list(product_ids)
        if not ids:
            return
        column = tables.products.c[flag]
        with self.engine.begin() as conn:
            conn.execute(
                update(tables.products).where(tables.products.c.id.in_(ids)).values({column: value})
            )

    def clear_loading_flags(self, product_ids: Iterable[str]) -> None:
        ids = list(product_ids)
        if not ids:
            return
        with self.engine.begin() as conn:
            conn.execute(
                update(tables.products)
                .where(tables.products.c.id.in_(ids))
                .values({flag: False for flag in tables.LOADING_FLAGS})
            )

    # Dupe edges -------------------------------------------------------------

    def create_dupe_edge(self, original_id: str, dupe_id: str, *, match_score: float | None, savings: float = 0) -> None:
        with self.engine.begin() as conn:
            insert_ignore(
                conn,
                tables.product_dupes,
                {
                    "id": new_id(),
                    "original_product_id": original_id,
                    "dupe_product_id": dupe_id,
                    "match_score": match_score,
                    "savings_percentage": savings,
                },
            )

    def update_dupe_edge(self, original_id: str, dupe_id: str, values: dict[str, Any]) -> None:
        d = tables.product_dupes
        row = {key: value for key, value in _columns(d, values).items() if value is not None}
        if not row:
            return
        row["updated_at"] = utcnow()
        with self.engine.begin() as conn:
            conn.execute(
                update(d)
                .where(d.c.original_product_id == original_id, d.c.dupe_product_id == dupe_id)
                .values(**row)
            )

    def dupe_ids(self, original_id: str) -> list[str]:
        with self.engine.connect() as conn:
            return list(
                conn.execute(
                    text("SELECT dupe_product_id FROM product_dupes WHERE original_product_id = :pid"),
                    {"pid": original_id},
                ).scalars()
            )

    def remove_dupe(self, original_id: str, dupe_id: str) -> bool:
        """Delete the edge and, if nothing else references it, the dupe product.

        Returns ``True`` when the product itself was deleted, ``False`` when it
        is still referenced by another edge and was kept.
        """
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    "DELETE FROM product_dupes WHERE original_product_id = :oid AND dupe_product_id = :pid"
                ),
                {"oid": original_id, "pid": dupe_id},
            )
            still_referenced = conn.execute(
                text(
                    """
                    SELECT COUNT(*) FROM product_dupes
                    WHERE original_product_id = :pid OR dupe_product_id = :pid
                    """
                ),
                {"pid": dupe_id},
            ).scalar_one()
            if still_referenced:
                logger.info("Product %s is still referenced by %s edge(s); kept", dupe_id, still_referenced)
                return False
            for table_name, condition in CASCADE_ORDER:
                conn.execute(text(f"DELETE FROM {table_name} WHERE {condition}"), {"pid": dupe_id})
        return True

    # Brands and ingredients -------------------------------------------------

    def find_entity_id(self, table: Table, *, name: str | None = None, slug: str | None = None) -> str | None:
        column, value = ("name", name) if name is not None else ("slug", slug)
        with self.engine.connect() as conn:
            return conn.execute(
                select(table.c.id).where(table.c[column] == value)
            ).scalar_one_or_none()

    def insert_entity(self, table: Table, values: dict[str, Any]) -> bool:
        row = _columns(table, values)
        row.setdefault("id", new_id())
        with self.engine.begin() as conn:
            return insert_ignore(conn, table, row) > 0

    def link_ingredient(self, product_id: str, ingredient_id: str, *, is_key: bool = True) -> None:
        with self.engine.begin() as conn:
            insert_ignore(
                conn,
                tables.product_ingredients,
                {"product_id": product_id, "ingredient_id": ingredient_id, "is_key_ingredient": is_key},
            )

    # Resources, offers, reviews ---------------------------------------------

    def upsert_resources(self, product_id: str, items: Iterable[ResourceItem]) -> int:
        inserted = 0
        with self.engine.begin() as conn:
            for item in items:
                inserted += insert_ignore(
                    conn,
                    tables.resources,
                    {
                        "id": new_id(),
                        "product_id": product_id,
                        "title": item.title or item.url,
                        "url": item.url,
                        "type": item.type,
                    },
                )
        return inserted

    def save_offers(self, product_id: str, offers: Iterable[ExternalOffer]) -> int:
        usable = [offer for offer in offers if offer.link]
        if not usable:
            return 0
        priced = [offer.price for offer in usable if offer.price is not None]
        best_price = min(priced) if priced else None
        with self.engine.begin() as conn:
            for offer in usable:
                merchant_id = self._ensure_merchant(conn, offer)
                insert_ignore(
                    conn,
                    tables.offers,
                    {
                        "id": new_id(),
                        "merchant_id": merchant_id,
                        "title": offer.title,
                        "price": offer.price,
                        "list_price": offer.list_price,
                        "currency": offer.currency,
                        "shipping": offer.shipping,
                        "condition": offer.condition,
                        "availability": offer.availability,
                        "link": offer.link,
                    },
                )
                offer_id = conn.execute(
                    text("SELECT id FROM offers WHERE link = :link"), {"link": offer.link}
                ).scalar_one()
                insert_ignore(
                    conn,
                    tables.product_offers,
                    {
                        "product_id": product_id,
                        "offer_id": offer_id,
                        "is_best_price": best_price is not None and offer.price == best_price,
                    },
                )
        return len(usable)

    def _ensure_merchant(self, conn: Connection, offer: ExternalOffer) -> str | None:
        domain = offer.domain or urlparse(offer.link or "").netloc
        if not domain:
            return None
        insert_ignore(
            conn, tables.merchants, {"id": new_id(), "name": offer.merchant or domain, "domain": domain}
        )
        return conn.execute(
            text("SELECT id FROM merchants WHERE domain = :domain"), {"domain": domain}
        ).scalar_one()

    def replace_reviews(self, product_id: str, rating: RatingSummary, items: Iterable[UserReview]) -> int:
        rows = [
            {
                "id": new_id(),
                "product_id": product_id,
                "author": review.author,
                "rating": review.rating,
                "text": review.text,
                "source": review.source,
                "source_url": review.source_url,
                "verified_purchase": review.verified_purchase,
                "review_date": parse_review_date(review.date),
            }
            for review in items
            if review.text
        ]
        with self.engine.begin() as conn:
            conn.execute(text("DELETE FROM reviews WHERE product_id = :pid"), {"pid": product_id})
            if rows:
                conn.execute(tables.reviews.insert(), rows)
            if rating.average_rating is not None:
                conn.execute(
                    update(tables.products)
                    .where(tables.products.c.id == product_id)
                    .values(
                        rating=rating.average_rating,
                        rating_count=rating.total_reviews,
                        rating_source=rating.source,
                        updated_at=utcnow(),
                    )
                )
        return len(rows)

