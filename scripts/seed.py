"""Seed the database with a demo original product and its dupes."""

from __future__ import annotations

from dupefinder.config import Settings
from dupefinder.db import tables
from dupefinder.db.migrate import run_migrations
from dupefinder.db.session import create_engine_from_settings
from dupefinder.db.store import Store
from dupefinder.logic.slugs import product_slug, slugify
from dupefinder.schemas import BrandInfo

DEMO_ORIGINAL = {"name": "Soft Pinch Liquid Blush", "brand": "Rare Beauty", "category": "Blush", "price": 23.0}
DEMO_DUPES = [
    {"name": "Cheek Heat Gel-Cream Blush", "brand": "Maybelline", "category": "Blush", "price": 9.0, "match_score": 82},
    {"name": "Halo Glow Blush Beauty Wand", "brand": "e.l.f.", "category": "Blush", "price": 8.0, "match_score": 78},
]


def main() -> None:
    settings = Settings.from_env()
    engine = create_engine_from_settings(settings)
    run_migrations(engine)
    store = Store(engine)

    for brand in {DEMO_ORIGINAL["brand"], *(dupe["brand"] for dupe in DEMO_DUPES)}:
        info = BrandInfo.placeholder(brand).model_dump(exclude_none=True)
        store.insert_entity(tables.brands, {"name": brand, "slug": slugify(brand), **info})

    original_id = store.create_product(
        {"slug": product_slug(DEMO_ORIGINAL["brand"], DEMO_ORIGINAL["name"]), **DEMO_ORIGINAL}
    )
    for dupe in DEMO_DUPES:
        values = {key: value for key, value in dupe.items() if key != "match_score"}
        dupe_id = store.create_product({"slug": product_slug(dupe["brand"], dupe["name"]), **values})
        savings = round((DEMO_ORIGINAL["price"] - dupe["price"]) / DEMO_ORIGINAL["price"] * 100, 1)
        store.create_dupe_edge(original_id, dupe_id, match_score=dupe["match_score"], savings=savings)
    engine.dispose()
    print("Seed complete")


if __name__ == "__main__":
    main()
