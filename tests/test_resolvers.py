import asyncio

import pytest
from sqlalchemy import text

from conftest import count, no_enrichment
from dupefinder.logic.resolvers import BrandResolver, IngredientResolver
from dupefinder.logic.slugs import product_slug
from dupefinder.schemas import BrandInfo


@pytest.mark.asyncio
async def test_brand_resolution_is_idempotent(store, engine):
    calls = []

    async def enrich(name):
        calls.append(name)
        return BrandInfo(description=f"{name} makes concealer", price_range="mid-range", vegan=True)

    resolver = BrandResolver(store, enrich)
    first = await resolver.resolve("  Tarte ")
    second = await resolver.resolve("Tarte")
    assert first == second
    assert calls == ["Tarte"]
    assert count(engine, "SELECT COUNT(*) FROM brands") == 1
    assert count(engine, "SELECT COUNT(*) FROM brands WHERE vegan = 1 AND slug = 'tarte'") == 1


@pytest.mark.asyncio
async def test_enrichment_failure_falls_back_to_defaults(store, engine):
    resolver = IngredientResolver(store, no_enrichment)
    ingredient_id = await resolver.resolve("Niacinamide")
    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT description, comedogenic_rating, benefits FROM ingredients WHERE id = :id"),
            {"id": ingredient_id},
        ).one()
    assert row.description.startswith("Niacinamide is a common ingredient")
    assert row.comedogenic_rating == 0


@pytest.mark.asyncio
async def test_empty_name_is_rejected(store):
    resolver = BrandResolver(store)
    with pytest.raises(ValueError):
        await resolver.resolve("   ")


@pytest.mark.asyncio
async def test_concurrent_first_resolutions_converge(store, engine):
    async def slow_enrich(name):
        await asyncio.sleep(0.01)
        return BrandInfo.placeholder(name)

    resolver = BrandResolver(store, slow_enrich)
    ids = await asyncio.gather(*(resolver.resolve("e.l.f.") for _ in range(5)))
    assert len(set(ids)) == 1
    assert count(engine, "SELECT COUNT(*) FROM brands") == 1


@pytest.mark.asyncio
async def test_slug_collision_resolves_to_existing_row(store, engine):
    resolver = BrandResolver(store)
    elf = await resolver.resolve("e.l.f.")
    # Same slug, different spelling: the insert is swallowed and the slug wins.
    assert await resolver.resolve("E L F") == elf
    assert count(engine, "SELECT COUNT(*) FROM brands") == 1


@pytest.mark.asyncio
async def test_link_key_ingredients_dedupes_names(store, engine):
    product_id = store.create_product({"slug": product_slug("Tarte", "Shape Tape"), "name": "Shape Tape", "brand": "Tarte"})
    resolver = IngredientResolver(store)
    linked = await resolver.link_key_ingredients(product_id, ["Glycerin", " glycerin", "Glycerin ", "", "Talc"])
    # "glycerin" and "Glycerin" are distinct names but share a slug.
    assert linked == 3
    assert count(engine, "SELECT COUNT(*) FROM ingredients") == 2
    assert count(engine, "SELECT COUNT(*) FROM product_ingredients") == 2


@pytest.mark.asyncio
async def test_non_latin_brands_resolve_to_separate_rows(store, engine):
    resolver = BrandResolver(store, no_enrichment)
    sulwhasoo = await resolver.resolve("설화수")
    laneige = await resolver.resolve("라네즈")
    assert sulwhasoo != laneige
    assert count(engine, "SELECT COUNT(*) FROM brands WHERE slug LIKE 'brand-%'") == 2
