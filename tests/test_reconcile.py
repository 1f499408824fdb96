import pytest

from conftest import count
from dupefinder.logic.reconcile import Reconciler
from dupefinder.logic.slugs import product_slug
from dupefinder.schemas import DetailedAnalysis, ResourceItem


def make_product(store, brand, name):
    return store.create_product({"slug": product_slug(brand, name), "name": name, "brand": brand})


def analysis_for(*dupes):
    return DetailedAnalysis.model_validate(
        {"original": {"id": "o", "name": "Shape Tape", "brand": "Tarte"}, "dupes": list(dupes)}
    )


@pytest.fixture()
def placeholders(store):
    original = make_product(store, "Tarte", "Shape Tape")
    dupes = [
        make_product(store, "Maybelline", "Fit Me"),
        make_product(store, "e.l.f.", "Hydrating Camo"),
        make_product(store, "NYX", "Can't Stop Won't Stop"),
    ]
    for score, dupe in zip((90, 85, 70), dupes):
        store.create_dupe_edge(original, dupe, match_score=score)
    return original, dupes


@pytest.mark.asyncio
async def test_unconfirmed_placeholder_is_deleted_with_children(store, engine, placeholders):
    original, (fit_me, camo, nyx) = placeholders
    store.upsert_resources(nyx, [ResourceItem(title="Swatch", url="https://tiktok.com/1", type="TikTok")])

    result = await Reconciler(store).reconcile(
        original,
        [fit_me, camo, nyx],
        analysis_for(
            {"id": fit_me, "name": "Fit Me", "brand": "Maybelline"},
            {"id": camo, "name": "Hydrating Camo", "brand": "e.l.f."},
        ),
    )

    assert set(result.confirmed) == {fit_me, camo}
    assert result.deleted == [nyx]
    assert sorted(store.dupe_ids(original)) == sorted([fit_me, camo])
    assert store.get_product(nyx) is None
    assert count(engine, "SELECT COUNT(*) FROM resources") == 0


@pytest.mark.asyncio
async def test_shared_placeholder_is_retained(store, placeholders):
    original, (fit_me, camo, nyx) = placeholders
    other = make_product(store, "NARS", "Radiant Creamy Concealer")
    store.create_dupe_edge(other, nyx, match_score=60)

    result = await Reconciler(store).reconcile(
        original, [fit_me, camo, nyx], analysis_for({"id": fit_me, "name": "Fit Me", "brand": "Maybelline"})
    )

    assert result.deleted == [camo]
    assert result.retained == [nyx]
    assert store.dupe_ids(original) == [fit_me]
    assert store.dupe_ids(other) == [nyx]


@pytest.mark.asyncio
async def test_unknown_ids_are_dropped_not_created(store, engine, placeholders):
    original, (fit_me, camo, nyx) = placeholders

    result = await Reconciler(store).reconcile(
        original,
        [fit_me, camo, nyx],
        analysis_for(
            {"id": fit_me, "name": "Fit Me", "brand": "Maybelline"},
            {"id": fit_me, "name": "Fit Me again", "brand": "Maybelline"},
            {"id": "invented", "name": "Hydrating Camo", "brand": "e.l.f."},
        ),
    )

    assert list(result.confirmed) == [fit_me]
    assert result.confirmed[fit_me].name == "Fit Me"
    assert [entry.id for entry in result.dropped] == [fit_me, "invented"]
    assert sorted(result.deleted) == sorted([camo, nyx])
    assert count(engine, "SELECT COUNT(*) FROM products") == 2


@pytest.mark.asyncio
async def test_name_fallback_matches_by_slug(store, placeholders):
    original, (fit_me, camo, nyx) = placeholders

    result = await Reconciler(store, name_fallback=True).reconcile(
        original,
        [fit_me, camo, nyx],
        analysis_for(
            {"id": fit_me, "name": "Fit Me", "brand": "Maybelline"},
            {"name": "Hydrating  Camo", "brand": "E.L.F."},
        ),
    )

    assert set(result.confirmed) == {fit_me, camo}
    assert list(result.low_confidence) == [camo]
    assert result.confirmed[camo].id == camo
    assert result.deleted == [nyx]
