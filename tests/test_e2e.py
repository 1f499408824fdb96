import json
import re

import httpx
import pytest
import respx

from conftest import count
from dupefinder.clients.perplexity import PERPLEXITY_ENDPOINT
from dupefinder.config import Settings
from dupefinder.db.store import Store
from dupefinder.jobs.celery_app import run_job
from dupefinder.services import build_services

ID_RE = re.compile(r'"id": "([^"]+)"')

IDENTIFICATION = {
    "originalName": "Shape Tape Concealer",
    "originalBrand": "Tarte",
    "originalCategory": "Concealer",
    "dupes": [
        {"name": "Fit Me Concealer", "brand": "Maybelline", "matchScore": 90},
        {"name": "Hydrating Camo Concealer", "brand": "e.l.f.", "matchScore": 85},
        {"name": "Can't Stop Won't Stop Concealer", "brand": "NYX", "matchScore": 70},
    ],
}


def perplexity_answer(request):
    prompt = json.loads(request.content)["messages"][-1]["content"]
    ids = ID_RE.findall(prompt)
    if prompt.startswith("Find up to"):
        answer = IDENTIFICATION
    elif prompt.startswith("Compare this original"):
        answer = {
            "original": {"id": ids[0], "name": "Shape Tape Concealer", "brand": "Tarte", "price": 32},
            "dupes": [{"id": pid, "name": "Dupe", "brand": "Brand", "price": 8, "matchScore": 86} for pid in ids[1:3]],
            "summary": "Two close matches at a quarter of the price.",
        }
    elif prompt.startswith("Find recent user reviews"):
        answer = {
            "products": {
                pid: {"rating": {"averageRating": 4.4, "totalReviews": 50}, "reviews": [{"text": "Creasing is minimal"}]}
                for pid in ids
            }
        }
    elif prompt.startswith("List the key"):
        answer = {"products": {pid: {"keyIngredients": ["Glycerin"]} for pid in ids}}
    else:
        answer = {"products": {}}
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": json.dumps(answer)}}]})


def openai_answer(request):
    content = json.dumps({"description": "Described by the enrichment model."})
    return httpx.Response(
        200,
        json={
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 1700000000,
            "model": "gpt-4o-mini",
            "choices": [{"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}}],
        },
    )


class NullStorage:
    async def upload(self, key, data, content_type):
        return f"https://storage.example/productimages/{key}"


@pytest.fixture()
def settings(engine):
    return Settings(
        database_url=str(engine.url),
        perplexity_api_key="pplx-test",
        openai_api_key="sk-test",
        job_dispatch="inline",
        retry_attempts=1,
        retry_base_delay=0,
        job_timeout=30,
    )


def mock_collaborators(router):
    router.post(PERPLEXITY_ENDPOINT).mock(side_effect=perplexity_answer)
    router.post("https://api.openai.com/v1/chat/completions").mock(side_effect=openai_answer)
    router.get(url__startswith="https://api.upcitemdb.com/").mock(return_value=httpx.Response(200, json={"items": []}))


@pytest.mark.asyncio
async def test_search_then_background_population(engine, settings):
    async with respx.mock() as router:
        mock_collaborators(router)
        services = build_services(settings, engine=engine, storage=NullStorage())
        try:
            result = await services.orchestrator.search("tarte shape tape")
            await services.dispatcher.drain()
        finally:
            await services.aclose()

    assert result.slug == "tarte-shape-tape-concealer"
    original = services.store.get_product_by_slug(result.slug)
    assert len(services.store.dupe_ids(original.id)) == 2
    assert count(engine, "SELECT COUNT(*) FROM products") == 3

    row = services.store.get_product(original.id)
    assert not (row["loading_ingredients"] or row["loading_reviews"] or row["loading_resources"])
    assert row["summary"] == "Two close matches at a quarter of the price."
    assert row["rating"] == 4.4
    assert count(engine, "SELECT COUNT(*) FROM reviews") == 2
    assert count(engine, "SELECT COUNT(*) FROM product_ingredients") == 3
    assert count(engine, "SELECT COUNT(*) FROM brands WHERE description = 'Described by the enrichment model.'") == 4


@pytest.mark.asyncio
async def test_worker_entry_point_builds_its_own_services(engine, settings, monkeypatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    product_id = Store(engine).create_product({"slug": "tarte-shape-tape", "name": "Shape Tape", "brand": "Tarte"})

    async with respx.mock() as router:
        mock_collaborators(router)
        envelope = await run_job(
            "brands", {"originalProductId": product_id, "originalName": "Shape Tape", "originalBrand": "Tarte"}, settings
        )

    assert envelope == {"success": True, "processed": 1}
    assert count(engine, "SELECT COUNT(*) FROM products WHERE brand_id IS NOT NULL") == 1
