import pytest
from pydantic import ValidationError

from dupefinder.schemas import (
    CoarseIdentification,
    DetailedAnalysis,
    IngredientInfo,
    JobPayload,
    ProductResources,
    normalize_category,
)


def test_category_normalisation():
    assert normalize_category("concealer") == "Concealer"
    assert normalize_category(" Lip Gloss ") == "Lip Gloss"
    assert normalize_category("Perfume") == "Other"
    assert normalize_category(None) == "Other"


def test_coarse_identification_requires_name_and_brand():
    with pytest.raises(ValidationError):
        CoarseIdentification.model_validate({"originalName": "Shape Tape", "originalBrand": "  "})


def test_coarse_identification_drops_incomplete_dupes_and_clamps_scores():
    result = CoarseIdentification.model_validate(
        {
            "originalName": "Shape Tape Concealer",
            "originalBrand": "Tarte",
            "originalCategory": "concealer",
            "dupes": [
                {"name": "Fit Me Concealer", "brand": "Maybelline", "matchScore": "85"},
                {"name": "No brand"},
                {"name": "Hydrating Camo", "brand": "e.l.f.", "matchScore": 140},
            ],
        }
    )
    assert result.original_category == "Concealer"
    assert [dupe.name for dupe in result.dupes] == ["Fit Me Concealer", "Hydrating Camo"]
    assert result.dupes[0].match_score == 85
    assert result.dupes[1].match_score == 100


def test_detailed_analysis_coerces_loose_values():
    analysis = DetailedAnalysis.model_validate(
        {
            "original": {"id": "p1", "name": "A", "brand": "B", "price": "$32.00", "skinTypes": "oily", "vegan": "yes"},
            "dupes": [{"id": 7, "name": "C", "brand": "D", "savings_percentage": "60%", "freeOf": None}],
            "resources": [{"title": "Review", "url": "https://example.com", "type": "tiktok"}, {"title": "no url"}],
        }
    )
    assert analysis.original.price == 32.0
    assert analysis.original.skin_types == ["oily"]
    assert analysis.original.vegan is True
    assert analysis.dupes[0].id == "7"
    assert analysis.dupes[0].savings_percentage == 60.0
    assert analysis.dupes[0].free_of == []
    assert [(item.type, item.url) for item in analysis.resources] == [("TikTok", "https://example.com")]


def test_ingredient_placeholder_defaults():
    info = IngredientInfo.placeholder("Niacinamide")
    assert info.benefits == ["Unknown benefits"]
    assert info.comedogenic_rating == 0
    assert info.restricted_in == []


def test_job_payload_scopes():
    payload = JobPayload.model_validate(
        {
            "originalProductId": "o",
            "dupeProductIds": ["d1", "d2", "o"],
            "originalName": "Orig",
            "originalBrand": "Brand",
            "dupeInfo": [{"name": "Dupe 1", "brand": "X"}],
        }
    )
    assert payload.product_ids() == ["o", "d1", "d2"]
    assert payload.top_product_ids() == ["o", "d1"]
    assert payload.named_products() == [("o", "Orig", "Brand"), ("d1", "Dupe 1", "X")]


def test_product_resources_map_to_resource_types():
    resources = ProductResources.model_validate(
        {
            "socialMedia": {
                "instagram": [{"url": "https://instagram.com/p/1", "caption": "Swatches"}],
                "youtube": [{"url": "https://youtube.com/watch?v=1", "title": "Full review"}],
                "tiktok": "not a list",
            },
            "articles": [{"url": "https://blog.example/dupes"}],
        }
    )
    items = resources.as_resources("Tarte Shape Tape")
    assert [(item.type, item.title) for item in items] == [
        ("Instagram", "Swatches"),
        ("YouTube", "Full review"),
        ("Article", "Tarte Shape Tape"),
    ]
