"""Validated payloads exchanged between pipeline stages.

LLM answers are loose: numbers arrive as strings, lists arrive as ``null`` or
as a single string, keys arrive in camelCase or snake_case. The models here
accept both key styles and coerce the common deviations, so every stage
downstream of a collaborator works with a typed object.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PRODUCT_CATEGORIES = (
    "Foundation",
    "Concealer",
    "Powder",
    "Blush",
    "Bronzer",
    "Contour",
    "Highlighter",
    "Eyeshadow",
    "Eyeliner",
    "Mascara",
    "Eyebrow Products",
    "Lipstick",
    "Lip Gloss",
    "Lip Liner",
    "Lip Balm",
    "Lip Stain",
    "Setting Spray",
    "Primer",
    "Eye Primer",
    "Makeup Remover",
    "Skincare",
    "Haircare",
    "Tools",
    "Other",
)
RESOURCE_TYPES = ("Video", "YouTube", "Instagram", "TikTok", "Article", "Reddit")

_CATEGORY_LOOKUP = {category.lower(): category for category in PRODUCT_CATEGORIES}
_RESOURCE_LOOKUP = {kind.lower(): kind for kind in RESOURCE_TYPES}
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def normalize_category(value: Any) -> str:
    if not isinstance(value, str):
        return "Other"
    return _CATEGORY_LOOKUP.get(value.strip().lower(), "Other")


def normalize_resource_type(value: Any) -> str:
    if not isinstance(value, str):
        return "Article"
    return _RESOURCE_LOOKUP.get(value.strip().lower(), "Article")


def to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_RE.search(value.replace(",", ""))
        if match:
            return float(match.group())
    return None


def to_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


def to_bool(value: Any) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes"}:
            return True
        if lowered in {"false", "no"}:
            return False
    return None


class StageModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# Coarse identification -------------------------------------------------------


class CandidateDupe(StageModel):
    name: str
    brand: str
    match_score: float = 0.0

    @field_validator("name", "brand", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("match_score", mode="before")
    @classmethod
    def _score(cls, value: Any) -> float:
        score = to_float(value) or 0.0
        return max(0.0, min(score, 100.0))


class CoarseIdentification(StageModel):
    original_name: str = Field(min_length=1)
    original_brand: str = Field(min_length=1)
    original_category: str = "Other"
    dupes: list[CandidateDupe] = Field(default_factory=list)

    @field_validator("original_name", "original_brand", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("original_category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> str:
        return normalize_category(value)

    @field_validator("dupes", mode="before")
    @classmethod
    def _drop_incomplete(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and item.get("name") and item.get("brand")]


# Detailed analysis ----------------------------------------------------------


class ProductAnalysis(StageModel):
    id: str | None = None
    name: str = ""
    brand: str = ""
    price: float | None = None
    category: str = "Other"
    description: str | None = None
    attributes: list[str] = Field(default_factory=list)
    key_ingredients: list[str] = Field(default_factory=list)
    image_url: str | None = None
    images: list[str] = Field(default_factory=list)
    texture: str | None = None
    finish: str | None = None
    coverage: str | None = None
    spf: float | None = None
    skin_types: list[str] = Field(default_factory=list)
    country_of_origin: str | None = None
    longevity_rating: float | None = None
    oxidation_tendency: str | None = None
    free_of: list[str] = Field(default_factory=list)
    best_for: list[str] = Field(default_factory=list)
    cruelty_free: bool | None = None
    vegan: bool | None = None
    notes: str | None = None
    ean: str | None = None
    upc: str | None = None
    gtin: str | None = None
    asin: str | None = None
    model: str | None = None
    lowest_recorded_price: float | None = None
    highest_recorded_price: float | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("name", "brand", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> str:
        return normalize_category(value)

    @field_validator(
        "price", "spf", "longevity_rating", "lowest_recorded_price", "highest_recorded_price", mode="before"
    )
    @classmethod
    def _number(cls, value: Any) -> float | None:
        return to_float(value)

    @field_validator(
        "attributes", "key_ingredients", "images", "skin_types", "free_of", "best_for", mode="before"
    )
    @classmethod
    def _list(cls, value: Any) -> list[str]:
        return to_str_list(value)

    @field_validator("cruelty_free", "vegan", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool | None:
        return to_bool(value)

    @field_validator(
        "description", "texture", "finish", "coverage", "country_of_origin", "oxidation_tendency",
        "notes", "ean", "upc", "gtin", "asin", "model", "image_url", mode="before",
    )
    @classmethod
    def _optional_text(cls, value: Any) -> str | None:
        if value is None or isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        return text or None

    def image_candidates(self) -> list[str]:
        candidates = [self.image_url] if self.image_url else []
        candidates.extend(self.images)
        return candidates


class DupeAnalysis(ProductAnalysis):
    match_score: float | None = None
    color_match_score: float | None = None
    formula_match_score: float | None = None
    savings_percentage: float | None = None
    dupe_type: str | None = None
    validation_source: str | None = None
    confidence_level: str | None = None
    longevity_comparison: str | None = None
    purchase_link: str | None = None

    @field_validator(
        "match_score", "color_match_score", "formula_match_score", "savings_percentage", mode="before"
    )
    @classmethod
    def _metric(cls, value: Any) -> float | None:
        return to_float(value)

    @field_validator(
        "dupe_type", "validation_source", "confidence_level", "longevity_comparison", "purchase_link",
        mode="before",
    )
    @classmethod
    def _metric_text(cls, value: Any) -> str | None:
        if value is None or isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        return text or None


class ResourceItem(StageModel):
    title: str = ""
    url: str
    type: str = "Article"

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value: Any) -> str:
        return normalize_resource_type(value)


class DetailedAnalysis(StageModel):
    original: ProductAnalysis
    dupes: list[DupeAnalysis] = Field(default_factory=list)
    summary: str = ""
    resources: list[ResourceItem] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("resources", mode="before")
    @classmethod
    def _resources(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and item.get("url")]


# Entity enrichment ----------------------------------------------------------


class BrandInfo(StageModel):
    description: str | None = None
    price_range: str | None = None
    cruelty_free: bool | None = None
    vegan: bool | None = None
    country_of_origin: str | None = None
    sustainable_packaging: bool | None = None
    parent_company: str | None = None

    @field_validator("cruelty_free", "vegan", "sustainable_packaging", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool | None:
        return to_bool(value)

    @classmethod
    def placeholder(cls, brand_name: str) -> "BrandInfo":
        return cls(
            description=f"{brand_name} is a beauty brand that offers cosmetic products.",
            price_range="mid-range",
        )


class IngredientInfo(StageModel):
    description: str | None = None
    benefits: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)
    skin_types: list[str] = Field(default_factory=list)
    comedogenic_rating: int | None = None
    vegan: bool | None = None
    inci_name: str | None = None
    ethically_sourced: bool | None = None
    is_controversial: bool | None = None
    restricted_in: list[str] = Field(default_factory=list)

    @field_validator("benefits", "concerns", "skin_types", "restricted_in", mode="before")
    @classmethod
    def _list(cls, value: Any) -> list[str]:
        return to_str_list(value)

    @field_validator("comedogenic_rating", mode="before")
    @classmethod
    def _rating(cls, value: Any) -> int | None:
        number = to_float(value)
        if number is None:
            return None
        return int(max(0, min(round(number), 5)))

    @field_validator("vegan", "ethically_sourced", "is_controversial", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool | None:
        return to_bool(value)

    @classmethod
    def placeholder(cls, ingredient_name: str) -> "IngredientInfo":
        return cls(
            description=f"{ingredient_name} is a common ingredient used in skincare and cosmetic products.",
            benefits=["Unknown benefits"],
            skin_types=["all"],
            comedogenic_rating=0,
        )


class ImageIdentification(StageModel):
    name: str | None = None
    brand: str | None = None
    category: str | None = None
    barcode: str | None = None

    @field_validator("barcode", mode="before")
    @classmethod
    def _digits(cls, value: Any) -> str | None:
        if value is None:
            return None
        digits = re.sub(r"\D", "", str(value))
        return digits or None

    def search_text(self) -> str | None:
        parts = [part.strip() for part in (self.brand, self.name) if part and part.strip()]
        return " ".join(parts) or None


# Background batches ---------------------------------------------------------


class RatingSummary(StageModel):
    average_rating: float | None = None
    total_reviews: int = 0
    source: str | None = None

    @field_validator("average_rating", mode="before")
    @classmethod
    def _rating(cls, value: Any) -> float | None:
        return to_float(value)

    @field_validator("total_reviews", mode="before")
    @classmethod
    def _total(cls, value: Any) -> int:
        return int(to_float(value) or 0)


class UserReview(StageModel):
    author: str | None = None
    rating: float | None = None
    text: str = ""
    source: str | None = None
    source_url: str | None = None
    verified_purchase: bool | None = None
    date: str | None = None

    @field_validator("rating", mode="before")
    @classmethod
    def _rating(cls, value: Any) -> float | None:
        return to_float(value)

    @field_validator("text", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("verified_purchase", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool | None:
        return to_bool(value)


class ProductReviews(StageModel):
    rating: RatingSummary = Field(default_factory=RatingSummary)
    reviews: list[UserReview] = Field(default_factory=list)


class ReviewBatch(StageModel):
    products: dict[str, ProductReviews] = Field(default_factory=dict)


class SocialPost(StageModel):
    url: str
    title: str | None = None
    caption: str | None = None
    author: str | None = None

    def display_title(self, fallback: str) -> str:
        for candidate in (self.title, self.caption, self.author):
            if candidate and candidate.strip():
                return candidate.strip()[:200]
        return fallback


class SocialMedia(StageModel):
    instagram: list[SocialPost] = Field(default_factory=list)
    tiktok: list[SocialPost] = Field(default_factory=list)
    youtube: list[SocialPost] = Field(default_factory=list)

    @field_validator("instagram", "tiktok", "youtube", mode="before")
    @classmethod
    def _posts(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and item.get("url")]


class ProductResources(StageModel):
    social_media: SocialMedia = Field(default_factory=SocialMedia)
    articles: list[SocialPost] = Field(default_factory=list)

    @field_validator("articles", mode="before")
    @classmethod
    def _articles(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and item.get("url")]

    def as_resources(self, fallback_title: str) -> list[ResourceItem]:
        items: list[ResourceItem] = []
        for kind, posts in (
            ("Instagram", self.social_media.instagram),
            ("TikTok", self.social_media.tiktok),
            ("YouTube", self.social_media.youtube),
            ("Article", self.articles),
        ):
            for post in posts:
                items.append(ResourceItem(title=post.display_title(fallback_title), url=post.url, type=kind))
        return items


class ResourceBatch(StageModel):
    products: dict[str, ProductResources] = Field(default_factory=dict)


class ProductIngredients(StageModel):
    key_ingredients: list[str] = Field(default_factory=list)

    @field_validator("key_ingredients", mode="before")
    @classmethod
    def _list(cls, value: Any) -> list[str]:
        return to_str_list(value)


class IngredientBatch(StageModel):
    products: dict[str, ProductIngredients] = Field(default_factory=dict)


# External product database ---------------------------------------------------


class ExternalOffer(StageModel):
    merchant: str | None = None
    domain: str | None = None
    title: str | None = None
    price: float | None = None
    list_price: float | None = None
    currency: str | None = None
    shipping: str | None = None
    condition: str | None = None
    availability: str | None = None
    link: str | None = None

    @field_validator("price", "list_price", mode="before")
    @classmethod
    def _number(cls, value: Any) -> float | None:
        return to_float(value)

    @field_validator("shipping", "condition", "availability", "currency", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        return str(value)


class ExternalProduct(StageModel):
    """A product as known to the external product database.

    ``verified`` is ``False`` when the lookup missed or failed; the remaining
    fields then only echo the query.
    """

    name: str
    brand: str
    upc: str | None = None
    ean: str | None = None
    description: str | None = None
    price: float | None = None
    highest_price: float | None = None
    images: list[str] = Field(default_factory=list)
    offers: list[ExternalOffer] = Field(default_factory=list)
    verified: bool = False

    @field_validator("price", "highest_price", mode="before")
    @classmethod
    def _number(cls, value: Any) -> float | None:
        return to_float(value)

    @field_validator("images", mode="before")
    @classmethod
    def _images(cls, value: Any) -> list[str]:
        return to_str_list(value)

    @classmethod
    def unverified(cls, name: str, brand: str) -> "ExternalProduct":
        return cls(name=name, brand=brand)


# Job payloads ---------------------------------------------------------------


class DupeInfo(StageModel):
    name: str
    brand: str


class JobPayload(StageModel):
    original_product_id: str = Field(min_length=1)
    dupe_product_ids: list[str] = Field(default_factory=list)
    original_name: str = ""
    original_brand: str = ""
    dupe_info: list[DupeInfo] = Field(default_factory=list)

    def product_ids(self) -> list[str]:
        ids = [self.original_product_id]
        ids.extend(pid for pid in self.dupe_product_ids if pid not in ids)
        return ids

    def top_product_ids(self) -> list[str]:
        return self.product_ids()[:2]

    def named_products(self) -> list[tuple[str, str, str]]:
        """``(product_id, name, brand)`` for the original and each described dupe."""
        named = [(self.original_product_id, self.original_name, self.original_brand)]
        for product_id, info in zip(self.dupe_product_ids, self.dupe_info):
            named.append((product_id, info.name, info.brand))
        return named
