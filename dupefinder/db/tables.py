"""Table definitions shared by the store, migrations and tests."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)

from dupefinder.utils.dates import utcnow

metadata = MetaData()


def _id_column() -> Column:
    return Column("id", String(36), primary_key=True)


def _timestamps() -> list[Column]:
    return [
        Column("created_at", DateTime, nullable=False, default=utcnow),
        Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    ]


brands = Table(
    "brands",
    metadata,
    _id_column(),
    Column("name", Text, nullable=False, unique=True),
    Column("slug", Text, nullable=False, unique=True),
    Column("description", Text),
    Column("price_range", Text),
    Column("cruelty_free", Boolean),
    Column("vegan", Boolean),
    Column("country_of_origin", Text),
    Column("sustainable_packaging", Boolean),
    Column("parent_company", Text),
    *_timestamps(),
)

products = Table(
    "products",
    metadata,
    _id_column(),
    Column("slug", Text, nullable=False, unique=True),
    Column("name", Text, nullable=False),
    Column("brand", Text, nullable=False),
    Column("brand_id", String(36), ForeignKey("brands.id")),
    Column("category", Text, nullable=False, default="Other"),
    Column("price", Numeric(10, 2)),
    Column("lowest_recorded_price", Numeric(10, 2)),
    Column("highest_recorded_price", Numeric(10, 2)),
    Column("purchase_link", Text),
    Column("description", Text),
    Column("summary", Text),
    Column("notes", Text),
    Column("texture", Text),
    Column("finish", Text),
    Column("coverage", Text),
    Column("spf", Float),
    Column("skin_types", JSON, default=list),
    Column("free_of", JSON, default=list),
    Column("best_for", JSON, default=list),
    Column("attributes", JSON, default=list),
    Column("longevity_rating", Float),
    Column("oxidation_tendency", Text),
    Column("country_of_origin", Text),
    Column("cruelty_free", Boolean),
    Column("vegan", Boolean),
    Column("ean", Text),
    Column("upc", Text),
    Column("gtin", Text),
    Column("asin", Text),
    Column("model", Text),
    Column("image_url", Text),
    Column("images", JSON, default=list),
    Column("rating", Float),
    Column("rating_count", Integer),
    Column("rating_source", Text),
    Column("loading_ingredients", Boolean, nullable=False, default=False),
    Column("loading_reviews", Boolean, nullable=False, default=False),
    Column("loading_resources", Boolean, nullable=False, default=False),
    *_timestamps(),
)

ingredients = Table(
    "ingredients",
    metadata,
    _id_column(),
    Column("name", Text, nullable=False, unique=True),
    Column("slug", Text, nullable=False, unique=True),
    Column("description", Text),
    Column("benefits", JSON, default=list),
    Column("concerns", JSON, default=list),
    Column("skin_types", JSON, default=list),
    Column("comedogenic_rating", Integer),
    Column("vegan", Boolean),
    Column("inci_name", Text),
    Column("ethically_sourced", Boolean),
    Column("is_controversial", Boolean),
    Column("restricted_in", JSON, default=list),
    *_timestamps(),
)

product_dupes = Table(
    "product_dupes",
    metadata,
    _id_column(),
    Column("original_product_id", String(36), ForeignKey("products.id"), nullable=False),
    Column("dupe_product_id", String(36), ForeignKey("products.id"), nullable=False),
    Column("match_score", Float),
    Column("color_match_score", Float),
    Column("formula_match_score", Float),
    Column("savings_percentage", Float),
    Column("confidence_level", Text),
    Column("dupe_type", Text),
    Column("verified", Boolean, nullable=False, default=False),
    *_timestamps(),
    UniqueConstraint("original_product_id", "dupe_product_id", name="uq_product_dupes_pair"),
)

product_ingredients = Table(
    "product_ingredients",
    metadata,
    Column("product_id", String(36), ForeignKey("products.id"), primary_key=True),
    Column("ingredient_id", String(36), ForeignKey("ingredients.id"), primary_key=True),
    Column("is_key_ingredient", Boolean, nullable=False, default=False),
)

resources = Table(
    "resources",
    metadata,
    _id_column(),
    Column("title", Text, nullable=False),
    Column("url", Text, nullable=False),
    Column("type", Text, nullable=False),
    Column("product_id", String(36), ForeignKey("products.id")),
    Column("brand_id", String(36), ForeignKey("brands.id")),
    Column("ingredient_id", String(36), ForeignKey("ingredients.id")),
    *_timestamps(),
    UniqueConstraint("product_id", "url", name="uq_resources_product_url"),
)

merchants = Table(
    "merchants",
    metadata,
    _id_column(),
    Column("name", Text, nullable=False),
    Column("domain", Text, nullable=False, unique=True),
)

offers = Table(
    "offers",
    metadata,
    _id_column(),
    Column("merchant_id", String(36), ForeignKey("merchants.id")),
    Column("title", Text),
    Column("price", Numeric(10, 2)),
    Column("list_price", Numeric(10, 2)),
    Column("currency", Text),
    Column("shipping", Text),
    Column("condition", Text),
    Column("availability", Text),
    Column("link", Text, nullable=False, unique=True),
    *_timestamps(),
)

product_offers = Table(
    "product_offers",
    metadata,
    Column("product_id", String(36), ForeignKey("products.id"), primary_key=True),
    Column("offer_id", String(36), ForeignKey("offers.id"), primary_key=True),
    Column("is_best_price", Boolean, nullable=False, default=False),
)

reviews = Table(
    "reviews",
    metadata,
    _id_column(),
    Column("product_id", String(36), ForeignKey("products.id"), nullable=False),
    Column("author", Text),
    Column("rating", Float),
    Column("text", Text, nullable=False),
    Column("source", Text),
    Column("source_url", Text),
    Column("verified_purchase", Boolean),
    Column("review_date", DateTime),
    Column("created_at", DateTime, nullable=False, default=utcnow),
)

LOADING_FLAGS = ("loading_ingredients", "loading_reviews", "loading_resources")
