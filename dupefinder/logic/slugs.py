"""Deterministic URL slugs."""

from __future__ import annotations

import hashlib
import re
import unicodedata

NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
WHITESPACE_RE = re.compile(r"\s+")


def slugify(value: str) -> str:
    """Lower-case ASCII slug: accents folded, runs of other characters collapsed to ``-``."""
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return NON_ALNUM_RE.sub("-", folded.lower()).strip("-")


def keyed_slug(prefix: str, value: str) -> str:
    """Stable slug for text with no ASCII letters or digits left after folding (Hangul, kana, CJK)."""
    normalized = WHITESPACE_RE.sub(" ", unicodedata.normalize("NFKC", value)).strip().casefold()
    digest = hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:12]
    return f"{prefix}-{digest}"


def product_slug(brand: str, name: str) -> str:
    text = f"{brand} {name}"
    return slugify(text) or keyed_slug("product", text)
