from dupefinder.logic.slugs import keyed_slug, product_slug, slugify


def test_slugify_basic():
    assert slugify("Shape Tape Concealer") == "shape-tape-concealer"
    assert slugify("  Fenty Beauty -- Pro Filt'r  ") == "fenty-beauty-pro-filt-r"


def test_slugify_folds_accents():
    assert slugify("L'Oréal Paris") == "l-oreal-paris"
    assert slugify("Crème de la Mer") == "creme-de-la-mer"


def test_slugify_empty_and_symbols():
    assert slugify("") == ""
    assert slugify("!!!") == ""


def test_product_slug_is_deterministic():
    first = product_slug("Tarte", "Shape Tape Concealer")
    assert first == "tarte-shape-tape-concealer"
    assert product_slug("TARTE", "shape  tape concealer") == first


def test_non_latin_products_keep_distinct_slugs():
    sulwhasoo = product_slug("설화수", "윤조에센스")
    laneige = product_slug("라네즈", "다이나믹 크림")
    assert sulwhasoo.startswith("product-")
    assert sulwhasoo != laneige
    assert product_slug("설화수", " 윤조에센스 ") == sulwhasoo


def test_keyed_slug_is_stable():
    assert keyed_slug("brand", "資生堂") == keyed_slug("brand", "  資生堂 ")
    assert keyed_slug("brand", "資生堂") != keyed_slug("brand", "雪花秀")
