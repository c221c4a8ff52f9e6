from lhci_reporter.categories import (
    FALLBACK_ICON,
    Category,
    category_display,
    normalize_category_id,
    order_categories,
)


def test_synonyms_normalize_to_best_practices():
    for raw in ("bestpractices", "Best Practices", "BEST-PRACTICES", "best_practices"):
        assert normalize_category_id(raw) == Category.BEST_PRACTICES.value


def test_known_category_display():
    assert category_display("SEO") == ("SEO", "🔍")
    assert category_display("bestpractices") == ("Best Practices", "✅")


def test_unknown_category_gets_generated_title():
    assert category_display("custom-metric") == ("Custom-metric", FALLBACK_ICON)


def test_preferred_order_then_alphabetical():
    ids = ["zeta", "pwa", "accessibility", "seo", "bestpractices", "performance", "best-practices"]
    assert order_categories(ids) == [
        "performance", "seo", "accessibility", "best-practices", "pwa", "zeta",
    ]
