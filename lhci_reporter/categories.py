"""Audit category ids, their display metadata and display order."""

from enum import Enum


class Category(str, Enum):
    PERFORMANCE = "performance"
    ACCESSIBILITY = "accessibility"
    BEST_PRACTICES = "best-practices"
    SEO = "seo"
    PWA = "pwa"


SYNONYMS = {
    "bestpractices": Category.BEST_PRACTICES,
    "best practices": Category.BEST_PRACTICES,
    "best_practices": Category.BEST_PRACTICES,
}

DISPLAY = {
    Category.PERFORMANCE: ("Performance", "⚡"),
    Category.ACCESSIBILITY: ("Accessibility", "♿"),
    Category.BEST_PRACTICES: ("Best Practices", "✅"),
    Category.SEO: ("SEO", "🔍"),
    Category.PWA: ("PWA", "🧩"),
}

FALLBACK_ICON = "📊"

PREFERRED_ORDER = [
    Category.PERFORMANCE.value,
    Category.SEO.value,
    Category.ACCESSIBILITY.value,
    Category.BEST_PRACTICES.value,
]


def normalize_category_id(raw: str) -> str:
    """Lowercase a category id and fold known synonyms onto one id."""
    key = raw.strip().lower()
    if key in SYNONYMS:
        return SYNONYMS[key].value
    return key


def category_display(category_id: str) -> tuple[str, str]:
    """Return (title, icon) for a category id, generating one for unknown ids."""
    key = normalize_category_id(category_id)
    try:
        return DISPLAY[Category(key)]
    except ValueError:
        return key[:1].upper() + key[1:], FALLBACK_ICON


def category_sort_key(category_id: str) -> tuple[int, str]:
    key = normalize_category_id(category_id)
    if key in PREFERRED_ORDER:
        return PREFERRED_ORDER.index(key), key
    return len(PREFERRED_ORDER), key


def order_categories(category_ids) -> list[str]:
    """Normalize, dedupe and sort ids into display order."""
    unique = {normalize_category_id(c) for c in category_ids}
    return sorted(unique, key=category_sort_key)
