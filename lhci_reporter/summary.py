"""
Summary builder — cross-cutting statistics over canonical results.

Averages are rounded to 2 decimals here; percentage formatting only
happens in the renderer.
"""

import logging
import math
from typing import Iterable, Optional

from .models import RunResult, Summary

logger = logging.getLogger(__name__)


def round_half_up(value: float, digits: int = 2) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _scores_by_category(results: Iterable[RunResult]) -> dict[str, list[float]]:
    by_category: dict[str, list[float]] = {}
    for result in results:
        for category in result.categories:
            by_category.setdefault(category.id, []).append(category.score)
    return by_category


def average_scores(results: Iterable[RunResult]) -> dict[str, float]:
    return {
        category: round_half_up(sum(scores) / len(scores))
        for category, scores in _scores_by_category(results).items()
    }


def _averages_grouped_by(results: list[RunResult], key) -> dict[str, dict[str, float]]:
    groups: dict[str, list[RunResult]] = {}
    for result in results:
        groups.setdefault(key(result), []).append(result)
    return {name: average_scores(members) for name, members in groups.items()}


def build_summary(results: list[RunResult]) -> Summary:
    """Compute totals, averages, per-device/per-URL averages and min/max."""
    by_category = _scores_by_category(results)

    summary = Summary(
        total_urls=len({r.url for r in results}),
        total_tests=len(results),
        average_scores=average_scores(results),
        scores_by_device=_averages_grouped_by(results, lambda r: r.device_type),
        scores_by_url=_averages_grouped_by(results, lambda r: r.url),
        min_scores={c: min(s) for c, s in by_category.items()},
        max_scores={c: max(s) for c, s in by_category.items()},
    )

    logger.debug("Summary: %s", summary.model_dump_json(by_alias=True))
    return summary


def lowest_score(results: list[RunResult]) -> Optional[float]:
    """Minimum category score across all results, or None without scores."""
    scores = [c.score for r in results for c in r.categories]
    return min(scores) if scores else None
