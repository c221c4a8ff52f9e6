"""
Score aggregator — collapses repeated audit runs into one canonical result.

A single cold start or a noisy network hop can drag one run far below the
others, so repeated runs of a (url, device) pair are reduced with the
per-category median instead of the mean.
"""

import statistics
from typing import Iterable

from .models import CategoryScore, RunResult


class EmptyInputError(ValueError):
    """Raised when there are no runs to aggregate."""


def _run_order_key(run: RunResult) -> tuple:
    return (
        run.report_url or "",
        tuple((c.id, c.score, c.title) for c in run.categories),
    )


def median_result(runs: list[RunResult]) -> RunResult:
    """Reduce runs of one (url, device) pair to a single result.

    Runs are put in a canonical order first, so the result does not depend
    on the order in which they finished. Categories, titles and the report
    link come from the first run in that order.
    """
    if not runs:
        raise EmptyInputError("No runs to aggregate")

    if len(runs) == 1:
        return runs[0]

    ordered = sorted(runs, key=_run_order_key)
    first = ordered[0]

    categories = []
    for category in first.categories:
        scores = [
            run.scores()[category.id]
            for run in ordered
            if category.id in run.scores()
        ]
        categories.append(CategoryScore(
            id=category.id,
            title=category.title,
            score=statistics.median(scores),
        ))

    return RunResult(
        url=first.url,
        device_type=first.device_type,
        categories=tuple(categories),
        report_url=first.report_url,
    )


def group_runs(runs: Iterable[RunResult]) -> dict[tuple[str, str], list[RunResult]]:
    """Group raw runs by (url, device) in first-encounter order."""
    groups: dict[tuple[str, str], list[RunResult]] = {}
    for run in runs:
        groups.setdefault((run.url, run.device_type), []).append(run)
    return groups


def collapse_runs(runs: Iterable[RunResult]) -> list[RunResult]:
    """Group raw runs and return one canonical result per (url, device)."""
    return [median_result(group) for group in group_runs(runs).values()]
