"""
Report renderer — turns canonical results + summary into Slack blocks.

Two layouts share the same primitives:
  compact   one monospace row per URL, one column per category
  detailed  per-URL, per-device tables with score bars

Slack rejects messages whose block text is too large, so per-URL units are
only appended while the running serialized size, plus room for the insights,
footer and a possible warning, stays under the budget. Once a unit would
overflow, a single truncation warning replaces the rest.
"""

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .categories import (
    category_display,
    category_sort_key,
    normalize_category_id,
    order_categories,
)
from .models import RunResult, Summary
from .summary import round_half_up

MAX_MESSAGE_CHARS = 3000
COLUMN_WIDTH = 11
TABLE_WIDTHS = [18, 12, 15, 20]
GAP_THRESHOLD = 0.10
HEADER_MAX_CHARS = 150

DEFAULT_TITLE = "Lighthouse Test Results"
GENERATOR_NAME = "Lighthouse Slack Reporter"

DEVICE_ORDER = ["mobile", "desktop"]
DEVICE_ICONS = {"mobile": "📱", "desktop": "💻"}

NO_CATEGORIES_TEXT = "_No categories available_"
NO_DATA_TEXT = "_No data available_"
MISSING_SCORE = "N/A"
MISSING_DEVICE_SCORE = "-"


# --- Formatting helpers ---

def format_score(score: float) -> str:
    return f"{math.floor(score * 100 + 0.5)}%"


def score_emoji(score: float) -> str:
    if score >= 0.9:
        return "🟢"
    if score >= 0.5:
        return "🟡"
    return "🔴"


def score_bar(score: float) -> str:
    full = math.floor(score * 10)
    return "█" * full + "░" * (10 - full)


def score_description(score: float) -> str:
    if score >= 0.9:
        return "Excellent"
    if score >= 0.7:
        return "Good"
    if score >= 0.5:
        return "Needs Improvement"
    return "Poor"


def center_cell(text: str, width: int = COLUMN_WIDTH) -> str:
    if len(text) >= width:
        return text
    left = (width - len(text)) // 2
    right = width - len(text) - left
    return " " * left + text + " " * right


def format_table_row(columns: list[str], widths: list[int] = TABLE_WIDTHS) -> str:
    return " | ".join(
        col if i == len(columns) - 1 else col.ljust(widths[i])
        for i, col in enumerate(columns)
    )


def url_label(url: str) -> str:
    for prefix in ("https://", "http://"):
        if url.startswith(prefix):
            return url[len(prefix):]
    return url


def device_title(device_type: str) -> str:
    return f"{DEVICE_ICONS.get(device_type, '🖥️')} {device_type.capitalize()}"


# --- Block primitives ---

def header_block(text: str) -> dict:
    return {
        "type": "header",
        "text": {"type": "plain_text", "text": text[:HEADER_MAX_CHARS], "emoji": True},
    }


def section_block(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def context_block(text: str) -> dict:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


def divider_block() -> dict:
    return {"type": "divider"}


def block_size(block: dict) -> int:
    return len(json.dumps(block, ensure_ascii=False))


@dataclass
class BlockBuffer:
    """Ordered, append-only block list with a running serialized size."""

    limit: int = MAX_MESSAGE_CHARS
    blocks: list[dict] = field(default_factory=list)
    size: int = 0

    def append(self, *blocks: dict) -> None:
        for block in blocks:
            self.blocks.append(block)
            self.size += block_size(block)

    def fits(self, blocks: list[dict], reserve: int = 0) -> bool:
        return self.size + sum(block_size(b) for b in blocks) + reserve <= self.limit


# --- Grouping ---

def results_by_url(results: list[RunResult]) -> dict[str, dict[str, RunResult]]:
    """url -> device -> result, urls in first-encounter order."""
    grouped: dict[str, dict[str, RunResult]] = {}
    for result in results:
        grouped.setdefault(result.url, {})[result.device_type] = result
    return grouped


def present_devices(results: list[RunResult]) -> list[str]:
    seen = {r.device_type for r in results}
    return [d for d in DEVICE_ORDER if d in seen]


def normalized_scores(result: RunResult) -> dict[str, float]:
    return {normalize_category_id(c.id): c.score for c in result.categories}


# --- Insights ---

def _display_title(category_id: str) -> str:
    return category_display(category_id)[0]


def best_and_worst(scores: dict[str, float]) -> tuple[Optional[str], Optional[str]]:
    """Highest and lowest scoring categories; the first one seen wins ties."""
    best = worst = None
    for category, score in scores.items():
        if best is None or score > scores[best]:
            best = category
        if worst is None or score < scores[worst]:
            worst = category
    return best, worst


def device_gap(summary: Summary) -> Optional[tuple[str, float, str]]:
    """(category, gap, better device) for the largest mobile/desktop gap."""
    mobile = summary.scores_by_device.get("mobile")
    desktop = summary.scores_by_device.get("desktop")
    if not mobile or not desktop:
        return None

    biggest_category, biggest_gap = None, 0.0
    for category, mobile_score in mobile.items():
        if category not in desktop:
            continue
        gap = round_half_up(abs(mobile_score - desktop[category]))
        if gap > biggest_gap:
            biggest_category, biggest_gap = category, gap

    if biggest_category is None or biggest_gap <= GAP_THRESHOLD:
        return None
    better = "Mobile" if mobile[biggest_category] > desktop[biggest_category] else "Desktop"
    return biggest_category, biggest_gap, better


def insight_lines(summary: Summary) -> list[str]:
    if not summary.average_scores:
        return []

    averages = summary.average_scores
    best, worst = best_and_worst(averages)
    lines = [
        f"• *Strongest Area:* {_display_title(best)} at {format_score(averages[best])}",
        f"• *Area for Improvement:* {_display_title(worst)} at {format_score(averages[worst])}",
    ]

    gap = device_gap(summary)
    if gap:
        category, size, better = gap
        lines.append(
            f"• *Biggest Device Gap:* {_display_title(category)} is "
            f"{math.floor(size * 100 + 0.5)} points better on {better}"
        )
    return lines


# --- Layouts ---

@dataclass
class RenderContext:
    results: list[RunResult]
    summary: Summary
    categories: list[str]
    devices: list[str]
    by_url: dict[str, dict[str, RunResult]]


class CompactLayout:
    """Legend, icon column header and one score row per URL."""

    def preamble(self, ctx: RenderContext) -> list[dict]:
        if not ctx.categories:
            return [section_block(NO_CATEGORIES_TEXT)]
        return [self.legend(ctx), self.column_header(ctx)]

    def legend(self, ctx: RenderContext) -> dict:
        entries = []
        for category in ctx.categories:
            title, icon = category_display(category)
            entries.append(f"{icon} – {title}")

        if ctx.devices == DEVICE_ORDER:
            devices = "📱 Mobile / 💻 Desktop (cells show mobile%/desktop%)"
        elif ctx.devices:
            devices = f"{device_title(ctx.devices[0])} only"
        else:
            devices = "No device results"

        return section_block(f"*Legend:* {'  ·  '.join(entries)}\n*Devices:* {devices}")

    def column_header(self, ctx: RenderContext) -> dict:
        icons = "".join(center_cell(category_display(c)[1]) for c in ctx.categories)
        return section_block(f"`{icons}`")

    def cell(self, category: str, device_results: dict[str, RunResult]) -> str:
        scores = {d: normalized_scores(r) for d, r in device_results.items()}
        if not any(category in s for s in scores.values()):
            return MISSING_SCORE

        parts = []
        for device in DEVICE_ORDER:
            if device in scores:
                value = scores[device].get(category)
                parts.append(MISSING_DEVICE_SCORE if value is None else format_score(value))
        return "/".join(parts)

    def indicators(self, device_results: dict[str, RunResult]) -> str:
        marks = []
        for device in DEVICE_ORDER:
            result = device_results.get(device)
            if result is None:
                continue
            if result.categories:
                average = sum(c.score for c in result.categories) / len(result.categories)
                marks.append(f"{DEVICE_ICONS[device]}{score_emoji(average)}")
            else:
                marks.append(f"{DEVICE_ICONS[device]} no data")
        return " ".join(marks)

    def row(self, url: str, device_results: dict[str, RunResult], ctx: RenderContext) -> dict:
        link = f"*<{url}|{url_label(url)}>*"
        if not ctx.categories or not any(r.categories for r in device_results.values()):
            return section_block(f"{link}\n{NO_DATA_TEXT}")
        cells = "".join(center_cell(self.cell(c, device_results)) for c in ctx.categories)
        return section_block(f"{link}\n`{cells}` {self.indicators(device_results)}")

    def url_units(self, ctx: RenderContext) -> list[list[dict]]:
        return [[self.row(url, devices, ctx)] for url, devices in ctx.by_url.items()]


class DetailedLayout:
    """Average tables followed by per-URL, per-device score tables."""

    HEADER_ROW = ["*Category*", "*Score*", "*Visual*", "*Status*"]

    def table(self, rows: list[tuple[str, float]]) -> dict:
        if not rows:
            return section_block(NO_DATA_TEXT)
        lines = [format_table_row(self.HEADER_ROW)]
        for title, score in rows:
            lines.append(format_table_row([
                title,
                f"{score_emoji(score)} {format_score(score)}",
                score_bar(score),
                score_description(score),
            ]))
        return section_block("```" + "\n".join(lines) + "```")

    def average_rows(self, scores: dict[str, float]) -> list[tuple[str, float]]:
        return [(_display_title(c), scores[c]) for c in sorted(scores, key=category_sort_key)]

    def preamble(self, ctx: RenderContext) -> list[dict]:
        blocks = [
            section_block("*Average Scores Across All Tests:*"),
            self.table(self.average_rows(ctx.summary.average_scores)),
        ]
        if len(ctx.summary.scores_by_device) > 1:
            for device in ctx.devices:
                blocks.append(section_block(f"*Average Scores for {device_title(device)}:*"))
                blocks.append(self.table(self.average_rows(ctx.summary.scores_by_device[device])))
        blocks.append(context_block(
            "Score Legend: 🟢 Good (90-100) · 🟡 Needs Improvement (50-89) · 🔴 Poor (0-49)"
        ))
        blocks.append(divider_block())
        return blocks

    def result_rows(self, result: RunResult) -> list[tuple[str, float]]:
        ranked = sorted(result.categories, key=lambda c: category_sort_key(c.id))
        return [(c.title or _display_title(c.id), c.score) for c in ranked]

    def url_units(self, ctx: RenderContext) -> list[list[dict]]:
        units = []
        for url, device_results in ctx.by_url.items():
            unit = [section_block(f"*URL:* <{url}|{url_label(url)}>")]
            for device in DEVICE_ORDER:
                result = device_results.get(device)
                if result is None:
                    continue
                unit.append(section_block(f"*Device:* {device_title(device)}"))
                unit.append(self.table(self.result_rows(result)))
                if result.report_url:
                    unit.append(context_block(
                        "📋 HTML report generated (not accessible via Slack, but saved as an artifact)"
                    ))
            unit.append(divider_block())
            units.append(unit)
        return units


LAYOUTS = {
    "compact": CompactLayout,
    "detailed": DetailedLayout,
}


class ReportRenderer:
    """Render a report as an ordered list of Slack blocks."""

    def __init__(
        self,
        layout: str = "compact",
        title: str = DEFAULT_TITLE,
        max_chars: int = MAX_MESSAGE_CHARS,
    ):
        if layout not in LAYOUTS:
            raise ValueError(f"Unknown report layout: {layout}")
        self.layout = LAYOUTS[layout]()
        self.title = title or DEFAULT_TITLE
        self.max_chars = max_chars

    def render(
        self,
        results: list[RunResult],
        summary: Summary,
        generated_at: Optional[datetime] = None,
        run_url: Optional[str] = None,
    ) -> list[dict]:
        ctx = RenderContext(
            results=results,
            summary=summary,
            categories=order_categories(c.id for r in results for c in r.categories),
            devices=present_devices(results),
            by_url=results_by_url(results),
        )

        buffer = BlockBuffer(limit=self.max_chars)
        buffer.append(
            header_block(self.title),
            section_block(f"*Summary:* {summary.total_urls} URLs, {summary.total_tests} tests."),
        )
        buffer.append(*self.layout.preamble(ctx))

        tail = []
        lines = insight_lines(summary)
        if lines:
            tail.append(section_block("*Key Insights:*\n" + "\n".join(lines)))
        tail.append(self.footer_block(generated_at, run_url))
        tail_size = sum(block_size(b) for b in tail)

        units = self.layout.url_units(ctx)
        warning_size = block_size(self.truncation_block(len(units)))
        for shown, unit in enumerate(units):
            last = shown == len(units) - 1
            if not buffer.fits(unit, reserve=tail_size + (0 if last else warning_size)):
                buffer.append(self.truncation_block(len(units) - shown))
                break
            buffer.append(*unit)

        buffer.append(*tail)
        return buffer.blocks

    def truncation_block(self, hidden: int) -> dict:
        noun = "URL" if hidden == 1 else "URLs"
        return section_block(
            f"⚠️ *Report truncated:* {hidden} more {noun} not shown to stay within "
            "Slack's message size limit. Full results are in the uploaded artifacts."
        )

    def footer_block(self, generated_at: Optional[datetime], run_url: Optional[str]) -> dict:
        generated_at = generated_at or datetime.now(timezone.utc)
        text = f"Generated by {GENERATOR_NAME} · {generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}"
        if run_url:
            text += f" · <{run_url}|View CI run>"
        return context_block(text)
