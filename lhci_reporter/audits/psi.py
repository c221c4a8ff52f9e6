"""
PageSpeed Insights API client — Lighthouse scores without a local Chrome.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..models import CategoryScore, RunResult
from .lighthouse import OUTPUT_DIR, AuditError, output_basename

logger = logging.getLogger(__name__)

PSI_API_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
PSI_REPORT_URL = "https://pagespeed.web.dev/report?url="
TIMEOUT = 120.0
MAX_ATTEMPTS = 3
RETRY_DELAY = 2.0
RETRY_BACKOFF = 1.5
MAX_RETRY_DELAY = 10.0
RETRYABLE = {429}

CATEGORY_TITLES = [
    ("performance", "Performance"),
    ("accessibility", "Accessibility"),
    ("best-practices", "Best Practices"),
    ("seo", "SEO"),
    ("pwa", "PWA"),
]


def extract_categories(lighthouse_result: dict) -> tuple[CategoryScore, ...]:
    """Pull the known categories out of a PSI lighthouseResult, in fixed order."""
    categories = lighthouse_result.get("categories") or {}
    found = []
    for category_id, default_title in CATEGORY_TITLES:
        category = categories.get(category_id)
        if not category or category.get("score") is None:
            continue
        found.append(CategoryScore(
            id=category_id,
            title=category.get("title") or default_title,
            score=category["score"],
        ))
    return tuple(found)


def _save_response(data: dict, url: str, device_type: str, output_dir: Path) -> None:
    output_file = output_dir / f"psi-{output_basename(url, device_type)}.json"
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        output_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
        logger.info("Saved PSI results to %s", output_file)
    except OSError as e:
        logger.warning("Failed to save PSI results to %s: %s", output_file, e)


async def run_psi(
    url: str,
    device_type: str,
    categories: list[str],
    api_key: str,
    locale: str = "en-US",
    output_dir: Optional[Path] = OUTPUT_DIR,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    retry_delay: float = RETRY_DELAY,
) -> RunResult:
    """Fetch one PSI result, retrying on 429 and 5xx responses."""
    params = [
        ("url", url),
        ("strategy", device_type),
        ("key", api_key),
        ("locale", locale),
    ] + [("category", c) for c in categories]

    logger.info("Running PSI test for %s (%s)", url, device_type)

    delay = retry_delay
    last_error: Optional[Exception] = None
    async with httpx.AsyncClient(timeout=TIMEOUT, transport=transport) as client:
        for attempt in range(MAX_ATTEMPTS):
            if attempt:
                logger.info("Retry %d/%d for %s (%s)", attempt, MAX_ATTEMPTS - 1, url, device_type)
                await asyncio.sleep(delay)
                delay = min(delay * RETRY_BACKOFF, MAX_RETRY_DELAY)

            try:
                response = await client.get(PSI_API_URL, params=params, headers={"Accept": "application/json"})
            except httpx.RequestError as e:
                last_error = e
                logger.warning("PSI request failed for %s (%s): %s", url, device_type, e)
                continue

            if response.status_code in RETRYABLE or response.status_code >= 500:
                last_error = AuditError(f"PSI API error: {response.status_code} - {response.text[:200]}")
                logger.warning("PSI API returned %d, will retry", response.status_code)
                continue
            if response.is_error:
                raise AuditError(f"PSI API error: {response.status_code} - {response.text[:200]}")

            try:
                data = response.json()
            except ValueError as e:
                raise AuditError(f"PSI API returned a non-JSON body: {response.text[:200]}") from e
            if output_dir is not None:
                _save_response(data, url, device_type, output_dir)

            try:
                result = RunResult(
                    url=url,
                    device_type=device_type,
                    categories=extract_categories(data.get("lighthouseResult") or {}),
                    report_url=PSI_REPORT_URL + quote(url, safe=""),
                )
            except (AttributeError, ValidationError) as e:
                raise AuditError(f"Invalid PSI response for {url} ({device_type}): {e}") from e
            for category in result.categories:
                logger.info("  %s: %d", category.title, round(category.score * 100))
            return result

    raise AuditError(f"PSI test failed for {url} ({device_type}) after {MAX_ATTEMPTS} attempts: {last_error}")
