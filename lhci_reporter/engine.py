"""
Main report engine — orchestrates audit runs, aggregation, rendering and delivery.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .aggregator import collapse_runs, median_result
from .audits.lighthouse import OUTPUT_DIR, AuditError, output_basename, run_lighthouse
from .audits.psi import run_psi
from .config import ReportConfig, ci_run_url
from .models import RunResult, Summary
from .renderer import ReportRenderer
from .slack import DeliveryError, SlackDestination, send_report
from .summary import build_summary, lowest_score

logger = logging.getLogger(__name__)

BATCH_SIZE = 3
RUN_DELAY = 2.0
AVERAGED_PREFIX = "averaged"
PSI_AVERAGED_PREFIX = "psi-averaged"

AuditFn = Callable[[str, str], Awaitable[RunResult]]


@dataclass
class ReportOutcome:
    results: list[RunResult]
    summary: Summary
    blocks: list[dict]
    lowest_score: Optional[float] = None
    threshold: float = 0.0
    delivered: bool = False
    delivery_error: Optional[str] = None
    failed_pairs: list[tuple[str, str]] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.lowest_score is None or self.lowest_score >= self.threshold


def _save_averaged(
    runs: list[RunResult],
    result: RunResult,
    total_runs: int,
    output_dir: Path,
    prefix: str = AVERAGED_PREFIX,
) -> None:
    output_file = output_dir / f"{prefix}-{output_basename(result.url, result.device_type)}.json"
    data = {
        "url": result.url,
        "deviceType": result.device_type,
        "runsCompleted": len(runs),
        "totalRuns": total_runs,
        "averagedScores": [c.model_dump() for c in result.categories],
        "individualRuns": [[c.model_dump() for c in run.categories] for run in runs],
    }
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        output_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
    except OSError as e:
        logger.warning("Failed to save averaged results to %s: %s", output_file, e)


async def run_pair(
    url: str,
    device_type: str,
    audit: AuditFn,
    runs_per_url: int = 1,
    run_delay: float = RUN_DELAY,
    output_dir: Optional[Path] = None,
    artifact_prefix: str = AVERAGED_PREFIX,
) -> Optional[RunResult]:
    """Run one (url, device) pair `runs_per_url` times and take the median.

    Repeated runs are sequential with a pause between them so that load
    from the previous run can settle. Returns None when every run failed.
    """
    runs = []
    for run in range(1, runs_per_url + 1):
        if runs_per_url > 1:
            logger.info("Testing %s on %s (run %d/%d)...", url, device_type, run, runs_per_url)
        else:
            logger.info("Testing %s on %s...", url, device_type)
        try:
            runs.append(await audit(url, device_type))
        except AuditError as e:
            logger.warning("Failed run %d/%d for %s on %s: %s", run, runs_per_url, url, device_type, e)
        if run < runs_per_url:
            await asyncio.sleep(run_delay)

    if not runs:
        logger.error("All %d runs failed for %s on %s", runs_per_url, url, device_type)
        return None

    result = median_result(runs)
    if runs_per_url > 1 and output_dir is not None:
        _save_averaged(runs, result, runs_per_url, output_dir, artifact_prefix)
    logger.info("Completed test for %s on %s (median of %d runs)", url, device_type, len(runs))
    return result


async def run_audit_matrix(
    urls: list[str],
    device_types: list[str],
    audit: AuditFn,
    runs_per_url: int = 1,
    batch_size: int = BATCH_SIZE,
    run_delay: float = RUN_DELAY,
    output_dir: Optional[Path] = None,
    failed: Optional[list] = None,
    artifact_prefix: str = AVERAGED_PREFIX,
) -> list[RunResult]:
    """Audit every (url, device) pair, `batch_size` URLs at a time.

    Results come back in matrix order regardless of completion order.
    """
    logger.info("Starting audits for %d URLs on %d device types", len(urls), len(device_types))
    results = []
    failed = [] if failed is None else failed

    for start in range(0, len(urls), batch_size):
        pairs = [(url, device) for url in urls[start:start + batch_size] for device in device_types]
        batch = await asyncio.gather(*(
            run_pair(url, device, audit, runs_per_url, run_delay, output_dir, artifact_prefix)
            for url, device in pairs
        ))
        for pair, result in zip(pairs, batch):
            if result is None:
                failed.append(pair)
            else:
                results.append(result)

    logger.info("Completed audits: %d successful, %d failed", len(results), len(failed))
    if not results:
        raise AuditError("No audits were completed successfully")
    return results


def make_audit(config: ReportConfig, output_dir: Path = OUTPUT_DIR) -> AuditFn:
    async def audit(url: str, device_type: str) -> RunResult:
        if config.use_psi_api:
            return await run_psi(
                url, device_type, config.categories, config.psi_api_key,
                locale=config.locale, output_dir=output_dir,
            )
        return await run_lighthouse(
            url, device_type, config.categories, config.chrome_flags, config.timeout,
            throttling_method=config.throttling_method,
            locale=config.locale,
            output_dir=output_dir,
        )

    return audit


def render_report(
    results: list[RunResult],
    config: ReportConfig,
    generated_at: Optional[datetime] = None,
    run_url: Optional[str] = None,
) -> tuple[Summary, list[dict]]:
    """Collapse any repeated runs, summarize and render Slack blocks."""
    canonical = collapse_runs(results)
    summary = build_summary(canonical)
    renderer = ReportRenderer(layout=config.report_layout, title=config.slack_title)
    return summary, renderer.render(canonical, summary, generated_at=generated_at, run_url=run_url)


async def run_report(
    config: ReportConfig,
    results: Optional[list[RunResult]] = None,
    audit: Optional[AuditFn] = None,
    on_progress=None,
    transport=None,
    environ=None,
) -> ReportOutcome:
    """
    Run the full report.

    Args:
        config: Validated action configuration
        results: Pre-computed run results; audits are skipped when given
        audit: Optional audit function override (url, device) -> RunResult
        on_progress: Optional callback(step: str, progress: int)
        transport: Optional httpx transport for Slack delivery

    Returns:
        ReportOutcome with the canonical results, summary and blocks
    """
    failed: list[tuple[str, str]] = []

    if results is None:
        if on_progress:
            await on_progress("Running audits...", 10)
        results = await run_audit_matrix(
            config.urls,
            config.device_types,
            audit or make_audit(config),
            runs_per_url=config.runs_per_url,
            output_dir=OUTPUT_DIR,
            failed=failed,
            artifact_prefix=PSI_AVERAGED_PREFIX if config.use_psi_api else AVERAGED_PREFIX,
        )

    if on_progress:
        await on_progress("Formatting results...", 70)

    canonical = collapse_runs(results)
    summary, blocks = render_report(canonical, config, run_url=ci_run_url(environ))

    outcome = ReportOutcome(
        results=canonical,
        summary=summary,
        blocks=blocks,
        lowest_score=lowest_score(canonical),
        threshold=config.score_threshold,
        failed_pairs=failed,
    )

    if config.dry_run:
        logger.info("Dry run: skipping Slack delivery")
    else:
        if on_progress:
            await on_progress("Sending results to Slack...", 85)
        destination = SlackDestination(
            webhook_url=config.slack_webhook_url,
            token=config.slack_token,
            channel=config.slack_channel,
        )
        try:
            await send_report(blocks, destination, config.slack_title,
                              timeout_ms=config.slack_timeout_ms, transport=transport)
            outcome.delivered = True
        except DeliveryError as e:
            outcome.delivery_error = str(e)
            logger.error("Failed to send results to Slack: %s", e)

    if on_progress:
        await on_progress("Complete", 100)

    return outcome
