"""
Run the Lighthouse CLI for one URL/device and parse its JSON report.
"""

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from ..models import CategoryScore, RunResult

logger = logging.getLogger(__name__)

OUTPUT_DIR = Path("lighthouse-results")
MAX_RETRIES = 2
RETRY_DELAY = 3.0
RETRY_BACKOFF = 1.5
MAX_WAIT_FOR_FCP_MS = 30000

SCREEN_EMULATION = {
    "mobile": {"mobile": "true", "width": 360, "height": 640, "deviceScaleFactor": 2},
    "desktop": {"mobile": "false", "width": 1350, "height": 940, "deviceScaleFactor": 1},
}


class AuditError(RuntimeError):
    pass


def output_basename(url: str, device_type: str) -> str:
    return f"{re.sub(r'[^a-zA-Z0-9]', '_', url)}-{device_type}"


def build_command(
    url: str,
    device_type: str,
    categories: list[str],
    output_path: Path,
    chrome_flags: str,
    timeout: int,
    throttling_method: str = "simulate",
    locale: str = "en-US",
) -> list[str]:
    """Argument list for `npx lighthouse` with the device's emulation settings."""
    screen = SCREEN_EMULATION[device_type]
    timeout_ms = timeout * 1000

    command = [
        "npx", "lighthouse@latest", url,
        "--output=json", "--output=html",
        f"--output-path={output_path}",
        f"--only-categories={','.join(categories)}",
        f"--chrome-flags={chrome_flags.replace(';', '')}",
        f"--max-wait-for-load={timeout_ms}",
        f"--max-wait-for-fcp={MAX_WAIT_FOR_FCP_MS}",
        "--gather-mode=navigation",
        f"--locale={locale}",
        f"--form-factor={device_type}",
        f"--screenEmulation.mobile={screen['mobile']}",
        f"--screenEmulation.width={screen['width']}",
        f"--screenEmulation.height={screen['height']}",
        f"--screenEmulation.deviceScaleFactor={screen['deviceScaleFactor']}",
        "--screenEmulation.disabled=false",
        "--quiet",
        "--no-enable-error-reporting",
    ]
    if device_type == "desktop":
        command += ["--preset=desktop", "--throttling-method=provided",
                    "--throttling.cpuSlowdownMultiplier=1"]
    else:
        command.append(f"--throttling-method={throttling_method}")
    return command


def _device_from_report(data: dict) -> str:
    settings = data.get("configSettings") or {}
    form_factor = settings.get("formFactor") or settings.get("emulatedFormFactor")
    return "desktop" if form_factor == "desktop" else "mobile"


def parse_lighthouse_report(
    data: dict,
    url: Optional[str] = None,
    device_type: Optional[str] = None,
    report_url: Optional[str] = None,
) -> RunResult:
    """Turn a Lighthouse JSON report into a RunResult.

    Categories Lighthouse could not score (score is null) are skipped
    rather than counted as zero.
    """
    categories = data.get("categories")
    if not isinstance(categories, dict):
        raise AuditError("Invalid Lighthouse results: missing 'categories' property")

    try:
        scores = []
        for category_id, category in categories.items():
            score = category.get("score")
            if score is None:
                logger.warning("Lighthouse returned no score for %s", category_id)
                continue
            scores.append(CategoryScore(
                id=category_id,
                title=category.get("title") or category_id,
                score=score,
            ))

        return RunResult(
            url=url or data.get("finalDisplayedUrl") or data.get("finalUrl") or data.get("requestedUrl", ""),
            device_type=device_type or _device_from_report(data),
            categories=tuple(scores),
            report_url=report_url,
        )
    except (AttributeError, ValidationError) as e:
        raise AuditError(f"Invalid Lighthouse results: {e}") from e


def load_report_files(paths: Iterable[Path]) -> list[RunResult]:
    """Parse Lighthouse JSON reports that were produced by an earlier step."""
    results = []
    for path in paths:
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise AuditError(f"Failed to read Lighthouse report {path}: {e}") from e
        html = path.with_name(path.name.replace(".json", ".html"))
        results.append(parse_lighthouse_report(
            data, report_url=str(html) if html.exists() else None,
        ))
    return results


async def _run_once(command: list[str], timeout: int) -> None:
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout + 30)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise AuditError(f"Lighthouse timed out after {timeout + 30}s")

    if process.returncode != 0:
        raise AuditError(
            f"Lighthouse exited with {process.returncode}: {stderr.decode(errors='replace')[-500:]}"
        )


async def run_lighthouse(
    url: str,
    device_type: str,
    categories: list[str],
    chrome_flags: str,
    timeout: int,
    throttling_method: str = "simulate",
    locale: str = "en-US",
    output_dir: Path = OUTPUT_DIR,
    max_retries: int = MAX_RETRIES,
) -> RunResult:
    """Run Lighthouse for one URL/device, retrying failed attempts."""
    output_dir.mkdir(parents=True, exist_ok=True)
    base = output_basename(url, device_type)
    command = build_command(
        url, device_type, categories, output_dir / base,
        chrome_flags, timeout, throttling_method, locale,
    )
    json_file = output_dir / f"{base}.report.json"
    html_file = output_dir / f"{base}.report.html"

    logger.info("Running Lighthouse for %s (%s)", url, device_type)
    logger.debug("Command: %s", " ".join(command))

    delay = RETRY_DELAY
    last_error: Optional[Exception] = None
    for attempt in range(max_retries + 1):
        if attempt:
            logger.warning("Retry %d/%d for %s (%s)", attempt, max_retries, url, device_type)
            await asyncio.sleep(delay)
            delay *= RETRY_BACKOFF
        try:
            await _run_once(command, timeout)
            if not json_file.exists():
                raise AuditError(f"JSON output file not found: {json_file}")
            data = json.loads(json_file.read_text(encoding="utf-8"))
            return parse_lighthouse_report(
                data, url=url, device_type=device_type,
                report_url=str(html_file) if html_file.exists() else None,
            )
        except (AuditError, OSError, json.JSONDecodeError) as e:
            last_error = e
            logger.warning("Attempt %d failed for %s (%s): %s", attempt + 1, url, device_type, e)

    raise AuditError(f"Failed to run Lighthouse for {url} ({device_type}): {last_error}")
