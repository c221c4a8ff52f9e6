"""
Command-line entry point for CI.

Usage:
    lhci-slack-report                      # inputs from INPUT_* env vars
    lhci-slack-report --urls https://example.com --dry-run --print-blocks
    lhci-slack-report --reports lighthouse-results/*.report.json
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from .aggregator import EmptyInputError
from .audits.lighthouse import AuditError, load_report_files
from .config import ConfigError, load_config, parse_input_list
from .engine import run_report

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lhci-slack-report",
        description="Run Lighthouse audits and report the results to Slack.",
    )
    parser.add_argument("--urls", help="Comma-separated URLs (overrides INPUT_URLS)")
    parser.add_argument("--device-types", help="Comma-separated device types: mobile, desktop")
    parser.add_argument("--categories", help="Comma-separated Lighthouse categories")
    parser.add_argument("--runs-per-url", type=int, help="Runs per URL/device, reduced by median")
    parser.add_argument("--fail-on-score-below", type=int, help="Fail when any score is below this (0-100)")
    parser.add_argument("--layout", choices=("compact", "detailed"), help="Slack message layout")
    parser.add_argument("--title", help="Slack message title")
    parser.add_argument("--reports", nargs="+", metavar="JSON",
                        help="Use existing Lighthouse JSON reports instead of running audits")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Render but do not send to Slack")
    parser.add_argument("--print-blocks", action="store_true", help="Print the rendered Slack blocks as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    results = None
    if args.reports:
        try:
            results = load_report_files(args.reports)
        except AuditError as e:
            logger.error("%s", e)
            return EXIT_FAILED

    urls = parse_input_list(args.urls) or None
    if urls is None and results and not os.environ.get("INPUT_URLS"):
        urls = list(dict.fromkeys(r.url for r in results))

    try:
        config = load_config(
            urls=urls,
            device_types=parse_input_list(args.device_types) or None,
            categories=parse_input_list(args.categories) or None,
            runs_per_url=args.runs_per_url,
            fail_on_score_below=args.fail_on_score_below,
            report_layout=args.layout,
            slack_title=args.title,
            dry_run=args.dry_run,
        )
    except ConfigError as e:
        logger.error("%s", e)
        return EXIT_BAD_CONFIG

    logger.info("Configuration:")
    logger.info("  - URLs: %s", ", ".join(config.urls))
    logger.info("  - Device types: %s", ", ".join(config.device_types))
    logger.info("  - Categories: %s", ", ".join(config.categories))
    logger.info("  - Fail on score below: %d%%", config.fail_on_score_below)

    try:
        outcome = asyncio.run(run_report(config, results=results))
    except (AuditError, EmptyInputError) as e:
        logger.error("Error running Lighthouse tests: %s", e)
        return EXIT_FAILED

    if args.print_blocks:
        print(json.dumps({"blocks": outcome.blocks}, ensure_ascii=False, indent=2))

    if outcome.lowest_score is None:
        logger.warning("No category scores were produced")
        return EXIT_OK

    lowest = round(outcome.lowest_score * 100)
    logger.info("Lowest score: %d%%", lowest)
    if not outcome.passed:
        logger.error(
            "One or more scores (%d%%) are below the threshold of %d%%",
            lowest, config.fail_on_score_below,
        )
        return EXIT_FAILED

    logger.info("All scores are above the threshold of %d%%", config.fail_on_score_below)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
