"""Command-line interface for the accessibility scanner."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Dict, List, Optional

from a11yscan.async_site_crawler import AccessibilityCrawler
from a11yscan.config import CrawlMode, EnqueueStrategy, FileTypes, ScanConfig, load_blacklisted_patterns
from a11yscan.infrastructure import CancellationToken, ResourceRegistry
from a11yscan.logging_config import setup_logging
from a11yscan.models import Bucket
from a11yscan.output_manager import SessionStorage, StorageError
from a11yscan.pdf_scanner import PdfScanSetupError
from a11yscan.rule_engine import RuleEngineSetupError

logger = logging.getLogger(__name__)


def parse_headers(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated KEY=VALUE options into a header dict.

    Raises:
        ValueError: If an entry has no '='
    """
    headers = {}
    for value in values or []:
        if "=" not in value:
            raise ValueError(f"Invalid header '{value}', expected KEY=VALUE")
        key, _, header_value = value.partition("=")
        headers[key.strip()] = header_value.strip()
    return headers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="a11yscan - Crawl a site and scan every page for accessibility issues"
    )
    parser.add_argument("url", help="Seed URL, sitemap URL or local file")
    parser.add_argument(
        "--type",
        dest="mode",
        choices=[m.value for m in CrawlMode],
        default=CrawlMode.WEBSITE.value,
        help="What the URL points at (default: website)",
    )
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in EnqueueStrategy],
        default=None,
        help="Which discovered links to follow (default: same-domain)",
    )
    parser.add_argument("--max-pages", type=int, default=None, help="Maximum pages to scan (default: 100)")
    parser.add_argument(
        "--max-concurrency", type=int, default=None,
        help="Maximum concurrent page visits (default: 25)",
    )
    parser.add_argument(
        "--file-types",
        choices=[f.value for f in FileTypes],
        default=None,
        help="Document types to scan (default: all)",
    )
    parser.add_argument("--blacklist-file", help="File with one exclusion regex per line")
    parser.add_argument("--screenshots", action="store_true", help="Capture screenshots of flagged elements")
    parser.add_argument("--safe-mode", action="store_true", help="Disable click-based link discovery")
    parser.add_argument("--ignore-robots", action="store_true", help="Ignore robots.txt")
    parser.add_argument(
        "--scan-duration", type=int, default=None,
        help="Stop the scan after this many seconds (default: unlimited)",
    )
    parser.add_argument("--enable-wcag-aaa", action="store_true", help="Include WCAG AAA rules")
    parser.add_argument("--disable-custom-checks", action="store_true", help="Skip a11yscan's custom checks")
    parser.add_argument(
        "--header", action="append", metavar="KEY=VALUE",
        help="Extra HTTP header sent with every request (repeatable)",
    )
    parser.add_argument("--output-dir", help="Base directory for session output (default: results)")
    parser.add_argument("--axe-script", help="Path to axe.min.js")
    parser.add_argument("--verapdf", help="Path to the veraPDF executable")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument("--log-file", help="Write logs to file in addition to console")
    return parser


def config_from_args(args: argparse.Namespace) -> ScanConfig:
    """Build the session config from the environment, overridden by CLI flags."""
    overrides = dict(
        strategy=args.strategy,
        max_pages=args.max_pages,
        max_concurrency=args.max_concurrency,
        file_types=args.file_types,
        scan_duration=args.scan_duration,
        storage_dir=args.output_dir,
        axe_script_path=args.axe_script,
        verapdf_path=args.verapdf,
    )
    if args.blacklist_file:
        overrides["blacklisted_patterns"] = load_blacklisted_patterns(args.blacklist_file)
    if args.header:
        overrides["extra_http_headers"] = parse_headers(args.header)
    # Boolean flags only override when set
    if args.screenshots:
        overrides["include_screenshots"] = True
    if args.safe_mode:
        overrides["safe_mode"] = True
    if args.ignore_robots:
        overrides["follow_robots"] = False
    if args.enable_wcag_aaa:
        overrides["enable_wcag_aaa"] = True
    if args.disable_custom_checks:
        overrides["disable_custom_checks"] = True
    if args.headful:
        overrides["headless"] = False
    return ScanConfig.from_env(**overrides)


def print_summary(crawler: AccessibilityCrawler, storage: SessionStorage) -> None:
    """Print bucket counts and category totals."""
    summary = crawler.get_crawl_summary()
    print(f"\n{'=' * 60}")
    print(f"Scan results: {storage.root}")
    print(f"{'=' * 60}")
    for bucket, count in summary["buckets"].items():
        if count:
            print(f"  • {bucket}: {count}")
    print(f"\nIssues found ({summary['total_items']} items):")
    for category, total in summary["categories"].items():
        print(f"  • {category}: {total}")
    print(f"\n{'=' * 60}\n")


async def run_scan(
    url: str,
    mode: CrawlMode,
    config: ScanConfig,
    cancel_token: Optional[CancellationToken] = None,
    registry: Optional[ResourceRegistry] = None,
) -> int:
    """Run one scan session and print its summary.

    Returns:
        Process exit code
    """
    storage = SessionStorage.for_url(config.storage_dir, url)
    crawler = AccessibilityCrawler(config, storage, registry=registry, cancel_token=cancel_token)
    urls_crawled = await crawler.crawl(url, mode)

    if urls_crawled.count(Bucket.SCANNED) == 0:
        print("No pages were scanned.")
        return 0

    print_summary(crawler, storage)
    logger.debug(json.dumps(crawler.get_crawl_summary(), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, log_file=args.log_file)

    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    cancel_token = CancellationToken()
    registry = ResourceRegistry()

    def handle_interrupt(signum, frame):
        print("\n\nInterrupt received, stopping scan...")
        cancel_token.cancel(f"received signal {signum}")

    signal.signal(signal.SIGINT, handle_interrupt)
    signal.signal(signal.SIGTERM, handle_interrupt)

    try:
        exit_code = asyncio.run(run_scan(args.url, CrawlMode(args.mode), config, cancel_token, registry))
    except (StorageError, PdfScanSetupError, RuleEngineSetupError) as e:
        logger.error(str(e))
        print(f"Error: {e}")
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
