"""Accessibility scanning crawler built on Playwright and axe-core."""

__version__ = "0.1.0"

from a11yscan.async_site_crawler import AccessibilityCrawler
from a11yscan.api import scan_pages
from a11yscan.config import CrawlMode, EnqueueStrategy, FileTypes, ScanConfig
from a11yscan.models import (
    AggregateResults,
    Bucket,
    Category,
    FilteredResults,
    FrontierRequest,
    ItemInfo,
    PageInfo,
    RedirectPair,
    RuleDetails,
    UrlsCrawled,
)
from a11yscan.output_manager import SessionStorage, StorageError
from a11yscan.page_scanner import PageScanHandler
from a11yscan.pdf_scanner import PdfScanSetupError
from a11yscan.request_queue import RequestQueue
from a11yscan.result_merger import ResultAggregator, filter_axe_results, merge_filtered_results
from a11yscan.rule_engine import AxeRuleEngine, RuleEngineSetupError
from a11yscan.sitemap_parser import SitemapParser

from a11yscan.infrastructure import (
    BrowserPool,
    CancellationToken,
    ResourceRegistry,
    ScanCancelled,
)

__all__ = [
    # Core
    "AccessibilityCrawler",
    "scan_pages",
    "AxeRuleEngine",
    "PageScanHandler",
    "RequestQueue",
    "SitemapParser",
    "ResultAggregator",
    "filter_axe_results",
    "merge_filtered_results",
    # Config
    "ScanConfig",
    "CrawlMode",
    "EnqueueStrategy",
    "FileTypes",
    # Models
    "AggregateResults",
    "Bucket",
    "Category",
    "FilteredResults",
    "FrontierRequest",
    "ItemInfo",
    "PageInfo",
    "RedirectPair",
    "RuleDetails",
    "UrlsCrawled",
    # Storage
    "SessionStorage",
    # Errors
    "StorageError",
    "PdfScanSetupError",
    "RuleEngineSetupError",
    "ScanCancelled",
    # Infrastructure
    "BrowserPool",
    "CancellationToken",
    "ResourceRegistry",
]
