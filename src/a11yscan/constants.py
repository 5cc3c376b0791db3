# src/a11yscan/constants.py
"""Centralized constants for the accessibility scanner.

This module contains fixed limits and lookup tables used across multiple
modules. For user-configurable settings, see config.py and ScanConfig.
"""

import re

# =============================================================================
# Crawl Limits
# =============================================================================

# Default number of pages scanned before the crawl is cancelled
DEFAULT_MAX_PAGES = 100

# Default size of the worker pool
DEFAULT_MAX_CONCURRENCY = 25

# Upper bound for a single request handler run (navigate + classify + scan)
REQUEST_HANDLER_TIMEOUT_SECONDS = 90

# Navigation load timeout (milliseconds, Playwright units)
NAVIGATION_TIMEOUT_MS = 30000

# Idle poll interval for workers waiting on in-flight requests
WORKER_IDLE_POLL_SECONDS = 0.1

# =============================================================================
# URL Classification
# =============================================================================

# File extensions never worth navigating to
BLACKLISTED_FILE_EXTENSIONS = (
    "css", "js", "txt", "mp3", "mp4", "jpg", "jpeg", "png",
    "svg", "gif", "woff", "zip", "webp", "json", "xml",
)

# Tracking parameters collapsed before deduplication
UTM_PARAM_PATTERN = re.compile(r"(?<=&|\?)utm_.*?(&|$)", re.IGNORECASE | re.MULTILINE)

# Content types a page must report to be scanned
PROCESSIBLE_CONTENT_TYPES = ("text/html", "application/pdf")

# First bytes of a ZIP archive
ZIP_MAGIC_NUMBER = b"PK\x03\x04"

# Timeout for HEAD / range probes (seconds)
MIME_PROBE_TIMEOUT_SECONDS = 10.0

# Timeout for robots.txt fetch (seconds)
ROBOTS_FETCH_TIMEOUT_SECONDS = 5.0

# =============================================================================
# Link Discovery
# =============================================================================

# Anchors enqueued from the static DOM
STATIC_LINK_SELECTOR = 'a:not([href*="#"]):not([href^="mailto:"])'

# Clickable elements that are not conventional links
CLICKABLE_ELEMENT_SELECTORS = (
    ':not(a):is([role="link"], button[onclick])',
    'a:not([href])',
    '[role="button"]:not(a[href])',
)
CLICKABLE_ELEMENT_SELECTOR = ", ".join(CLICKABLE_ELEMENT_SELECTORS)

# Wait after a click before inspecting its navigational consequence
CLICK_SETTLE_SECONDS = 1.0

# Per-click timeout (milliseconds)
CLICK_TIMEOUT_MS = 1000

# Consecutive element failures before click discovery gives up on a page
MAX_CONSECUTIVE_CLICK_FAILURES = 5

# =============================================================================
# DOM Stability
# =============================================================================

MAX_OBSERVED_MUTATIONS = 250
MAX_SAME_MUTATION_REPEATS = 10
DOM_IDLE_MS = 1000

# =============================================================================
# Result Categorization
# =============================================================================

FRAME_TESTED_RULE_ID = "frame-tested"

WCAG_LEVEL_TAGS = ("wcag2a", "wcag2aa", "wcag2aaa")
WCAG_AAA_TAG = "wcag2aaa"
BEST_PRACTICE_TAG = "best-practice"

# Escaped so stored snippets cannot close an embedding <script> block
SCRIPT_CLOSE_TAG = "</script>"
SCRIPT_CLOSE_TAG_ESCAPED = "&lt;/script>"

# =============================================================================
# PDF Scanning
# =============================================================================

PDF_LEVEL_AAA_CLAUSES = ("2.4.9", "1.4.8")
PDF_LEVEL_AA_CLAUSES = ("1.3.4", "1.4.3", "1.4.4", "1.4.10")
PDF_LEVEL_A_CLAUSES = ("1.3.1", "4.1.1", "4.1.2")

# Known false positives, keyed by clause then test number
PDF_EXCLUDED_TESTS = {
    "1.3.4": {1},
}

PDF_SEVERITY_TO_CATEGORY = {
    "critical": "mustFix",
    "error": "goodToFix",
    "serious": "goodToFix",
    "warning": "goodToFix",
    "ignore": "goodToFix",
}

PDF_SCAN_RESULT_FILE = "pdf-scan-results.json"
VERAPDF_PROFILE_RELATIVE_PATH = "profiles/veraPDF-validation-profiles-rel-1.24/PDF_UA/WCAG-21.xml"
PDF_MAGIC_PREFIX = b"%PDF-"
PDF_EOF_MARKER = b"%%EOF"

# =============================================================================
# Browser Defaults
# =============================================================================

DESKTOP_VIEWPORT_WIDTH = 1920
DESKTOP_VIEWPORT_HEIGHT = 1080
BUNDLE_VERSION = "1.0.0"
