from dotenv import load_dotenv
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Dict, Optional, Tuple
from pathlib import Path
import os
import re

from a11yscan.constants import (
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_CONCURRENCY,
    DESKTOP_VIEWPORT_WIDTH,
    DESKTOP_VIEWPORT_HEIGHT,
    NAVIGATION_TIMEOUT_MS,
    REQUEST_HANDLER_TIMEOUT_SECONDS,
)

load_dotenv()  # Loads variables from .env file

ENV_PREFIX = "A11YSCAN_"


class EnqueueStrategy(str, Enum):
    """Which discovered hosts count as part of the crawl."""
    SAME_DOMAIN = "same-domain"
    SAME_HOSTNAME = "same-hostname"


class FileTypes(str, Enum):
    """Document types the crawler is allowed to scan."""
    ALL = "all"
    PDF_ONLY = "pdf-only"
    HTML_ONLY = "html-only"


class CrawlMode(str, Enum):
    """How the initial frontier is seeded."""
    WEBSITE = "website"
    SITEMAP = "sitemap"
    LOCAL_FILE = "localfile"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default  # Keep default if conversion fails


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def load_blacklisted_patterns(path: Optional[str]) -> Tuple[str, ...]:
    """Load exclusion regexes from a file, one per line.

    Args:
        path: Path to the pattern file (None or missing file = nothing blacklisted)

    Returns:
        Tuple of regex source strings

    Raises:
        ValueError: If a line is not a valid regular expression
    """
    if not path:
        return ()

    file_path = Path(path)
    if not file_path.exists():
        return ()

    patterns = []
    with open(file_path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            pattern = line.strip()
            if not pattern or pattern.startswith("#"):
                continue
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid blacklist pattern on line {line_no}: {pattern!r} ({e})")
            patterns.append(pattern)

    return tuple(patterns)


@dataclass(frozen=True)
class ScanConfig:
    """Immutable configuration for one scan session.

    Built once at startup and handed to every component that needs it.
    """
    strategy: EnqueueStrategy = EnqueueStrategy.SAME_DOMAIN
    max_pages: int = DEFAULT_MAX_PAGES
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    file_types: FileTypes = FileTypes.ALL
    blacklisted_patterns: Tuple[str, ...] = ()
    include_screenshots: bool = False
    follow_robots: bool = True
    safe_mode: bool = False
    extra_http_headers: Dict[str, str] = field(default_factory=dict)
    scan_duration: int = 0  # seconds, 0 = unlimited

    # Ruleset flags
    enable_wcag_aaa: bool = False
    disable_custom_checks: bool = False

    # Browser
    headless: bool = True
    user_agent: Optional[str] = None
    viewport_width: int = DESKTOP_VIEWPORT_WIDTH
    viewport_height: int = DESKTOP_VIEWPORT_HEIGHT

    # Paths
    storage_dir: str = "results"
    axe_script_path: Optional[str] = None
    verapdf_path: Optional[str] = None

    # Timeouts
    navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS
    request_handler_timeout_s: int = REQUEST_HANDLER_TIMEOUT_SECONDS

    def __post_init__(self):
        if self.max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        # Accept plain strings for the enum fields
        object.__setattr__(self, "strategy", EnqueueStrategy(self.strategy))
        object.__setattr__(self, "file_types", FileTypes(self.file_types))
        object.__setattr__(self, "blacklisted_patterns", tuple(self.blacklisted_patterns))

    @property
    def scan_pdfs(self) -> bool:
        return self.file_types != FileTypes.HTML_ONLY

    @property
    def scan_html(self) -> bool:
        return self.file_types != FileTypes.PDF_ONLY

    @classmethod
    def from_env(cls, **overrides) -> "ScanConfig":
        """Load configuration from environment variables.

        Environment variables are prefixed with A11YSCAN_,
        e.g. A11YSCAN_MAX_PAGES=50. Keyword overrides take precedence.

        Returns:
            ScanConfig: Configuration instance with values from environment
        """
        values = dict(
            strategy=_env_str("STRATEGY", EnqueueStrategy.SAME_DOMAIN.value),
            max_pages=_env_int("MAX_PAGES", DEFAULT_MAX_PAGES),
            max_concurrency=_env_int("MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
            file_types=_env_str("FILE_TYPES", FileTypes.ALL.value),
            blacklisted_patterns=load_blacklisted_patterns(_env_str("BLACKLIST_FILE", None)),
            include_screenshots=_env_bool("INCLUDE_SCREENSHOTS", False),
            follow_robots=_env_bool("FOLLOW_ROBOTS", True),
            safe_mode=_env_bool("SAFE_MODE", False),
            scan_duration=_env_int("SCAN_DURATION", 0),
            enable_wcag_aaa=_env_bool("ENABLE_WCAG_AAA", False),
            disable_custom_checks=_env_bool("DISABLE_CUSTOM_CHECKS", False),
            headless=_env_bool("HEADLESS", True),
            user_agent=_env_str("USER_AGENT", None),
            storage_dir=_env_str("STORAGE_DIR", "results"),
            axe_script_path=_env_str("AXE_SCRIPT", None),
            verapdf_path=os.getenv("VERAPDF_PATH"),
            navigation_timeout_ms=_env_int("NAVIGATION_TIMEOUT_MS", NAVIGATION_TIMEOUT_MS),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **changes) -> "ScanConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert configuration to a JSON-friendly dictionary."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, tuple):
                value = list(value)
            result[f.name] = value
        return result
