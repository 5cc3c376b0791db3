"""Logging configuration for the accessibility scanner."""

import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Optional

PROGRESS_LOGGER_NAME = "a11yscan.progress"


class ScanStatus(str, Enum):
    """Status reported on progress lines."""
    SCANNED = "scanned"
    SKIPPED = "skipped"
    ERROR = "error"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> None:
    """Configure logging for the scanner.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        format_string: Optional custom format string
    """
    if format_string is None:
        format_string = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    # Get numeric level
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=numeric_level,
        format=format_string,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    # Set levels for noisy third-party libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def format_progress(status: ScanStatus, num_scanned: int, url: str) -> str:
    return f"crawling::{num_scanned}::{ScanStatus(status).value}::{url}"


def log_scan_progress(status: ScanStatus, num_scanned: int, url: str) -> None:
    """Emit a machine-readable progress line for a page outcome.

    Args:
        status: Outcome of the page
        num_scanned: Pages scanned so far
        url: Page URL (never containing credentials)
    """
    logging.getLogger(PROGRESS_LOGGER_NAME).info(format_progress(status, num_scanned, url))
