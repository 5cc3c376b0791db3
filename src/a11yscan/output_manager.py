"""Session-scoped storage for crawl state and per-page results."""

import json
import logging
import random
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional
from urllib.parse import urlparse

from a11yscan.models import UrlsCrawled

logger = logging.getLogger(__name__)

DATASET_FILE = "results.jsonl"
LEDGER_FILE = "urls_crawled.json"


class StorageError(Exception):
    """Raised when the session storage directory cannot be created."""


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def generate_session_token(url: str, timestamp: Optional[datetime] = None) -> str:
    """Create a random session token such as `20240131_142501_example_com_417`.

    Args:
        url: Seed URL or path for the scan
        timestamp: Optional timestamp (defaults to now)

    Returns:
        Token usable as a directory name
    """
    if timestamp is None:
        timestamp = datetime.now()

    host = urlparse(url).hostname or Path(url).stem or "local"
    # Clean host for filesystem
    host = "".join(c if c.isalnum() or c in "-" else "_" for c in host)
    return f"{timestamp.strftime('%Y%m%d_%H%M%S')}_{host}_{random.randint(100, 999)}"


class Dataset:
    """Append-only JSONL dataset of per-page results."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._count = 0

    def push_data(self, record) -> None:
        """Append one record. Objects with `to_dict` are converted first."""
        if hasattr(record, "to_dict"):
            record = record.to_dict()
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, cls=DateTimeEncoder) + "\n")
        self._count += 1

    def iter_records(self) -> Iterator[dict]:
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield json.loads(line)

    def read_all(self) -> List[dict]:
        return list(self.iter_records())

    @property
    def pushed_count(self) -> int:
        return self._count


class SessionStorage:
    """Directory layout for one scan session.

    Structure:
        <base_dir>/<token>/
            ├── request_queue/
            ├── datasets/results.jsonl
            ├── pdfs/
            ├── screenshots/
            └── urls_crawled.json
    """

    def __init__(self, base_dir: str, token: str):
        """Create the session directory tree.

        Args:
            base_dir: Base directory for all sessions
            token: Session token (see generate_session_token)

        Raises:
            StorageError: If the directories cannot be created
        """
        self.token = token
        self.root = Path(base_dir) / token

        try:
            for directory in (self.root, self.request_queue_dir, self.dataset_dir,
                              self.pdf_dir, self.screenshot_dir):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory {self.root}: {e}") from e

        self.dataset = Dataset(self.dataset_dir / DATASET_FILE)
        logger.debug(f"Session storage ready at {self.root}")

    @classmethod
    def for_url(cls, base_dir: str, url: str) -> "SessionStorage":
        return cls(base_dir, generate_session_token(url))

    @property
    def request_queue_dir(self) -> Path:
        return self.root / "request_queue"

    @property
    def dataset_dir(self) -> Path:
        return self.root / "datasets"

    @property
    def pdf_dir(self) -> Path:
        return self.root / "pdfs"

    @property
    def screenshot_dir(self) -> Path:
        return self.root / "screenshots"

    @property
    def ledger_path(self) -> Path:
        return self.root / LEDGER_FILE

    def write_ledger(self, urls_crawled: UrlsCrawled) -> Path:
        """Write the final crawl ledger as JSON."""
        self._save_json(self.ledger_path, urls_crawled.to_dict())
        return self.ledger_path

    def publish_empty_result(self) -> None:
        """Push an empty record so downstream readers never find the dataset missing."""
        self.dataset.push_data({"scanned": [], "scannedRedirects": []})

    def _save_json(self, filepath: Path, data: dict) -> None:
        """Save data as formatted JSON.

        Args:
            filepath: Path to save to
            data: Data to save
        """
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, cls=DateTimeEncoder)
