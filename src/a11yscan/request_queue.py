"""Persistent, deduplicated request queue (the crawl frontier)."""

import json
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Optional, Set

from a11yscan.models import FrontierRequest
from a11yscan.url_classifier import compute_unique_key, encode_url, strip_tracking_params

logger = logging.getLogger(__name__)

QUEUE_LOG_FILE = "requests.jsonl"


class RequestQueue:
    """Roughly-FIFO work queue keyed by normalized URL.

    State is kept as an append-only JSONL event log under `storage_dir`
    and replayed on open, so a session can resume after a restart. All
    mutating calls are synchronous; nothing is half-applied across an
    await point.
    """

    def __init__(self, storage_dir: Optional[Path] = None):
        """
        Initialize the queue.

        Args:
            storage_dir: Directory for the event log (None = in-memory only)
        """
        self._pending: "OrderedDict[str, FrontierRequest]" = OrderedDict()
        self._in_progress: Dict[str, FrontierRequest] = {}
        self._handled: Set[str] = set()
        self._log_path: Optional[Path] = None

        if storage_dir is not None:
            storage_dir = Path(storage_dir)
            storage_dir.mkdir(parents=True, exist_ok=True)
            self._log_path = storage_dir / QUEUE_LOG_FILE
            self._replay()

    def _replay(self) -> None:
        if not self._log_path.exists():
            return

        with open(self._log_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping corrupt queue entry in {self._log_path}")
                    continue

                key = event.get("key")
                if event.get("event") == "add" and key not in self._handled:
                    self._pending[key] = FrontierRequest.from_dict(event["request"])
                elif event.get("event") == "handled":
                    self._pending.pop(key, None)
                    self._handled.add(key)

        if self._pending or self._handled:
            logger.info(
                f"Resumed request queue: {len(self._pending)} pending, "
                f"{len(self._handled)} handled"
            )

    def _append_event(self, event: dict) -> None:
        if self._log_path is None:
            return
        with open(self._log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")

    @staticmethod
    def prepare(request: FrontierRequest) -> FrontierRequest:
        """Encode the URL, strip tracking parameters and fill in the unique key."""
        request.url = strip_tracking_params(encode_url(request.url))
        if not request.unique_key:
            request.unique_key = compute_unique_key(request.url)
        return request

    def add(self, request: FrontierRequest) -> bool:
        """Enqueue a request.

        Re-adding a key that is pending, in progress or handled is a no-op.

        Returns:
            True if the request was added
        """
        request = self.prepare(request)
        key = request.unique_key

        if key in self._pending or key in self._in_progress or key in self._handled:
            return False

        self._pending[key] = request
        self._append_event({"event": "add", "key": key, "request": request.to_dict()})
        return True

    def fetch_next(self) -> Optional[FrontierRequest]:
        """Take the oldest pending request, or None if nothing is pending."""
        if not self._pending:
            return None
        key, request = self._pending.popitem(last=False)
        self._in_progress[key] = request
        return request

    def mark_handled(self, request: FrontierRequest) -> None:
        key = request.unique_key
        self._in_progress.pop(key, None)
        if key in self._handled:
            return
        self._handled.add(key)
        self._append_event({"event": "handled", "key": key})

    def reclaim(self, request: FrontierRequest) -> None:
        """Return an in-progress request to the front of the queue."""
        key = request.unique_key
        if self._in_progress.pop(key, None) is None:
            return
        self._pending[key] = request
        self._pending.move_to_end(key, last=False)

    def is_empty(self) -> bool:
        return not self._pending

    def is_finished(self) -> bool:
        return not self._pending and not self._in_progress

    def is_handled(self, unique_key: str) -> bool:
        return unique_key in self._handled

    def is_known(self, url: str) -> bool:
        """True if the normalized `url` is pending, in progress or handled."""
        key = self.prepare(FrontierRequest(url=url)).unique_key
        return key in self._pending or key in self._in_progress or key in self._handled

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def in_progress_count(self) -> int:
        return len(self._in_progress)

    @property
    def handled_count(self) -> int:
        return len(self._handled)

    def __len__(self) -> int:
        return len(self._pending)
