"""
Cooperative cancellation.

A CancellationToken is shared by every worker of a crawl session and
checked at defined yield points. Cancelling never interrupts a running
await; workers observe it the next time they check.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class ScanCancelled(Exception):
    """Raised at a yield point after the session was cancelled."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(reason or "scan cancelled")


class CancellationToken:
    """Session-wide cancellation flag with an explicit check."""

    def __init__(self):
        self._cancelled = False
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Only the first reason is kept."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.info(f"Scan cancellation requested: {reason}")

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise ScanCancelled if cancellation was requested."""
        if self._cancelled:
            raise ScanCancelled(self._reason)
