"""
Live browser resource tracking.

Holds contexts, browsers and pools that must be closed on shutdown. Used
only for best-effort teardown, never for scheduling.
"""

import inspect
import logging
from typing import Any, List

logger = logging.getLogger(__name__)


class ResourceRegistry:
    """Register/unregister/drain service for closable resources."""

    def __init__(self):
        self._resources: List[Any] = []

    def register(self, resource: Any) -> Any:
        """Track a resource exposing `close()` or `stop()`. Returns it unchanged."""
        if not any(r is resource for r in self._resources):
            self._resources.append(resource)
        return resource

    def unregister(self, resource: Any) -> None:
        self._resources = [r for r in self._resources if r is not resource]

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, resource: Any) -> bool:
        return any(r is resource for r in self._resources)

    async def drain(self) -> int:
        """Close every registered resource, newest first.

        Failures are logged and skipped.

        Returns:
            Number of resources closed without error
        """
        closed = 0
        while self._resources:
            resource = self._resources.pop()
            closer = getattr(resource, "close", None) or getattr(resource, "stop", None)
            if closer is None:
                continue
            try:
                result = closer()
                if inspect.isawaitable(result):
                    await result
                closed += 1
            except Exception as e:
                logger.debug(f"Error closing {type(resource).__name__}: {e}")
        return closed
