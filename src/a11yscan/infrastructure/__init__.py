"""
Infrastructure Package.

Provides browser pooling, cooperative cancellation and resource tracking
for concurrent scanning.
"""

from .browser_pool import (
    BrowserPool,
    BrowserHealth,
    ContextMetrics,
)
from .cancellation import (
    CancellationToken,
    ScanCancelled,
)
from .resource_registry import ResourceRegistry

__all__ = [
    "BrowserPool",
    "BrowserHealth",
    "ContextMetrics",
    "CancellationToken",
    "ScanCancelled",
    "ResourceRegistry",
]
