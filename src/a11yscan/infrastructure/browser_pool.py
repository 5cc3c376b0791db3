"""
Browser Pool Management.

Manages a pool of Playwright browser contexts for concurrent page visits.
Each acquire hands a worker its own page for the duration of one visit;
pages are never shared between workers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from a11yscan.infrastructure.resource_registry import ResourceRegistry

logger = logging.getLogger(__name__)


class BrowserHealth(Enum):
    """Browser context health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ContextMetrics:
    """Metrics for a browser context."""
    context_id: int
    created_at: datetime
    requests_handled: int = 0
    errors: int = 0
    last_used: datetime | None = None
    health: BrowserHealth = BrowserHealth.HEALTHY

    @property
    def error_rate(self) -> float:
        """Calculate error rate for this context."""
        if self.requests_handled == 0:
            return 0.0
        return self.errors / self.requests_handled

    def record_success(self) -> None:
        """Record a successful visit."""
        self.requests_handled += 1
        self.last_used = datetime.now()

    def record_error(self) -> None:
        """Record a failed visit."""
        self.requests_handled += 1
        self.errors += 1
        self.last_used = datetime.now()
        if self.error_rate > 0.5:
            self.health = BrowserHealth.UNHEALTHY
        elif self.error_rate > 0.2:
            self.health = BrowserHealth.DEGRADED


class BrowserPool:
    """
    Pool of Playwright browser contexts.

    Features:
    - Async context acquisition with automatic page cleanup
    - Health monitoring and automatic recycling
    - Registration with a ResourceRegistry for shutdown teardown
    """

    # Maximum visits before recycling a context
    MAX_REQUESTS_PER_CONTEXT = 100
    # Error rate threshold for recycling
    ERROR_RATE_RECYCLE_THRESHOLD = 0.3

    def __init__(
        self,
        max_size: int = 4,
        headless: bool = True,
        timeout_ms: int = 30000,
        user_agent: str | None = None,
        viewport: Optional[Dict[str, int]] = None,
        extra_http_headers: Optional[Dict[str, str]] = None,
        registry: Optional[ResourceRegistry] = None,
    ):
        """
        Initialize browser pool.

        Args:
            max_size: Maximum number of browser contexts in pool
            headless: Run browsers in headless mode
            timeout_ms: Default navigation timeout
            user_agent: Custom user agent string
            viewport: Viewport size, e.g. {"width": 1920, "height": 1080}
            extra_http_headers: Headers sent with every request
            registry: Registry notified of the pool's lifetime
        """
        self.max_size = max_size
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent
        self.viewport = viewport
        self.extra_http_headers = dict(extra_http_headers or {})
        self.registry = registry

        self._playwright = None
        self._browser = None
        self._contexts: dict[int, Any] = {}
        self._metrics: dict[int, ContextMetrics] = {}
        self._available: asyncio.Queue[int] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._started = False
        self._next_context_id = 0

    async def start(self) -> None:
        """Launch the browser and create all contexts."""
        if self._started:
            return

        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)

        for _ in range(self.max_size):
            await self._create_context()

        self._started = True
        if self.registry is not None:
            self.registry.register(self)
        logger.info(f"Browser pool started with {self.max_size} contexts")

    async def stop(self) -> None:
        """Close all contexts and the browser instance."""
        if not self._started:
            return

        for context_id, context in list(self._contexts.items()):
            try:
                await context.close()
            except Exception as e:
                logger.warning(f"Error closing context {context_id}: {e}")

        self._contexts.clear()
        self._metrics.clear()

        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")

        self._started = False
        if self.registry is not None:
            self.registry.unregister(self)
        logger.info("Browser pool stopped")

    # Registry teardown calls close()
    close = stop

    async def _create_context(self) -> int:
        """
        Create a new browser context.

        Returns:
            Context ID
        """
        context_options: dict[str, Any] = {
            "ignore_https_errors": True,
            "bypass_csp": True,
        }
        if self.user_agent:
            context_options["user_agent"] = self.user_agent
        if self.viewport:
            context_options["viewport"] = self.viewport
        if self.extra_http_headers:
            context_options["extra_http_headers"] = self.extra_http_headers

        context = await self._browser.new_context(**context_options)
        context.set_default_timeout(self.timeout_ms)

        context_id = self._next_context_id
        self._next_context_id += 1

        self._contexts[context_id] = context
        self._metrics[context_id] = ContextMetrics(
            context_id=context_id,
            created_at=datetime.now(),
        )
        await self._available.put(context_id)

        logger.debug(f"Created browser context {context_id}")
        return context_id

    async def _recycle_context(self, context_id: int) -> None:
        """Close a context and create a replacement."""
        async with self._lock:
            old_context = self._contexts.pop(context_id, None)
            self._metrics.pop(context_id, None)

            if old_context:
                try:
                    await old_context.close()
                except Exception as e:
                    logger.warning(f"Error closing context {context_id}: {e}")

            if not self._started:
                return

            new_id = await self._create_context()
            logger.info(f"Recycled context {context_id} -> {new_id}")

    @asynccontextmanager
    async def acquire(self):
        """
        Acquire a browser context and a fresh page from the pool.

        Usage:
            async with pool.acquire() as (context, page):
                await page.goto(url)

        Yields:
            Tuple of (BrowserContext, Page)
        """
        if not self._started:
            raise RuntimeError("Browser pool not started. Call start() first.")

        context_id = await self._available.get()
        context = self._contexts.get(context_id)
        metrics = self._metrics.get(context_id)

        while not context or not metrics:
            # Context was recycled, get another
            context_id = await self._available.get()
            context = self._contexts.get(context_id)
            metrics = self._metrics.get(context_id)

        try:
            page = await context.new_page()

            try:
                yield context, page
                metrics.record_success()
            except Exception:
                metrics.record_error()
                raise
            finally:
                try:
                    await page.close()
                except Exception as e:
                    logger.debug(f"Failed to close page: {e}")

        finally:
            should_recycle = (
                metrics.requests_handled >= self.MAX_REQUESTS_PER_CONTEXT or
                metrics.error_rate > self.ERROR_RATE_RECYCLE_THRESHOLD or
                metrics.health == BrowserHealth.UNHEALTHY
            )

            if should_recycle and self._started:
                asyncio.create_task(self._recycle_context(context_id))
            else:
                await self._available.put(context_id)

    @property
    def available_count(self) -> int:
        """Number of available contexts."""
        return self._available.qsize()

    @property
    def is_started(self) -> bool:
        """Whether pool has been started."""
        return self._started

    async def __aenter__(self) -> "BrowserPool":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
