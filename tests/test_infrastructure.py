"""Tests for infrastructure components.

Tests for browser pool, cancellation token and resource registry.
"""

import inspect
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from a11yscan.infrastructure.browser_pool import (
    BrowserPool,
    BrowserHealth,
    ContextMetrics,
)
from a11yscan.infrastructure.cancellation import CancellationToken, ScanCancelled
from a11yscan.infrastructure.resource_registry import ResourceRegistry


# =============================================================================
# BrowserPool Tests
# =============================================================================

class TestBrowserPool:
    """Test cases for BrowserPool."""

    def test_pool_initialization_defaults(self):
        """Test pool initializes with correct defaults."""
        pool = BrowserPool()
        assert pool.max_size == 4
        assert pool.headless is True
        assert pool.timeout_ms == 30000
        assert pool.extra_http_headers == {}
        assert pool.is_started is False

    def test_pool_initialization_custom(self):
        """Test pool initialization with custom parameters."""
        pool = BrowserPool(
            max_size=8,
            headless=False,
            timeout_ms=60000,
            user_agent="Custom UA",
            viewport={"width": 1280, "height": 720},
            extra_http_headers={"Authorization": "Basic abc"},
        )
        assert pool.max_size == 8
        assert pool.headless is False
        assert pool.timeout_ms == 60000
        assert pool.user_agent == "Custom UA"
        assert pool.viewport == {"width": 1280, "height": 720}
        assert pool.extra_http_headers == {"Authorization": "Basic abc"}

    def test_context_metrics_initialization(self):
        """Test ContextMetrics initialization."""
        metrics = ContextMetrics(
            context_id=1,
            created_at=datetime.now(),
        )
        assert metrics.requests_handled == 0
        assert metrics.errors == 0
        assert metrics.health == BrowserHealth.HEALTHY
        assert metrics.error_rate == 0.0

    def test_context_metrics_record_success(self):
        """Test recording successful visits."""
        metrics = ContextMetrics(
            context_id=1,
            created_at=datetime.now(),
        )
        metrics.record_success()
        assert metrics.requests_handled == 1
        assert metrics.errors == 0
        assert metrics.last_used is not None
        assert metrics.health == BrowserHealth.HEALTHY

    def test_context_metrics_record_error(self):
        """Test recording failed visits."""
        metrics = ContextMetrics(
            context_id=1,
            created_at=datetime.now(),
        )
        metrics.record_success()
        metrics.record_success()
        metrics.record_error()

        assert metrics.requests_handled == 3
        assert metrics.errors == 1
        assert metrics.error_rate == pytest.approx(1/3, rel=0.01)

    def test_context_metrics_health_degradation(self):
        """Test health degrades with high error rate."""
        metrics = ContextMetrics(
            context_id=1,
            created_at=datetime.now(),
        )
        # 3 errors, 2 successes = 60% error rate
        metrics.record_error()
        metrics.record_error()
        metrics.record_error()
        metrics.record_success()
        metrics.record_success()

        assert metrics.error_rate > 0.5
        assert metrics.health == BrowserHealth.UNHEALTHY

    def test_context_metrics_degraded_state(self):
        """Test degraded state at moderate error rate."""
        metrics = ContextMetrics(
            context_id=1,
            created_at=datetime.now(),
        )
        # Health is updated on record_error(), so error must be last
        metrics.record_success()
        metrics.record_success()
        metrics.record_error()

        assert 0.2 < metrics.error_rate < 0.5
        assert metrics.health == BrowserHealth.DEGRADED

    @pytest.mark.asyncio
    async def test_pool_not_started_raises_error(self):
        """Test acquiring from unstarted pool raises error."""
        pool = BrowserPool()

        with pytest.raises(RuntimeError, match="not started"):
            async with pool.acquire():
                pass

    @pytest.mark.asyncio
    async def test_stop_unstarted_pool_is_noop(self):
        """Test stopping a pool that never started does nothing."""
        registry = ResourceRegistry()
        pool = BrowserPool(registry=registry)
        await pool.stop()
        assert pool.is_started is False
        assert len(registry) == 0

    def test_pool_has_async_context_manager(self):
        """Test BrowserPool supports async context manager protocol."""
        pool = BrowserPool()
        assert hasattr(pool, '__aenter__')
        assert hasattr(pool, '__aexit__')
        assert inspect.iscoroutinefunction(pool.__aenter__)
        assert inspect.iscoroutinefunction(pool.__aexit__)


# =============================================================================
# CancellationToken Tests
# =============================================================================

class TestCancellationToken:
    """Test cases for CancellationToken."""

    def test_new_token_not_cancelled(self):
        """Test a fresh token does not raise."""
        token = CancellationToken()
        assert token.is_cancelled is False
        assert token.reason is None
        token.raise_if_cancelled()

    def test_cancel_raises_at_check(self):
        """Test raise_if_cancelled raises after cancel."""
        token = CancellationToken()
        token.cancel("max pages reached")

        with pytest.raises(ScanCancelled, match="max pages reached"):
            token.raise_if_cancelled()

    def test_first_reason_wins(self):
        """Test later cancel calls keep the original reason."""
        token = CancellationToken()
        token.cancel("scan duration exceeded")
        token.cancel("received signal 2")
        assert token.reason == "scan duration exceeded"

    def test_scan_cancelled_default_message(self):
        """Test ScanCancelled without a reason."""
        assert str(ScanCancelled()) == "scan cancelled"


# =============================================================================
# ResourceRegistry Tests
# =============================================================================

class TestResourceRegistry:
    """Test cases for ResourceRegistry."""

    def test_register_is_idempotent(self):
        """Test registering the same resource twice tracks it once."""
        registry = ResourceRegistry()
        resource = MagicMock()
        assert registry.register(resource) is resource
        registry.register(resource)
        assert len(registry) == 1
        assert resource in registry

    def test_unregister(self):
        """Test unregistering removes the resource."""
        registry = ResourceRegistry()
        resource = MagicMock()
        registry.register(resource)
        registry.unregister(resource)
        assert resource not in registry

    @pytest.mark.asyncio
    async def test_drain_closes_newest_first(self):
        """Test drain closes every resource in reverse registration order."""
        registry = ResourceRegistry()
        order = []

        first = MagicMock()
        first.close = AsyncMock(side_effect=lambda: order.append("first"))
        second = MagicMock()
        second.close = MagicMock(side_effect=lambda: order.append("second"))

        registry.register(first)
        registry.register(second)
        closed = await registry.drain()

        assert closed == 2
        assert order == ["second", "first"]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_drain_skips_failures(self):
        """Test a failing close does not stop the drain."""
        registry = ResourceRegistry()
        broken = MagicMock()
        broken.close = AsyncMock(side_effect=RuntimeError("already closed"))
        healthy = MagicMock()
        healthy.close = AsyncMock()

        registry.register(healthy)
        registry.register(broken)
        closed = await registry.drain()

        assert closed == 1
        healthy.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_drain_uses_stop_when_no_close(self):
        """Test resources exposing only stop() are stopped."""
        class Stoppable:
            def __init__(self):
                self.stopped = False

            async def stop(self):
                self.stopped = True

        registry = ResourceRegistry()
        resource = Stoppable()
        registry.register(resource)
        await registry.drain()
        assert resource.stopped is True
