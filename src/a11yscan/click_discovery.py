"""Best-effort link discovery by clicking non-anchor clickable elements.

Some navigation only exists behind JavaScript: buttons with onclick
handlers, ARIA links, SPA routes. A ClickDiscoverySession walks those
elements on one loaded page and feeds every URL it uncovers back to the
crawler. Popups and frame navigations are delivered through an event
queue owned by the session.
"""

import asyncio
import logging
from typing import Callable, List, Optional
from urllib.parse import urljoin

from a11yscan.constants import (
    CLICK_SETTLE_SECONDS,
    CLICK_TIMEOUT_MS,
    CLICKABLE_ELEMENT_SELECTOR,
    MAX_CONSECUTIVE_CLICK_FAILURES,
    NAVIGATION_TIMEOUT_MS,
)
from a11yscan.infrastructure.cancellation import CancellationToken

logger = logging.getLogger(__name__)

POPUP_EVENT = "popup"
NAVIGATION_EVENT = "navigation"


class ClickDiscoverySession:
    """Click-discovery state for a single page visit.

    Owned by the worker handling the page. Never shared.
    """

    def __init__(
        self,
        page,
        context,
        enqueue: Callable[[str], bool],
        is_excluded: Callable[[str], bool],
        cancel_token: Optional[CancellationToken] = None,
        navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        settle_seconds: float = CLICK_SETTLE_SECONDS,
    ):
        """
        Initialize the session.

        Args:
            page: Loaded page to explore
            context: Browser context used to re-open the page after drift
            enqueue: Callback adding a discovered URL to the frontier
            is_excluded: Predicate rejecting scanned, blacklisted or out-of-scope URLs
            cancel_token: Session cancellation token
            navigation_timeout_ms: Timeout when re-opening the page
            settle_seconds: Wait after each click
        """
        self.page = page
        self.context = context
        self.enqueue = enqueue
        self.is_excluded = is_excluded
        self.cancel_token = cancel_token
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_seconds = settle_seconds

        self.initial_url: str = page.url
        self.discovered: List[str] = []
        self._events: asyncio.Queue = asyncio.Queue()
        self._owned_pages: list = []

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------

    def _attach_listeners(self, page) -> None:
        page.on("popup", lambda popup: self._events.put_nowait((POPUP_EVENT, popup)))
        page.on("framenavigated", lambda frame: self._events.put_nowait((NAVIGATION_EVENT, frame.url)))

    def _offer(self, url: str) -> bool:
        if not url or url == self.initial_url or url == "about:blank":
            return False
        if self.is_excluded(url):
            return False
        if self.enqueue(url):
            self.discovered.append(url)
        return True

    async def _handle_popup(self, popup) -> None:
        try:
            await popup.wait_for_load_state("domcontentloaded", timeout=self.navigation_timeout_ms)
        except Exception as e:
            logger.debug(f"Popup did not finish loading: {e}")
        try:
            self._offer(popup.url)
        finally:
            try:
                await popup.close()
            except Exception as e:
                logger.debug(f"Failed to close popup: {e}")

    async def drain_events(self) -> None:
        """Process every popup and navigation captured so far."""
        while not self._events.empty():
            kind, payload = self._events.get_nowait()
            try:
                if kind == POPUP_EVENT:
                    await self._handle_popup(payload)
                else:
                    self._offer(payload)
            except Exception as e:
                logger.debug(f"Discarding {kind} event: {e}")

    # ------------------------------------------------------------------
    # Element walk
    # ------------------------------------------------------------------

    async def _restore_page(self) -> None:
        """Replace a page that navigated away with a fresh copy of the initial URL."""
        try:
            await self.page.close()
        except Exception as e:
            logger.debug(f"Failed to close navigated page: {e}")
        self.page = await self.context.new_page()
        self._owned_pages.append(self.page)
        await self.page.goto(self.initial_url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        self._attach_listeners(self.page)

    async def _url_in_element(self, element) -> Optional[str]:
        target = await element.get_attribute("href") or await element.get_attribute("data-path")
        if not target:
            return None
        return urljoin(self.page.url, target)

    async def _visit_element(self, element) -> None:
        if not await element.is_visible():
            return

        url = await self._url_in_element(element)
        if url:
            self._offer(url)
            return

        # Navigation is picked up by the popup / framenavigated listeners
        await element.click(timeout=CLICK_TIMEOUT_MS)
        await asyncio.sleep(self.settle_seconds)

    async def run(self) -> List[str]:
        """Walk all clickable elements on the page.

        Never raises for per-element problems; a run of consecutive
        failures ends the walk early.

        Returns:
            URLs newly added to the frontier
        """
        self._attach_listeners(self.page)
        cursor = 0
        consecutive_failures = 0

        try:
            while True:
                if self.cancel_token is not None and self.cancel_token.is_cancelled:
                    break
                try:
                    if self.page.url != self.initial_url:
                        await self._restore_page()

                    elements = await self.page.query_selector_all(CLICKABLE_ELEMENT_SELECTOR)
                    # Elements can appear and vanish between snapshots
                    if cursor >= len(elements):
                        break

                    element = elements[cursor]
                    cursor += 1
                    await self._visit_element(element)
                    consecutive_failures = 0
                except Exception as e:
                    consecutive_failures += 1
                    logger.debug(f"Click discovery skipped an element on {self.initial_url}: {e}")
                    if consecutive_failures >= MAX_CONSECUTIVE_CLICK_FAILURES:
                        break
                finally:
                    await self.drain_events()
        finally:
            for owned in self._owned_pages:
                try:
                    await owned.close()
                except Exception as e:
                    logger.debug(f"Failed to close discovery page: {e}")

        if self.discovered:
            logger.debug(f"Click discovery found {len(self.discovered)} URL(s) on {self.initial_url}")
        return self.discovered
