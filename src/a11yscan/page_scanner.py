"""Per-page scan handler: stability wait, rule evaluation, screenshots."""

import hashlib
import logging
from pathlib import Path
from typing import List, Optional

from a11yscan.infrastructure.cancellation import CancellationToken
from a11yscan.models import FilteredResults
from a11yscan.result_merger import filter_axe_results
from a11yscan.rule_engine import AxeRuleEngine

logger = logging.getLogger(__name__)

ELEMENT_SCREENSHOT_TIMEOUT_MS = 2000


class PageScanHandler:
    """Runs the rule engine against one loaded page and categorizes the output."""

    def __init__(
        self,
        rule_engine: AxeRuleEngine,
        screenshot_dir: Optional[Path] = None,
        include_screenshots: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ):
        """
        Initialize the handler.

        Args:
            rule_engine: Engine used to evaluate the page
            screenshot_dir: Where element screenshots are written
            include_screenshots: Capture screenshots of flagged elements
            cancel_token: Session cancellation token
        """
        self.rule_engine = rule_engine
        self.screenshot_dir = Path(screenshot_dir) if screenshot_dir else None
        self.include_screenshots = include_screenshots and screenshot_dir is not None
        self.cancel_token = cancel_token

    async def scan(
        self,
        page,
        url: Optional[str] = None,
        page_index: Optional[int] = None,
        metadata: Optional[str] = None,
        selectors: Optional[List[str]] = None,
    ) -> FilteredResults:
        """Scan a loaded page.

        Args:
            page: Playwright page, already navigated
            url: URL to record (defaults to page.url)
            page_index: 1-based scan index prefixed to the title
            metadata: Optional page label
            selectors: Restrict evaluation to these CSS selectors

        Returns:
            Categorized results for the page

        Raises:
            ScanCancelled: If the session was cancelled before evaluation
        """
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

        await self.rule_engine.inject(page)

        try:
            reason = await self.rule_engine.wait_for_dom_stability(page)
            logger.debug(f"DOM wait finished for {page.url}: {reason}")
        except Exception as e:
            logger.debug(f"Error while checking for DOM mutations: {e}")

        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

        raw = await self.rule_engine.evaluate(page, selectors)

        if self.include_screenshots:
            for key in ("violations", "incomplete"):
                await self._capture_screenshots(page, raw.get(key, []))

        page_title = await self._read_title(page)
        return filter_axe_results(
            raw,
            page_title or url or page.url,
            url=url or page.url,
            page_index=page_index,
            metadata=metadata,
        )

    async def _read_title(self, page) -> str:
        try:
            return await page.title()
        except Exception as e:
            logger.debug(f"Error while getting page title: {e}")
            return ""

    async def _capture_screenshots(self, page, rules: list) -> None:
        """Attach `screenshotPath` to flagged nodes. Failures are skipped."""
        for rule in rules:
            for node in rule.get("nodes", []):
                target = node.get("target") or []
                if len(target) != 1 or not isinstance(target[0], str):
                    continue
                selector = target[0]
                digest = hashlib.sha1(f"{page.url}|{rule.get('id')}|{selector}".encode()).hexdigest()[:16]
                path = self.screenshot_dir / f"{digest}.png"
                try:
                    await page.locator(selector).first.screenshot(
                        path=str(path), timeout=ELEMENT_SCREENSHOT_TIMEOUT_MS
                    )
                    node["screenshotPath"] = str(path.relative_to(self.screenshot_dir.parent))
                except Exception as e:
                    logger.debug(f"Screenshot failed for {selector}: {e}")
