"""Adapter around axe-core running inside a Playwright page."""

import logging
from pathlib import Path
from typing import List, Optional

from a11yscan.constants import (
    BUNDLE_VERSION,
    DOM_IDLE_MS,
    MAX_OBSERVED_MUTATIONS,
    MAX_SAME_MUTATION_REPEATS,
)

logger = logging.getLogger(__name__)

BUNDLE_PATH = Path(__file__).parent / "assets" / "a11yscan-bundle.js"
DEFAULT_AXE_SCRIPT_PATHS = (
    "node_modules/axe-core/axe.min.js",
    "axe.min.js",
)


class RuleEngineSetupError(Exception):
    """Raised when axe-core or the instrumentation bundle cannot be loaded."""


def resolve_axe_script(explicit: Optional[str] = None) -> Path:
    """Locate the axe-core script.

    Args:
        explicit: Configured path, checked first

    Returns:
        Path to an existing axe-core script

    Raises:
        RuleEngineSetupError: If no candidate exists
    """
    candidates = [explicit] if explicit else list(DEFAULT_AXE_SCRIPT_PATHS)
    for candidate in candidates:
        path = Path(candidate)
        if path.is_file():
            return path
    raise RuleEngineSetupError(
        f"Could not find axe-core script (looked in: {', '.join(candidates)}). "
        "Install it with: npm install axe-core"
    )


class AxeRuleEngine:
    """
    Evaluates accessibility rules in a page.

    axe-core and the a11yscan bundle are read once and injected verbatim;
    all in-page work goes through the bundle's entry points.
    """

    def __init__(
        self,
        axe_script_path: Optional[str] = None,
        enable_wcag_aaa: bool = False,
        disable_custom_checks: bool = False,
    ):
        """
        Initialize the rule engine.

        Args:
            axe_script_path: Path to axe.min.js
            enable_wcag_aaa: Add the WCAG AAA rules to the run
            disable_custom_checks: Skip the a11yscan custom checks

        Raises:
            RuleEngineSetupError: If a script cannot be read
        """
        self.enable_wcag_aaa = enable_wcag_aaa
        self.disable_custom_checks = disable_custom_checks

        axe_path = resolve_axe_script(axe_script_path)
        try:
            self._axe_source = axe_path.read_text(encoding="utf-8")
            self._bundle_source = BUNDLE_PATH.read_text(encoding="utf-8")
        except OSError as e:
            raise RuleEngineSetupError(f"Could not read rule engine scripts: {e}") from e

        logger.debug(f"Rule engine ready (axe: {axe_path}, bundle {BUNDLE_VERSION})")

    async def inject(self, page) -> None:
        """Load axe-core and the instrumentation bundle into the page."""
        await page.evaluate(self._axe_source)
        await page.evaluate(self._bundle_source)

    async def wait_for_dom_stability(self, page) -> str:
        """Wait until the DOM stops mutating, or a mutation cap is hit.

        Returns:
            Reason the wait ended, as reported by the bundle
        """
        return await page.evaluate(
            "(opts) => window.a11yscan.waitForStableDom(opts)",
            {
                "maxMutations": MAX_OBSERVED_MUTATIONS,
                "maxSameMutation": MAX_SAME_MUTATION_REPEATS,
                "idleMs": DOM_IDLE_MS,
            },
        )

    async def evaluate(self, page, selectors: Optional[List[str]] = None) -> dict:
        """Run the rules and return raw `{violations, incomplete, passes}`."""
        return await page.evaluate(
            "(opts) => window.a11yscan.runScan(opts)",
            {
                "selectors": list(selectors or []),
                "enableWcagAaa": self.enable_wcag_aaa,
                "disableCustomChecks": self.disable_custom_checks,
            },
        )
