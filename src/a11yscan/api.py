"""Scan already-open Playwright pages without running a crawl."""

import logging
from typing import Optional, Sequence, Union

from a11yscan.models import AggregateResults, FilteredResults
from a11yscan.page_scanner import PageScanHandler
from a11yscan.result_merger import ResultAggregator, strip_review_markers
from a11yscan.rule_engine import AxeRuleEngine

logger = logging.getLogger(__name__)


async def scan_pages(
    pages: Sequence,
    rule_engine: AxeRuleEngine,
    page_title: Optional[str] = None,
    metadata: str = "",
) -> Union[FilteredResults, AggregateResults]:
    """
    Scan one or more loaded pages and categorize the findings.

    Args:
        pages: Playwright pages that are already navigated
        rule_engine: Engine used to evaluate each page
        page_title: Title override for a single-page scan
        metadata: Free-form label attached to each page

    Returns:
        FilteredResults for a single page, otherwise the cross-page merge
        with every page indexed from 1 and every item stamped with its URL

    Raises:
        ValueError: If no pages were given
    """
    if not pages:
        raise ValueError("scan_pages needs at least one page")

    handler = PageScanHandler(rule_engine)

    if len(pages) == 1:
        page = pages[0]
        results = await handler.scan(page, url=page.url, metadata=metadata or None)
        if page_title:
            results.page_title = page_title
        return strip_review_markers(results)

    aggregator = ResultAggregator()
    for index, page in enumerate(pages, start=1):
        results = await handler.scan(page, url=page.url, page_index=index, metadata=metadata or None)
        logger.debug(f"Scanned {page.url}: {results.total_items} item(s)")
        aggregator.add(results)

    return aggregator.result()
