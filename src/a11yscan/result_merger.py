"""Categorize raw rule-engine output and merge results across pages."""

import copy
import logging
from typing import Iterable, List, Optional

from a11yscan.constants import (
    BEST_PRACTICE_TAG,
    FRAME_TESTED_RULE_ID,
    SCRIPT_CLOSE_TAG,
    SCRIPT_CLOSE_TAG_ESCAPED,
    WCAG_AAA_TAG,
    WCAG_LEVEL_TAGS,
)
from a11yscan.models import (
    AggregateResults,
    Category,
    FilteredResults,
    ItemInfo,
    RuleDetails,
)

logger = logging.getLogger(__name__)


def conformance_tags(tags: Iterable[str], reorder: bool = True) -> List[str]:
    """Keep WCAG and best-practice tags, putting a conformance level first.

    The level is moved to the front only when the first kept tag is neither
    a level nor best-practice. The sort is stable, so the relative order of
    the other tags is preserved.
    """
    conformance = [tag for tag in tags if tag.startswith("wcag") or tag == BEST_PRACTICE_TAG]
    if reorder and conformance:
        first = conformance[0]
        if first != BEST_PRACTICE_TAG and first not in WCAG_LEVEL_TAGS:
            conformance.sort(key=lambda tag: 0 if tag in WCAG_LEVEL_TAGS else 1)
    return conformance


def classify_violation(conformance: List[str]) -> Category:
    """Category for an occurrence from the `violations` list.

    AAA findings are enhancements and go to goodToFix; A and AA are
    baseline conformance and go to mustFix.
    """
    if WCAG_AAA_TAG in conformance:
        return Category.GOOD_TO_FIX
    if "wcag2a" in conformance or "wcag2aa" in conformance:
        return Category.MUST_FIX
    return Category.GOOD_TO_FIX


def needs_review_message(failure_summary: Optional[str]) -> str:
    """Drop the generic lead-in line of a failure summary."""
    summary = failure_summary or ""
    return summary[summary.find("\n") + 1:].strip()


def escape_html_snippet(html: Optional[str]) -> str:
    html = html or ""
    if SCRIPT_CLOSE_TAG in html:
        html = html.replace(SCRIPT_CLOSE_TAG, SCRIPT_CLOSE_TAG_ESCAPED)
    return html


def _xpath_from_target(target) -> Optional[str]:
    if isinstance(target, list) and len(target) == 1 and isinstance(target[0], str):
        return target[0]
    return None


def _add_occurrence(
    results: FilteredResults,
    category: Category,
    rule_id: str,
    rule: dict,
    conformance: List[str],
    item: ItemInfo,
    impact: Optional[str],
) -> None:
    bucket = results.category(category)
    details = bucket.rules.get(rule_id)
    if details is None:
        details = RuleDetails(
            description=rule.get("help", ""),
            axe_impact=impact,
            help_url=rule.get("helpUrl"),
            conformance=list(conformance),
        )
        bucket.rules[rule_id] = details

    details.add_item(item)
    bucket.total_items += 1
    results.total_items += 1


def filter_axe_results(
    raw: dict,
    page_title: str,
    url: Optional[str] = None,
    page_index: Optional[int] = None,
    metadata: Optional[str] = None,
) -> FilteredResults:
    """Turn raw rule-engine output into mustFix/goodToFix/needsReview/passed.

    Args:
        raw: Mapping with `violations`, `incomplete` and `passes` lists
        page_title: Title of the scanned page
        url: Page URL (defaults to raw["url"])
        page_index: 1-based index prefixed to the title and metadata
        metadata: Free-form label for the page

    Returns:
        FilteredResults whose totals are running sums of added items
    """
    results = FilteredResults(url=url or raw.get("url"), page_title=page_title or "")
    if page_index is not None:
        results.page_index = page_index
        results.page_title = f"{page_index}: {results.page_title}"
        if metadata:
            results.metadata = f"{page_index}: {metadata}"
    elif metadata:
        results.metadata = metadata

    def process(rule: dict, display_needs_review: bool) -> None:
        rule_id = rule.get("id")
        if rule_id == FRAME_TESTED_RULE_ID:
            return

        conformance = conformance_tags(rule.get("tags", []))

        for node in rule.get("nodes", []):
            if display_needs_review:
                category = Category.NEEDS_REVIEW
                message = needs_review_message(node.get("failureSummary"))
            else:
                category = classify_violation(conformance)
                message = node.get("failureSummary") or ""

            item = ItemInfo(
                html=escape_html_snippet(node.get("html")),
                message=message,
                screenshot_path=node.get("screenshotPath"),
                xpath=_xpath_from_target(node.get("target")),
                display_needs_review=display_needs_review,
            )
            _add_occurrence(results, category, rule_id, rule, conformance, item, node.get("impact"))

    for rule in raw.get("violations", []):
        process(rule, False)
    for rule in raw.get("incomplete", []):
        process(rule, True)

    for rule in raw.get("passes", []):
        rule_id = rule.get("id")
        if rule_id == FRAME_TESTED_RULE_ID:
            continue
        conformance = conformance_tags(rule.get("tags", []), reorder=False)
        for node in rule.get("nodes", []):
            item = ItemInfo(html=node.get("html") or "")
            _add_occurrence(results, Category.PASSED, rule_id, rule, conformance, item, rule.get("impact"))

    return results


def strip_review_markers(results: FilteredResults) -> FilteredResults:
    """Remove the intra-page displayNeedsReview marker from every item."""
    for _, bucket in results.categories():
        for details in bucket.rules.values():
            for item in details.items:
                item.display_needs_review = False
    return results


class ResultAggregator:
    """Folds per-page results into one cross-page aggregate.

    First-seen rule metadata wins; later pages only contribute items and
    counts. Every item is stamped with its page URL.
    """

    def __init__(self):
        self._aggregate = AggregateResults()

    def add(self, page: FilteredResults) -> None:
        aggregate = self._aggregate
        if page.url:
            aggregate.pages.append(page.url)

        for category, page_bucket in page.categories():
            merged_bucket = aggregate.category(category)
            for rule_id, page_rule in page_bucket.rules.items():
                merged_rule = merged_bucket.rules.get(rule_id)
                if merged_rule is None:
                    merged_rule = RuleDetails(
                        description=page_rule.description,
                        axe_impact=page_rule.axe_impact,
                        help_url=page_rule.help_url,
                        conformance=list(page_rule.conformance),
                    )
                    merged_bucket.rules[rule_id] = merged_rule

                for item in page_rule.items:
                    stamped = copy.copy(item)
                    stamped.url = page.url
                    stamped.display_needs_review = False
                    merged_rule.items.append(stamped)

                merged_rule.total_items += page_rule.total_items
                merged_bucket.total_items += page_rule.total_items
                aggregate.total_items += page_rule.total_items

    def result(self) -> AggregateResults:
        return self._aggregate

    @property
    def page_count(self) -> int:
        return len(self._aggregate.pages)


def merge_filtered_results(pages: Iterable[FilteredResults]) -> AggregateResults:
    """Merge several pages' results by category, then by rule id."""
    aggregator = ResultAggregator()
    for page in pages:
        aggregator.add(page)
    return aggregator.result()
