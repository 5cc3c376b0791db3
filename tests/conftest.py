"""Shared fixtures and in-memory stand-ins for the browser layer."""

import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pytest

from a11yscan.config import FileTypes, ScanConfig
from a11yscan.output_manager import SessionStorage


SAMPLE_RAW_RESULTS = {
    "url": "https://example.com/",
    "violations": [
        {
            "id": "image-alt",
            "help": "Images must have alternate text",
            "helpUrl": "https://dequeuniversity.com/rules/axe/4.8/image-alt",
            "tags": ["cat.text-alternatives", "wcag2a", "wcag111", "section508"],
            "impact": "critical",
            "nodes": [
                {
                    "html": '<img src="logo.png">',
                    "target": ["img"],
                    "impact": "critical",
                    "failureSummary": "Fix any of the following:\n  Element does not have an alt attribute",
                },
            ],
        },
        {
            "id": "color-contrast-enhanced",
            "help": "Elements must meet enhanced color contrast ratio thresholds",
            "helpUrl": "https://dequeuniversity.com/rules/axe/4.8/color-contrast-enhanced",
            "tags": ["cat.color", "wcag2aaa", "wcag146"],
            "impact": "serious",
            "nodes": [
                {
                    "html": "<p>low contrast</p>",
                    "target": ["p"],
                    "impact": "serious",
                    "failureSummary": "Fix any of the following:\n  Element has insufficient color contrast",
                },
            ],
        },
    ],
    "incomplete": [
        {
            "id": "color-contrast",
            "help": "Elements must meet minimum color contrast ratio thresholds",
            "helpUrl": "https://dequeuniversity.com/rules/axe/4.8/color-contrast",
            "tags": ["cat.color", "wcag2aa", "wcag143"],
            "impact": "serious",
            "nodes": [
                {
                    "html": "<span>over image</span>",
                    "target": ["span"],
                    "impact": "serious",
                    "failureSummary": "Fix any of the following:\n  Element's background color could not be determined",
                },
            ],
        },
    ],
    "passes": [
        {
            "id": "document-title",
            "help": "Documents must have <title> element",
            "helpUrl": "https://dequeuniversity.com/rules/axe/4.8/document-title",
            "tags": ["cat.text-alternatives", "wcag2a", "wcag242"],
            "impact": None,
            "nodes": [{"html": "<html>", "target": ["html"]}],
        },
        {
            "id": "frame-tested",
            "help": "Frames should be tested with axe-core",
            "tags": ["cat.structure", "best-practice"],
            "impact": None,
            "nodes": [{"html": "<iframe>", "target": ["iframe"]}],
        },
    ],
}


# =============================================================================
# Fake site
# =============================================================================

@dataclass
class FakeResource:
    """What the fake browser serves for one URL."""
    status: int = 200
    html: str = "<html><head><title>Page</title></head><body></body></html>"
    title: str = "Page"
    content_type: str = "text/html; charset=utf-8"
    redirect_to: Optional[str] = None
    error: Optional[Exception] = None


@dataclass
class FakeSite:
    """In-memory web: URL -> FakeResource. Records every navigation."""
    resources: Dict[str, FakeResource] = field(default_factory=dict)
    visited: List[str] = field(default_factory=list)

    def add(self, url: str, links: Optional[List[str]] = None, title: str = "Page", **kwargs) -> None:
        anchors = "".join(f'<a href="{link}">{link}</a>' for link in links or [])
        html = f"<html><head><title>{title}</title></head><body>{anchors}</body></html>"
        kwargs.setdefault("html", html)
        self.resources[url] = FakeResource(title=title, **kwargs)

    def resolve(self, url: str):
        resource = self.resources.get(url)
        if resource is not None and resource.redirect_to:
            return resource.redirect_to, self.resources.get(resource.redirect_to)
        return url, resource


class FakeResponse:
    def __init__(self, status: int, content_type: str):
        self.status = status
        self.headers = {"content-type": content_type}


class FakeElement:
    def __init__(self, attributes=None, visible=True, on_click=None):
        self.attributes = attributes or {}
        self.visible = visible
        self.on_click = on_click
        self.clicked = 0

    async def get_attribute(self, name):
        return self.attributes.get(name)

    async def is_visible(self):
        return self.visible

    async def click(self, timeout=None):
        self.clicked += 1
        if self.on_click is not None:
            await self.on_click()


class FakeLocator:
    def __init__(self, page):
        self.page = page
        self.first = self

    async def screenshot(self, path=None, timeout=None):
        self.page.screenshots.append(path)


class FakePage:
    """Subset of the Playwright Page API used by the scanner."""

    def __init__(self, site: Optional[FakeSite] = None, url: str = "about:blank", context=None):
        self.site = site or FakeSite()
        self.url = url
        self.context = context
        self.elements: List[FakeElement] = []
        self.handlers: Dict[str, list] = {}
        self.extra_headers: Dict[str, str] = {}
        self.screenshots: List[str] = []
        self.closed = False
        self._resource: Optional[FakeResource] = None

    async def goto(self, url, wait_until=None, timeout=None):
        self.site.visited.append(url)
        final_url, resource = self.site.resolve(url)
        if resource is not None and resource.error is not None:
            raise resource.error
        self.url = final_url
        self._resource = resource or FakeResource(status=404, html="<html></html>", title="Not Found")
        return FakeResponse(self._resource.status, self._resource.content_type)

    async def content(self):
        return self._resource.html if self._resource else "<html></html>"

    async def title(self):
        return self._resource.title if self._resource else ""

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, payload):
        for handler in self.handlers.get(event, []):
            handler(payload)

    async def query_selector_all(self, selector):
        return list(self.elements)

    async def set_extra_http_headers(self, headers):
        self.extra_headers.update(headers)

    async def wait_for_load_state(self, state=None, timeout=None):
        return None

    def locator(self, selector):
        return FakeLocator(self)

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self, site: FakeSite):
        self.site = site
        self.pages: List[FakePage] = []

    async def new_page(self):
        page = FakePage(self.site, context=self)
        self.pages.append(page)
        return page

    async def close(self):
        return None


class FakePool:
    """Stands in for BrowserPool: one fresh page per acquire."""

    def __init__(self, site: FakeSite):
        self.site = site
        self.is_started = False
        self.acquired = 0

    async def start(self):
        self.is_started = True

    async def stop(self):
        self.is_started = False

    @asynccontextmanager
    async def acquire(self):
        context = FakeContext(self.site)
        page = await context.new_page()
        self.acquired += 1
        try:
            yield context, page
        finally:
            await page.close()


class FakeRuleEngine:
    """Rule engine returning canned raw results."""

    def __init__(self, raw: Optional[dict] = None):
        self.raw = raw if raw is not None else SAMPLE_RAW_RESULTS
        self.injected: List[str] = []
        self.evaluated: List[str] = []

    async def inject(self, page):
        self.injected.append(page.url)

    async def wait_for_dom_stability(self, page):
        return "idle"

    async def evaluate(self, page, selectors=None):
        self.evaluated.append(page.url)
        raw = copy.deepcopy(self.raw)
        raw["url"] = page.url
        return raw


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_site():
    return FakeSite()


@pytest.fixture
def fake_pool(fake_site):
    return FakePool(fake_site)


@pytest.fixture
def rule_engine():
    return FakeRuleEngine()


@pytest.fixture
def storage(tmp_path):
    return SessionStorage(str(tmp_path / "results"), "test_session")


@pytest.fixture
def scan_config(tmp_path):
    """Small, offline-friendly config: no robots, no clicking, HTML only."""
    return ScanConfig(
        max_pages=100,
        max_concurrency=3,
        follow_robots=False,
        safe_mode=True,
        file_types=FileTypes.HTML_ONLY,
        storage_dir=str(tmp_path / "results"),
    )


@pytest.fixture
def page_factory(fake_site):
    """Build standalone fake pages bound to the fake site."""
    def factory(url: str = "about:blank") -> FakePage:
        return FakePage(fake_site, url=url)
    return factory


@pytest.fixture
def raw_results():
    """A fresh copy of the canned rule-engine output."""
    return copy.deepcopy(SAMPLE_RAW_RESULTS)


@pytest.fixture
def make_element():
    """Factory for fake clickable elements."""
    return FakeElement


def _check_totals(results) -> None:
    category_sum = 0
    for category, bucket in results.categories():
        rule_sum = 0
        for rule_id, details in bucket.rules.items():
            assert details.total_items == len(details.items), f"{category.value}/{rule_id}"
            rule_sum += details.total_items
        assert bucket.total_items == rule_sum, category.value
        category_sum += bucket.total_items
    assert results.total_items == category_sum


@pytest.fixture
def assert_totals_consistent():
    """Check that every totalItems equals the sum of its children."""
    return _check_totals
