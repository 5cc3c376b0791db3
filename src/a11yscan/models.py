"""Data models for crawl state and accessibility results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple


class Bucket(str, Enum):
    """Terminal classification of a crawled URL."""
    SCANNED = "scanned"
    INVALID = "invalid"
    BLACKLISTED = "blacklisted"
    ERROR = "error"
    FORBIDDEN = "forbidden"
    USER_EXCLUDED = "userExcluded"
    SCANNED_REDIRECTS = "scannedRedirects"
    NOT_SCANNED_REDIRECTS = "notScannedRedirects"
    OUT_OF_DOMAIN = "outOfDomain"
    EXCEEDED_REQUESTS = "exceededRequests"


# Buckets holding plain URL strings
TERMINAL_BUCKETS = (
    Bucket.INVALID,
    Bucket.BLACKLISTED,
    Bucket.ERROR,
    Bucket.FORBIDDEN,
    Bucket.USER_EXCLUDED,
    Bucket.OUT_OF_DOMAIN,
    Bucket.EXCEEDED_REQUESTS,
)


class Category(str, Enum):
    """Result categories, in report order."""
    MUST_FIX = "mustFix"
    GOOD_TO_FIX = "goodToFix"
    NEEDS_REVIEW = "needsReview"
    PASSED = "passed"


@dataclass
class PageInfo:
    """A scanned page.

    `url` is the requested form (credentials already stripped), `actual_url`
    the resolved URL after redirects.
    """
    url: str
    actual_url: Optional[str] = None
    page_title: str = ""

    def to_dict(self) -> dict:
        result = {"url": self.url, "pageTitle": self.page_title}
        if self.actual_url is not None:
            result["actualUrl"] = self.actual_url
        return result


@dataclass
class RedirectPair:
    from_url: str
    to_url: str

    def to_dict(self) -> dict:
        return {"fromUrl": self.from_url, "toUrl": self.to_url}


@dataclass
class FrontierRequest:
    """A pending visit in the request queue."""
    url: str
    skip_navigation: bool = False
    headers: Optional[Dict[str, str]] = None
    unique_key: Optional[str] = None
    loaded_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "skipNavigation": self.skip_navigation,
            "headers": self.headers,
            "uniqueKey": self.unique_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FrontierRequest":
        return cls(
            url=data["url"],
            skip_navigation=data.get("skipNavigation", False),
            headers=data.get("headers"),
            unique_key=data.get("uniqueKey"),
        )


class UrlsCrawled:
    """Crawl state ledger.

    Each URL moves from "unknown" into exactly one bucket. Appends are
    synchronous so concurrent workers never observe a half-written entry.
    The ledger is frozen once traversal terminates.
    """

    def __init__(self):
        self.scanned: List[PageInfo] = []
        self.scanned_redirects: List[RedirectPair] = []
        self.not_scanned_redirects: List[RedirectPair] = []
        self._terminal: Dict[Bucket, List[str]] = {bucket: [] for bucket in TERMINAL_BUCKETS}
        self._scanned_urls: set = set()
        self._scanned_actual_urls: set = set()
        self._frozen = False

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("UrlsCrawled is frozen; the crawl has finished")

    def record_scanned(self, page_info: PageInfo) -> None:
        """Append a scanned page. Duplicate checks happen upstream."""
        self._check_mutable()
        self.scanned.append(page_info)
        self._scanned_urls.add(page_info.url)
        if page_info.actual_url:
            self._scanned_actual_urls.add(page_info.actual_url)

    def record_redirect(self, from_url: str, to_url: str, was_scanned: bool) -> None:
        """Append a redirect pair to scannedRedirects or notScannedRedirects."""
        self._check_mutable()
        pair = RedirectPair(from_url=from_url, to_url=to_url)
        if was_scanned:
            self.scanned_redirects.append(pair)
        else:
            self.not_scanned_redirects.append(pair)

    def record_terminal(self, bucket, url: str) -> None:
        """Append a URL to one of the plain terminal buckets.

        Raises:
            ValueError: If `bucket` is unknown or is not a plain URL bucket
        """
        self._check_mutable()
        bucket = Bucket(bucket)
        if bucket not in self._terminal:
            raise ValueError(f"{bucket.value} is not a terminal URL bucket")
        self._terminal[bucket].append(url)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_scanned(self, url: str) -> bool:
        return url in self._scanned_urls

    def is_loaded_url_scanned(self, url: str) -> bool:
        """True if `url` was scanned either as requested or as a redirect target."""
        return url in self._scanned_urls or url in self._scanned_actual_urls

    def bucket(self, bucket) -> list:
        bucket = Bucket(bucket)
        if bucket == Bucket.SCANNED:
            return list(self.scanned)
        if bucket == Bucket.SCANNED_REDIRECTS:
            return list(self.scanned_redirects)
        if bucket == Bucket.NOT_SCANNED_REDIRECTS:
            return list(self.not_scanned_redirects)
        return list(self._terminal[bucket])

    def count(self, bucket) -> int:
        bucket = Bucket(bucket)
        if bucket == Bucket.SCANNED:
            return len(self.scanned)
        if bucket == Bucket.SCANNED_REDIRECTS:
            return len(self.scanned_redirects)
        if bucket == Bucket.NOT_SCANNED_REDIRECTS:
            return len(self.not_scanned_redirects)
        return len(self._terminal[bucket])

    def size(self) -> int:
        """Number of scanned pages, used for the max-pages stop condition."""
        return len(self.scanned)

    def classified_urls(self) -> Iterator[Tuple[str, Bucket]]:
        """Yield (url, bucket) for every classification.

        scannedRedirects is provenance for a `scanned` entry and is not
        yielded. A notScannedRedirects pair classifies its from-URL.
        """
        for info in self.scanned:
            yield info.url, Bucket.SCANNED
        for pair in self.not_scanned_redirects:
            yield pair.from_url, Bucket.NOT_SCANNED_REDIRECTS
        for bucket in TERMINAL_BUCKETS:
            for url in self._terminal[bucket]:
                yield url, bucket

    def summary(self) -> Dict[str, int]:
        return {bucket.value: self.count(bucket) for bucket in Bucket}

    def to_dict(self) -> dict:
        result = {
            Bucket.SCANNED.value: [info.to_dict() for info in self.scanned],
            Bucket.SCANNED_REDIRECTS.value: [p.to_dict() for p in self.scanned_redirects],
            Bucket.NOT_SCANNED_REDIRECTS.value: [p.to_dict() for p in self.not_scanned_redirects],
        }
        for bucket in TERMINAL_BUCKETS:
            result[bucket.value] = list(self._terminal[bucket])
        return result


# ----------------------------------------------------------------------
# Result shapes
# ----------------------------------------------------------------------

@dataclass
class ItemInfo:
    """A single concrete occurrence of a rule outcome."""
    html: str = ""
    message: str = ""
    screenshot_path: Optional[str] = None
    xpath: Optional[str] = None
    display_needs_review: bool = False
    url: Optional[str] = None
    # PDF findings
    page: Optional[int] = None
    context: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"html": self.html, "message": self.message}
        optional = {
            "screenshotPath": self.screenshot_path,
            "xpath": self.xpath,
            "url": self.url,
            "page": self.page,
            "context": self.context,
        }
        result.update({k: v for k, v in optional.items() if v is not None})
        if self.display_needs_review:
            result["displayNeedsReview"] = True
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "ItemInfo":
        return cls(
            html=data.get("html") or "",
            message=data.get("message") or "",
            screenshot_path=data.get("screenshotPath") or None,
            xpath=data.get("xpath") or None,
            display_needs_review=bool(data.get("displayNeedsReview", False)),
            url=data.get("url"),
            page=data.get("page"),
            context=data.get("context"),
        )


@dataclass
class RuleDetails:
    description: str = ""
    axe_impact: Optional[str] = None
    help_url: Optional[str] = None
    conformance: List[str] = field(default_factory=list)
    total_items: int = 0
    items: List[ItemInfo] = field(default_factory=list)

    def add_item(self, item: ItemInfo) -> None:
        self.items.append(item)
        self.total_items += 1

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "axeImpact": self.axe_impact,
            "helpUrl": self.help_url,
            "conformance": list(self.conformance),
            "totalItems": self.total_items,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RuleDetails":
        return cls(
            description=data.get("description", ""),
            axe_impact=data.get("axeImpact"),
            help_url=data.get("helpUrl"),
            conformance=list(data.get("conformance", [])),
            total_items=data.get("totalItems", 0),
            items=[ItemInfo.from_dict(item) for item in data.get("items", [])],
        )


@dataclass
class ResultCategory:
    total_items: int = 0
    rules: Dict[str, RuleDetails] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalItems": self.total_items,
            "rules": {rule_id: rule.to_dict() for rule_id, rule in self.rules.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResultCategory":
        return cls(
            total_items=data.get("totalItems", 0),
            rules={
                rule_id: RuleDetails.from_dict(rule)
                for rule_id, rule in data.get("rules", {}).items()
            },
        )


@dataclass
class CategorizedResults:
    """Four-category result shape shared by per-page and aggregate results."""
    total_items: int = 0
    must_fix: ResultCategory = field(default_factory=ResultCategory)
    good_to_fix: ResultCategory = field(default_factory=ResultCategory)
    needs_review: ResultCategory = field(default_factory=ResultCategory)
    passed: ResultCategory = field(default_factory=ResultCategory)

    def category(self, category: Category) -> ResultCategory:
        category = Category(category)
        if category == Category.MUST_FIX:
            return self.must_fix
        if category == Category.GOOD_TO_FIX:
            return self.good_to_fix
        if category == Category.NEEDS_REVIEW:
            return self.needs_review
        return self.passed

    def categories(self) -> Iterator[Tuple[Category, ResultCategory]]:
        for category in Category:
            yield category, self.category(category)

    def _categories_dict(self) -> dict:
        result = {"totalItems": self.total_items}
        for category, bucket in self.categories():
            result[category.value] = bucket.to_dict()
        return result


@dataclass
class FilteredResults(CategorizedResults):
    """Per-page categorized results."""
    url: Optional[str] = None
    page_title: str = ""
    actual_url: Optional[str] = None
    page_index: Optional[int] = None
    metadata: Optional[str] = None
    file_path: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"url": self.url, "pageTitle": self.page_title}
        optional = {
            "actualUrl": self.actual_url,
            "pageIndex": self.page_index,
            "metadata": self.metadata,
            "filePath": self.file_path,
        }
        result.update({k: v for k, v in optional.items() if v is not None})
        result.update(self._categories_dict())
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "FilteredResults":
        return cls(
            url=data.get("url"),
            page_title=data.get("pageTitle", ""),
            actual_url=data.get("actualUrl"),
            page_index=data.get("pageIndex"),
            metadata=data.get("metadata"),
            file_path=data.get("filePath"),
            total_items=data.get("totalItems", 0),
            must_fix=ResultCategory.from_dict(data.get(Category.MUST_FIX.value, {})),
            good_to_fix=ResultCategory.from_dict(data.get(Category.GOOD_TO_FIX.value, {})),
            needs_review=ResultCategory.from_dict(data.get(Category.NEEDS_REVIEW.value, {})),
            passed=ResultCategory.from_dict(data.get(Category.PASSED.value, {})),
        )


@dataclass
class AggregateResults(CategorizedResults):
    """Results merged across several pages."""
    pages: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {"pages": list(self.pages)}
        result.update(self._categories_dict())
        return result
