"""Asynchronous accessibility crawler.

Pulls requests from the persistent frontier with a bounded pool of
workers, classifies every dequeued URL into exactly one ledger bucket,
scans the pages that qualify and feeds discovered links back into the
frontier.
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import unquote, urljoin, urlparse
from urllib.request import url2pathname

import httpx
from bs4 import BeautifulSoup

from a11yscan.click_discovery import ClickDiscoverySession
from a11yscan.config import CrawlMode, ScanConfig
from a11yscan.constants import (
    MIME_PROBE_TIMEOUT_SECONDS,
    PROCESSIBLE_CONTENT_TYPES,
    STATIC_LINK_SELECTOR,
    WORKER_IDLE_POLL_SECONDS,
)
from a11yscan.infrastructure import BrowserPool, CancellationToken, ResourceRegistry, ScanCancelled
from a11yscan.logging_config import ScanStatus, log_scan_progress
from a11yscan.models import Bucket, FilteredResults, FrontierRequest, PageInfo, UrlsCrawled
from a11yscan.output_manager import SessionStorage
from a11yscan.page_scanner import PageScanHandler
from a11yscan.pdf_scanner import (
    PdfDownloads,
    find_verapdf_executable,
    map_pdf_scan_results,
    run_pdf_scan,
)
from a11yscan.request_queue import RequestQueue
from a11yscan.result_merger import ResultAggregator
from a11yscan.rule_engine import AxeRuleEngine
from a11yscan.sitemap_parser import SitemapParser
from a11yscan.url_classifier import (
    RobotsRules,
    are_links_equal,
    encode_url,
    is_allowed_by_robots,
    is_blacklisted,
    is_disallowed_extension,
    is_in_scope,
    is_pdf_url,
    is_processible_mime_type,
    strip_tracking_params,
    url_without_auth,
)

logger = logging.getLogger(__name__)

MAX_PAGES_REACHED = "max pages reached"
SCAN_DURATION_EXCEEDED = "scan duration exceeded"

_LINK_SCHEMES = ("http", "https", "file")

MimeProbe = Callable[..., Awaitable[bool]]


def basic_auth_header(url: str) -> Dict[str, str]:
    """Build an Authorization header from a URL's `user:pass@`, if any."""
    parsed = urlparse(url)
    if parsed.username is None:
        return {}
    credentials = f"{unquote(parsed.username)}:{unquote(parsed.password or '')}"
    token = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {token}"}


@dataclass
class _Visit:
    """Per-request state owned by the worker processing it."""
    request: FrontierRequest
    classified: bool = False


class AccessibilityCrawler:
    """Crawls a site, sitemap or local file and scans every qualifying page.

    The crawler owns the session's ledger, frontier and result aggregate.
    Collaborators (browser pool, rule engine, MIME probe, robots rules) can
    be injected; defaults are built from the config.
    """

    def __init__(
        self,
        config: ScanConfig,
        storage: SessionStorage,
        rule_engine: Optional[AxeRuleEngine] = None,
        browser_pool: Optional[BrowserPool] = None,
        registry: Optional[ResourceRegistry] = None,
        cancel_token: Optional[CancellationToken] = None,
        mime_probe: Optional[MimeProbe] = None,
        robots_rules: Optional[RobotsRules] = None,
    ):
        """
        Initialize the crawler.

        Args:
            config: Session configuration
            storage: Session storage (frontier, dataset, PDFs, screenshots)
            rule_engine: Accessibility rule engine (built from config if None)
            browser_pool: Browser pool (built from config if None)
            registry: Resource registry used for shutdown teardown
            cancel_token: Session cancellation token
            mime_probe: Coroutine deciding whether a URL serves HTML or PDF
            robots_rules: Pre-loaded robots.txt rules
        """
        self.config = config
        self.storage = storage
        self.registry = registry or ResourceRegistry()
        self.cancel_token = cancel_token or CancellationToken()
        self.rule_engine = rule_engine
        self.browser_pool = browser_pool
        self._owns_pool = browser_pool is None
        self.mime_probe = mime_probe or is_processible_mime_type
        self.robots_rules = robots_rules

        self.urls_crawled = UrlsCrawled()
        self.queue = RequestQueue(storage.request_queue_dir)
        self.aggregator = ResultAggregator()
        self.pdf_downloads = PdfDownloads(storage.pdf_dir, max_pages=config.max_pages)
        self.scanner: Optional[PageScanHandler] = None

        self.request_headers: Dict[str, str] = dict(config.extra_http_headers)
        self.seed_url: Optional[str] = None
        self.discover_links = True

        self._start_time: Optional[float] = None
        self._duration_exceeded = False
        self._http_client: Optional[httpx.AsyncClient] = None

    # =========================================================================
    # Entry point
    # =========================================================================

    async def crawl(self, url: str, mode: CrawlMode = CrawlMode.WEBSITE) -> UrlsCrawled:
        """Run a complete scan session.

        Args:
            url: Seed URL, sitemap URL or local path
            mode: website, sitemap or localfile

        Returns:
            The frozen crawl ledger

        Raises:
            RuleEngineSetupError: If axe-core cannot be loaded
            PdfScanSetupError: If PDFs were collected but veraPDF is missing
        """
        mode = CrawlMode(mode)
        self._start_time = time.time()

        logger.info(f"Starting {mode.value} scan of: {url_without_auth(url)}")
        logger.info(f"Max pages: {self.config.max_pages}, Max concurrency: {self.config.max_concurrency}")

        if self.config.scan_html and self.rule_engine is None:
            self.rule_engine = AxeRuleEngine(
                axe_script_path=self.config.axe_script_path,
                enable_wcag_aaa=self.config.enable_wcag_aaa,
                disable_custom_checks=self.config.disable_custom_checks,
            )
        if self.rule_engine is not None:
            self.scanner = PageScanHandler(
                self.rule_engine,
                screenshot_dir=self.storage.screenshot_dir,
                include_screenshots=self.config.include_screenshots,
                cancel_token=self.cancel_token,
            )

        self._http_client = httpx.AsyncClient(timeout=MIME_PROBE_TIMEOUT_SECONDS, follow_redirects=True)
        try:
            if mode == CrawlMode.LOCAL_FILE:
                await self._crawl_local_file(url)
            elif mode == CrawlMode.SITEMAP:
                await self._crawl_sitemap(url)
            else:
                await self._crawl_website(url)

            await self._finish_pdfs()
        finally:
            await self._http_client.aclose()
            if self._owns_pool and self.browser_pool is not None:
                await self.browser_pool.stop()
            await self.registry.drain()

        self._finalize()
        self._log_summary()
        return self.urls_crawled

    def _finalize(self) -> None:
        if self._duration_exceeded and self.urls_crawled.size() == 0:
            self.storage.publish_empty_result()
        if not self.urls_crawled.is_frozen:
            self.urls_crawled.freeze()
            self.storage.write_ledger(self.urls_crawled)

    # =========================================================================
    # Modes
    # =========================================================================

    def _prepare_seed(self, url: str) -> str:
        """Strip credentials from the seed and turn them into a header."""
        self.request_headers.update(basic_auth_header(url))
        return url_without_auth(url)

    async def _crawl_website(self, url: str) -> None:
        self.seed_url = self._prepare_seed(url)
        self.discover_links = True

        if self.config.follow_robots and self.robots_rules is None:
            self.robots_rules = RobotsRules(self.config.user_agent or "*")
            await self.robots_rules.load(self.seed_url, headers=self.request_headers)

        self.queue.add(FrontierRequest(url=self.seed_url, skip_navigation=is_pdf_url(self.seed_url)))
        await self._run_workers()

    async def _crawl_sitemap(self, source: str) -> None:
        self.seed_url = self._prepare_seed(source)
        self.discover_links = False

        parser = SitemapParser(headers=self.request_headers, user_agent=self.config.user_agent)
        urls = await asyncio.to_thread(parser.parse, self.seed_url, self.config.max_pages)
        logger.info(f"Found {len(urls)} URLs in sitemap")

        check_scope = urlparse(self.seed_url).scheme in ("http", "https")
        for page_url in urls:
            page_url = url_without_auth(page_url)
            if check_scope and not is_in_scope(page_url, self.seed_url, self.config.strategy):
                self.urls_crawled.record_terminal(Bucket.OUT_OF_DOMAIN, page_url)
                continue
            self.queue.add(FrontierRequest(url=page_url, skip_navigation=is_pdf_url(page_url)))

        await self._run_workers()

    async def _crawl_local_file(self, source: str) -> None:
        parsed = urlparse(source)
        path = Path(url2pathname(parsed.path)) if parsed.scheme == "file" else Path(source).expanduser()
        path = path.resolve()

        if not path.is_file():
            logger.error(f"Local file not found: {path}")
            return

        if path.suffix.lower() in (".xml", ".txt"):
            await self._crawl_sitemap(str(path))
            return

        file_url = path.as_uri()
        self.seed_url = file_url

        if is_pdf_url(str(path)):
            if not self.config.scan_pdfs:
                self._record_terminal(Bucket.BLACKLISTED, file_url)
                return
            self.pdf_downloads.add_local_file(path, file_url)
            self.urls_crawled.record_scanned(PageInfo(url=file_url, actual_url=file_url, page_title=path.name))
            log_scan_progress(ScanStatus.SCANNED, self.urls_crawled.size(), file_url)
            return

        if self._check_duration():
            logger.warning("Scan aborted due to timeout before page scan.")
            return
        if self.scanner is None:
            self._record_terminal(Bucket.BLACKLISTED, file_url)
            return

        await self._ensure_pool()
        try:
            async with self.browser_pool.acquire() as (context, page):
                await page.goto(file_url, timeout=self.config.navigation_timeout_ms)
                if self._check_duration():
                    logger.warning("Scan aborted due to timeout before page scan.")
                    return

                results = await self.scanner.scan(page, url=file_url)
                actual_url = page.url or file_url
                self._store_results(results, file_url, actual_url)
                self.urls_crawled.record_redirect(file_url, actual_url, was_scanned=True)
        except ScanCancelled:
            self._record_terminal(Bucket.EXCEEDED_REQUESTS, file_url)
        except Exception as e:
            logger.warning(f"Error scanning local file {path}: {e}")
            self._record_terminal(Bucket.ERROR, file_url, ScanStatus.ERROR)

    # =========================================================================
    # Worker pool
    # =========================================================================

    async def _ensure_pool(self) -> None:
        if self.browser_pool is None:
            self.browser_pool = BrowserPool(
                max_size=self.config.max_concurrency,
                headless=self.config.headless,
                timeout_ms=self.config.navigation_timeout_ms,
                user_agent=self.config.user_agent,
                viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
                extra_http_headers=self.request_headers,
                registry=self.registry,
            )
        if not self.browser_pool.is_started:
            await self.browser_pool.start()

    async def _run_workers(self) -> None:
        """Run the bounded worker pool until the frontier drains or the scan is cancelled."""
        if self.queue.is_finished():
            return

        await self._ensure_pool()
        workers = [
            asyncio.create_task(self._worker(worker_id))
            for worker_id in range(self.config.max_concurrency)
        ]
        await asyncio.gather(*workers)

        if self.cancel_token.is_cancelled:
            logger.info(
                f"Crawl stopped ({self.cancel_token.reason}); "
                f"{self.queue.pending_count} request(s) left in the queue"
            )

    def _check_duration(self) -> bool:
        """Cancel the session once the configured wall-clock limit has passed."""
        if self.config.scan_duration <= 0 or self._start_time is None:
            return False
        if time.time() - self._start_time >= self.config.scan_duration:
            if not self._duration_exceeded:
                logger.warning(f"Crawl duration of {self.config.scan_duration}s exceeded")
            self._duration_exceeded = True
            self.cancel_token.cancel(SCAN_DURATION_EXCEEDED)
            return True
        return False

    async def _worker(self, worker_id: int) -> None:
        while not self.cancel_token.is_cancelled:
            if self._check_duration():
                return

            request = self.queue.fetch_next()
            if request is None:
                if self.queue.in_progress_count == 0:
                    return
                # Another worker may still enqueue links
                await asyncio.sleep(WORKER_IDLE_POLL_SECONDS)
                continue

            visit = _Visit(request)
            try:
                await self._process(visit)
            except ScanCancelled:
                logger.debug(f"Worker {worker_id} stopped {request.url}: scan cancelled")
                self._record_unclassified(visit, Bucket.EXCEEDED_REQUESTS, ScanStatus.SKIPPED)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Request handler timed out after {self.config.request_handler_timeout_s}s: {request.url}"
                )
                self._record_unclassified(visit, Bucket.ERROR, ScanStatus.ERROR)
            except Exception as e:
                logger.warning(f"Error processing {request.url}: {e}")
                self._record_unclassified(visit, Bucket.ERROR, ScanStatus.ERROR)
            finally:
                self.queue.mark_handled(request)

    async def _process(self, visit: _Visit) -> None:
        request = visit.request
        url = request.url

        if self._quota_reached():
            self.cancel_token.cancel(MAX_PAGES_REACHED)
            self._classify(visit, Bucket.EXCEEDED_REQUESTS, url)
            return
        self.cancel_token.raise_if_cancelled()

        if is_disallowed_extension(url):
            self._classify(visit, Bucket.BLACKLISTED, url)
            return

        if request.skip_navigation:
            if is_pdf_url(url):
                self._handle_pdf(visit, url)
                return
            if self.urls_crawled.is_loaded_url_scanned(url):
                # Already covered by a scanned entry; nothing to navigate
                return

        async with self.browser_pool.acquire() as (context, page):
            await asyncio.wait_for(
                self._handle_page(visit, context, page),
                timeout=self.config.request_handler_timeout_s,
            )

    # =========================================================================
    # Per-page state machine
    # =========================================================================

    async def _handle_page(self, visit: _Visit, context, page) -> None:
        request = visit.request
        url = request.url

        if request.headers:
            await page.set_extra_http_headers(request.headers)

        response = await page.goto(url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms)
        actual_url = page.url if page.url and page.url != "about:blank" else url
        request.loaded_url = actual_url

        status = response.status if response is not None else 200
        content_type = ""
        if response is not None:
            content_type = (response.headers or {}).get("content-type", "")

        if is_pdf_url(actual_url) or "application/pdf" in content_type:
            self._handle_pdf(visit, url)
            return

        if is_blacklisted(actual_url, self.config.blacklisted_patterns):
            self._classify(visit, Bucket.USER_EXCLUDED, url, ScanStatus.SKIPPED)
            await self._discover(page, context)
            return

        if self.config.follow_robots and not is_allowed_by_robots(url, self.robots_rules):
            self._classify(visit, Bucket.BLACKLISTED, url)
            await self._discover(page, context)
            return

        if self.urls_crawled.is_loaded_url_scanned(url):
            await self._discover(page, context)
            return

        if status == 403:
            self._classify(visit, Bucket.FORBIDDEN, url)
            return
        if status != 200:
            self._classify(visit, Bucket.INVALID, url)
            return

        if content_type and not any(allowed in content_type for allowed in PROCESSIBLE_CONTENT_TYPES):
            self._classify(visit, Bucket.BLACKLISTED, url)
            return

        if self.scanner is None:
            # pdf-only sessions still walk HTML pages for links
            self._classify(visit, Bucket.BLACKLISTED, url)
            await self._discover(page, context)
            return

        if not are_links_equal(actual_url, url):
            if not is_in_scope(actual_url, url, self.config.strategy):
                self._classify_redirect(visit, url, actual_url)
                return
            if self.urls_crawled.is_loaded_url_scanned(actual_url):
                self._classify_redirect(visit, url, actual_url)
                return

        results = await self.scanner.scan(page, url=url)

        # Other workers may have filled the quota while this page was scanned
        if self._quota_reached():
            self.cancel_token.cancel(MAX_PAGES_REACHED)
            self._classify(visit, Bucket.EXCEEDED_REQUESTS, url)
            return

        self._store_results(results, url, actual_url)
        visit.classified = True
        if not are_links_equal(actual_url, url):
            self.urls_crawled.record_redirect(url_without_auth(url), actual_url, was_scanned=True)

        if self._quota_reached():
            self.cancel_token.cancel(MAX_PAGES_REACHED)
            return

        await self._discover(page, context)

    def _handle_pdf(self, visit: _Visit, url: str) -> None:
        if not self.config.scan_pdfs:
            self._classify(visit, Bucket.BLACKLISTED, url)
            return
        if is_blacklisted(url, self.config.blacklisted_patterns):
            self._classify(visit, Bucket.USER_EXCLUDED, url, ScanStatus.SKIPPED)
            return
        if self._quota_reached():
            self._classify(visit, Bucket.EXCEEDED_REQUESTS, url)
            return

        # The download task writes the ledger entry when it finishes
        visit.classified = True
        self.pdf_downloads.schedule(url, self.urls_crawled, self.request_headers)

    # =========================================================================
    # Ledger helpers
    # =========================================================================

    def _quota_reached(self) -> bool:
        """Scanned pages plus PDFs still downloading have filled max_pages."""
        return self.urls_crawled.size() + self.pdf_downloads.pending_count >= self.config.max_pages

    def _record_terminal(self, bucket: Bucket, url: str, status: ScanStatus = ScanStatus.SKIPPED) -> None:
        log_scan_progress(status, self.urls_crawled.size(), url)
        self.urls_crawled.record_terminal(bucket, url)

    def _classify(self, visit: _Visit, bucket: Bucket, url: str, status: ScanStatus = ScanStatus.SKIPPED) -> None:
        self._record_terminal(bucket, url, status)
        visit.classified = True

    def _classify_redirect(self, visit: _Visit, url: str, actual_url: str) -> None:
        log_scan_progress(ScanStatus.SKIPPED, self.urls_crawled.size(), url)
        self.urls_crawled.record_redirect(url_without_auth(url), actual_url, was_scanned=False)
        visit.classified = True

    def _record_unclassified(self, visit: _Visit, bucket: Bucket, status: ScanStatus) -> None:
        """Bucket a request that failed before reaching a classification."""
        if visit.classified:
            return
        self._classify(visit, bucket, visit.request.url, status)

    def _store_results(self, results: FilteredResults, url: str, actual_url: str) -> None:
        """Record a scanned page, push its results and fold them into the aggregate."""
        index = self.urls_crawled.size() + 1
        results.page_index = index
        results.page_title = f"{index}: {results.page_title}"
        results.url = url_without_auth(url)
        results.actual_url = actual_url

        log_scan_progress(ScanStatus.SCANNED, self.urls_crawled.size(), results.url)
        self.urls_crawled.record_scanned(
            PageInfo(url=results.url, actual_url=actual_url, page_title=results.page_title)
        )
        self.storage.dataset.push_data(results)
        self.aggregator.add(results)

    # =========================================================================
    # Link discovery
    # =========================================================================

    def _is_excluded(self, url: str) -> bool:
        """Reject URLs that click discovery must not enqueue."""
        return (
            self.urls_crawled.is_loaded_url_scanned(url)
            or is_blacklisted(url, self.config.blacklisted_patterns)
            or not is_in_scope(url, self.seed_url, self.config.strategy)
        )

    def _enqueue_url(self, url: str) -> bool:
        """Add a discovered URL to the frontier.

        Returns:
            True if the frontier grew
        """
        url = strip_tracking_params(encode_url(url))
        if urlparse(url).scheme not in _LINK_SCHEMES:
            return False
        if not is_in_scope(url, self.seed_url, self.config.strategy):
            return False
        if self.config.follow_robots and not is_allowed_by_robots(url, self.robots_rules):
            return False

        skip_navigation = is_pdf_url(url) or self.urls_crawled.is_scanned(url)
        return self.queue.add(FrontierRequest(url=url, skip_navigation=skip_navigation))

    async def _enqueue_link(self, url: str) -> bool:
        """Enqueue a static link after confirming it serves HTML or PDF."""
        url = strip_tracking_params(encode_url(url))
        if self.queue.is_known(url):
            return False
        if not is_pdf_url(url) and is_in_scope(url, self.seed_url, self.config.strategy):
            if not await self.mime_probe(url, client=self._http_client, headers=self.request_headers):
                return False
        return self._enqueue_url(url)

    async def extract_links(self, page) -> List[str]:
        """Collect static anchor targets from the page's current DOM."""
        html = await page.content()
        base_url = page.url
        soup = BeautifulSoup(html, "lxml")

        links = []
        for anchor in soup.select(STATIC_LINK_SELECTOR):
            href = anchor.get("href")
            if not href:
                continue
            absolute = urljoin(base_url, href.strip())
            if urlparse(absolute).scheme in _LINK_SCHEMES:
                links.append(absolute)
        return links

    async def _discover(self, page, context) -> None:
        """Best-effort link discovery. Never raises for discovery failures."""
        if not self.discover_links or self.cancel_token.is_cancelled:
            return

        try:
            added = 0
            for link in await self.extract_links(page):
                if await self._enqueue_link(link):
                    added += 1
            if added:
                logger.debug(f"Enqueued {added} link(s) from {page.url}")
        except ScanCancelled:
            raise
        except Exception as e:
            logger.debug(f"Static link discovery failed on {page.url}: {e}")

        if self.config.safe_mode:
            return

        try:
            session = ClickDiscoverySession(
                page,
                context,
                enqueue=self._enqueue_url,
                is_excluded=self._is_excluded,
                cancel_token=self.cancel_token,
                navigation_timeout_ms=self.config.navigation_timeout_ms,
            )
            await session.run()
        except Exception as e:
            logger.debug(f"Click discovery failed: {e}")

    # =========================================================================
    # PDFs
    # =========================================================================

    async def _finish_pdfs(self) -> None:
        """Wait for downloads, validate them with veraPDF and push the results."""
        await self.pdf_downloads.wait()
        if not self.pdf_downloads.uuid_to_url:
            return

        executable = find_verapdf_executable(self.config.verapdf_path)
        logger.info(f"Scanning {len(self.pdf_downloads.uuid_to_url)} PDF document(s) with veraPDF")
        report = await asyncio.to_thread(run_pdf_scan, self.storage.pdf_dir, executable, self.storage.root)

        for results in map_pdf_scan_results(report, self.pdf_downloads.uuid_to_url, file_dir=self.storage.pdf_dir):
            self.storage.dataset.push_data(results)
            self.aggregator.add(results)

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_crawl_summary(self) -> dict:
        """Get a summary of the crawl results.

        Returns:
            Dictionary with bucket counts and aggregate totals
        """
        aggregate = self.aggregator.result()
        return {
            "buckets": self.urls_crawled.summary(),
            "pages_with_results": self.aggregator.page_count,
            "total_items": aggregate.total_items,
            "categories": {
                category.value: bucket.total_items
                for category, bucket in aggregate.categories()
            },
            "cancelled": self.cancel_token.reason,
        }

    def _log_summary(self) -> None:
        logger.info(f"\n{'=' * 60}")
        logger.info(f"Scan complete! Scanned {self.urls_crawled.size()} pages")
        for bucket, count in self.urls_crawled.summary().items():
            if count and bucket != Bucket.SCANNED.value:
                logger.info(f"  {bucket}: {count}")
        logger.info(f"{'=' * 60}\n")
