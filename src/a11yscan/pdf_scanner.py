"""
PDF Accessibility Scanning

Downloads PDF documents found during a crawl, validates them with the
veraPDF CLI against the WCAG 2.1 profile, and maps the report into the
same four-category result shape used for HTML pages.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import subprocess
import uuid
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import httpx

from a11yscan.constants import (
    PDF_EOF_MARKER,
    PDF_EXCLUDED_TESTS,
    PDF_LEVEL_A_CLAUSES,
    PDF_LEVEL_AA_CLAUSES,
    PDF_LEVEL_AAA_CLAUSES,
    PDF_MAGIC_PREFIX,
    PDF_SCAN_RESULT_FILE,
    PDF_SEVERITY_TO_CATEGORY,
    VERAPDF_PROFILE_RELATIVE_PATH,
)
from a11yscan.logging_config import ScanStatus, log_scan_progress
from a11yscan.models import (
    Bucket,
    Category,
    FilteredResults,
    ItemInfo,
    PageInfo,
    RuleDetails,
    UrlsCrawled,
)

logger = logging.getLogger(__name__)

ERROR_META_PATH = Path(__file__).parent / "data" / "pdf_error_meta.json"
VERAPDF_TIMEOUT_SECONDS = 600
PDF_DOWNLOAD_TIMEOUT_SECONDS = 60.0

_CLAUSE_TO_LEVEL = {
    **{clause: "wcag2aa" for clause in PDF_LEVEL_AA_CLAUSES},
    **{clause: "wcag2a" for clause in PDF_LEVEL_A_CLAUSES},
}
_PAGE_IN_CONTEXT = re.compile(r"pages\[(\d+)\]")


class PdfScanSetupError(Exception):
    """Raised when the veraPDF executable or its profile cannot be found."""


def is_pdf_bytes(data: bytes) -> bool:
    """True if `data` starts with the PDF header and contains an EOF marker."""
    return bool(data) and data.startswith(PDF_MAGIC_PREFIX) and PDF_EOF_MARKER in data


def pdf_title(url: str) -> str:
    """Last path segment of a PDF URL, decoded."""
    path = urlparse(url).path or url
    return unquote(path.rstrip("/").rsplit("/", 1)[-1])


def load_error_meta(path: Optional[Path] = None) -> dict:
    """Load the severity table keyed by specification, clause and test number."""
    with open(path or ERROR_META_PATH, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# Download
# =============================================================================

class PdfDownloads:
    """Tracks PDF downloads scheduled during a crawl.

    Each download is an asyncio task. The ledger entry (scanned or invalid)
    is written when the download finishes.
    """

    def __init__(
        self,
        pdf_dir: Path,
        headers: Optional[Dict[str, str]] = None,
        max_pages: Optional[int] = None,
    ):
        self.pdf_dir = Path(pdf_dir)
        self.max_pages = max_pages
        self.headers = dict(headers or {})
        self.uuid_to_url: Dict[str, str] = {}
        self._tasks: List[asyncio.Task] = []

    @property
    def pending_count(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def __len__(self) -> int:
        return len(self._tasks)

    def schedule(self, url: str, ledger: UrlsCrawled, headers: Optional[Dict[str, str]] = None) -> str:
        """Start downloading `url`.

        Returns:
            The file id the PDF will be stored under
        """
        file_id = str(uuid.uuid4())
        self.uuid_to_url[file_id] = url
        self._tasks.append(asyncio.create_task(self._download(file_id, url, ledger, headers)))
        return file_id

    async def _fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return await asyncio.to_thread(Path(url2pathname(parsed.path)).read_bytes)

        async with httpx.AsyncClient(timeout=PDF_DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True) as client:
            response = await client.get(url, headers={**self.headers, **(headers or {})})
            response.raise_for_status()
            return response.content

    async def _download(self, file_id: str, url: str, ledger: UrlsCrawled, headers=None) -> None:
        try:
            data = await self._fetch(url, headers)
        except Exception as e:
            logger.warning(f"PDF download failed for {url}: {e}")
            self.uuid_to_url.pop(file_id, None)
            ledger.record_terminal(Bucket.ERROR, url)
            log_scan_progress(ScanStatus.ERROR, ledger.size(), url)
            return

        if is_pdf_bytes(data) and self.max_pages and ledger.size() >= self.max_pages:
            # HTML pages filled the quota while this download was in flight
            self.uuid_to_url.pop(file_id, None)
            log_scan_progress(ScanStatus.SKIPPED, ledger.size(), url)
            ledger.record_terminal(Bucket.EXCEEDED_REQUESTS, url)
            return

        if is_pdf_bytes(data):
            (self.pdf_dir / f"{file_id}.pdf").write_bytes(data)
            log_scan_progress(ScanStatus.SCANNED, ledger.size(), url)
            ledger.record_scanned(PageInfo(url=url, actual_url=url, page_title=pdf_title(url)))
        else:
            self.uuid_to_url.pop(file_id, None)
            log_scan_progress(ScanStatus.SKIPPED, ledger.size(), url)
            ledger.record_terminal(Bucket.INVALID, url)

    async def wait(self) -> None:
        """Wait for every scheduled download to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def add_local_file(self, path: Path, url: str) -> str:
        """Copy a local PDF into the scan directory without downloading."""
        file_id = str(uuid.uuid4())
        shutil.copyfile(path, self.pdf_dir / f"{file_id}.pdf")
        self.uuid_to_url[file_id] = url
        return file_id


# =============================================================================
# veraPDF
# =============================================================================

def find_verapdf_executable(explicit: Optional[str] = None) -> Path:
    """
    Locate the veraPDF CLI and check that its WCAG profile is present.

    Args:
        explicit: Configured executable path, checked before VERAPDF_PATH and PATH

    Returns:
        Path to the executable

    Raises:
        PdfScanSetupError: If the executable or the profile is missing
    """
    executable_name = "verapdf.bat" if os.name == "nt" else "verapdf"
    candidates = [explicit, os.getenv("VERAPDF_PATH"), shutil.which(executable_name)]

    for candidate in candidates:
        if not candidate:
            continue
        path = Path(candidate)
        if path.is_dir():
            path = path / executable_name
        if path.is_file():
            if not verapdf_profile_path(path).is_file():
                raise PdfScanSetupError(
                    f"Could not find veraPDF validation profile next to {path}. "
                    "Please ensure veraPDF is installed with its profiles."
                )
            return path

    raise PdfScanSetupError(
        "Could not find veraPDF executable. Please install veraPDF or set VERAPDF_PATH."
    )


def verapdf_profile_path(executable: Path) -> Path:
    return Path(executable).parent / VERAPDF_PROFILE_RELATIVE_PATH


def run_pdf_scan(pdf_dir: Path, executable: Path, output_dir: Optional[Path] = None) -> Optional[dict]:
    """
    Run veraPDF over every PDF in `pdf_dir`.

    The raw JSON report is written to `<output_dir>/pdf-scan-results.json`.

    Args:
        pdf_dir: Directory containing downloaded PDFs
        executable: veraPDF CLI
        output_dir: Where to write the raw report (defaults to pdf_dir's parent)

    Returns:
        Parsed report, or None if veraPDF produced no parseable output
    """
    output_dir = Path(output_dir or Path(pdf_dir).parent)
    result_path = output_dir / PDF_SCAN_RESULT_FILE

    cmd = [
        str(executable),
        "-p", str(verapdf_profile_path(executable)),
        "--format", "json",
        "-r",  # recurse through directory
        str(pdf_dir),
    ]

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=VERAPDF_TIMEOUT_SECONDS,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.error(f"veraPDF timeout after {VERAPDF_TIMEOUT_SECONDS}s")
        return None

    result_path.write_text(result.stdout or "", encoding="utf-8")

    try:
        return json.loads(result.stdout)
    except (json.JSONDecodeError, TypeError) as e:
        logger.error(f"Could not parse veraPDF output: {e}")
        if result.stderr:
            logger.debug(result.stderr)
        return None


# =============================================================================
# Result mapping
# =============================================================================

def is_rule_excluded(rule: dict) -> bool:
    """AAA clauses and known false positives are dropped entirely."""
    clause = rule.get("clause")
    if clause in PDF_LEVEL_AAA_CLAUSES:
        return True
    try:
        test_number = int(rule.get("testNumber"))
    except (TypeError, ValueError):
        return False
    return test_number in PDF_EXCLUDED_TESTS.get(clause, set())


def page_from_context(context: Optional[str]) -> Optional[int]:
    """1-based page number referenced by a veraPDF check context."""
    match = _PAGE_IN_CONTEXT.search(context or "")
    if match is None:
        return None
    return int(match.group(1)) + 1


def rule_severity(rule: dict, error_meta: dict) -> str:
    specification = error_meta.get(rule.get("specification"), {})
    clause = specification.get(rule.get("clause"), {})
    entry = clause.get(str(rule.get("testNumber")), {})
    return entry.get("STATUS", "ignore")


def transform_rule(rule: dict):
    """Build the (rule_id, RuleDetails) pair for one failed veraPDF rule."""
    specification = rule.get("specification", "")
    clause = rule.get("clause", "")
    test_number = rule.get("testNumber")
    checks = rule.get("checks", [])

    if specification == "WCAG2.1":
        conformance = [_CLAUSE_TO_LEVEL.get(clause), "wcag" + clause.replace(".", "")]
        conformance = [tag for tag in conformance if tag]
    else:
        conformance = ["best-practice"]

    details = RuleDetails(description=rule.get("description", ""), conformance=conformance)
    for check in checks:
        context = check.get("context")
        details.add_item(ItemInfo(
            message=check.get("errorMessage", ""),
            page=page_from_context(context),
            context=context,
        ))

    rule_id = f"pdf-{specification}-{clause}-{test_number}".replace(" ", "_")
    return rule_id, details


def map_pdf_scan_results(
    report: Optional[dict],
    uuid_to_url: Dict[str, str],
    error_meta: Optional[dict] = None,
    file_dir: Optional[Path] = None,
) -> List[FilteredResults]:
    """
    Map a veraPDF JSON report to per-document FilteredResults.

    Args:
        report: Parsed veraPDF output
        uuid_to_url: File id -> original URL
        error_meta: Severity table (defaults to the bundled one)
        file_dir: Directory the PDFs were stored in, recorded as filePath

    Returns:
        One FilteredResults per successfully validated document
    """
    if not report:
        return []
    if error_meta is None:
        error_meta = load_error_meta()

    results = []
    for job in report.get("report", {}).get("jobs", []):
        file_name = job.get("itemDetails", {}).get("name", "")
        file_id = Path(file_name.replace("\\", "/")).stem
        url = uuid_to_url.get(file_id)
        if url is None:
            logger.debug(f"Skipping veraPDF job for unknown file {file_name}")
            continue

        title = pdf_title(url)
        validation = job.get("validationResult")
        if not validation:
            logger.info(f"Unable to scan {title}, skipping")
            continue

        translated = FilteredResults(url=url, actual_url=url, page_title=title)
        if file_dir is not None:
            translated.file_path = str(Path(file_dir) / f"{file_id}.pdf")

        for rule in validation.get("details", {}).get("ruleSummaries", []):
            if is_rule_excluded(rule):
                continue
            rule_id, details = transform_rule(rule)
            category = translated.category(Category(PDF_SEVERITY_TO_CATEGORY[rule_severity(rule, error_meta)]))
            category.rules[rule_id] = details
            category.total_items += details.total_items
            translated.total_items += details.total_items

        results.append(translated)

    return results
