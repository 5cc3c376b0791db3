"""Tests for PDF download tracking, veraPDF invocation and result mapping."""

import json
import subprocess
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from a11yscan.constants import PDF_SCAN_RESULT_FILE, VERAPDF_PROFILE_RELATIVE_PATH
from a11yscan.models import Bucket, PageInfo, UrlsCrawled
from a11yscan.pdf_scanner import (
    PdfDownloads,
    PdfScanSetupError,
    find_verapdf_executable,
    is_pdf_bytes,
    is_rule_excluded,
    map_pdf_scan_results,
    page_from_context,
    pdf_title,
    run_pdf_scan,
    transform_rule,
)

PDF_BYTES = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\ntrailer\n<<>>\n%%EOF"

ERROR_META = {
    "WCAG2.1": {
        "1.3.1": {"1": {"STATUS": "critical"}, "3": {"STATUS": "serious"}},
    },
    "ISO 14289-1": {
        "7.1": {"8": {"STATUS": "error"}},
    },
}


def rule_summary(specification="WCAG2.1", clause="1.3.1", test_number=1, checks=1):
    return {
        "specification": specification,
        "clause": clause,
        "testNumber": test_number,
        "description": f"{specification} {clause} test {test_number}",
        "checks": [
            {"errorMessage": f"failure {i}", "context": f"root/document[0]/pages[{i}]/annots[0]"}
            for i in range(checks)
        ],
    }


def report_for(jobs):
    return {"report": {"jobs": jobs}}


def job(file_id, rules=None, validated=True):
    entry = {"itemDetails": {"name": f"/tmp/session/pdfs/{file_id}.pdf"}}
    if validated:
        entry["validationResult"] = {"details": {"ruleSummaries": rules or []}}
    return entry


# =============================================================================
# Helpers
# =============================================================================

class TestPdfHelpers:
    """Test cases for PDF helper functions."""

    def test_is_pdf_bytes(self):
        """Test the magic prefix and EOF marker are both required."""
        assert is_pdf_bytes(PDF_BYTES)
        assert not is_pdf_bytes(b"%PDF-1.4 truncated")
        assert not is_pdf_bytes(b"<html>%%EOF</html>")
        assert not is_pdf_bytes(b"")

    def test_pdf_title(self):
        """Test the title is the decoded last path segment."""
        assert pdf_title("https://a.example/files/Annual%20Report.pdf") == "Annual Report.pdf"
        assert pdf_title("file:///tmp/guide.pdf") == "guide.pdf"

    def test_page_from_context(self):
        """Test page indexes in contexts are converted to 1-based numbers."""
        assert page_from_context("root/document[0]/pages[0]/annots[1]") == 1
        assert page_from_context("root/document[0]/pages[11]") == 12
        assert page_from_context("root/document[0]/metadata[0]") is None
        assert page_from_context(None) is None

    def test_aaa_and_false_positives_excluded(self):
        """Test AAA clauses and listed false positives are dropped."""
        assert is_rule_excluded({"clause": "2.4.9", "testNumber": 1})
        assert is_rule_excluded({"clause": "1.3.4", "testNumber": 1})
        assert not is_rule_excluded({"clause": "1.3.4", "testNumber": 2})
        assert not is_rule_excluded({"clause": "1.3.1", "testNumber": "x"})

    def test_transform_wcag_rule(self):
        """Test WCAG rules get a level and a criterion tag."""
        rule_id, details = transform_rule(rule_summary(checks=2))

        assert rule_id == "pdf-WCAG2.1-1.3.1-1"
        assert details.conformance == ["wcag2a", "wcag131"]
        assert details.total_items == 2
        assert [item.page for item in details.items] == [1, 2]
        assert details.items[0].message == "failure 0"

    def test_transform_iso_rule(self):
        """Test non-WCAG rules are best-practice."""
        rule_id, details = transform_rule(rule_summary("ISO 14289-1", "7.1", 8))
        assert rule_id == "pdf-ISO_14289-1-7.1-8"
        assert details.conformance == ["best-practice"]


# =============================================================================
# Result mapping
# =============================================================================

class TestMapPdfScanResults:
    """Test cases for map_pdf_scan_results."""

    def test_severity_decides_category(self):
        """Test critical rules are mustFix and the rest goodToFix."""
        report = report_for([job("id-1", [
            rule_summary("WCAG2.1", "1.3.1", 1),
            rule_summary("WCAG2.1", "1.3.1", 3, checks=2),
            rule_summary("ISO 14289-1", "7.1", 8),
        ])])
        results = map_pdf_scan_results(report, {"id-1": "https://a.example/doc.pdf"}, ERROR_META)

        assert len(results) == 1
        page = results[0]
        assert page.url == "https://a.example/doc.pdf"
        assert page.page_title == "doc.pdf"
        assert list(page.must_fix.rules) == ["pdf-WCAG2.1-1.3.1-1"]
        assert page.good_to_fix.total_items == 3
        assert page.total_items == 4

    def test_unknown_severity_is_good_to_fix(self):
        """Test rules missing from the severity table default to goodToFix."""
        report = report_for([job("id-1", [rule_summary("WCAG2.1", "4.1.2", 9)])])
        results = map_pdf_scan_results(report, {"id-1": "https://a.example/doc.pdf"}, ERROR_META)
        assert results[0].good_to_fix.total_items == 1

    def test_excluded_rules_skipped(self):
        """Test AAA rules never reach the results."""
        report = report_for([job("id-1", [rule_summary("WCAG2.1", "2.4.9", 1)])])
        results = map_pdf_scan_results(report, {"id-1": "https://a.example/doc.pdf"}, ERROR_META)
        assert results[0].total_items == 0

    def test_totals_consistent_with_excluded_rules(self, assert_totals_consistent):
        """Test dropped AAA clauses leave the page totals consistent."""
        report = report_for([job("id-1", [
            rule_summary("WCAG2.1", "1.3.1", 1, checks=2),
            rule_summary("WCAG2.1", "2.4.9", 1, checks=3),
            rule_summary("ISO 14289-1", "7.1", 8),
        ])])
        page = map_pdf_scan_results(report, {"id-1": "https://a.example/doc.pdf"}, ERROR_META)[0]

        assert_totals_consistent(page)
        assert page.total_items == 3

    def test_unknown_and_unvalidated_jobs_skipped(self):
        """Test jobs for unmapped files or without a validation result are skipped."""
        report = report_for([
            job("stray", [rule_summary()]),
            job("id-1", validated=False),
        ])
        assert map_pdf_scan_results(report, {"id-1": "https://a.example/doc.pdf"}, ERROR_META) == []

    def test_file_path_recorded(self, tmp_path):
        """Test the stored PDF path is attached when the directory is known."""
        report = report_for([job("id-1")])
        results = map_pdf_scan_results(report, {"id-1": "https://a.example/doc.pdf"}, ERROR_META, file_dir=tmp_path)
        assert results[0].file_path == str(tmp_path / "id-1.pdf")

    def test_empty_report(self):
        """Test a missing report maps to no results."""
        assert map_pdf_scan_results(None, {"id-1": "https://a.example/doc.pdf"}) == []

    def test_bundled_error_meta(self):
        """Test the bundled severity table is used by default."""
        report = report_for([job("id-1", [rule_summary("WCAG2.1", "4.1.1", 1)])])
        results = map_pdf_scan_results(report, {"id-1": "https://a.example/doc.pdf"})
        assert results[0].must_fix.total_items == 1


# =============================================================================
# veraPDF
# =============================================================================

class TestVeraPdf:
    """Test cases for locating and running veraPDF."""

    @staticmethod
    def _install(root: Path) -> Path:
        executable = root / "verapdf"
        executable.write_text("#!/bin/sh\n")
        profile = root / VERAPDF_PROFILE_RELATIVE_PATH
        profile.parent.mkdir(parents=True)
        profile.write_text("<profile/>")
        return executable

    def test_find_explicit_executable(self, tmp_path):
        """Test an explicit path with its profile is accepted."""
        executable = self._install(tmp_path)
        assert find_verapdf_executable(str(executable)) == executable

    def test_find_in_directory(self, tmp_path, monkeypatch):
        """Test VERAPDF_PATH may point at the install directory."""
        executable = self._install(tmp_path)
        monkeypatch.setenv("VERAPDF_PATH", str(tmp_path))
        monkeypatch.setattr("a11yscan.pdf_scanner.shutil.which", lambda name: None)
        assert find_verapdf_executable() == executable

    def test_missing_executable(self, monkeypatch):
        """Test a missing executable is a setup error."""
        monkeypatch.delenv("VERAPDF_PATH", raising=False)
        monkeypatch.setattr("a11yscan.pdf_scanner.shutil.which", lambda name: None)
        with pytest.raises(PdfScanSetupError, match="veraPDF executable"):
            find_verapdf_executable()

    def test_missing_profile(self, tmp_path):
        """Test an executable without its WCAG profile is a setup error."""
        executable = tmp_path / "verapdf"
        executable.write_text("#!/bin/sh\n")
        with pytest.raises(PdfScanSetupError, match="profile"):
            find_verapdf_executable(str(executable))

    def test_run_pdf_scan_writes_report(self, tmp_path):
        """Test the raw report is saved and parsed."""
        pdf_dir = tmp_path / "pdfs"
        pdf_dir.mkdir()
        report = report_for([job("id-1")])
        completed = MagicMock(stdout=json.dumps(report), stderr="")

        with patch("a11yscan.pdf_scanner.subprocess.run", return_value=completed) as mock_run:
            parsed = run_pdf_scan(pdf_dir, Path("/opt/verapdf/verapdf"))

        assert parsed == report
        cmd = mock_run.call_args.args[0]
        assert cmd[0] == "/opt/verapdf/verapdf"
        assert cmd[cmd.index("--format") + 1] == "json"
        assert cmd[-2:] == ["-r", str(pdf_dir)]
        assert json.loads((tmp_path / PDF_SCAN_RESULT_FILE).read_text()) == report

    def test_run_pdf_scan_unparseable_output(self, tmp_path):
        """Test garbage output yields no report."""
        completed = MagicMock(stdout="java.lang.OutOfMemoryError", stderr="boom")
        with patch("a11yscan.pdf_scanner.subprocess.run", return_value=completed):
            assert run_pdf_scan(tmp_path, Path("/opt/verapdf/verapdf"), output_dir=tmp_path) is None

    def test_run_pdf_scan_timeout(self, tmp_path):
        """Test a veraPDF timeout yields no report."""
        with patch("a11yscan.pdf_scanner.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="verapdf", timeout=600)):
            assert run_pdf_scan(tmp_path, Path("/opt/verapdf/verapdf")) is None


# =============================================================================
# Downloads
# =============================================================================

class TestPdfDownloads:
    """Test cases for PdfDownloads."""

    @pytest.mark.asyncio
    async def test_valid_pdf_recorded_as_scanned(self, tmp_path):
        """Test a downloaded PDF is stored and recorded as scanned."""
        downloads = PdfDownloads(tmp_path)
        ledger = UrlsCrawled()

        with patch.object(PdfDownloads, "_fetch", AsyncMock(return_value=PDF_BYTES)):
            file_id = downloads.schedule("https://a.example/doc.pdf", ledger)
            await downloads.wait()

        assert (tmp_path / f"{file_id}.pdf").read_bytes() == PDF_BYTES
        assert downloads.uuid_to_url == {file_id: "https://a.example/doc.pdf"}
        assert ledger.scanned[0].page_title == "doc.pdf"
        assert downloads.pending_count == 0

    @pytest.mark.asyncio
    async def test_non_pdf_recorded_as_invalid(self, tmp_path):
        """Test a body without the PDF header is invalid and unmapped."""
        downloads = PdfDownloads(tmp_path)
        ledger = UrlsCrawled()

        with patch.object(PdfDownloads, "_fetch", AsyncMock(return_value=b"<html></html>")):
            downloads.schedule("https://a.example/doc.pdf", ledger)
            await downloads.wait()

        assert ledger.bucket(Bucket.INVALID) == ["https://a.example/doc.pdf"]
        assert downloads.uuid_to_url == {}

    @pytest.mark.asyncio
    async def test_failed_download_recorded_as_error(self, tmp_path):
        """Test a failed request is classified as an error."""
        downloads = PdfDownloads(tmp_path)
        ledger = UrlsCrawled()

        with patch.object(PdfDownloads, "_fetch", AsyncMock(side_effect=OSError("connection reset"))):
            downloads.schedule("https://a.example/doc.pdf", ledger)
            await downloads.wait()

        assert ledger.bucket(Bucket.ERROR) == ["https://a.example/doc.pdf"]
        assert downloads.uuid_to_url == {}

    @pytest.mark.asyncio
    async def test_full_quota_marks_exceeded(self, tmp_path):
        """Test a PDF finishing after the page limit filled is not scanned."""
        downloads = PdfDownloads(tmp_path, max_pages=1)
        ledger = UrlsCrawled()
        ledger.record_scanned(PageInfo(url="https://a.example/", page_title="1: Home"))

        with patch.object(PdfDownloads, "_fetch", AsyncMock(return_value=PDF_BYTES)):
            file_id = downloads.schedule("https://a.example/doc.pdf", ledger)
            await downloads.wait()

        assert ledger.count(Bucket.SCANNED) == 1
        assert ledger.bucket(Bucket.EXCEEDED_REQUESTS) == ["https://a.example/doc.pdf"]
        assert downloads.uuid_to_url == {}
        assert not (tmp_path / f"{file_id}.pdf").exists()

    @pytest.mark.asyncio
    async def test_fetch_reads_file_urls(self, tmp_path):
        """Test file:// PDFs are read from disk."""
        source = tmp_path / "local.pdf"
        source.write_bytes(PDF_BYTES)
        downloads = PdfDownloads(tmp_path / "out")
        assert await downloads._fetch(source.as_uri()) == PDF_BYTES

    def test_add_local_file(self, tmp_path):
        """Test a local PDF is copied under a fresh file id."""
        source = tmp_path / "guide.pdf"
        source.write_bytes(PDF_BYTES)
        pdf_dir = tmp_path / "pdfs"
        pdf_dir.mkdir()

        downloads = PdfDownloads(pdf_dir)
        file_id = downloads.add_local_file(source, source.as_uri())

        assert (pdf_dir / f"{file_id}.pdf").read_bytes() == PDF_BYTES
        assert downloads.uuid_to_url[file_id] == source.as_uri()
