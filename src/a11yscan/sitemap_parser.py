"""Sitemap parser for sitemap-mode and local-file crawls."""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname
from xml.etree import ElementTree as ET

import requests

logger = logging.getLogger(__name__)

MAX_INDEX_DEPTH = 3
SITEMAP_FETCH_TIMEOUT_SECONDS = 30


class SitemapParser:
    """
    Parse sitemaps to extract URLs for scanning.

    Supports:
    - Standard sitemap.xml files
    - Sitemap index files (nested up to three levels)
    - Plain-text sitemaps with one URL per line
    - Remote URLs and local files
    """

    # XML namespaces used in sitemaps
    NAMESPACES = {
        'sm': 'http://www.sitemaps.org/schemas/sitemap/0.9',
        'image': 'http://www.google.com/schemas/sitemap-image/1.1',
    }

    def __init__(self, headers: Optional[Dict[str, str]] = None, user_agent: Optional[str] = None):
        """
        Initialize the sitemap parser.

        Args:
            headers: Extra request headers (e.g. Authorization)
            user_agent: User agent for remote fetches
        """
        self.headers = {
            'User-Agent': user_agent or 'Mozilla/5.0 (compatible; a11yscan)',
            'Accept': 'application/xml, text/xml, text/plain, */*',
        }
        self.headers.update(headers or {})
        # dict keeps insertion order, so document order survives dedup
        self._urls: Dict[str, None] = {}

    def parse(self, source: str, max_urls: Optional[int] = None) -> List[str]:
        """
        Parse a sitemap and return all page URLs.

        Args:
            source: Sitemap URL, file:// URL or local path
            max_urls: Maximum number of URLs to return (None for all)

        Returns:
            URLs in document order, without duplicates
        """
        self._urls = {}
        self._parse_source(source, max_urls, depth=0)

        urls = list(self._urls)
        if max_urls:
            urls = urls[:max_urls]
        return urls

    def _is_full(self, max_urls: Optional[int]) -> bool:
        return bool(max_urls) and len(self._urls) >= max_urls

    def _read_source(self, source: str) -> Optional[str]:
        parsed = urlparse(source)
        try:
            if parsed.scheme in ("http", "https"):
                response = requests.get(source, headers=self.headers, timeout=SITEMAP_FETCH_TIMEOUT_SECONDS)
                response.raise_for_status()
                return response.text

            path = Path(url2pathname(parsed.path)) if parsed.scheme == "file" else Path(source)
            return path.read_text(encoding="utf-8")
        except Exception as e:
            logger.error(f"Failed to fetch sitemap {source}: {e}")
            return None

    def _parse_source(self, source: str, max_urls: Optional[int], depth: int) -> None:
        if depth > MAX_INDEX_DEPTH:  # Prevent infinite recursion
            logger.warning(f"Sitemap index nesting too deep, skipping {source}")
            return
        if self._is_full(max_urls):
            return

        logger.info(f"Fetching sitemap: {source}")
        content = self._read_source(source)
        if not content:
            return

        if self._looks_like_xml(content):
            self._parse_sitemap_content(content, max_urls, depth)
        else:
            self._parse_text(content, max_urls)

    @staticmethod
    def _looks_like_xml(content: str) -> bool:
        head = content.lstrip()[:512].lower()
        return head.startswith("<?xml") or "<urlset" in head or "<sitemapindex" in head

    def _add_url(self, url: str, max_urls: Optional[int]) -> bool:
        """Record a URL. Returns False once the limit is reached."""
        if self._is_full(max_urls):
            return False
        self._urls.setdefault(url, None)
        return True

    def _parse_text(self, content: str, max_urls: Optional[int]) -> None:
        count = 0
        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if urlparse(line).scheme not in ("http", "https", "file"):
                continue
            if not self._add_url(line, max_urls):
                break
            count += 1
        logger.info(f"Extracted {count} URLs from text sitemap")

    def _parse_sitemap_content(self, content: str, max_urls: Optional[int], depth: int) -> None:
        """Parse sitemap XML content and extract URLs."""
        try:
            root = ET.fromstring(self._clean_xml_content(content))
        except ET.ParseError as e:
            logger.error(f"Failed to parse sitemap XML: {e}")
            return

        # Get the root tag without namespace
        root_tag = root.tag.split('}')[-1] if '}' in root.tag else root.tag

        if root_tag == 'sitemapindex':
            self._parse_sitemap_index(root, max_urls, depth)
        elif root_tag == 'urlset':
            self._parse_urlset(root, max_urls)
        else:
            logger.warning(f"Unknown sitemap root element: {root_tag}")

    def _clean_xml_content(self, content: str) -> str:
        """Strip a DOCTYPE or an HTML wrapper around the XML."""
        content = re.sub(r'<!DOCTYPE[^>]*>', '', content).strip()

        if '<html' in content.lower():
            match = re.search(r'(<(?:urlset|sitemapindex).*?</(?:urlset|sitemapindex)>)', content, re.DOTALL)
            if match:
                return match.group(1)

        return content

    @classmethod
    def _loc(cls, element: ET.Element) -> Optional[str]:
        loc = element.find('sm:loc', cls.NAMESPACES)
        if loc is None:
            loc = element.find('loc')
        if loc is not None and loc.text:
            return loc.text.strip()
        return None

    @staticmethod
    def _local_name(element: ET.Element) -> str:
        return element.tag.split('}')[-1]

    def _parse_sitemap_index(self, root: ET.Element, max_urls: Optional[int], depth: int) -> None:
        """Parse a sitemap index and fetch each child sitemap in order."""
        for sitemap in root:
            if self._local_name(sitemap) != 'sitemap':
                continue
            child = self._loc(sitemap)
            if child:
                logger.info(f"Found child sitemap: {child}")
                self._parse_source(child, max_urls, depth + 1)
            if self._is_full(max_urls):
                return

    def _parse_urlset(self, root: ET.Element, max_urls: Optional[int]) -> None:
        """Parse a urlset element and extract URLs."""
        count = 0

        for url_elem in root:
            if self._local_name(url_elem) != 'url':
                continue
            url = self._loc(url_elem)
            if not url:
                continue
            if not self._add_url(url, max_urls):
                logger.info(f"Reached max URLs limit ({max_urls})")
                return
            count += 1

        logger.info(f"Extracted {count} URLs from sitemap")


def parse_sitemap(
    source: str,
    max_urls: Optional[int] = None,
    headers: Optional[Dict[str, str]] = None,
) -> List[str]:
    """
    Convenience function to parse a sitemap.

    Args:
        source: Sitemap URL or local path
        max_urls: Maximum URLs to return
        headers: Extra request headers

    Returns:
        List of URLs from the sitemap
    """
    parser = SitemapParser(headers=headers)
    return parser.parse(source, max_urls)
