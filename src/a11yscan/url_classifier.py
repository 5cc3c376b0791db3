"""URL classification predicates used by the crawler.

Everything here is a pure function of its arguments except
`RobotsRules.load` and `is_processible_mime_type`, which perform network
probes and fail open.
"""

import logging
import re
from functools import lru_cache
from typing import Dict, Iterable, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlparse, urlunparse
from urllib.robotparser import RobotFileParser

import httpx

from a11yscan.config import EnqueueStrategy
from a11yscan.constants import (
    BLACKLISTED_FILE_EXTENSIONS,
    MIME_PROBE_TIMEOUT_SECONDS,
    PROCESSIBLE_CONTENT_TYPES,
    ROBOTS_FETCH_TIMEOUT_SECONDS,
    UTM_PARAM_PATTERN,
    ZIP_MAGIC_NUMBER,
)

logger = logging.getLogger(__name__)

# Characters encodeURI leaves alone, plus '%' so encoding is idempotent
_URL_SAFE_CHARS = ";,/?:@&=+$-_.!~*'()#%[]"

_PDF_PATH_PATTERN = re.compile(r"\.pdf$", re.IGNORECASE)
_REMOTE_SCHEMES = ("http", "https", "file")


# =============================================================================
# Normalization
# =============================================================================

def url_without_auth(url: str) -> str:
    """Remove `user:pass@` from a URL."""
    parsed = urlparse(url)
    if parsed.username is None and parsed.password is None:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def encode_url(url: str) -> str:
    """Percent-encode a URL the way a browser's encodeURI would.

    Existing escapes are preserved, so encoding twice is a no-op.
    """
    return quote(url, safe=_URL_SAFE_CHARS)


def strip_tracking_params(url: str) -> str:
    """Drop utm_* query parameters."""
    stripped = UTM_PARAM_PATTERN.sub("", url)
    if stripped != url:
        stripped = stripped.rstrip("&")
        if stripped.endswith("?"):
            stripped = stripped[:-1]
    return stripped


def compute_unique_key(url: str) -> str:
    """Deduplication key for the request queue.

    Lowercases scheme and host, drops the fragment, sorts the query and
    removes a trailing slash from the path.
    """
    parsed = urlparse(url)
    netloc = parsed.netloc.lower()
    path = parsed.path
    if path.endswith("/"):
        path = path.rstrip("/")
    query = ""
    if parsed.query:
        pairs = sorted(parse_qsl(parsed.query, keep_blank_values=True))
        query = urlencode(pairs, safe=_URL_SAFE_CHARS)
    return urlunparse((parsed.scheme.lower(), netloc, path, parsed.params, query, ""))


def are_links_equal(link1: str, link2: str) -> bool:
    """Compare host and path, ignoring protocol and a `www.` prefix.

    'http://example.com' and 'https://www.example.com' are equal.
    """
    try:
        first = urlparse(link1.replace("www.", "", 1))
        second = urlparse(link2.replace("www.", "", 1))
    except ValueError:
        return link1 == link2
    if not first.netloc and not second.netloc:
        return link1 == link2
    return first.netloc == second.netloc and (first.path or "/") == (second.path or "/")


# =============================================================================
# Scope and exclusion
# =============================================================================

def is_in_scope(url: str, seed_url: str, strategy: EnqueueStrategy) -> bool:
    """Check whether `url` may be followed from `seed_url`.

    same-domain compares the last two hostname labels; same-hostname
    requires an exact hostname match.
    """
    try:
        host = (urlparse(url).hostname or "").lower()
        seed_host = (urlparse(seed_url).hostname or "").lower()
    except ValueError:
        return False

    if EnqueueStrategy(strategy) == EnqueueStrategy.SAME_DOMAIN:
        return host.split(".")[-2:] == seed_host.split(".")[-2:]
    return host == seed_host


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> re.Pattern:
    return re.compile(pattern)


def is_blacklisted(url: str, patterns: Iterable[str]) -> bool:
    """True if any user pattern matches the hostname or the full URL."""
    if not patterns:
        return False
    try:
        hostname = urlparse(url).hostname or ""
    except ValueError:
        hostname = ""
    for pattern in patterns:
        regex = _compile_pattern(pattern)
        if (hostname and regex.search(hostname)) or regex.search(url):
            return True
    return False


def is_disallowed_extension(url: str, blocked_extensions: Iterable[str] = BLACKLISTED_FILE_EXTENSIONS) -> bool:
    """True if the URL path ends in one of the blocked file extensions."""
    try:
        path = urlparse(url).path
    except ValueError:
        path = url
    last_segment = path.rsplit("/", 1)[-1].lower()
    if "." not in last_segment:
        return False
    extension = last_segment.rsplit(".", 1)[-1]
    return extension in {ext.lower().lstrip(".") for ext in blocked_extensions}


def is_pdf_url(url_or_path: str) -> bool:
    """True if the URL pathname (or local path) ends in .pdf."""
    parsed = urlparse(url_or_path)
    if parsed.scheme.lower() in _REMOTE_SCHEMES:
        return bool(_PDF_PATH_PATTERN.search(parsed.path))
    return bool(_PDF_PATH_PATTERN.search(url_or_path))


def is_file_url(url: str) -> bool:
    return urlparse(url).scheme.lower() == "file"


# =============================================================================
# robots.txt
# =============================================================================

class RobotsRules:
    """robots.txt rule sets keyed by origin.

    Origins whose robots.txt could not be fetched have no entry and are
    treated as fully allowed.
    """

    def __init__(self, user_agent: str = "*"):
        self.user_agent = user_agent
        self._parsers: Dict[str, RobotFileParser] = {}

    @staticmethod
    def _origin(url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    def add(self, origin: str, content: str) -> None:
        rp = RobotFileParser()
        rp.set_url(f"{origin}/robots.txt")
        rp.parse(content.splitlines())
        self._parsers[origin] = rp

    def has_rules_for(self, url: str) -> bool:
        return self._origin(url) in self._parsers

    def can_fetch(self, url: str) -> bool:
        parser = self._parsers.get(self._origin(url))
        if parser is None:
            return True  # If no robots.txt, allow
        return parser.can_fetch(self.user_agent, url)

    async def load(self, url: str, headers: Optional[dict] = None) -> None:
        """Fetch and parse robots.txt for the origin of `url`.

        Args:
            url: Any URL on the origin
            headers: Extra request headers (e.g. Authorization)
        """
        origin = self._origin(url)
        if origin in self._parsers or is_file_url(url):
            return

        robots_url = f"{origin}/robots.txt"
        request_headers = {"Accept": "text/plain,text/html,*/*"}
        if headers:
            request_headers.update(headers)

        try:
            async with httpx.AsyncClient(timeout=ROBOTS_FETCH_TIMEOUT_SECONDS, follow_redirects=True) as client:
                response = await client.get(robots_url, headers=request_headers)
                if response.status_code == 200:
                    self.add(origin, response.text)
                    logger.info(f"Loaded robots.txt from {robots_url}")
                else:
                    logger.info(f"No robots.txt found at {robots_url} (status: {response.status_code})")
        except Exception as e:
            logger.warning(f"Could not load robots.txt: {e}")


def is_allowed_by_robots(url: str, robots_rules: Optional[RobotsRules]) -> bool:
    """Consult previously-fetched robots rules. No rules means allowed."""
    if robots_rules is None:
        return True
    return robots_rules.can_fetch(url)


# =============================================================================
# MIME probe
# =============================================================================

async def is_processible_mime_type(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    headers: Optional[dict] = None,
) -> bool:
    """Confirm that a URL serves HTML or PDF before navigating to it.

    `.zip` URLs additionally get their first four bytes sniffed for the
    ZIP magic number. Any probe failure, including a non-2xx response,
    returns True.

    Args:
        url: URL to probe
        client: Shared httpx client (a short-lived one is created otherwise)
        headers: Extra request headers (e.g. Authorization)

    Returns:
        False only when the probe positively identified unsupported content
    """
    if urlparse(url).scheme.lower() not in ("http", "https"):
        return True

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=MIME_PROBE_TIMEOUT_SECONDS, follow_redirects=True)

    try:
        response = await client.head(url, headers=headers)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "")
        if not any(allowed in content_type for allowed in PROCESSIBLE_CONTENT_TYPES):
            logger.debug(f"Skipping MIME type {content_type} at URL {url}")
            return False

        if urlparse(url).path.lower().endswith(".zip"):
            range_headers = dict(headers or {})
            range_headers["Range"] = "bytes=0-3"
            response = await client.get(url, headers=range_headers)
            response.raise_for_status()
            # Some servers ignore Range and return the whole body
            if response.content.startswith(ZIP_MAGIC_NUMBER):
                logger.debug(f"Skipping zip file at URL {url}")
                return False
    except Exception as e:
        logger.debug(f"Error checking the MIME type of {url}: {e}")
        return True
    finally:
        if owns_client:
            await client.aclose()

    return True
