"""URL policy checks used by the crawler and the content extractor."""

import logging
from typing import Optional
from urllib.parse import urljoin, urlparse, urlunparse

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = {"http", "https"}

# Binary and office formats the crawler never follows
FORBIDDEN_EXTENSIONS = (
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".zip", ".rar",
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp", ".ico",
)


def get_origin(url: str) -> str:
    """Return ``scheme://host[:port]`` for a URL, lower-cased."""
    parsed = urlparse(url)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


def is_same_origin(url: str, other: str) -> bool:
    """Check whether two URLs share scheme, host and port."""
    try:
        return get_origin(url) == get_origin(other)
    except ValueError:
        return False


def has_forbidden_extension(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(FORBIDDEN_EXTENSIONS)


def is_valid_url(url: str) -> bool:
    """Check that a URL is an absolute http(s) URL worth crawling.

    Rejects malformed URLs, non-HTTP schemes (mailto:, javascript:, ftp:, ...)
    and links to binary documents or images.
    """
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.netloc:
        return False
    if any(ch.isspace() for ch in parsed.netloc):
        return False
    return not has_forbidden_extension(url)


def normalize_url(url: str) -> str:
    """Strip the fragment so ``/page#a`` and ``/page#b`` are the same page."""
    parsed = urlparse(url.strip())
    return urlunparse(parsed._replace(fragment=""))


def resolve_link(href: str, base_url: str) -> Optional[str]:
    """Resolve an anchor target against the page URL.

    Returns:
        The absolute, fragment-free URL or None when the href cannot be resolved
    """
    href = (href or "").strip()
    if not href or href.startswith("#"):
        return None
    try:
        absolute = urljoin(base_url, href)
    except ValueError:
        logger.debug(f"Could not resolve link {href!r} against {base_url}")
        return None
    return normalize_url(absolute)
