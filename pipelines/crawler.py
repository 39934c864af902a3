"""Frontier crawler.

Breadth-first traversal of one site from a seed page, bounded by page and
depth limits. Pages are processed one at a time with a fixed pause between
extractions so the target host is never hammered and the visited set needs
no locking.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Deque, List, Optional, Protocol, Set, Tuple

import aiohttp

from config.settings import CrawlerSettings
from observability.logging import get_structured_logger
from observability.metrics import crawl_duration, record_page
from .errors import SeedValidationError
from .extractor import ContentExtractor
from .models import CrawlTask, ExtractedPage
from .policy import is_same_origin, is_valid_url, normalize_url

logger = logging.getLogger(__name__)

# Some servers refuse HEAD outright; for those a GET decides reachability
HEAD_NOT_SUPPORTED = {405, 501}


class PageExtractor(Protocol):
    async def extract(self, url: str) -> ExtractedPage: ...


@dataclass
class CrawlStats:
    """Statistics for a crawl run."""
    seed_url: str = ""
    visited: Set[str] = field(default_factory=set)
    pages_kept: int = 0
    pages_empty: int = 0
    errors: int = 0
    enqueued: int = 0
    skipped_depth: int = 0
    max_depth_reached: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.now(timezone.utc)

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        return None

    def finish(self):
        """Mark crawl as finished."""
        self.end_time = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "seed_url": self.seed_url,
            "visited": len(self.visited),
            "pages_kept": self.pages_kept,
            "pages_empty": self.pages_empty,
            "errors": self.errors,
            "enqueued": self.enqueued,
            "skipped_depth": self.skipped_depth,
            "max_depth_reached": self.max_depth_reached,
            "duration_seconds": self.duration.total_seconds() if self.duration else None,
        }


async def validate_seed_url(url: str, timeout: float = 10.0,
                            user_agent: Optional[str] = None,
                            session: Optional[aiohttp.ClientSession] = None) -> int:
    """Pre-flight check of a crawl seed.

    Args:
        url: Seed URL
        timeout: HEAD timeout in seconds
        user_agent: User-Agent header for the pre-flight request
        session: Optional session to reuse

    Returns:
        The HTTP status code of the pre-flight request

    Raises:
        SeedValidationError: malformed URL, unreachable host or non-2xx status
    """
    if not is_valid_url(url):
        raise SeedValidationError(url, "not a valid http(s) page URL")

    headers = {"User-Agent": user_agent} if user_agent else {}
    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout), headers=headers)
    try:
        async with session.head(url, allow_redirects=True) as response:
            status = response.status
        if status in HEAD_NOT_SUPPORTED:
            async with session.get(url, allow_redirects=True) as response:
                status = response.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise SeedValidationError(url, f"unreachable: {e or type(e).__name__}") from e
    finally:
        if owns_session:
            await session.close()

    if status < 200 or status >= 300:
        raise SeedValidationError(url, f"HTTP {status}", status_code=status)
    logger.debug(f"Seed {url} validated with status {status}")
    return status


class FrontierCrawler:
    """Breadth-first, single-worker site crawler."""

    def __init__(self,
                 extractor: Optional[PageExtractor] = None,
                 settings: Optional[CrawlerSettings] = None,
                 delay_seconds: Optional[float] = None,
                 seed_validator: Optional[Callable[[str], Awaitable[int]]] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """Initialize crawler.

        Args:
            extractor: Page extractor; a ContentExtractor is created when omitted
            settings: Crawler settings (limits, delay, timeouts)
            delay_seconds: Override for the pause between extractions
            seed_validator: Coroutine used for the seed pre-flight check
            sleep: Coroutine used to pause between requests
        """
        self.settings = settings or CrawlerSettings()
        self._owns_extractor = extractor is None
        self.extractor = extractor or ContentExtractor(self.settings)
        self.delay_seconds = self.settings.delay_seconds if delay_seconds is None else delay_seconds
        self.seed_validator = seed_validator or self._validate_seed
        self._sleep = sleep
        self.log = get_structured_logger(__name__)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the extractor if this crawler created it."""
        if self._owns_extractor and hasattr(self.extractor, "close"):
            await self.extractor.close()

    async def _validate_seed(self, url: str) -> int:
        return await validate_seed_url(url, timeout=self.settings.head_timeout,
                                       user_agent=self.settings.user_agent)

    def _should_enqueue(self, link: str, seed_url: str, visited: Set[str], queued: Set[str]) -> bool:
        if link in visited or link in queued:
            return False
        if not is_valid_url(link):
            return False
        return is_same_origin(link, seed_url)

    async def crawl_with_stats(self, seed_url: str,
                               max_pages: Optional[int] = None,
                               max_depth: Optional[int] = None,
                               validate_seed: bool = True) -> Tuple[List[ExtractedPage], CrawlStats]:
        """Crawl a site breadth-first from ``seed_url``.

        Args:
            seed_url: First page of the crawl
            max_pages: Maximum number of pages with content to return
            max_depth: Maximum link distance from the seed
            validate_seed: Run the HEAD pre-flight check first

        Returns:
            Tuple of (pages with content, stats)

        Raises:
            SeedValidationError: the seed failed pre-flight validation
        """
        max_pages = self.settings.max_pages if max_pages is None else max_pages
        max_depth = self.settings.max_depth if max_depth is None else max_depth
        seed_url = normalize_url(seed_url)

        if validate_seed:
            await self.seed_validator(seed_url)
        elif not is_valid_url(seed_url):
            raise SeedValidationError(seed_url, "not a valid http(s) page URL")

        stats = CrawlStats(seed_url=seed_url)
        log = self.log.bind(seed=seed_url, max_pages=max_pages, max_depth=max_depth)
        started = time.monotonic()

        results: List[ExtractedPage] = []
        visited = stats.visited
        queue: Deque[CrawlTask] = deque([CrawlTask(seed_url, 0)])
        queued: Set[str] = {seed_url}
        first_request = True

        log.info(f"Starting crawl of {seed_url}")

        while queue and len(results) < max_pages:
            task = queue.popleft()
            queued.discard(task.url)

            if task.url in visited:
                continue
            if task.depth > max_depth:
                stats.skipped_depth += 1
                continue

            visited.add(task.url)
            stats.max_depth_reached = max(stats.max_depth_reached, task.depth)

            if not first_request and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)
            first_request = False

            try:
                page = await self.extractor.extract(task.url)
            except Exception as e:
                # Extractors should not raise, but a bad one must not end the run
                stats.errors += 1
                record_page("error")
                log.warning(f"Extraction raised for {task.url}: {e}", url=task.url, depth=task.depth)
                continue

            if page.has_content:
                results.append(page)
                stats.pages_kept += 1
                record_page("kept")
                log.debug(f"Collected {page.title} ({len(results)}/{max_pages})", url=task.url, depth=task.depth)
            else:
                stats.pages_empty += 1
                record_page("empty")
                log.info(f"No content at {task.url}", url=task.url, error=page.extra.get("error"))

            if task.depth < max_depth:
                for link in page.links:
                    link = normalize_url(link)
                    if self._should_enqueue(link, seed_url, visited, queued):
                        queue.append(CrawlTask(link, task.depth + 1))
                        queued.add(link)
                        stats.enqueued += 1

        stats.finish()
        crawl_duration.observe(time.monotonic() - started)
        log.info(f"Crawl completed: {stats.pages_kept} pages kept, {stats.pages_empty} empty, "
                 f"{stats.errors} errors out of {len(visited)} visited")
        return results, stats

    async def crawl(self, seed_url: str,
                    max_pages: Optional[int] = None,
                    max_depth: Optional[int] = None) -> List[ExtractedPage]:
        """Crawl a site and return the pages that produced content."""
        pages, _ = await self.crawl_with_stats(seed_url, max_pages, max_depth)
        return pages


async def crawl_site(seed_url: str, max_pages: int = 50, max_depth: int = 3,
                     settings: Optional[CrawlerSettings] = None) -> List[ExtractedPage]:
    """Convenience function to crawl one site with a fresh extractor."""
    async with FrontierCrawler(settings=settings) as crawler:
        return await crawler.crawl(seed_url, max_pages, max_depth)
