"""Tiered content extraction.

Turns one URL into an ``ExtractedPage`` by running an ordered list of
strategies: static fetch with DOM extraction, site-family extraction for
known listing portals, and a headless-render fallback for pages that only
produce content with JavaScript. Extraction never raises; when every tier
fails the page comes back with empty content.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup
from trafilatura import extract as trafilatura_extract

from config.settings import CrawlerSettings
from observability.metrics import record_extraction
from .domain_extractors import SiteFamilyRegistry, default_registry, render_items
from .errors import ExtractionError
from .models import ExtractedPage
from .policy import is_same_origin, resolve_link
from .renderer import PageRenderer, PlaywrightRenderer

logger = logging.getLogger(__name__)

STRIP_SELECTORS = "script, style, noscript, nav, header, footer, .menu, .navigation"

CONTENT_SELECTORS = (
    "main",
    ".content",
    ".main-content",
    "#content",
    "article",
    ".post",
    ".entry-content",
)

SCRIPT_PLACEHOLDER_RE = re.compile(
    r"(enable|requires?|turn on|activate)\s+javascript"
    r"|javascript\s+(is\s+)?(required|disabled|must be enabled)"
    r"|(habilite|ative|ativar|habilitar)\s+o\s+javascript"
    r"|javascript\s+(desativado|desabilitado|é necessário)",
    re.IGNORECASE,
)


def normalize_text(text: str) -> str:
    """Collapse runs of spaces inside lines and drop blank lines."""
    lines = (" ".join(line.split()) for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def is_script_placeholder(text: str) -> bool:
    """Detect "please enable JavaScript" shells served to non-browser clients."""
    stripped = (text or "").strip()
    return bool(stripped) and len(stripped) < 300 and bool(SCRIPT_PLACEHOLDER_RE.search(stripped))


def fallback_title(url: str) -> str:
    return f"Untitled page ({urlparse(url).netloc or url})"


def extract_links(soup: BeautifulSoup, url: str, limit: int = 20) -> List[str]:
    """Collect same-origin anchor targets in document order, deduplicated."""
    links: List[str] = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        absolute = resolve_link(anchor["href"], url)
        if not absolute or absolute in seen or absolute == url:
            continue
        if not is_same_origin(absolute, url):
            continue
        seen.add(absolute)
        links.append(absolute)
        if len(links) >= limit:
            break
    return links


def resolve_title(soup: BeautifulSoup, url: str) -> str:
    if soup.title and soup.title.get_text(strip=True):
        return " ".join(soup.title.get_text().split())
    heading = soup.find("h1")
    if heading and heading.get_text(strip=True):
        return " ".join(heading.get_text().split())
    return fallback_title(url)


def parse_html(html: str, url: str,
               min_content_length: int = 100,
               max_links: int = 20) -> ExtractedPage:
    """Extract title, main text and outbound links from raw markup.

    Args:
        html: Raw page markup
        url: Page URL, used to resolve relative links
        min_content_length: A content container must exceed this many characters
        max_links: Maximum number of outbound links kept

    Returns:
        ExtractedPage with whitespace-normalized content (possibly empty)
    """
    soup = BeautifulSoup(html, "html.parser")
    title = resolve_title(soup, url)
    links = extract_links(soup, url, max_links)

    for element in soup.select(STRIP_SELECTORS):
        element.decompose()

    content = ""
    source = "body"
    for selector in CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        candidate = normalize_text(element.get_text("\n"))
        if len(candidate) > min_content_length:
            content = candidate
            source = selector
            break

    if not content:
        extracted = trafilatura_extract(html, include_comments=False, include_tables=True)
        if extracted and len(extracted.strip()) > min_content_length:
            content = normalize_text(extracted)
            source = "trafilatura"

    if not content:
        body = soup.body or soup
        content = normalize_text(body.get_text("\n"))

    return ExtractedPage(url=url, title=title, content=content, links=links,
                         extra={"content_source": source})


@dataclass
class ExtractionState:
    """Working state passed between extraction tiers for one URL."""
    url: str
    html: Optional[str] = None
    page: Optional[ExtractedPage] = None
    tiers: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class ExtractionStrategy:
    """One extraction tier."""

    name = "strategy"

    def applies(self, state: ExtractionState, threshold: int) -> bool:
        return True

    async def extract(self, state: ExtractionState) -> Optional[ExtractedPage]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def is_insufficient(page: Optional[ExtractedPage], threshold: int) -> bool:
    """Content is missing, suspiciously short or only a scripting placeholder."""
    if page is None or not page.has_content:
        return True
    return len(page.content.strip()) < threshold or is_script_placeholder(page.content)


class StaticFetchStrategy(ExtractionStrategy):
    """HTTP GET with a browser-like signature followed by DOM extraction."""

    name = "static"

    def __init__(self, settings: CrawlerSettings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={
                    "User-Agent": self.settings.user_agent,
                    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "pt-BR,pt;q=0.9,en;q=0.8",
                },
            )
            self._owns_session = True
        return self.session

    async def fetch(self, url: str) -> str:
        """Download the page markup.

        Raises:
            ExtractionError: non-2xx status or non-textual content type
        """
        session = await self._get_session()
        async with session.get(url, allow_redirects=True) as response:
            if response.status < 200 or response.status >= 300:
                raise ExtractionError(f"HTTP {response.status} for {url}")
            content_type = response.headers.get("content-type", "")
            if content_type and "html" not in content_type and not content_type.startswith("text/"):
                raise ExtractionError(f"Non-text content type: {content_type}")
            return await response.text(errors="replace")

    async def extract(self, state: ExtractionState) -> Optional[ExtractedPage]:
        html = await self.fetch(state.url)
        state.html = html
        return parse_html(html, state.url,
                          min_content_length=self.settings.min_content_length,
                          max_links=self.settings.max_links_per_page)

    async def close(self) -> None:
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None


class DomainExtractionStrategy(ExtractionStrategy):
    """Structured extraction for registered site families."""

    name = "domain"

    def __init__(self, registry: Optional[SiteFamilyRegistry] = None):
        self.registry = registry or default_registry()

    def applies(self, state: ExtractionState, threshold: int) -> bool:
        return state.html is not None and self.registry.find(state.url) is not None

    def enrich(self, page: ExtractedPage, html: str) -> ExtractedPage:
        """Append the family's line items to an already extracted page."""
        family = self.registry.find(page.url)
        if family is None:
            return page
        items = family.extract_items(BeautifulSoup(html, "html.parser"), page.url)
        if not items:
            return page
        rendered = render_items(items)
        content = f"{page.content}\n{rendered}".strip() if page.content else rendered
        extra = dict(page.extra)
        extra["site_family"] = family.name
        extra["line_items"] = [item.to_dict() for item in items]
        return ExtractedPage(url=page.url, title=page.title, content=content, links=page.links, extra=extra)

    async def extract(self, state: ExtractionState) -> Optional[ExtractedPage]:
        base = state.page or ExtractedPage(url=state.url, title=fallback_title(state.url))
        return self.enrich(base, state.html or "")


class HeadlessRenderStrategy(ExtractionStrategy):
    """Render the page in a headless browser when static extraction comes up short."""

    name = "headless"

    def __init__(self, renderer: PageRenderer, settings: CrawlerSettings,
                 domain: Optional[DomainExtractionStrategy] = None):
        self.renderer = renderer
        self.settings = settings
        self.domain = domain

    def applies(self, state: ExtractionState, threshold: int) -> bool:
        return is_insufficient(state.page, threshold)

    async def extract(self, state: ExtractionState) -> Optional[ExtractedPage]:
        rendered = await self.renderer.render(state.url)
        if rendered.html:
            page = parse_html(rendered.html, state.url,
                              min_content_length=self.settings.min_content_length,
                              max_links=self.settings.max_links_per_page)
            if len(normalize_text(rendered.text)) > len(page.content):
                page.content = normalize_text(rendered.text)
            if rendered.title:
                page.title = rendered.title
            if self.domain is not None:
                page = self.domain.enrich(page, rendered.html)
        else:
            page = ExtractedPage(url=state.url,
                                 title=rendered.title or fallback_title(state.url),
                                 content=normalize_text(rendered.text))
        if state.page and not page.links:
            page.links = list(state.page.links)
        page.extra["rendered"] = True
        return page

    async def close(self) -> None:
        await self.renderer.close()


class ContentExtractor:
    """Runs extraction tiers in order until the page is good enough."""

    def __init__(self,
                 settings: Optional[CrawlerSettings] = None,
                 strategies: Optional[Sequence[ExtractionStrategy]] = None,
                 renderer: Optional[PageRenderer] = None):
        """Initialize extractor.

        Args:
            settings: Crawler settings (timeouts, thresholds, User-Agent)
            strategies: Explicit tier list; built from settings when omitted
            renderer: Headless renderer for the last tier
        """
        self.settings = settings or CrawlerSettings()
        if strategies is None:
            domain = DomainExtractionStrategy()
            strategies = [StaticFetchStrategy(self.settings), domain]
            if self.settings.render_enabled:
                renderer = renderer or PlaywrightRenderer(
                    user_agent=self.settings.user_agent,
                    navigation_timeout=self.settings.render_timeout,
                    settle_seconds=self.settings.render_settle_seconds,
                )
                strategies.append(HeadlessRenderStrategy(renderer, self.settings, domain))
        self.strategies: List[ExtractionStrategy] = list(strategies)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        for strategy in self.strategies:
            try:
                await strategy.close()
            except Exception as e:
                logger.warning(f"Failed to close {strategy.name} strategy: {e}")

    async def extract(self, url: str) -> ExtractedPage:
        """Extract one page; never raises.

        Returns:
            ExtractedPage; content is empty when no tier produced usable text
        """
        state = ExtractionState(url=url)
        threshold = self.settings.render_threshold

        for strategy in self.strategies:
            if not strategy.applies(state, threshold):
                continue
            try:
                page = await strategy.extract(state)
            except Exception as e:
                logger.warning(f"{strategy.name} extraction failed for {url}: {e}")
                state.errors.append(f"{strategy.name}: {e}")
                record_extraction(strategy.name, "error")
                continue
            if page is not None:
                state.page = page
                state.tiers.append(strategy.name)
                record_extraction(strategy.name, "success")

        page = state.page
        if page is None:
            return ExtractedPage.failed(url, "; ".join(state.errors) or "no extraction tier produced a page")

        if is_insufficient(page, threshold):
            logger.info(f"No usable text at {url} after {len(self.strategies)} tiers; dropping content")
            page.content = ""
        page.extra["tiers"] = list(state.tiers)
        if state.errors:
            page.extra["errors"] = list(state.errors)
        if not page.title:
            page.title = fallback_title(url)

        logger.debug(f"Extracted {url}: {len(page.content)} chars, {len(page.links)} links via {state.tiers}")
        return page
