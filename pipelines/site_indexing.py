"""Site indexing and search entry points.

Wires the frontier crawler, chunker and index writer into one crawl-and-index
run per site, refreshes the curated exam collection from organiser listings,
and exposes the integrated and crawled-only searches. This is
the surface the HTTP layer calls.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from config.settings import AppSettings, CrawlerSettings, get_settings
from indexer.embeddings import EmbeddingProvider, create_embedder
from indexer.vector_store import SQLiteVectorStore, VectorStore
from observability.logging import get_structured_logger
from sources.loader import SEARCH_TYPES, SiteLoader, SiteRepository
from .chunker import PRECISION_WINDOW_SIZE, SemanticChunker
from .crawler import FrontierCrawler, PageExtractor, validate_seed_url
from .errors import IndexWriteError, SeedValidationError
from .extractor import ContentExtractor
from .indexer import IndexWriter
from .models import Chunk, DocumentMetadata, ExtractedPage, SearchResult
from .policy import is_valid_url
from .search import (AggregatedSearch, CrawledIndexSearch, CuratedIndexSearch,
                     SearchAggregator, SearchOptions)

logger = logging.getLogger(__name__)

CRAWLED_CATEGORY = "website"
CURATED_CATEGORY = "concurso"
CURATED_SEARCH_TAGS = ("concurso_publico",)
YEAR_RE = re.compile(r"\b20\d{2}\b")


@dataclass
class CrawlOptions:
    """Per-run overrides of the crawler settings."""
    max_pages: Optional[int] = None
    max_depth: Optional[int] = None
    delay_ms: Optional[int] = None
    chunk_mode: str = "auto"
    replace_existing: bool = True


@dataclass
class CrawlIndexReport:
    """Outcome of one crawl-and-index run."""
    site_id: str
    seed_url: str
    search_types: List[str]
    pages_crawled: int = 0
    pages_indexed: int = 0
    chunks_indexed: int = 0
    vectors_replaced: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)
    crawl_stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "seed_url": self.seed_url,
            "search_types": list(self.search_types),
            "pages_crawled": self.pages_crawled,
            "pages_indexed": self.pages_indexed,
            "chunks_indexed": self.chunks_indexed,
            "vectors_replaced": self.vectors_replaced,
            "failures": list(self.failures),
            "crawl_stats": dict(self.crawl_stats),
        }


@dataclass
class CuratedIndexReport:
    """Outcome of one refresh of the curated exam collection."""
    source_urls: List[str]
    pages_fetched: int = 0
    items_found: int = 0
    items_indexed: int = 0
    vectors_replaced: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_urls": list(self.source_urls),
            "pages_fetched": self.pages_fetched,
            "items_found": self.items_found,
            "items_indexed": self.items_indexed,
            "vectors_replaced": self.vectors_replaced,
            "failures": list(self.failures),
        }


def page_document_id(site_id: str, url: str) -> str:
    """Stable document id for a crawled page, so re-crawls overwrite."""
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]
    return f"scraped_{site_id}_{digest}"


def page_metadata(page: ExtractedPage, site_id: str, search_types: Sequence[str], namespace: str) -> DocumentMetadata:
    extra = {key: page.extra[key] for key in ("content_source", "site_family", "rendered") if key in page.extra}
    return DocumentMetadata(
        namespace=namespace,
        category=CRAWLED_CATEGORY,
        source_url=page.url,
        title=page.title,
        search_tags=list(search_types),
        site_id=site_id,
        extra=extra,
    )


def curated_source_name(url: str) -> str:
    """Short organiser name from a listing URL: www.cebraspe.org.br -> cebraspe."""
    host = urlparse(url).netloc.lower().split(":")[0]
    if host.startswith("www."):
        host = host[4:]
    return host.split(".")[0] or host


def curated_document_id(source: str, item: Dict[str, Any]) -> str:
    key = f"{item.get('name', '')}|{item.get('link') or ''}"
    return f"curated_{source}_{hashlib.sha1(key.encode('utf-8')).hexdigest()[:16]}"


def curated_year(item: Dict[str, Any]) -> int:
    """First 20xx year in the item's name or text; the current year otherwise."""
    match = YEAR_RE.search(f"{item.get('name', '')} {item.get('text', '')}")
    return int(match.group(0)) if match else datetime.now(timezone.utc).year


def curated_metadata(item: Dict[str, Any], listing_url: str, namespace: str) -> DocumentMetadata:
    source = curated_source_name(listing_url)
    extra: Dict[str, Any] = {"source": source, "year": curated_year(item), "listing_url": listing_url}
    for key in ("vacancies", "salary"):
        if item.get(key):
            extra[key] = item[key]
    return DocumentMetadata(
        namespace=namespace,
        category=CURATED_CATEGORY,
        source_url=item.get("link") or listing_url,
        title=item.get("name") or listing_url,
        search_tags=list(CURATED_SEARCH_TAGS),
        extra=extra,
    )


class SiteIndexingService:
    """Crawl, index and search configured sites."""

    def __init__(self,
                 settings: Optional[AppSettings] = None,
                 embedder: Optional[EmbeddingProvider] = None,
                 store: Optional[VectorStore] = None,
                 sites: Optional[SiteRepository] = None,
                 crawler_factory: Optional[Callable[[CrawlerSettings], FrontierCrawler]] = None,
                 writer: Optional[IndexWriter] = None,
                 extractor_factory: Optional[Callable[[CrawlerSettings], PageExtractor]] = None):
        """Initialize service.

        Collaborators default to the implementations named in ``settings``.
        ``extractor_factory`` builds the page extractor for curated listings.
        """
        self.settings = settings or get_settings()
        self.embedder = embedder or create_embedder(self.settings.index)
        self.store = store or SQLiteVectorStore(self.settings.index.vector_db_path)
        self.sites = sites or SiteLoader(self.settings.sites_config_path)
        self.crawler_factory = crawler_factory or (lambda crawler_settings: FrontierCrawler(settings=crawler_settings))
        self.writer = writer or IndexWriter(self.embedder, self.store, settings=self.settings.index)
        self.extractor_factory = extractor_factory or ContentExtractor
        self.chunker = SemanticChunker()
        self.precision_chunker = SemanticChunker(window_size=PRECISION_WINDOW_SIZE)
        self.aggregator = SearchAggregator(
            curated=CuratedIndexSearch(self.embedder, self.store, self.settings.index,
                                       self.settings.search.curated_min_similarity),
            crawled=CrawledIndexSearch(self.embedder, self.store, self.settings.index,
                                       self.settings.search.crawled_min_similarity),
            sites=self.sites,
            settings=self.settings.search,
        )
        self.log = get_structured_logger(__name__)

    async def close(self):
        if hasattr(self.store, "close"):
            await self.store.close()

    def _crawler_settings(self, options: CrawlOptions) -> CrawlerSettings:
        update: Dict[str, Any] = {}
        if options.max_pages is not None:
            update["max_pages"] = options.max_pages
        if options.max_depth is not None:
            update["max_depth"] = options.max_depth
        if options.delay_ms is not None:
            update["delay_seconds"] = options.delay_ms / 1000.0
        return self.settings.crawler.model_copy(update=update)

    async def validate_url_for_crawling(self, url: str) -> Dict[str, Any]:
        """Pre-flight check used before registering or crawling a site."""
        try:
            status = await validate_seed_url(url, timeout=self.settings.crawler.head_timeout,
                                             user_agent=self.settings.crawler.user_agent)
        except SeedValidationError as e:
            return {"url": url, "valid": False, "status_code": e.status_code, "reason": e.reason}
        return {"url": url, "valid": True, "status_code": status, "reason": None}

    async def crawl_and_index(self, url: str, search_types: Sequence[str], site_id: str,
                              options: Optional[CrawlOptions] = None) -> CrawlIndexReport:
        """Crawl a site from ``url`` and index every page with content.

        Args:
            url: Seed URL
            search_types: Search types the indexed vectors are tagged with
            site_id: Configured site the content belongs to
            options: Limits, delay and chunking overrides

        Returns:
            CrawlIndexReport; pages whose index write failed are listed in ``failures``

        Raises:
            SeedValidationError: the seed URL failed pre-flight validation
            ValueError: no or unknown search types
        """
        options = options or CrawlOptions()
        search_types = list(search_types)
        if not search_types:
            raise ValueError("At least one search type is required")
        unknown = [t for t in search_types if t not in SEARCH_TYPES]
        if unknown:
            raise ValueError(f"Unknown search types: {', '.join(unknown)}")

        namespace = self.settings.index.crawled_namespace
        log = self.log.bind(site_id=site_id, seed=url)
        report = CrawlIndexReport(site_id=site_id, seed_url=url, search_types=search_types)

        crawler_settings = self._crawler_settings(options)
        async with self.crawler_factory(crawler_settings) as crawler:
            pages, stats = await crawler.crawl_with_stats(url, crawler_settings.max_pages, crawler_settings.max_depth)
        report.pages_crawled = len(pages)
        report.crawl_stats = stats.to_dict()
        log.info(f"Collected {len(pages)} pages for indexing")

        if pages and options.replace_existing:
            report.vectors_replaced = await self.writer.delete_by_filter(namespace=namespace, site_id=site_id)

        for index, page in enumerate(pages, start=1):
            document_id = page_document_id(site_id, page.url)
            chunker = self.precision_chunker if page.extra.get("site_family") else self.chunker
            chunks = chunker.chunk(page.content, options.chunk_mode, document_id)
            if not chunks:
                continue
            try:
                written = await self.writer.upsert(
                    document_id, chunks, page_metadata(page, site_id, search_types, namespace)
                )
            except IndexWriteError as e:
                log.error(f"Skipping page after index failure: {e}", url=page.url)
                report.failures.append({"url": page.url, "error": str(e)})
                continue
            report.pages_indexed += 1
            report.chunks_indexed += written
            log.debug(f"Indexed page {index}/{len(pages)}: {page.title}", url=page.url, chunks=written)

        log.info(f"Crawl and index finished: {report.pages_indexed}/{report.pages_crawled} pages, "
                 f"{report.chunks_indexed} chunks, {len(report.failures)} failures")
        return report

    async def _collect_listing_items(self, urls: Sequence[str], report: CuratedIndexReport,
                                     log) -> Dict[str, Tuple[str, Dict[str, Any]]]:
        """Fetch each listing and key its exam line items by document id."""
        documents: Dict[str, Tuple[str, Dict[str, Any]]] = {}
        extractor = self.extractor_factory(self.settings.crawler)
        try:
            for url in urls:
                page = await extractor.extract(url)
                items = page.extra.get("line_items") or []
                if not items:
                    reason = page.extra.get("error") or "no exam listings found"
                    log.warning(f"No curated items at {url}: {reason}")
                    report.failures.append({"url": url, "error": reason})
                    continue
                report.pages_fetched += 1
                source = curated_source_name(url)
                for item in items:
                    documents.setdefault(curated_document_id(source, item), (url, item))
        finally:
            close = getattr(extractor, "close", None)
            if close is not None:
                await close()
        return documents

    async def index_curated(self, urls: Optional[Sequence[str]] = None,
                            replace_existing: bool = True) -> CuratedIndexReport:
        """Refresh the curated public-exam collection from organiser listings.

        Every exam found on a listing page becomes one single-chunk document in
        the curated namespace, tagged with its source organiser and year.

        Args:
            urls: Listing pages; ``settings.index.curated_source_urls`` when omitted
            replace_existing: Drop the previous collection once new items were found

        Returns:
            CuratedIndexReport; listings without items and failed writes are in ``failures``

        Raises:
            ValueError: a listing URL is not a valid http(s) page URL
        """
        urls = list(urls) if urls else list(self.settings.index.curated_source_urls)
        invalid = [url for url in urls if not is_valid_url(url)]
        if invalid:
            raise ValueError(f"Invalid listing URLs: {', '.join(invalid)}")

        namespace = self.settings.index.curated_namespace
        log = self.log.bind(namespace=namespace)
        report = CuratedIndexReport(source_urls=urls)

        documents = await self._collect_listing_items(urls, report, log)
        report.items_found = len(documents)
        log.info(f"Found {len(documents)} curated items on {report.pages_fetched}/{len(urls)} listings")

        if documents and replace_existing:
            report.vectors_replaced = await self.writer.delete_by_filter(namespace=namespace)

        for document_id, (url, item) in documents.items():
            text = item.get("text") or item.get("name") or ""
            if not text.strip():
                continue
            chunk = Chunk(source_id=document_id, index=0, text=text)
            try:
                await self.writer.upsert(document_id, [chunk], curated_metadata(item, url, namespace))
            except IndexWriteError as e:
                log.error(f"Skipping curated item after index failure: {e}", item=item.get("name"))
                report.failures.append({"url": item.get("link") or url, "error": str(e)})
                continue
            report.items_indexed += 1

        log.info(f"Curated refresh finished: {report.items_indexed}/{report.items_found} items indexed")
        return report

    async def search_integrated(self, query: str, options: Optional[SearchOptions] = None) -> AggregatedSearch:
        return await self.aggregator.search(query, options)

    async def search_crawled_only(self, query: str, search_types: Optional[Sequence[str]] = None,
                                  max_results: int = 10) -> List[SearchResult]:
        return await self.aggregator.search_crawled_only(query, search_types, max_results)

    def list_sites_by_type(self) -> Dict[str, List[Dict[str, Any]]]:
        """Configured sites grouped by the search types they enable."""
        if hasattr(self.sites, "sites_by_type"):
            grouped = self.sites.sites_by_type()
        else:
            grouped = {}
            for site in self.sites.list_sites():
                for search_type in site.enabled_search_types:
                    grouped.setdefault(search_type, []).append(site)
        return {search_type: [site.to_dict() for site in sites] for search_type, sites in grouped.items()}


# Global service instance
_service: Optional[SiteIndexingService] = None


def get_indexing_service() -> SiteIndexingService:
    """Return the process-wide service, built from settings on first use."""
    global _service
    if _service is None:
        _service = SiteIndexingService()
    return _service


def set_indexing_service(service: Optional[SiteIndexingService]) -> None:
    """Replace the process-wide service (None resets it)."""
    global _service
    _service = service


async def close_indexing_service() -> None:
    """Close the process-wide service if one was built."""
    global _service
    if _service is not None:
        await _service.close()
        _service = None


async def crawl_and_index(url: str, search_types: Sequence[str], site_id: str,
                          options: Optional[CrawlOptions] = None) -> CrawlIndexReport:
    """Convenience function to crawl and index a site with the global service."""
    return await get_indexing_service().crawl_and_index(url, search_types, site_id, options)


async def search_integrated(query: str, options: Optional[SearchOptions] = None) -> AggregatedSearch:
    """Convenience function for an integrated search with the global service."""
    return await get_indexing_service().search_integrated(query, options)


async def search_crawled_only(query: str, search_types: Optional[Sequence[str]] = None,
                              max_results: int = 10) -> List[SearchResult]:
    """Convenience function for a crawled-only search with the global service."""
    return await get_indexing_service().search_crawled_only(query, search_types, max_results)


async def index_curated(urls: Optional[Sequence[str]] = None,
                        replace_existing: bool = True) -> CuratedIndexReport:
    """Convenience function to refresh the curated collection with the global service."""
    return await get_indexing_service().index_curated(urls, replace_existing)
