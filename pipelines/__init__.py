"""Pipelines package.

Provides crawling, extraction and chunking functionality. Index writing,
search and the site-level entry points live in ``pipelines.indexer``,
``pipelines.search`` and ``pipelines.site_indexing``.
"""

from .models import (
    CrawlTask,
    ExtractedPage,
    StructureHints,
    Chunk,
    DocumentMetadata,
    VectorRecord,
    VectorMatch,
    ResultOrigin,
    SearchResult
)
from .errors import (
    IndexingError,
    SeedValidationError,
    NoActiveSitesError,
    ExtractionError,
    IndexWriteError
)
from .policy import is_valid_url, is_same_origin, normalize_url
from .extractor import ContentExtractor, parse_html
from .crawler import FrontierCrawler, CrawlStats, validate_seed_url, crawl_site
from .chunker import SemanticChunker, ChunkingMode, chunk_text, PRECISION_WINDOW_SIZE
from .title_chunker import TitleAwareChunker
from .retry import with_retry, exponential_backoff, RetryError

__all__ = [
    # Models
    'CrawlTask',
    'ExtractedPage',
    'StructureHints',
    'Chunk',
    'DocumentMetadata',
    'VectorRecord',
    'VectorMatch',
    'ResultOrigin',
    'SearchResult',

    # Errors
    'IndexingError',
    'SeedValidationError',
    'NoActiveSitesError',
    'ExtractionError',
    'IndexWriteError',

    # Crawling and extraction
    'is_valid_url',
    'is_same_origin',
    'normalize_url',
    'ContentExtractor',
    'parse_html',
    'FrontierCrawler',
    'CrawlStats',
    'validate_seed_url',
    'crawl_site',

    # Chunker
    'SemanticChunker',
    'ChunkingMode',
    'chunk_text',
    'PRECISION_WINDOW_SIZE',
    'TitleAwareChunker',

    # Retry
    'with_retry',
    'exponential_backoff',
    'RetryError'
]
