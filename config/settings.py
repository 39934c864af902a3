"""Runtime configuration for the crawl, index and search pipelines.

Every settings group can be built from environment variables with
``from_env()``; defaults match the values the pipelines were tuned with.
"""

import os
import logging
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Listings of the curated public-exam collection
DEFAULT_CURATED_SOURCE_URLS = (
    "https://www.cebraspe.org.br/concursos/encerrado",
    "https://www.cebraspe.org.br/concursos/andamento",
)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default) -> List[str]:
    value = os.getenv(name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


class EmbeddingProviderType(str, Enum):
    """Supported embedding backends."""
    SENTENCE_TRANSFORMERS = "sentence-transformers"
    OPENAI = "openai"


class CrawlerSettings(BaseModel):
    """Frontier crawler and content extractor configuration."""
    max_pages: int = Field(default=50, ge=1, description="Maximum pages returned per crawl")
    max_depth: int = Field(default=3, ge=0, le=10, description="Maximum link depth from the seed")
    delay_seconds: float = Field(default=0.5, ge=0, description="Pause between page extractions")
    request_timeout: float = Field(default=15.0, gt=0, description="Static fetch timeout in seconds")
    head_timeout: float = Field(default=10.0, gt=0, description="Seed pre-flight HEAD timeout in seconds")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="Browser-like User-Agent header")
    max_links_per_page: int = Field(default=20, ge=0, description="Outbound links kept per page")
    min_content_length: int = Field(default=100, ge=0, description="Minimum text length for a content container")
    render_enabled: bool = Field(default=True, description="Enable the headless render fallback")
    render_threshold: int = Field(default=50, ge=0, description="Content shorter than this triggers rendering")
    render_timeout: float = Field(default=30.0, gt=0, description="Headless navigation timeout in seconds")
    render_settle_seconds: float = Field(default=2.0, ge=0, description="Extra wait after network idle")

    @classmethod
    def from_env(cls) -> "CrawlerSettings":
        return cls(
            max_pages=int(os.getenv("CRAWL_MAX_PAGES", "50")),
            max_depth=int(os.getenv("CRAWL_MAX_DEPTH", "3")),
            delay_seconds=float(os.getenv("CRAWL_DELAY_SECONDS", "0.5")),
            request_timeout=float(os.getenv("CRAWL_REQUEST_TIMEOUT", "15")),
            head_timeout=float(os.getenv("CRAWL_HEAD_TIMEOUT", "10")),
            user_agent=os.getenv("CRAWL_USER_AGENT", DEFAULT_USER_AGENT),
            max_links_per_page=int(os.getenv("CRAWL_MAX_LINKS_PER_PAGE", "20")),
            min_content_length=int(os.getenv("CRAWL_MIN_CONTENT_LENGTH", "100")),
            render_enabled=_env_bool("CRAWL_RENDER_ENABLED", True),
            render_threshold=int(os.getenv("CRAWL_RENDER_THRESHOLD", "50")),
            render_timeout=float(os.getenv("CRAWL_RENDER_TIMEOUT", "30")),
            render_settle_seconds=float(os.getenv("CRAWL_RENDER_SETTLE_SECONDS", "2")),
        )


class IndexSettings(BaseModel):
    """Vector index, embedding and write-retry configuration."""
    vector_db_path: str = Field(default="data/vectors.db", description="SQLite vector store path")
    index_name: str = Field(default="study-knowledge", description="Logical vector index name")
    embedding_provider: EmbeddingProviderType = Field(default=EmbeddingProviderType.SENTENCE_TRANSFORMERS)
    embedding_model: str = Field(default="all-MiniLM-L6-v2", description="Embedding model name")
    openai_api_key: Optional[str] = Field(default=None, description="API key for the OpenAI provider")
    max_attempts: int = Field(default=3, ge=1, description="Write attempts before giving up")
    backoff_base: float = Field(default=2.0, ge=0, description="First retry delay; doubles each attempt")
    batch_size: int = Field(default=100, ge=1, description="Vectors per upsert call")
    crawled_namespace: str = Field(default="admin_scraped")
    curated_namespace: str = Field(default="concursos-cebraspe")
    curated_source_urls: List[str] = Field(default_factory=lambda: list(DEFAULT_CURATED_SOURCE_URLS),
                                           description="Listing pages feeding the curated collection")

    @classmethod
    def from_env(cls) -> "IndexSettings":
        provider = os.getenv("EMBEDDING_PROVIDER", EmbeddingProviderType.SENTENCE_TRANSFORMERS.value).lower()
        default_model = "text-embedding-3-small" if provider == EmbeddingProviderType.OPENAI.value else "all-MiniLM-L6-v2"
        return cls(
            vector_db_path=os.getenv("VECTOR_DB_PATH", "data/vectors.db"),
            index_name=os.getenv("VECTOR_INDEX_NAME", "study-knowledge"),
            embedding_provider=EmbeddingProviderType(provider),
            embedding_model=os.getenv("EMBEDDING_MODEL", default_model),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            max_attempts=int(os.getenv("INDEX_MAX_ATTEMPTS", "3")),
            backoff_base=float(os.getenv("INDEX_BACKOFF_BASE", "2.0")),
            batch_size=int(os.getenv("INDEX_BATCH_SIZE", "100")),
            crawled_namespace=os.getenv("CRAWLED_NAMESPACE", "admin_scraped"),
            curated_namespace=os.getenv("CURATED_NAMESPACE", "concursos-cebraspe"),
            curated_source_urls=_env_list("CURATED_SOURCE_URLS", DEFAULT_CURATED_SOURCE_URLS),
        )


class SearchSettings(BaseModel):
    """Search aggregation thresholds."""
    max_results: int = Field(default=10, ge=1)
    crawled_min_similarity: float = Field(default=0.3, ge=0, le=1)
    curated_min_similarity: float = Field(default=0.45, ge=0, le=1)
    ambiguity_gap: float = Field(default=0.1, ge=0, le=1, description="Top-two score gap below which results are ambiguous")
    confident_score: float = Field(default=0.8, ge=0, le=1, description="Top score below which results are ambiguous")
    max_alternatives: int = Field(default=8, ge=1)

    @classmethod
    def from_env(cls) -> "SearchSettings":
        return cls(
            max_results=int(os.getenv("SEARCH_MAX_RESULTS", "10")),
            crawled_min_similarity=float(os.getenv("SEARCH_CRAWLED_MIN_SIMILARITY", "0.3")),
            curated_min_similarity=float(os.getenv("SEARCH_CURATED_MIN_SIMILARITY", "0.45")),
            ambiguity_gap=float(os.getenv("SEARCH_AMBIGUITY_GAP", "0.1")),
            confident_score=float(os.getenv("SEARCH_CONFIDENT_SCORE", "0.8")),
            max_alternatives=int(os.getenv("SEARCH_MAX_ALTERNATIVES", "8")),
        )


class AppSettings(BaseModel):
    """Top-level application settings."""
    crawler: CrawlerSettings = Field(default_factory=CrawlerSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    sites_config_path: str = Field(default="sources/sites.yaml", description="YAML file listing configured sites")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    log_file: Optional[str] = Field(default=None)

    @classmethod
    def from_env(cls) -> "AppSettings":
        return cls(
            crawler=CrawlerSettings.from_env(),
            index=IndexSettings.from_env(),
            search=SearchSettings.from_env(),
            sites_config_path=os.getenv("SITES_CONFIG_PATH", "sources/sites.yaml"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", False),
            log_file=os.getenv("LOG_FILE"),
        )


_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Return the process-wide settings, loading them from the environment once."""
    global _settings
    if _settings is None:
        _settings = AppSettings.from_env()
        logger.debug("Settings loaded from environment")
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
