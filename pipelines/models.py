"""Data model shared by the crawler, chunker, index writer and search aggregator."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class CrawlTask:
    """A pending frontier entry."""
    url: str
    depth: int


@dataclass
class ExtractedPage:
    """Normalized result of extracting a single page.

    ``content`` is always a string; an empty string means the page produced
    no usable text. Domain-specific fields go in ``extra``.
    """
    url: str
    title: str
    content: str = ""
    links: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())

    @classmethod
    def failed(cls, url: str, error: str) -> "ExtractedPage":
        """Build the empty page returned when every extraction tier failed."""
        return cls(url=url, title=f"Failed to load: {url}", content="", links=[], extra={"error": error})


@dataclass
class StructureHints:
    """Heading information attached to title-aware chunks."""
    title: str
    level: int
    parent_id: Optional[str] = None


@dataclass
class Chunk:
    """A retrievable unit of text from one source document."""
    source_id: str
    index: int
    text: str
    structure: Optional[StructureHints] = None

    @property
    def chunk_id(self) -> str:
        return f"{self.source_id}_{self.index}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "source_id": self.source_id,
            "index": self.index,
            "text": self.text,
            "structure": asdict(self.structure) if self.structure else None,
        }


@dataclass
class DocumentMetadata:
    """Metadata shared by every vector of one indexed document."""
    namespace: str
    category: str
    source_url: str
    title: str
    search_tags: List[str] = field(default_factory=list)
    site_id: Optional[str] = None
    indexed_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.indexed_at is None:
            self.indexed_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "namespace": self.namespace,
            "category": self.category,
            "source_url": self.source_url,
            "title": self.title,
            "search_tags": list(self.search_tags),
            "site_id": self.site_id,
            "indexed_at": self.indexed_at,
        }
        if self.extra:
            data["extra"] = dict(self.extra)
        return data


@dataclass
class VectorRecord:
    """One embedded chunk as written to the vector index."""
    id: str
    embedding: List[float]
    metadata: Dict[str, Any]


@dataclass
class VectorMatch:
    """A vector store query hit."""
    id: str
    score: float
    metadata: Dict[str, Any]


class ResultOrigin(str, Enum):
    CURATED = "curated"
    CRAWLED = "crawled"


@dataclass
class SearchResult:
    """A single similarity match returned to callers."""
    id: str
    title: str
    content: str
    source_url: str
    similarity: float
    origin: ResultOrigin
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "source_url": self.source_url,
            "similarity": self.similarity,
            "origin": self.origin.value,
            "extra": self.extra,
        }
