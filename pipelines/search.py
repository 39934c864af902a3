"""Search aggregation over the curated and crawled indexes.

A query is classified into search types, then the curated index and the
crawled-site index are queried concurrently. A failing source contributes
zero results instead of failing the search.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from config.settings import IndexSettings, SearchSettings
from indexer.embeddings import EmbeddingProvider
from indexer.vector_store import VectorStore
from observability.metrics import record_search, search_duration
from .errors import NoActiveSitesError
from .extractor import is_script_placeholder
from .models import ResultOrigin, SearchResult, VectorMatch

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_TYPE = "concurso_publico"

SEARCH_TYPE_KEYWORDS = {
    "concurso_publico": re.compile(
        r"\b(concursos?|públicos?|publicos?|governo|prefeitura|estado|federal|municipal|tribunal"
        r"|polícia|policia|bombeiros?|fiscal|auditor|auditoria|edital|cebraspe|cespe)\b"),
    "vestibular": re.compile(
        r"\b(vestibular|enem|universidade|faculdade|medicina|direito|engenharia|sisu|prouni)\b"),
    "escola": re.compile(
        r"\b(escola|ensino|fundamental|médio|medio|professor|pedagogia|educação|educacao)\b"),
    "faculdade": re.compile(
        r"\b(superior|graduação|graduacao|bacharelado|licenciatura|pós|mestrado|doutorado)\b"),
    "desenvolvimento_profissional": re.compile(
        r"\b(certificação|certificacao|capacitação|capacitacao|treinamento|curso|profissional|qualificação)\b"),
}


def infer_search_types(query: str) -> List[str]:
    """Map query keywords to search types, defaulting to public exams."""
    lowered = query.lower()
    types = [search_type for search_type, pattern in SEARCH_TYPE_KEYWORDS.items() if pattern.search(lowered)]
    return types or [DEFAULT_SEARCH_TYPE]


class DisambiguationStatus(str, Enum):
    NO_MATCH = "no_match"
    SINGLE = "single"
    AMBIGUOUS = "ambiguous"


@dataclass
class Disambiguation:
    """Whether the curated matches point at one clear answer."""
    status: DisambiguationStatus
    best: Optional[SearchResult] = None
    alternatives: List[SearchResult] = field(default_factory=list)
    score_gap: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "best": self.best.to_dict() if self.best else None,
            "alternatives": [result.to_dict() for result in self.alternatives],
            "score_gap": self.score_gap,
        }


def disambiguate(candidates: Sequence[SearchResult],
                 ambiguity_gap: float = 0.1,
                 confident_score: float = 0.8,
                 max_alternatives: int = 8) -> Disambiguation:
    """Decide between auto-picking the top match and offering alternatives.

    Several candidates are ambiguous when the top two scores are closer than
    ``ambiguity_gap`` or the top score is below ``confident_score``.
    """
    ranked = sorted(candidates, key=lambda result: result.similarity, reverse=True)
    if not ranked:
        return Disambiguation(status=DisambiguationStatus.NO_MATCH)
    if len(ranked) == 1:
        return Disambiguation(status=DisambiguationStatus.SINGLE, best=ranked[0])

    gap = ranked[0].similarity - ranked[1].similarity
    if gap < ambiguity_gap or ranked[0].similarity < confident_score:
        return Disambiguation(status=DisambiguationStatus.AMBIGUOUS, best=ranked[0],
                              alternatives=ranked[:max_alternatives], score_gap=gap)
    return Disambiguation(status=DisambiguationStatus.SINGLE, best=ranked[0], score_gap=gap)


@dataclass
class SearchOptions:
    search_types: Optional[List[str]] = None
    include_crawled_sites: bool = True
    max_results: int = 10


@dataclass
class AggregatedSearch:
    """Merged results of one integrated search."""
    results: List[SearchResult]
    breakdown: Dict[str, int]
    search_types: List[str]
    disambiguation: Disambiguation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "breakdown": dict(self.breakdown),
            "search_types": list(self.search_types),
            "disambiguation": self.disambiguation.to_dict(),
        }


class SiteDirectory(Protocol):
    def active_sites_for_types(self, search_types: Iterable[str]) -> List[Any]: ...


class CuratedSearch(Protocol):
    async def search(self, query: str, top_k: int) -> List[SearchResult]: ...


def match_to_result(match: VectorMatch, origin: ResultOrigin) -> SearchResult:
    metadata = match.metadata or {}
    extra = {
        key: metadata[key]
        for key in ("namespace", "category", "site_id", "chunk_index", "section_title", "search_tags", "extra")
        if metadata.get(key) is not None
    }
    return SearchResult(
        id=match.id,
        title=metadata.get("title") or "",
        content=metadata.get("content") or "",
        source_url=metadata.get("source_url") or "",
        similarity=match.score,
        origin=origin,
        extra=extra,
    )


class VectorIndexSearch:
    """Similarity search over one namespace of the vector index."""

    def __init__(self, embedder: EmbeddingProvider, store: VectorStore, index_name: str,
                 namespace: str, origin: ResultOrigin, min_similarity: float):
        self.embedder = embedder
        self.store = store
        self.index_name = index_name
        self.namespace = namespace
        self.origin = origin
        self.min_similarity = min_similarity

    async def query(self, query: str, top_k: int,
                    filter: Optional[Dict[str, Any]] = None) -> List[SearchResult]:
        vector = await self.embedder.embed(query)
        full_filter = {"namespace": self.namespace, **(filter or {})}
        matches = await self.store.query(self.index_name, vector, top_k=top_k, filter=full_filter)
        return [
            match_to_result(match, self.origin)
            for match in matches
            if match.score >= self.min_similarity
        ]


class CuratedIndexSearch(VectorIndexSearch):
    """Curated public-exam collection stored under its own namespace."""

    def __init__(self, embedder: EmbeddingProvider, store: VectorStore,
                 index_settings: IndexSettings, min_similarity: float = 0.45):
        super().__init__(embedder, store, index_settings.index_name, index_settings.curated_namespace,
                         ResultOrigin.CURATED, min_similarity)

    async def search(self, query: str, top_k: int) -> List[SearchResult]:
        return await self.query(query, top_k)


class CrawledIndexSearch(VectorIndexSearch):
    """Crawled site content, restricted to the given sites and search types."""

    def __init__(self, embedder: EmbeddingProvider, store: VectorStore,
                 index_settings: IndexSettings, min_similarity: float = 0.3):
        super().__init__(embedder, store, index_settings.index_name, index_settings.crawled_namespace,
                         ResultOrigin.CRAWLED, min_similarity)

    async def search(self, query: str, site_ids: Sequence[str], search_types: Sequence[str],
                     top_k: int) -> List[SearchResult]:
        return await self.query(query, top_k, filter={
            "site_id": list(site_ids),
            "search_tags": list(search_types),
        })


class SearchAggregator:
    """Runs the curated and crawled searches and merges their results."""

    def __init__(self,
                 curated: CuratedSearch,
                 crawled: CrawledIndexSearch,
                 sites: SiteDirectory,
                 settings: Optional[SearchSettings] = None):
        self.curated = curated
        self.crawled = crawled
        self.sites = sites
        self.settings = settings or SearchSettings()

    def _active_site_ids(self, search_types: Sequence[str]) -> List[str]:
        return [site.id for site in self.sites.active_sites_for_types(search_types)]

    async def _search_curated(self, query: str, top_k: int) -> List[SearchResult]:
        results = await self.curated.search(query, top_k)
        return [r for r in results if r.similarity >= self.settings.curated_min_similarity]

    async def _search_crawled(self, query: str, search_types: Sequence[str], top_k: int) -> List[SearchResult]:
        site_ids = self._active_site_ids(search_types)
        if not site_ids:
            logger.info(f"No active sites for search types: {', '.join(search_types)}")
            return []
        results = await self.crawled.search(query, site_ids, search_types, top_k)
        return [r for r in results if r.similarity >= self.settings.crawled_min_similarity]

    async def _isolated(self, source: str, coro) -> List[SearchResult]:
        try:
            results = await coro
        except Exception as e:
            logger.warning(f"{source} search failed: {e}")
            record_search(source, "error")
            return []
        record_search(source, "success")
        return results

    @staticmethod
    def _drop_placeholders(results: Iterable[SearchResult]) -> List[SearchResult]:
        return [r for r in results if r.content.strip() and not is_script_placeholder(r.content)]

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> AggregatedSearch:
        """Search both sources concurrently.

        Returns:
            AggregatedSearch; never raises on source failures
        """
        options = options or SearchOptions()
        search_types = options.search_types or infer_search_types(query)
        per_source = max(1, options.max_results // 2)
        top_k = max(options.max_results, self.settings.max_alternatives)
        started = time.monotonic()

        async def nothing() -> List[SearchResult]:
            return []

        curated_coro = (self._search_curated(query, top_k)
                        if DEFAULT_SEARCH_TYPE in search_types else nothing())
        crawled_coro = (self._search_crawled(query, search_types, top_k)
                        if options.include_crawled_sites else nothing())

        curated, crawled = await asyncio.gather(
            self._isolated(ResultOrigin.CURATED.value, curated_coro),
            self._isolated(ResultOrigin.CRAWLED.value, crawled_coro),
        )
        curated = sorted(self._drop_placeholders(curated), key=lambda r: r.similarity, reverse=True)
        crawled = sorted(self._drop_placeholders(crawled), key=lambda r: r.similarity, reverse=True)

        disambiguation = disambiguate(curated, self.settings.ambiguity_gap,
                                      self.settings.confident_score, self.settings.max_alternatives)
        curated = curated[:per_source]
        crawled = crawled[:per_source]

        search_duration.observe(time.monotonic() - started)
        logger.info(f"Search '{query}' ({', '.join(search_types)}): "
                    f"{len(curated)} curated + {len(crawled)} crawled, {disambiguation.status.value}")
        return AggregatedSearch(
            results=curated + crawled,
            breakdown={ResultOrigin.CURATED.value: len(curated), ResultOrigin.CRAWLED.value: len(crawled)},
            search_types=list(search_types),
            disambiguation=disambiguation,
        )

    async def search_crawled_only(self, query: str, search_types: Optional[Sequence[str]] = None,
                                  max_results: int = 10) -> List[SearchResult]:
        """Search crawled sites only.

        Raises:
            NoActiveSitesError: no active site serves the requested types
        """
        search_types = list(search_types or infer_search_types(query))
        site_ids = self._active_site_ids(search_types)
        if not site_ids:
            raise NoActiveSitesError(search_types)
        results = await self.crawled.search(query, site_ids, search_types, max_results)
        record_search(ResultOrigin.CRAWLED.value, "success")
        results = [r for r in self._drop_placeholders(results)
                   if r.similarity >= self.settings.crawled_min_similarity]
        return sorted(results, key=lambda r: r.similarity, reverse=True)[:max_results]
