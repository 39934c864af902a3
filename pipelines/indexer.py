"""Document indexing pipeline.

Embeds chunks and writes them to the vector index under deterministic ids,
so re-indexing a document overwrites its previous vectors.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from config.settings import IndexSettings
from indexer.embeddings import EmbeddingProvider
from indexer.vector_store import VectorStore
from observability.metrics import record_index_write
from .errors import IndexWriteError
from .models import Chunk, DocumentMetadata, VectorRecord
from .retry import RetryError, exponential_backoff, with_retry

logger = logging.getLogger(__name__)

CONTENT_FIELD = "content"


def record_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}_{chunk_index}"


def build_chunk_metadata(chunk: Chunk, metadata: DocumentMetadata) -> Dict[str, Any]:
    """Flatten document metadata and chunk fields into one vector payload."""
    payload = metadata.to_dict()
    payload["chunk_index"] = chunk.index
    payload[CONTENT_FIELD] = chunk.text
    if chunk.structure is not None:
        payload["section_title"] = chunk.structure.title
        payload["section_level"] = chunk.structure.level
        if chunk.structure.parent_id:
            payload["parent_id"] = chunk.structure.parent_id
    return payload


class IndexWriter:
    """Writes chunked documents to a vector index."""

    def __init__(self,
                 embedder: EmbeddingProvider,
                 store: VectorStore,
                 index_name: Optional[str] = None,
                 settings: Optional[IndexSettings] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """Initialize writer.

        Args:
            embedder: Embedding provider for chunk text
            store: Vector store receiving the records
            index_name: Target index; defaults to the configured index name
            settings: Batch size and retry configuration
            sleep: Coroutine used for retry backoff
        """
        self.settings = settings or IndexSettings()
        self.embedder = embedder
        self.store = store
        self.index_name = index_name or self.settings.index_name
        self._sleep = sleep

    def build_records(self, document_id: str, chunks: Sequence[Chunk],
                      embeddings: Sequence[Sequence[float]],
                      metadata: DocumentMetadata) -> List[VectorRecord]:
        if len(embeddings) != len(chunks):
            raise ValueError(f"Got {len(embeddings)} embeddings for {len(chunks)} chunks")
        return [
            VectorRecord(
                id=record_id(document_id, chunk.index),
                embedding=list(embedding),
                metadata=build_chunk_metadata(chunk, metadata),
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]

    async def upsert(self, document_id: str, chunks: Sequence[Chunk], metadata: DocumentMetadata) -> int:
        """Embed and write every chunk of one document.

        Args:
            document_id: Stable document identifier; record ids are ``{document_id}_{index}``
            chunks: Chunks of the document
            metadata: Metadata shared by all chunks

        Returns:
            Number of vectors written

        Raises:
            IndexWriteError: the write still failed after the last retry
        """
        if not chunks:
            logger.debug(f"Nothing to index for {document_id}")
            return 0

        embeddings: List[List[float]] = []

        async def write() -> int:
            try:
                if not embeddings:
                    embeddings.extend(await self.embedder.embed_batch([chunk.text for chunk in chunks]))
                records = self.build_records(document_id, chunks, embeddings, metadata)
                batch_size = self.settings.batch_size
                for start in range(0, len(records), batch_size):
                    await self.store.upsert_vectors(self.index_name, records[start:start + batch_size])
                return len(records)
            except Exception:
                record_index_write("error")
                raise

        try:
            written = await with_retry(
                write,
                max_attempts=self.settings.max_attempts,
                backoff=exponential_backoff(self.settings.backoff_base),
                sleep=self._sleep,
                description=f"Index write for {document_id}",
            )
        except RetryError as e:
            record_index_write("failure")
            raise IndexWriteError(document_id, e.attempts, e.last_error) from e.last_error

        record_index_write("success", written)
        logger.info(f"Indexed {written} chunks for {document_id} into {self.index_name}/{metadata.namespace}")
        return written

    async def delete_by_filter(self, namespace: Optional[str] = None,
                               category: Optional[str] = None,
                               site_id: Optional[str] = None) -> int:
        """Delete vectors matching every given field.

        Raises:
            ValueError: no filter field was given
        """
        filter = {
            key: value
            for key, value in (("namespace", namespace), ("category", category), ("site_id", site_id))
            if value is not None
        }
        if not filter:
            raise ValueError("delete_by_filter needs at least one of namespace, category or site_id")
        deleted = await self.store.delete_by_filter(self.index_name, filter)
        logger.info(f"Deleted {deleted} vectors from {self.index_name} matching {filter}")
        return deleted
