# Embedding providers
# Turns chunk and query text into dense vectors for the vector store

import asyncio
import logging
import threading
from typing import List, Optional, Protocol, Sequence

import numpy as np
from openai import AsyncOpenAI
from sentence_transformers import SentenceTransformer

from config.settings import EmbeddingProviderType, IndexSettings

logger = logging.getLogger(__name__)

OPENAI_BATCH_LIMIT = 100


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> List[float]: ...

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]: ...


class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded on first use."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self.model: Optional[SentenceTransformer] = None
        self._load_lock = threading.Lock()

    def _load_model(self) -> SentenceTransformer:
        """Load the sentence transformer model"""
        with self._load_lock:
            if self.model is None:
                logger.info(f"Loading embedding model: {self.model_name}")
                self.model = SentenceTransformer(self.model_name)
                logger.info(f"Model loaded. Embedding dimension: {self.model.get_sentence_embedding_dimension()}")
        return self.model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        model = self._load_model()
        cleaned = [text.strip() if text else "" for text in texts]
        embeddings = model.encode(cleaned, convert_to_numpy=True, show_progress_bar=False)
        return np.asarray(embeddings, dtype=np.float32).tolist()

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts in a worker thread"""
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, list(texts))

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_batch([text]))[0]


class OpenAIEmbedder:
    """OpenAI embeddings API."""

    def __init__(self, api_key: Optional[str] = None, model_name: str = "text-embedding-3-small",
                 client: Optional[AsyncOpenAI] = None):
        self.model_name = model_name
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        embeddings: List[List[float]] = []
        texts = [text.strip() or " " for text in texts]
        for start in range(0, len(texts), OPENAI_BATCH_LIMIT):
            batch = texts[start:start + OPENAI_BATCH_LIMIT]
            response = await self.client.embeddings.create(model=self.model_name, input=batch)
            embeddings.extend(item.embedding for item in sorted(response.data, key=lambda d: d.index))
        return embeddings

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_batch([text]))[0]


def create_embedder(settings: IndexSettings) -> EmbeddingProvider:
    """Build the embedding provider named in the index settings."""
    if settings.embedding_provider == EmbeddingProviderType.OPENAI:
        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required for the openai embedding provider")
        logger.info(f"Using OpenAI embeddings ({settings.embedding_model})")
        return OpenAIEmbedder(api_key=settings.openai_api_key, model_name=settings.embedding_model)
    logger.info(f"Using sentence-transformers embeddings ({settings.embedding_model})")
    return SentenceTransformerEmbedder(settings.embedding_model)
