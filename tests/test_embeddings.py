"""Unit tests for the embedding providers.

Model loading and the OpenAI client are mocked; no network or model download.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import numpy as np
import pytest

from config.settings import EmbeddingProviderType, IndexSettings
from indexer.embeddings import OpenAIEmbedder, SentenceTransformerEmbedder, create_embedder


class TestSentenceTransformerEmbedder:
    """Test suite for the local model provider."""

    @pytest.fixture
    def mock_sentence_transformer(self):
        """Mock SentenceTransformer for testing."""
        mock_model = Mock()
        mock_model.encode.return_value = np.array([[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]])
        mock_model.get_sentence_embedding_dimension.return_value = 3
        return mock_model

    def test_model_loaded_lazily(self):
        """The model is not loaded until the first embedding request."""
        with patch("indexer.embeddings.SentenceTransformer") as mock_st:
            embedder = SentenceTransformerEmbedder("custom-model")
            mock_st.assert_not_called()
            assert embedder.model_name == "custom-model"

    @pytest.mark.asyncio
    async def test_embed_batch(self, mock_sentence_transformer):
        """Batch embedding returns one float list per text."""
        with patch("indexer.embeddings.SentenceTransformer", return_value=mock_sentence_transformer) as mock_st:
            embedder = SentenceTransformerEmbedder()
            vectors = await embedder.embed_batch(["  primeiro texto ", "segundo texto"])

        mock_st.assert_called_once_with("all-MiniLM-L6-v2")
        assert len(vectors) == 2
        assert vectors[0] == pytest.approx([0.1, 0.2, 0.3])
        args, _ = mock_sentence_transformer.encode.call_args
        assert args[0] == ["primeiro texto", "segundo texto"]

    @pytest.mark.asyncio
    async def test_model_loaded_once(self, mock_sentence_transformer):
        with patch("indexer.embeddings.SentenceTransformer", return_value=mock_sentence_transformer) as mock_st:
            embedder = SentenceTransformerEmbedder()
            await embedder.embed_batch(["a", "b"])
            await embedder.embed_batch(["c", "d"])
        assert mock_st.call_count == 1

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        """Empty input never touches the model."""
        with patch("indexer.embeddings.SentenceTransformer") as mock_st:
            assert await SentenceTransformerEmbedder().embed_batch([]) == []
        mock_st.assert_not_called()


class TestOpenAIEmbedder:
    """Test suite for the OpenAI provider."""

    @pytest.fixture
    def client(self):
        def create(model, input):
            # Return items out of order to check re-sorting by index
            data = [SimpleNamespace(index=i, embedding=[float(i), float(len(text))]) for i, text in enumerate(input)]
            return SimpleNamespace(data=list(reversed(data)))

        mock_client = Mock()
        mock_client.embeddings.create = AsyncMock(side_effect=create)
        return mock_client

    @pytest.mark.asyncio
    async def test_embed_batch_keeps_input_order(self, client):
        embedder = OpenAIEmbedder(model_name="text-embedding-3-small", client=client)

        vectors = await embedder.embed_batch(["ab", "abcd"])

        assert vectors == [[0.0, 2.0], [1.0, 4.0]]
        client.embeddings.create.assert_awaited_once_with(model="text-embedding-3-small", input=["ab", "abcd"])

    @pytest.mark.asyncio
    async def test_large_batches_are_split(self, client):
        embedder = OpenAIEmbedder(client=client)

        vectors = await embedder.embed_batch([f"texto {i}" for i in range(250)])

        assert len(vectors) == 250
        assert client.embeddings.create.await_count == 3

    @pytest.mark.asyncio
    async def test_embed_single(self, client):
        embedder = OpenAIEmbedder(client=client)
        assert await embedder.embed("abc") == [0.0, 3.0]


class TestCreateEmbedder:
    """Test provider selection from settings."""

    def test_default_provider(self):
        embedder = create_embedder(IndexSettings())
        assert isinstance(embedder, SentenceTransformerEmbedder)

    def test_openai_requires_key(self):
        settings = IndexSettings(embedding_provider=EmbeddingProviderType.OPENAI)
        with pytest.raises(ValueError):
            create_embedder(settings)

    def test_openai_provider(self):
        settings = IndexSettings(embedding_provider=EmbeddingProviderType.OPENAI, openai_api_key="sk-test",
                                 embedding_model="text-embedding-3-large")
        with patch("indexer.embeddings.AsyncOpenAI") as mock_openai:
            embedder = create_embedder(settings)
        mock_openai.assert_called_once_with(api_key="sk-test")
        assert isinstance(embedder, OpenAIEmbedder)
        assert embedder.model_name == "text-embedding-3-large"
