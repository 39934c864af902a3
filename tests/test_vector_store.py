"""Tests for the SQLite vector store."""

import numpy as np
import pytest

from indexer.vector_store import cosine_scores, matches_filter
from pipelines.models import VectorRecord

INDEX = "test-index"


def record(id, vector, **metadata):
    return VectorRecord(id=id, embedding=vector, metadata=metadata)


class TestFilters:
    """Test metadata filter semantics."""

    def test_scalar_equality(self):
        assert matches_filter({"site_id": "a"}, {"site_id": "a"})
        assert not matches_filter({"site_id": "a"}, {"site_id": "b"})

    def test_list_means_any_of(self):
        assert matches_filter({"site_id": "a"}, {"site_id": ["a", "b"]})
        assert not matches_filter({"site_id": "c"}, {"site_id": ["a", "b"]})

    def test_list_metadata_intersects(self):
        """List-valued metadata matches when it shares an element with the filter."""
        metadata = {"search_tags": ["concurso_publico", "vestibular"]}
        assert matches_filter(metadata, {"search_tags": ["vestibular"]})
        assert matches_filter(metadata, {"search_tags": "concurso_publico"})
        assert not matches_filter(metadata, {"search_tags": ["escola"]})

    def test_missing_field(self):
        assert not matches_filter({}, {"site_id": "a"})
        assert matches_filter({"x": 1}, None)

    def test_cosine_scores_zero_vector(self):
        scores = cosine_scores(np.array([[1.0, 0.0], [0.0, 0.0]]), np.array([1.0, 0.0]))
        assert scores.tolist() == [1.0, 0.0]


class TestSQLiteVectorStore:
    """Test storage, querying and deletion."""

    @pytest.mark.asyncio
    async def test_query_orders_by_similarity(self, vector_store):
        await vector_store.upsert_vectors(INDEX, [
            record("a", [1.0, 0.0, 0.0], namespace="ns"),
            record("b", [0.7, 0.7, 0.0], namespace="ns"),
            record("c", [0.0, 0.0, 1.0], namespace="ns"),
        ])

        matches = await vector_store.query(INDEX, [1.0, 0.0, 0.0], top_k=2)

        assert [m.id for m in matches] == ["a", "b"]
        assert matches[0].score == pytest.approx(1.0)
        assert matches[0].score >= matches[1].score
        assert matches[0].metadata["namespace"] == "ns"

    @pytest.mark.asyncio
    async def test_upsert_overwrites_by_id(self, vector_store):
        """Writing the same id twice keeps one record with the latest payload."""
        await vector_store.upsert_vectors(INDEX, [record("a", [1.0, 0.0], title="old")])
        await vector_store.upsert_vectors(INDEX, [record("a", [0.0, 1.0], title="new")])

        assert await vector_store.count(INDEX) == 1
        matches = await vector_store.query(INDEX, [0.0, 1.0])
        assert matches[0].metadata["title"] == "new"

    @pytest.mark.asyncio
    async def test_query_filters(self, vector_store):
        await vector_store.upsert_vectors(INDEX, [
            record("a", [1.0, 0.0], namespace="crawled", site_id="s1", search_tags=["concurso_publico"]),
            record("b", [1.0, 0.0], namespace="crawled", site_id="s2", search_tags=["vestibular"]),
            record("c", [1.0, 0.0], namespace="curated"),
        ])

        crawled = await vector_store.query(INDEX, [1.0, 0.0], filter={"namespace": "crawled"})
        by_site = await vector_store.query(INDEX, [1.0, 0.0], filter={"namespace": "crawled", "site_id": ["s2"]})
        by_tag = await vector_store.query(INDEX, [1.0, 0.0], filter={"search_tags": ["concurso_publico"]})

        assert sorted(m.id for m in crawled) == ["a", "b"]
        assert [m.id for m in by_site] == ["b"]
        assert [m.id for m in by_tag] == ["a"]

    @pytest.mark.asyncio
    async def test_indexes_are_isolated(self, vector_store):
        await vector_store.upsert_vectors("one", [record("a", [1.0, 0.0])])
        await vector_store.upsert_vectors("two", [record("a", [1.0, 0.0])])

        assert await vector_store.count("one") == 1
        assert [m.id for m in await vector_store.query("two", [1.0, 0.0])] == ["a"]

    @pytest.mark.asyncio
    async def test_dimension_mismatch_skipped(self, vector_store):
        """Records with a different dimension never match."""
        await vector_store.upsert_vectors(INDEX, [record("a", [1.0, 0.0]), record("b", [1.0, 0.0, 0.0])])
        assert [m.id for m in await vector_store.query(INDEX, [1.0, 0.0])] == ["a"]

    @pytest.mark.asyncio
    async def test_empty_index(self, vector_store):
        assert await vector_store.query(INDEX, [1.0, 0.0]) == []
        assert await vector_store.upsert_vectors(INDEX, []) == 0

    @pytest.mark.asyncio
    async def test_delete_by_filter(self, vector_store):
        await vector_store.upsert_vectors(INDEX, [
            record("a", [1.0, 0.0], namespace="crawled", site_id="s1"),
            record("b", [1.0, 0.0], namespace="crawled", site_id="s2"),
        ])

        deleted = await vector_store.delete_by_filter(INDEX, {"namespace": "crawled", "site_id": "s1"})

        assert deleted == 1
        assert [m.id for m in await vector_store.query(INDEX, [1.0, 0.0])] == ["b"]

    @pytest.mark.asyncio
    async def test_delete_requires_filter(self, vector_store):
        with pytest.raises(ValueError):
            await vector_store.delete_by_filter(INDEX, {})

    @pytest.mark.asyncio
    async def test_context_manager(self, tmp_path):
        from indexer.vector_store import SQLiteVectorStore

        async with SQLiteVectorStore(str(tmp_path / "nested" / "store.db")) as store:
            assert store.conn is not None
        assert store.conn is None
