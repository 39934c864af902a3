"""Shared fixtures: in-process fakes for embeddings, extraction and storage, and a local HTTP server."""

import hashlib
import re
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import numpy as np
import pytest
from aiohttp import test_utils

from indexer.vector_store import SQLiteVectorStore
from pipelines.models import ExtractedPage


class FakeEmbedder:
    """Deterministic bag-of-words embeddings; identical text scores 1.0."""

    dimension = 256

    def __init__(self):
        self.batch_calls = 0

    def _vector(self, text: str) -> List[float]:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in re.findall(r"\w+", text.lower()):
            vector[int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension] += 1.0
        if not vector.any():
            vector[0] = 1.0
        return vector.tolist()

    async def embed(self, text: str) -> List[float]:
        return self._vector(text)

    async def embed_batch(self, texts) -> List[List[float]]:
        self.batch_calls += 1
        return [self._vector(text) for text in texts]


class FakeExtractor:
    """Serves pages from an in-memory site map; unknown URLs come back empty."""

    def __init__(self, site: Dict[str, Dict], failing: Optional[set] = None):
        self.site = site
        self.failing = failing or set()
        self.calls: List[str] = []

    async def extract(self, url: str) -> ExtractedPage:
        self.calls.append(url)
        if url in self.failing:
            raise RuntimeError(f"boom: {url}")
        entry = self.site.get(url)
        if entry is None:
            return ExtractedPage.failed(url, "HTTP 404")
        return ExtractedPage(
            url=url,
            title=entry.get("title", url),
            content=entry.get("content", ""),
            links=list(entry.get("links", [])),
        )


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def make_extractor():
    def factory(site, failing=None):
        return FakeExtractor(site, failing)
    return factory


@pytest.fixture
def vector_store(tmp_path):
    store = SQLiteVectorStore(str(tmp_path / "vectors.db"))
    yield store
    if store.conn:
        store.conn.close()


@pytest.fixture
def listing_site():
    """A small same-origin site with an external link, a PDF and an empty page."""
    base = "https://example.org"
    site = {
        f"{base}/list": {
            "title": "Listing",
            "content": "Open selection processes and notices.",
            "links": [f"{base}/item/{i}" for i in range(1, 8)] + [
                "https://other.example.com/page",
                f"{base}/files/edital.pdf",
                f"{base}/empty",
            ],
        },
        f"{base}/empty": {"title": "Empty", "content": "", "links": []},
    }
    for i in range(1, 8):
        site[f"{base}/item/{i}"] = {
            "title": f"Item {i}",
            "content": f"Details for item {i} with inscrições abertas.",
            "links": [f"{base}/item/{i}/deep", f"{base}/list"],
        }
        site[f"{base}/item/{i}/deep"] = {"title": f"Deep {i}", "content": f"Deep page {i}.", "links": []}
    return site


@asynccontextmanager
async def serve(app):
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


@pytest.fixture
def serve_app():
    """Run an aiohttp application on a local test server: ``async with serve_app(app) as server``."""
    return serve
