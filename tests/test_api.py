"""HTTP API tests with the indexing service mocked out."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from pipelines.errors import NoActiveSitesError, SeedValidationError
from pipelines.models import ResultOrigin, SearchResult
from pipelines.search import AggregatedSearch, Disambiguation, DisambiguationStatus
from pipelines.site_indexing import CrawlIndexReport, CuratedIndexReport
from server.api import app, get_service


def result(id, similarity, origin):
    return SearchResult(id=id, title=id, content="Edital publicado.", source_url=f"https://example.org/{id}",
                        similarity=similarity, origin=origin)


class TestApi:
    """Test request validation, routing and error mapping."""

    @pytest.fixture
    def service(self):
        service = Mock()
        service.sites.get_site.return_value = SimpleNamespace(id="site-1")
        service.validate_url_for_crawling = AsyncMock(return_value={
            "url": "https://example.org/", "valid": True, "status_code": 200, "reason": None,
        })
        service.crawl_and_index = AsyncMock(return_value=CrawlIndexReport(
            site_id="site-1", seed_url="https://example.org/", search_types=["concurso_publico"],
            pages_crawled=2, pages_indexed=2, chunks_indexed=4,
        ))
        service.index_curated = AsyncMock(return_value=CuratedIndexReport(
            source_urls=["https://www.cebraspe.org.br/concursos/encerrado"],
            pages_fetched=1, items_found=3, items_indexed=3, vectors_replaced=2,
        ))
        service.search_integrated = AsyncMock(return_value=AggregatedSearch(
            results=[result("k0", 0.9, ResultOrigin.CURATED), result("c0", 0.5, ResultOrigin.CRAWLED)],
            breakdown={"curated": 1, "crawled": 1},
            search_types=["concurso_publico"],
            disambiguation=Disambiguation(status=DisambiguationStatus.SINGLE),
        ))
        service.search_crawled_only = AsyncMock(return_value=[result("c0", 0.5, ResultOrigin.CRAWLED)])
        service.list_sites_by_type.return_value = {"concurso_publico": [{"id": "site-1"}]}
        return service

    @pytest.fixture
    def client(self, service):
        app.dependency_overrides[get_service] = lambda: service
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_health(self, client):
        """Test the health endpoint returns OK status."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["timestamp"].endswith("Z")

    def test_validate_url(self, client, service):
        response = client.post("/admin/validate-url", json={"url": "https://example.org/"})
        assert response.status_code == 200
        assert response.json()["valid"] is True
        service.validate_url_for_crawling.assert_awaited_once_with("https://example.org/")

    def test_crawl(self, client, service):
        response = client.post("/admin/crawl", json={
            "url": "https://example.org/", "site_id": "site-1", "search_types": ["concurso_publico"],
            "max_pages": 5, "max_depth": 1, "delay_ms": 0,
        })

        assert response.status_code == 200
        assert response.json()["chunks_indexed"] == 4
        args = service.crawl_and_index.await_args.args
        assert args[:3] == ("https://example.org/", ["concurso_publico"], "site-1")
        assert args[3].max_pages == 5
        assert args[3].delay_ms == 0

    def test_crawl_unknown_site(self, client, service):
        service.sites.get_site.return_value = None
        response = client.post("/admin/crawl", json={
            "url": "https://example.org/", "site_id": "nope", "search_types": ["concurso_publico"],
        })
        assert response.status_code == 404
        service.crawl_and_index.assert_not_awaited()

    def test_crawl_requires_search_types(self, client):
        response = client.post("/admin/crawl", json={
            "url": "https://example.org/", "site_id": "site-1", "search_types": [],
        })
        assert response.status_code == 422

    def test_crawl_seed_rejected(self, client, service):
        """A failing seed pre-flight maps to 400 with the reason."""
        service.crawl_and_index.side_effect = SeedValidationError("https://example.org/", "HTTP 404", 404)
        response = client.post("/admin/crawl", json={
            "url": "https://example.org/", "site_id": "site-1", "search_types": ["concurso_publico"],
        })
        assert response.status_code == 400
        assert response.json()["status_code"] == 404

    def test_crawl_invalid_types(self, client, service):
        service.crawl_and_index.side_effect = ValueError("Unknown search types: astrologia")
        response = client.post("/admin/crawl", json={
            "url": "https://example.org/", "site_id": "site-1", "search_types": ["astrologia"],
        })
        assert response.status_code == 400

    def test_index_curated(self, client, service):
        response = client.post("/admin/curated/index", json={
            "urls": ["https://www.cebraspe.org.br/concursos/encerrado"], "replace_existing": False,
        })

        assert response.status_code == 200
        assert response.json()["items_indexed"] == 3
        service.index_curated.assert_awaited_once_with(["https://www.cebraspe.org.br/concursos/encerrado"], False)

    def test_index_curated_defaults(self, client, service):
        """An empty body refreshes the configured listings."""
        response = client.post("/admin/curated/index", json={})
        assert response.status_code == 200
        service.index_curated.assert_awaited_once_with(None, True)

    def test_index_curated_invalid_urls(self, client, service):
        service.index_curated.side_effect = ValueError("Invalid listing URLs: ftp://example.org")
        response = client.post("/admin/curated/index", json={"urls": ["ftp://example.org"]})
        assert response.status_code == 400

    def test_search(self, client, service):
        response = client.post("/search", json={"query": "auditor fiscal", "max_results": 4})

        body = response.json()
        assert response.status_code == 200
        assert body["breakdown"] == {"curated": 1, "crawled": 1}
        assert [r["origin"] for r in body["results"]] == ["curated", "crawled"]
        assert body["disambiguation"]["status"] == "single"
        assert service.search_integrated.await_args.args[1].max_results == 4

    def test_search_requires_query(self, client):
        assert client.post("/search", json={"query": ""}).status_code == 422

    def test_search_crawled(self, client):
        response = client.post("/search/crawled", json={"query": "edital"})
        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_search_crawled_without_sites(self, client, service):
        service.search_crawled_only.side_effect = NoActiveSitesError(["vestibular"])
        response = client.post("/search/crawled", json={"query": "enem", "search_types": ["vestibular"]})
        assert response.status_code == 400
        assert response.json()["search_types"] == ["vestibular"]

    def test_sites_by_type(self, client):
        response = client.get("/admin/sites/by-type")
        assert response.json() == {"sites_by_type": {"concurso_publico": [{"id": "site-1"}]}, "total_types": 1}

    def test_metrics(self, client):
        client.get("/health")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "studyindex_http_requests_total" in response.text
