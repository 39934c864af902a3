"""Prometheus metrics for crawling, extraction, indexing and search."""

import logging
import re
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Dedicated registry so tests and embedded use never collide with the default one
studyindex_registry = CollectorRegistry()

# HTTP metrics
request_count = Counter(
    'studyindex_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=studyindex_registry
)

request_duration = Histogram(
    'studyindex_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=studyindex_registry
)

# Crawl metrics
pages_crawled = Counter(
    'studyindex_pages_crawled_total',
    'Pages visited by the frontier crawler',
    ['outcome'],
    registry=studyindex_registry
)

crawl_duration = Histogram(
    'studyindex_crawl_duration_seconds',
    'Duration of a full crawl run in seconds',
    buckets=[1, 5, 15, 30, 60, 120, 300, 600],
    registry=studyindex_registry
)

extraction_attempts = Counter(
    'studyindex_extraction_attempts_total',
    'Extraction tier attempts',
    ['tier', 'status'],
    registry=studyindex_registry
)

# Indexing metrics
index_writes = Counter(
    'studyindex_index_writes_total',
    'Vector index write attempts',
    ['status'],
    registry=studyindex_registry
)

indexing_chunks = Histogram(
    'studyindex_indexing_chunks_count',
    'Number of chunks written per document',
    buckets=[1, 5, 10, 25, 50, 100, 250],
    registry=studyindex_registry
)

# Search metrics
search_requests = Counter(
    'studyindex_search_requests_total',
    'Search sub-queries by source',
    ['source', 'status'],
    registry=studyindex_registry
)

search_duration = Histogram(
    'studyindex_search_duration_seconds',
    'Search request duration in seconds',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=studyindex_registry
)


def record_page(outcome: str) -> None:
    pages_crawled.labels(outcome=outcome).inc()


def record_extraction(tier: str, status: str) -> None:
    extraction_attempts.labels(tier=tier, status=status).inc()


def record_index_write(status: str, chunk_count: Optional[int] = None) -> None:
    """Record one write attempt; chunk counts are observed on success only."""
    index_writes.labels(status=status).inc()
    if status == "success" and chunk_count is not None:
        indexing_chunks.observe(chunk_count)


def record_search(source: str, status: str) -> None:
    search_requests.labels(source=source, status=status).inc()


class PrometheusMiddleware:
    """Middleware to collect Prometheus metrics for HTTP requests."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        method = request.method
        endpoint = self._normalize_endpoint(request.url.path)
        start_time = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            request_count.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
            request_duration.labels(method=method, endpoint=endpoint).observe(time.time() - start_time)

    def _normalize_endpoint(self, path: str) -> str:
        """Normalize endpoint path to reduce cardinality."""
        path = re.sub(r'/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '/{uuid}', path)
        path = re.sub(r'/\d+', '/{id}', path)
        return path


def setup_prometheus_metrics(app: FastAPI) -> None:
    """Add the metrics middleware and a ``/metrics`` endpoint to the app."""
    app.add_middleware(PrometheusMiddleware)

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint():
        return PlainTextResponse(generate_latest(studyindex_registry), media_type=CONTENT_TYPE_LATEST)

    logger.info("Prometheus metrics configured")
