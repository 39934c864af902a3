"""HTTP API for crawling, indexing and searching configured sites."""

import datetime
import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config.settings import get_settings
from observability.logging import setup_logging
from observability.metrics import setup_prometheus_metrics
from pipelines.errors import NoActiveSitesError, SeedValidationError
from pipelines.search import SearchOptions
from pipelines.site_indexing import (CrawlOptions, SiteIndexingService, close_indexing_service,
                                     get_indexing_service)

logger = logging.getLogger(__name__)

app = FastAPI(title="Study Index API", version="0.1.0")
setup_prometheus_metrics(app)


def get_service() -> SiteIndexingService:
    return get_indexing_service()


@app.on_event("startup")
async def startup_event():
    """Configure logging from settings."""
    settings = get_settings()
    setup_logging(level=settings.log_level, log_file=settings.log_file, use_json=settings.log_json)
    logger.info("Study index API started")


@app.on_event("shutdown")
async def shutdown_event():
    """Close the vector store."""
    try:
        await close_indexing_service()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


@app.exception_handler(SeedValidationError)
async def seed_validation_handler(request: Request, exc: SeedValidationError):
    return JSONResponse(status_code=400, content={
        "detail": str(exc), "url": exc.url, "reason": exc.reason, "status_code": exc.status_code,
    })


@app.exception_handler(NoActiveSitesError)
async def no_active_sites_handler(request: Request, exc: NoActiveSitesError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "search_types": exc.search_types})


class ValidateUrlRequest(BaseModel):
    url: str


class CrawlRequest(BaseModel):
    url: str
    site_id: str
    search_types: List[str] = Field(min_length=1)
    max_pages: Optional[int] = Field(default=None, ge=1, le=500)
    max_depth: Optional[int] = Field(default=None, ge=0, le=10)
    delay_ms: Optional[int] = Field(default=None, ge=0)
    chunk_mode: str = Field(default="auto", pattern="^(fixed|title|auto)$")
    replace_existing: bool = True


class CuratedIndexRequest(BaseModel):
    urls: Optional[List[str]] = None
    replace_existing: bool = True


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    search_types: Optional[List[str]] = None
    include_crawled_sites: bool = True
    max_results: int = Field(default=10, ge=1, le=50)


class CrawledSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    search_types: Optional[List[str]] = None
    max_results: int = Field(default=10, ge=1, le=50)


@app.get("/health")
def health():
    timestamp = datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")
    return {"status": "ok", "timestamp": timestamp}


@app.post("/admin/validate-url")
async def validate_url(req: ValidateUrlRequest, service: SiteIndexingService = Depends(get_service)):
    return await service.validate_url_for_crawling(req.url)


@app.post("/admin/crawl")
async def crawl(req: CrawlRequest, service: SiteIndexingService = Depends(get_service)) -> Dict[str, Any]:
    get_site = getattr(service.sites, "get_site", None)
    if get_site is not None and get_site(req.site_id) is None:
        raise HTTPException(status_code=404, detail=f"Site not found: {req.site_id}")

    options = CrawlOptions(max_pages=req.max_pages, max_depth=req.max_depth, delay_ms=req.delay_ms,
                           chunk_mode=req.chunk_mode, replace_existing=req.replace_existing)
    try:
        report = await service.crawl_and_index(req.url, req.search_types, req.site_id, options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return report.to_dict()


@app.post("/admin/curated/index")
async def index_curated(req: Optional[CuratedIndexRequest] = None,
                        service: SiteIndexingService = Depends(get_service)) -> Dict[str, Any]:
    req = req or CuratedIndexRequest()
    try:
        report = await service.index_curated(req.urls, req.replace_existing)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return report.to_dict()


@app.post("/search")
async def search(req: SearchRequest, service: SiteIndexingService = Depends(get_service)) -> Dict[str, Any]:
    options = SearchOptions(search_types=req.search_types, include_crawled_sites=req.include_crawled_sites,
                            max_results=req.max_results)
    result = await service.search_integrated(req.query, options)
    return {"query": req.query, **result.to_dict()}


@app.post("/search/crawled")
async def search_crawled(req: CrawledSearchRequest,
                         service: SiteIndexingService = Depends(get_service)) -> Dict[str, Any]:
    results = await service.search_crawled_only(req.query, req.search_types, req.max_results)
    return {"query": req.query, "results": [r.to_dict() for r in results], "total": len(results)}


@app.get("/admin/sites/by-type")
def sites_by_type(service: SiteIndexingService = Depends(get_service)) -> Dict[str, Any]:
    grouped = service.list_sites_by_type()
    return {"sites_by_type": grouped, "total_types": len(grouped)}
