"""
Crawl endpoints.
"""
import os
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from core.config import CrawlConfig
from core.errors import ConfigurationError, SessionUnavailableError
from crawler.browser_crawler import BrowserPool
from orchestrator import CrawlOrchestrator
from pipeline.sink import MemorySink

logger = logging.getLogger(__name__)
router = APIRouter()


class CrawlRunRequest(BaseModel):
    keyword: Optional[str] = None
    start_url: Optional[str] = None
    location: Optional[str] = None
    job_type: Optional[str] = None
    experience_level: Optional[str] = None
    hourly_rate_min: Optional[int] = None
    hourly_rate_max: Optional[int] = None
    results_wanted: Optional[int] = None
    max_pages: Optional[int] = None
    max_concurrency: Optional[int] = None
    max_request_retries: Optional[int] = None
    pagination_mode: Optional[str] = None
    page_size: Optional[int] = None
    title_policy: Optional[str] = None
    proxy_urls: Optional[List[str]] = None
    headless: Optional[bool] = None
    humanize: Optional[bool] = None
    snapshot_dir: Optional[str] = None


def get_pool_factory():
    """Dependency returning a callable that builds a browser pool for a config."""
    return BrowserPool.from_config


@router.get("/crawl/defaults")
def crawl_defaults():
    """Default crawl settings, after environment overrides."""
    config = CrawlConfig.from_env()
    return {
        "keyword": config.keyword,
        "seed_url": config.seed_url,
        "results_wanted": config.results_wanted,
        "max_pages": config.max_pages,
        "max_concurrency": config.max_concurrency,
        "pagination_mode": config.pagination_mode,
        "title_policy": config.title_policy,
    }


@router.post("/crawl/run")
async def run_crawl(request: CrawlRunRequest, pool_factory=Depends(get_pool_factory)):
    """
    Run one crawl and return the collected records.

    Records are returned in the response rather than written to disk.
    Diagnostic snapshots are written only when ``snapshot_dir`` is given
    in the request or HARVESTER_SNAPSHOT_DIR is set.
    """
    try:
        overrides = {k: v for k, v in request.model_dump().items() if v is not None}
        config = CrawlConfig.from_env(overrides).validate()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if request.snapshot_dir is None and not os.getenv("HARVESTER_SNAPSHOT_DIR"):
        config.snapshot_dir = None

    sink = MemorySink()
    pool = pool_factory(config)
    orchestrator = CrawlOrchestrator(config, pool=pool, sink=sink)
    try:
        stats = await orchestrator.run()
    except SessionUnavailableError as e:
        logger.error(f"[crawl] Browser unavailable: {e}")
        raise HTTPException(status_code=503, detail=f"Browser unavailable: {e}")
    finally:
        await pool.close()

    return {
        "status": "ok",
        "stats": stats.to_dict(),
        "records": sink.to_dicts(),
    }
