from fastapi import FastAPI
from dotenv import load_dotenv
from contextlib import asynccontextmanager
import os
import logging

from app.crawl import router as crawl_router
from pipeline import __version__ as pipeline_version

load_dotenv()

logging.basicConfig(
    level=os.getenv("HARVESTER_LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application lifecycle events."""
    headless = os.getenv("HARVESTER_HEADLESS", "true").lower()
    logger.info(f"[harvester] API starting (pipeline {pipeline_version}, headless={headless})")
    yield
    logger.info("[harvester] API shutting down")


app = FastAPI(title="Listing Harvester API", version="0.1.0", lifespan=lifespan)

app.include_router(crawl_router)


@app.get("/healthz")
def healthz():
    return {"status": "ok", "pipeline_version": pipeline_version}
