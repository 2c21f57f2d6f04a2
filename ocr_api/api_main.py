# api_main.py
# FastAPI service for the OCR auto-merge server
# - GET /ocr returns merged, reading-order text regions for an image URL
# - Results are cached per URL in ocr-cache.json
# - Chapter preprocessing runs page OCR in the background

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Body, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .cache import CacheEntry, ResultCache
from .config import Settings
from .errors import InvalidRequest, OcrError
from .jobs import ChapterJobs
from .ocr.engines import ITxtDetector
from .ocr.schema import results_to_json
from .service import DEFAULT_CONTEXT, OcrService

logger = logging.getLogger("ocr_api")


# ---------- models ----------
class BoundingBoxModel(BaseModel):
    x: float
    y: float
    width: float
    height: float


class OcrResultModel(BaseModel):
    text: str
    tightBoundingBox: BoundingBoxModel
    isMerged: Optional[bool] = None
    forcedOrientation: Optional[str] = None


class CacheEntryModel(BaseModel):
    context: str = ""
    data: List[OcrResultModel] = []


class JobRequest(BaseModel):
    base_url: str
    user: Optional[str] = None
    password: Optional[str] = Field(None, alias="pass")
    context: str = DEFAULT_CONTEXT
    pages: Optional[List[str]] = None


# ---------- app ----------
def create_app(
    settings: Optional[Settings] = None,
    *,
    detector: Optional[ITxtDetector] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    cache = ResultCache(settings.cache_path)
    cache.load()
    service = OcrService(settings, cache, detector=detector, transport=transport)
    jobs = ChapterJobs(service, concurrency=settings.job_concurrency)

    app = FastAPI(title="OCR Auto-Merge API", version="1.0.0")
    app.state.settings = settings
    app.state.service = service
    app.state.jobs = jobs

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OcrError)
    async def _ocr_error(request: Request, exc: OcrError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("[OCR] Error: %s", exc)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    # ---------- routes ----------
    @app.get("/")
    async def root():
        return {
            "status": "running",
            "message": f"OCR auto-merge server ({settings.environment})",
            "requests_processed": service.requests_processed,
            "items_in_cache": len(cache),
            "active_jobs": jobs.active_jobs,
        }

    @app.get("/ocr")
    async def ocr(
        url: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = Query(None, alias="pass"),
        context: str = DEFAULT_CONTEXT,
    ):
        if not url:
            raise InvalidRequest("Image URL required")
        try:
            regions = await service.ocr(url, user, password, context)
        except OcrError:
            raise
        except Exception as e:
            logger.exception("[OCR] Unexpected failure for %s", url)
            raise OcrError(str(e)) from e
        return results_to_json(regions)

    @app.post("/purge-cache")
    async def purge_cache():
        removed = await cache.purge()
        logger.info("Cache purged (%d items)", removed)
        return {"status": "success", "removed": removed}

    @app.get("/export-cache")
    async def export_cache() -> Dict[str, Any]:
        return cache.export()

    @app.post("/import-cache")
    async def import_cache(payload: Dict[str, CacheEntryModel] = Body(...)):
        entries = {url: CacheEntry.from_dict(m.model_dump()) for url, m in payload.items()}
        added = await cache.import_entries(entries)
        return {"message": "Import successful", "added": added}

    @app.post("/preprocess-chapter")
    async def preprocess_chapter(req: JobRequest):
        if req.pages is None:
            return {"error": "No pages provided"}
        if jobs.is_running(req.base_url):
            return {"status": "already_processing"}
        jobs.start(req.base_url, req.pages, user=req.user, password=req.password, context=req.context)
        return {"status": "started"}

    @app.post("/is-chapter-preprocessed")
    async def is_chapter_preprocessed(req: JobRequest):
        progress = jobs.progress(req.base_url)
        if progress is not None:
            return {"status": "processing", "progress": progress.current, "total": progress.total}
        if f"{req.base_url}0" in cache:
            return {"status": "processed"}
        return {"status": "idle"}

    return app


# ---------- uvicorn entry ----------
def main(argv: Optional[List[str]] = None) -> None:
    import uvicorn

    base = Settings.from_env()
    p = argparse.ArgumentParser(description="OCR auto-merge server")
    p.add_argument("--ip", default=base.host, help="Bind address (default: %(default)s)")
    p.add_argument("--port", "-p", type=int, default=base.port, help="Bind port (default: %(default)s)")
    p.add_argument("--cache-path", default=base.cache_path, help="Directory holding ocr-cache.json")
    args = p.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = dataclasses.replace(
        base,
        host=args.ip,
        port=args.port,
        cache_path=os.path.abspath(args.cache_path),
    )
    app = create_app(settings)
    logger.info("OCR server running at http://%s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
