from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from .cache import ResultCache
from .config import Settings
from .errors import DetectionFailure, FetchFailure
from .ocr.engines import ITxtDetector, make_detector
from .ocr.router import extract_regions, make_detect_pool
from .ocr.schema import OcrResult

logger = logging.getLogger("ocr_api")

DEFAULT_CONTEXT = "No Context"


class OcrService:
    """Fetch -> decode -> tile -> detect -> merge, behind the single-flight result cache."""

    def __init__(
        self,
        settings: Settings,
        cache: ResultCache,
        *,
        detector: Optional[ITxtDetector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self._detector = detector
        self._transport = transport
        self._detect_pool = make_detect_pool(settings.detect_workers)
        self.requests_processed = 0

    @property
    def detector(self) -> ITxtDetector:
        if self._detector is None:
            try:
                self._detector = make_detector(self.settings.ocr_engine)
            except (RuntimeError, ValueError) as e:
                raise DetectionFailure(str(e)) from e
            logger.info("Text detector ready: %s", self._detector.name)
        return self._detector

    async def fetch_image(self, url: str, user: Optional[str] = None, password: Optional[str] = None) -> bytes:
        auth = httpx.BasicAuth(user, password or "") if user else None
        timeout = httpx.Timeout(self.settings.fetch_timeout_seconds, connect=10.0)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True) as client:
                resp = await client.get(url, auth=auth)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPStatusError as e:
            raise FetchFailure(f"Failed to fetch image: HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchFailure(f"Failed to fetch image: {e}") from e

    async def process(self, url: str, user: Optional[str] = None, password: Optional[str] = None) -> List[OcrResult]:
        logger.info("Processing: %s", url)
        image_bytes = await self.fetch_image(url, user, password)
        return await extract_regions(
            image_bytes,
            self.detector,
            merge_config=self.settings.merge,
            max_chunk_height=self.settings.max_chunk_height,
            detect_timeout=self.settings.detect_timeout_seconds,
            executor=self._detect_pool,
        )

    async def compute(
        self,
        url: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        context: str = DEFAULT_CONTEXT,
        *,
        persist: bool = True,
    ) -> List[OcrResult]:
        return await self.cache.get_or_compute(
            url, context, lambda: self.process(url, user, password), persist=persist
        )

    async def ocr(
        self,
        url: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        context: str = DEFAULT_CONTEXT,
    ) -> List[OcrResult]:
        regions = await self.compute(url, user, password, context)
        self.requests_processed += 1
        return regions
