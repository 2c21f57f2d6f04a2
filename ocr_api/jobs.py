from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from .errors import OcrError
from .service import OcrService

logger = logging.getLogger("ocr_api")

# completed pages between cache file rewrites
SAVE_EVERY = 5


@dataclass
class JobProgress:
    current: int
    total: int


class ChapterJobs:
    """Background OCR of every page of a chapter, a few pages at a time."""

    def __init__(self, service: OcrService, concurrency: int = 6) -> None:
        self._service = service
        self._concurrency = max(1, int(concurrency))
        self._progress: Dict[str, JobProgress] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._progress)

    def progress(self, base_url: str) -> Optional[JobProgress]:
        return self._progress.get(base_url)

    def is_running(self, base_url: str) -> bool:
        return base_url in self._progress

    def start(
        self,
        base_url: str,
        pages: List[str],
        *,
        user: Optional[str] = None,
        password: Optional[str] = None,
        context: str = "",
    ) -> "asyncio.Task[None]":
        # registered before the task runs so a second request sees it immediately
        self._progress[base_url] = JobProgress(current=0, total=len(pages))
        task = asyncio.create_task(self.run(base_url, pages, user=user, password=password, context=context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(
        self,
        base_url: str,
        pages: List[str],
        *,
        user: Optional[str] = None,
        password: Optional[str] = None,
        context: str = "",
    ) -> None:
        progress = self._progress.setdefault(base_url, JobProgress(current=0, total=len(pages)))
        logger.info("[Job] Started for %s (%d pages)", context, len(pages))
        cache = self._service.cache
        sem = asyncio.Semaphore(self._concurrency)
        processed = 0

        async def _one(url: str) -> None:
            nonlocal processed
            async with sem:
                if url in cache:
                    logger.info("[Job] Skip (cached): %s", url)
                else:
                    try:
                        await self._service.compute(url, user, password, context, persist=False)
                        processed += 1
                        logger.info("[Job] Processed: %s", url)
                    except OcrError as e:
                        logger.warning("[Job] Failed: %s (%s)", url, e)
                    except Exception:
                        logger.exception("[Job] Failed: %s", url)
                    else:
                        if processed % SAVE_EVERY == 0:
                            # skipped when a write is already running; the final save catches up
                            await cache.save(wait=False)
                progress.current += 1

        try:
            await asyncio.gather(*(_one(u) for u in pages))
        finally:
            try:
                if processed:
                    await cache.save()
            finally:
                self._progress.pop(base_url, None)
            logger.info("[Job] Finished for %s (%d processed)", context, processed)
