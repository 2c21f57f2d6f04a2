from __future__ import annotations

import asyncio
import functools
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import List, Optional, Tuple

from ..errors import DetectionFailure
from .engines import ITxtDetector
from .merge import MergeConfig, auto_merge
from .schema import OcrResult, Segment
from .tiling import MAX_CHUNK_HEIGHT, Chunk, iter_chunks, load_image, remap_to_image

logger = logging.getLogger("ocr_api")

DETECT_WORKERS = 4
DETECT_THREAD_PREFIX = "ocr-detect"

_pool: Optional[ThreadPoolExecutor] = None
_pool_lock = threading.Lock()


def make_detect_pool(workers: int = DETECT_WORKERS) -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix=DETECT_THREAD_PREFIX)


def _default_pool() -> ThreadPoolExecutor:
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = make_detect_pool()
        return _pool


def _prepare_chunks(image_bytes: bytes, max_chunk_height: int) -> Tuple[int, int, List[Chunk]]:
    im = load_image(image_bytes)
    width, height = im.size
    return width, height, list(iter_chunks(im, max_chunk_height))


def _log_late_return(started: float, fut: "Future[List[Segment]]") -> None:
    if fut.cancelled():
        logger.warning("Timed-out text detection was dropped before it started")
        return
    exc = fut.exception()
    logger.warning(
        "Timed-out text detection returned after %.1fs%s",
        time.monotonic() - started,
        f" with error: {exc}" if exc is not None else "",
    )


async def detect_segments(
    detector: ITxtDetector,
    image_png: bytes,
    timeout: Optional[float] = None,
    executor: Optional[Executor] = None,
) -> List[Segment]:
    """Run the detector on ``executor``; ``timeout`` <= 0 or None means no timeout.

    A timed-out call cannot be stopped and keeps its worker until it returns,
    so detection gets its own bounded pool instead of the loop's default one.
    """
    pool = executor or _default_pool()
    started = time.monotonic()
    fut = pool.submit(detector.detect, image_png)
    try:
        if timeout is not None and timeout > 0:
            return await asyncio.wait_for(asyncio.wrap_future(fut), timeout)
        return await asyncio.wrap_future(fut)
    except asyncio.TimeoutError as e:
        fut.add_done_callback(functools.partial(_log_late_return, started))
        raise DetectionFailure(f"Text detection timed out after {timeout}s") from e
    except DetectionFailure:
        raise
    except Exception as e:
        raise DetectionFailure(f"Text detection failed: {e}") from e


async def extract_regions(
    image_bytes: bytes,
    detector: ITxtDetector,
    *,
    merge_config: Optional[MergeConfig] = None,
    max_chunk_height: int = MAX_CHUNK_HEIGHT,
    detect_timeout: Optional[float] = None,
    executor: Optional[Executor] = None,
) -> List[OcrResult]:
    """
    High-level OCR entry point used by the API.
    Decode -> tile -> detect each chunk -> auto-merge -> remap into whole-image fractions.
    Any failing chunk fails the whole image.
    """
    merge_config = merge_config or MergeConfig()
    width, height, chunks = await asyncio.to_thread(_prepare_chunks, image_bytes, max_chunk_height)
    if len(chunks) > 1:
        logger.info("Image tall (%dpx). Processing %d chunks", height, len(chunks))

    results: List[OcrResult] = []
    for chunk in chunks:
        segments = await detect_segments(detector, chunk.png, detect_timeout, executor)
        lines = [s.to_line() for s in segments]
        merged = auto_merge(lines, width, chunk.height, merge_config)
        if chunk.height == height:
            results.extend(merged)
        else:
            results.extend(remap_to_image(r, chunk.y_offset, chunk.height, height) for r in merged)
    return results
