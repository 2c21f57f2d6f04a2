from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import CachePersistenceFailure
from .ocr.schema import OcrResult, results_to_json

logger = logging.getLogger("ocr_api")

CACHE_FILE_NAME = "ocr-cache.json"


@dataclass(frozen=True)
class CacheEntry:
    context: str
    data: List[OcrResult]

    def to_dict(self) -> Dict[str, Any]:
        return {"context": self.context, "data": results_to_json(self.data)}

    @staticmethod
    def from_dict(d: Any) -> "CacheEntry":
        if isinstance(d, list):
            # older cache files stored the region list directly
            return CacheEntry(context="", data=[OcrResult.from_dict(r) for r in d])
        return CacheEntry(
            context=str(d.get("context", "")),
            data=[OcrResult.from_dict(r) for r in d.get("data") or []],
        )


class ResultCache:
    """URL -> finished region list, mirrored to one JSON file.

    Keys are the literal request URL. The file is loaded once and rewritten in
    full on save, on a worker thread; /ocr results are saved as they land,
    chapter jobs save in batches. If a write fails the in-memory copy stays
    authoritative for the running process.
    """

    def __init__(self, cache_dir: str) -> None:
        self._path = os.path.join(os.path.abspath(cache_dir or "."), CACHE_FILE_NAME)
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, "asyncio.Future[List[OcrResult]]"] = {}
        self._save_lock: Optional[asyncio.Lock] = None

    @property
    def path(self) -> str:
        return self._path

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def load(self) -> int:
        if not os.path.exists(self._path):
            return 0
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f) or {}
            self._entries = {str(k): CacheEntry.from_dict(v) for k, v in raw.items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Error loading cache from %s: %s", self._path, e)
            self._entries = {}
            return 0
        logger.info("Loaded %d items from %s", len(self._entries), self._path)
        return len(self._entries)

    def get(self, url: str) -> Optional[List[OcrResult]]:
        entry = self._entries.get(url)
        return None if entry is None else entry.data

    def put(self, url: str, context: str, regions: List[OcrResult]) -> None:
        """Store in memory only; call :meth:`save` to persist."""
        self._entries[url] = CacheEntry(context=context, data=list(regions))

    async def purge(self) -> int:
        removed = len(self._entries)
        self._entries.clear()
        await self.save()
        return removed

    def export(self) -> Dict[str, Dict[str, Any]]:
        return {url: entry.to_dict() for url, entry in self._entries.items()}

    async def import_entries(self, entries: Dict[str, CacheEntry]) -> int:
        """Add entries for URLs not cached yet; existing entries win."""
        added = 0
        for url, entry in entries.items():
            if url not in self._entries:
                self._entries[url] = entry
                added += 1
        if added:
            await self.save()
        return added

    @property
    def _lock(self) -> asyncio.Lock:
        if self._save_lock is None:
            self._save_lock = asyncio.Lock()
        return self._save_lock

    async def save(self, *, wait: bool = True) -> bool:
        """Rewrite the cache file off the event loop.

        Writes are serialized. With ``wait=False`` the call returns False at once
        when another write is in progress.
        """
        if not wait and self._lock.locked():
            return False
        async with self._lock:
            payload = self.export()
            try:
                await asyncio.to_thread(self._write, payload)
            except CachePersistenceFailure:
                logger.exception("Error saving cache to %s", self._path)
                return False
        return True

    def _write(self, payload: Dict[str, Dict[str, Any]]) -> None:
        tmp = self._path + ".tmp"
        try:
            os.makedirs(os.path.dirname(self._path), exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self._path)
        except OSError as e:
            raise CachePersistenceFailure(f"could not write {self._path}: {e}") from e

    def inflight(self, url: str) -> bool:
        return url in self._inflight

    async def get_or_compute(
        self,
        url: str,
        context: str,
        compute: Callable[[], Awaitable[List[OcrResult]]],
        *,
        persist: bool = True,
    ) -> List[OcrResult]:
        """Cached regions for ``url``, computing them at most once at a time.

        Concurrent callers for the same uncached URL share one computation. A
        failed computation is not cached; the next caller starts a fresh one.
        With ``persist=False`` the result is only kept in memory and the caller
        owns the next :meth:`save`.
        """
        hit = self.get(url)
        if hit is not None:
            return hit

        fut = self._inflight.get(url)
        if fut is None:
            fut = asyncio.ensure_future(self._compute_and_store(url, context, compute, persist))
            self._inflight[url] = fut

            def _done(f: "asyncio.Future[List[OcrResult]]") -> None:
                if self._inflight.get(url) is f:
                    del self._inflight[url]

            fut.add_done_callback(_done)

        return await asyncio.shield(fut)

    async def _compute_and_store(
        self,
        url: str,
        context: str,
        compute: Callable[[], Awaitable[List[OcrResult]]],
        persist: bool,
    ) -> List[OcrResult]:
        regions = await compute()
        self.put(url, context, regions)
        if persist:
            await self.save()
        return regions
