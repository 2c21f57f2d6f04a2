import asyncio
import json
import logging
import time

import pytest

from ocr_api.cache import CACHE_FILE_NAME, CacheEntry, ResultCache
from ocr_api.ocr.schema import BoundingBox, OcrResult


def _region(text="hello"):
    return OcrResult(text=text, tight_bounding_box=BoundingBox(x=0.1, y=0.2, width=0.3, height=0.04))


def test_put_get_roundtrip_and_purge(tmp_path):
    cache = ResultCache(str(tmp_path))
    assert cache.get("http://x/img.png") is None

    cache.put("http://x/img.png", "ctx", [_region()])
    cache.put("http://x/other.png", "ctx", [])
    assert not (tmp_path / CACHE_FILE_NAME).exists()
    assert cache.get("http://x/img.png") == [_region()]
    assert len(cache) == 2

    assert asyncio.run(cache.purge()) == 2
    assert cache.get("http://x/img.png") is None
    assert len(cache) == 0
    assert json.loads((tmp_path / CACHE_FILE_NAME).read_text(encoding="utf-8")) == {}


def test_keys_are_not_canonicalized(tmp_path):
    cache = ResultCache(str(tmp_path))
    cache.put("http://x/img.png?a=1&b=2", "ctx", [_region()])
    assert cache.get("http://x/img.png?b=2&a=1") is None


def test_cache_survives_restart(tmp_path):
    cache = ResultCache(str(tmp_path))
    merged = OcrResult(
        text="a\u200bb",
        tight_bounding_box=BoundingBox(x=0.0, y=0.0, width=1.0, height=0.5),
        is_merged=True,
        forced_orientation="vertical",
    )
    cache.put("u", "chapter 1", [_region(), merged])
    assert asyncio.run(cache.save())

    on_disk = json.loads((tmp_path / CACHE_FILE_NAME).read_text(encoding="utf-8"))
    assert on_disk["u"]["context"] == "chapter 1"
    assert on_disk["u"]["data"][1]["forcedOrientation"] == "vertical"
    assert "isMerged" not in on_disk["u"]["data"][0]

    reloaded = ResultCache(str(tmp_path))
    assert reloaded.load() == 1
    assert reloaded.get("u") == [_region(), merged]


def test_load_accepts_bare_region_lists(tmp_path):
    data = {"u": [{"text": "t", "tightBoundingBox": {"x": 0, "y": 0, "width": 1, "height": 1}}]}
    (tmp_path / CACHE_FILE_NAME).write_text(json.dumps(data), encoding="utf-8")
    cache = ResultCache(str(tmp_path))
    assert cache.load() == 1
    assert cache.get("u")[0].text == "t"


def test_corrupt_file_starts_empty(tmp_path, caplog):
    (tmp_path / CACHE_FILE_NAME).write_text("{not json", encoding="utf-8")
    cache = ResultCache(str(tmp_path))
    with caplog.at_level(logging.WARNING, logger="ocr_api"):
        assert cache.load() == 0
    assert len(cache) == 0
    assert "Error loading cache" in caplog.text


def test_write_failure_is_logged_not_raised(tmp_path, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    cache = ResultCache(str(blocker))
    with caplog.at_level(logging.ERROR, logger="ocr_api"):
        cache.put("u", "ctx", [_region()])
        assert asyncio.run(cache.save()) is False
    assert cache.get("u") == [_region()]
    assert "Error saving cache" in caplog.text


def test_import_only_adds_missing_keys(tmp_path):
    cache = ResultCache(str(tmp_path))
    cache.put("a", "mine", [_region("mine")])
    added = asyncio.run(
        cache.import_entries(
            {
                "a": CacheEntry(context="theirs", data=[_region("theirs")]),
                "b": CacheEntry(context="theirs", data=[_region("new")]),
            }
        )
    )
    assert added == 1
    assert cache.get("a")[0].text == "mine"
    assert cache.get("b")[0].text == "new"
    assert set(cache.export()) == {"a", "b"}
    assert set(json.loads((tmp_path / CACHE_FILE_NAME).read_text(encoding="utf-8"))) == {"a", "b"}


def test_concurrent_requests_share_one_computation(tmp_path):
    cache = ResultCache(str(tmp_path))
    calls = []

    async def compute():
        calls.append(1)
        await asyncio.sleep(0.05)
        return [_region()]

    async def main():
        return await asyncio.gather(*(cache.get_or_compute("u", "ctx", compute) for _ in range(5)))

    results = asyncio.run(main())
    assert len(calls) == 1
    assert all(r == [_region()] for r in results)
    assert cache.get("u") == [_region()]
    assert not cache.inflight("u")


def test_failed_computation_is_not_cached(tmp_path):
    cache = ResultCache(str(tmp_path))
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("boom")
        return [_region()]

    async def main():
        with pytest.raises(RuntimeError):
            await cache.get_or_compute("u", "ctx", flaky)
        assert cache.get("u") is None
        return await cache.get_or_compute("u", "ctx", flaky)

    assert asyncio.run(main()) == [_region()]
    assert len(attempts) == 2


def test_computed_result_is_saved_unless_deferred(tmp_path):
    cache = ResultCache(str(tmp_path))

    async def compute():
        return [_region()]

    async def main():
        await cache.get_or_compute("deferred", "ctx", compute, persist=False)
        assert not (tmp_path / CACHE_FILE_NAME).exists()
        await cache.get_or_compute("saved", "ctx", compute)

    asyncio.run(main())
    on_disk = json.loads((tmp_path / CACHE_FILE_NAME).read_text(encoding="utf-8"))
    assert set(on_disk) == {"deferred", "saved"}


def test_saves_are_serialized(tmp_path, monkeypatch):
    cache = ResultCache(str(tmp_path))
    cache.put("u", "ctx", [_region()])
    active = []
    overlaps = []
    real_write = cache._write

    def slow_write(payload):
        active.append(1)
        if len(active) > 1:
            overlaps.append(1)
        time.sleep(0.02)
        real_write(payload)
        active.pop()

    monkeypatch.setattr(cache, "_write", slow_write)

    async def main():
        return await asyncio.gather(cache.save(), cache.save(), cache.save(wait=False))

    assert asyncio.run(main()) == [True, True, False]
    assert overlaps == []
    assert not (tmp_path / (CACHE_FILE_NAME + ".tmp")).exists()
