import asyncio
import json

from ocr_api.cache import CACHE_FILE_NAME, ResultCache
from ocr_api.config import Settings
from ocr_api.jobs import SAVE_EVERY, ChapterJobs
from ocr_api.ocr.schema import BoundingBox, OcrResult
from ocr_api.service import OcrService


def _service(tmp_path, fake_detector, monkeypatch, fail=()):
    cache = ResultCache(str(tmp_path))
    service = OcrService(Settings(cache_path=str(tmp_path)), cache, detector=fake_detector())

    async def process(url, user=None, password=None):
        await asyncio.sleep(0.001)
        if url in fail:
            raise RuntimeError("page gone")
        return [OcrResult(text=url, tight_bounding_box=BoundingBox(x=0, y=0, width=1, height=1))]

    monkeypatch.setattr(service, "process", process)

    writes = []
    real_write = cache._write

    def counting_write(payload):
        writes.append(len(payload))
        real_write(payload)

    monkeypatch.setattr(cache, "_write", counting_write)
    return service, writes


def test_job_saves_cache_in_batches(tmp_path, fake_detector, monkeypatch):
    service, writes = _service(tmp_path, fake_detector, monkeypatch)
    pages = [f"http://img.test/ch/{i}" for i in range(20)]

    asyncio.run(ChapterJobs(service, concurrency=6).run("http://img.test/ch/", pages, context="ch"))

    assert len(service.cache) == 20
    assert 1 <= len(writes) <= 20 // SAVE_EVERY + 1
    # the last write happens after every page is in memory
    assert writes[-1] == 20
    on_disk = json.loads((tmp_path / CACHE_FILE_NAME).read_text(encoding="utf-8"))
    assert len(on_disk) == 20


def test_job_over_cached_pages_does_not_rewrite(tmp_path, fake_detector, monkeypatch):
    service, writes = _service(tmp_path, fake_detector, monkeypatch)
    pages = [f"http://img.test/ch/{i}" for i in range(3)]
    for p in pages:
        service.cache.put(p, "ch", [])

    jobs = ChapterJobs(service)
    asyncio.run(jobs.run("http://img.test/ch/", pages, context="ch"))

    assert writes == []
    assert jobs.active_jobs == 0


def test_job_failures_are_skipped_and_progress_cleared(tmp_path, fake_detector, monkeypatch):
    pages = [f"http://img.test/ch/{i}" for i in range(4)]
    service, writes = _service(tmp_path, fake_detector, monkeypatch, fail={pages[2]})
    jobs = ChapterJobs(service, concurrency=2)

    async def main():
        task = jobs.start("http://img.test/ch/", pages, context="ch")
        assert jobs.is_running("http://img.test/ch/")
        assert jobs.progress("http://img.test/ch/").total == 4
        await task

    asyncio.run(main())
    assert pages[2] not in service.cache
    assert len(service.cache) == 3
    assert writes == [3]
    assert not jobs.is_running("http://img.test/ch/")
