import threading
import time
from io import BytesIO
from typing import List, Optional

import pytest
from PIL import Image

from ocr_api.ocr.engines import ITxtDetector
from ocr_api.ocr.schema import Segment


def png_bytes(width: int, height: int, color=(255, 255, 255)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeDetector(ITxtDetector):
    """Returns canned segments per call and records the size of every image it sees."""

    name = "fake"

    def __init__(
        self,
        responses: Optional[List[List[Segment]]] = None,
        error: Optional[Exception] = None,
        fail_on_call: Optional[int] = None,
        delay: float = 0.0,
    ):
        self.responses = responses or []
        self.error = error
        self.fail_on_call = fail_on_call
        self.delay = delay
        self.calls = []
        self.threads = []

    def detect(self, image_png: bytes) -> List[Segment]:
        self.calls.append(Image.open(BytesIO(image_png)).size)
        self.threads.append(threading.current_thread().name)
        n = len(self.calls)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None and (self.fail_on_call is None or self.fail_on_call == n):
            raise self.error
        if not self.responses:
            return []
        return self.responses[min(n, len(self.responses)) - 1]

    def run(self, rgb):
        return []


@pytest.fixture
def make_png():
    return png_bytes


@pytest.fixture
def fake_detector():
    return FakeDetector
