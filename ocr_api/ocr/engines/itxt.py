from abc import ABC, abstractmethod
from io import BytesIO
from typing import List

import numpy as np
from PIL import Image

from ..schema import Segment


class ITxtDetector(ABC):
    """Text-detection capability: encoded image in, center-based line segments out."""

    name = "abstract"

    def detect(self, image_png: bytes) -> List[Segment]:
        rgb = np.asarray(Image.open(BytesIO(image_png)).convert("RGB"))
        return self.run(rgb)

    @abstractmethod
    def run(self, rgb: np.ndarray) -> List[Segment]:
        ...


def segment_from_pixels(text: str, x0: float, y0: float, x1: float, y1: float, width: int, height: int) -> Segment:
    """Pixel corner box -> fractional center box of a ``width`` x ``height`` image."""
    return Segment(
        text=text,
        center_x=(x0 + x1) / 2 / width,
        center_y=(y0 + y1) / 2 / height,
        width=(x1 - x0) / width,
        height=(y1 - y0) / height,
    )
