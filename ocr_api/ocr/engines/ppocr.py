from typing import List

import numpy as np
from rapidocr_onnxruntime import RapidOCR

from ..schema import Segment
from .itxt import ITxtDetector, segment_from_pixels


class PPOCRDetector(ITxtDetector):
    name = "rapidocr"

    def __init__(self):
        # Downloads tiny models on first use; keep one instance
        self.ocr = RapidOCR()

    def run(self, rgb: np.ndarray) -> List[Segment]:
        h, w = rgb.shape[:2]
        # RapidOCR reads ndarrays as BGR, the OpenCV channel order
        bgr = np.ascontiguousarray(rgb[:, :, ::-1])
        result, _elapse = self.ocr(bgr)  # None when nothing is found
        out: List[Segment] = []
        for box, text, _score in result or []:
            if not text:
                continue
            xs = [float(p[0]) for p in box]
            ys = [float(p[1]) for p in box]
            out.append(segment_from_pixels(text, min(xs), min(ys), max(xs), max(ys), w, h))
        return out
