from typing import Optional
from .itxt import ITxtDetector, segment_from_pixels
from .tess import TesseractDetector
try:
    from .ppocr import PPOCRDetector  # optional
except Exception:  # pragma: no cover
    PPOCRDetector = None  # type: ignore

def make_detector(name: Optional[str]) -> ITxtDetector:
    """
    Factory. Supported names:
      - 'rapidocr' / 'ppocr' / 'paddle' (default, requires rapidocr_onnxruntime)
      - 'tesseract'
    """
    n = (name or "rapidocr").strip().lower()
    if n == "tesseract":
        return TesseractDetector()
    if n in ("rapidocr", "ppocr", "paddle", "auto"):
        if PPOCRDetector is None:
            raise RuntimeError("RapidOCR engine not available")
        return PPOCRDetector()
    raise ValueError(f"Unknown OCR engine: {name!r}")

__all__ = [
    "ITxtDetector",
    "TesseractDetector",
    "PPOCRDetector",
    "make_detector",
    "segment_from_pixels",
]
