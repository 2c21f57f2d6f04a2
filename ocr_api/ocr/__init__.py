"""OCR pipeline: tiling, text detection engines and line auto-merge."""

from .merge import MergeConfig, auto_merge
from .router import extract_regions
from .schema import BoundingBox, OcrResult, Segment

__all__ = [
    "BoundingBox",
    "MergeConfig",
    "OcrResult",
    "Segment",
    "auto_merge",
    "extract_regions",
]
