from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class BoundingBox:
    # fractions of the current image or chunk; x,y = top-left
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "BoundingBox":
        return BoundingBox(
            x=float(d["x"]),
            y=float(d["y"]),
            width=float(d["width"]),
            height=float(d["height"]),
        )


@dataclass(frozen=True)
class Segment:
    """Raw detector output: center-based box, fractions of the submitted image."""

    text: str
    center_x: float
    center_y: float
    width: float
    height: float

    def to_line(self) -> "OcrResult":
        return OcrResult(
            text=self.text,
            tight_bounding_box=BoundingBox(
                x=self.center_x - self.width / 2,
                y=self.center_y - self.height / 2,
                width=self.width,
                height=self.height,
            ),
        )


@dataclass(frozen=True)
class OcrResult:
    """One detected line, or a merged region when ``is_merged`` is set."""

    text: str
    tight_bounding_box: BoundingBox
    is_merged: Optional[bool] = None
    forced_orientation: Optional[str] = None  # vertical | horizontal

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "text": self.text,
            "tightBoundingBox": self.tight_bounding_box.to_dict(),
        }
        if self.is_merged is not None:
            out["isMerged"] = self.is_merged
        if self.forced_orientation is not None:
            out["forcedOrientation"] = self.forced_orientation
        return out

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "OcrResult":
        return OcrResult(
            text=str(d.get("text", "")),
            tight_bounding_box=BoundingBox.from_dict(d["tightBoundingBox"]),
            is_merged=d.get("isMerged"),
            forced_orientation=d.get("forcedOrientation"),
        )


def results_to_json(results: List[OcrResult]) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in results]
