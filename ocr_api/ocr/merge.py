"""Geometric auto-merge of detected text lines.

Turns many small line detections into paragraph/column level regions:

  normalize -> classify -> robust medians -> pairwise gates + union-find -> merge

All thresholds are expressed in a unit space where the image width is 1000,
so the same configuration works for any input resolution.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .schema import BoundingBox, OcrResult

NORM_WIDTH = 1000.0
# Lines of a taller image are clustered in windows of at most this many pixels.
CHUNK_MAX_HEIGHT = 3000.0
DEFAULT_FONT_SIZE = 20.0

ZERO_WIDTH_SPACE = "\u200b"


@dataclass(frozen=True)
class MergeConfig:
    enabled: bool = True
    dist_k: float = 1.2
    font_ratio: float = 1.3
    perp_tol: float = 0.5  # kept for settings compatibility; not consulted
    overlap_min: float = 0.1
    min_line_ratio: float = 0.5
    font_ratio_for_mixed: float = 1.1
    mixed_min_overlap_ratio: float = 0.5
    add_space_on_merge: bool = False


@dataclass(frozen=True)
class NormBox:
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


@dataclass(frozen=True)
class ProcessedLine:
    original_index: int
    is_vertical: bool
    font_size: float
    bbox: NormBox
    pixel_top: float
    pixel_bottom: float


class UnionFind:
    """Disjoint sets over 0..size-1 as flat parent/rank lists."""

    def __init__(self, size: int) -> None:
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, i: int) -> int:
        root = i
        while self.parent[root] != root:
            root = self.parent[root]
        # path compression
        while self.parent[i] != root:
            nxt = self.parent[i]
            self.parent[i] = root
            i = nxt
        return root

    def union(self, i: int, j: int) -> bool:
        root_i = self.find(i)
        root_j = self.find(j)
        if root_i == root_j:
            return False
        if self.rank[root_i] > self.rank[root_j]:
            self.parent[root_j] = root_i
        elif self.rank[root_i] < self.rank[root_j]:
            self.parent[root_i] = root_j
        else:
            self.parent[root_j] = root_i
            self.rank[root_i] += 1
        return True


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(np.median(np.asarray(values, dtype=float)))


def classify_line(width: float, height: float) -> Tuple[bool, float]:
    """Return (is_vertical, font_size) for a normalized box."""
    is_vertical = width <= height
    return is_vertical, (width if is_vertical else height)


def normalize_lines(
    lines: Sequence[OcrResult], natural_width: float, natural_height: float
) -> List[ProcessedLine]:
    norm_scale = NORM_WIDTH / natural_width
    out: List[ProcessedLine] = []
    for idx, line in enumerate(lines):
        b = line.tight_bounding_box
        nb = NormBox(
            x=b.x * natural_width * norm_scale,
            y=b.y * natural_height * norm_scale,
            width=b.width * natural_width * norm_scale,
            height=b.height * natural_height * norm_scale,
        )
        is_vertical, font_size = classify_line(nb.width, nb.height)
        out.append(
            ProcessedLine(
                original_index=idx,
                is_vertical=is_vertical,
                font_size=font_size,
                bbox=nb,
                pixel_top=b.y * natural_height,
                pixel_bottom=(b.y + b.height) * natural_height,
            )
        )
    return out


def robust_median(sizes: Sequence[float], min_line_ratio: float) -> float:
    """Median over primary lines only, so furigana-scale glyphs do not drag it down."""
    initial = median(sizes)
    primary = [s for s in sizes if s >= initial * min_line_ratio]
    return median(primary) or initial or DEFAULT_FONT_SIZE


def orientation_medians(lines: Sequence[ProcessedLine], config: MergeConfig) -> Dict[bool, float]:
    """Robust median font size keyed by ``is_vertical``."""
    return {
        vertical: robust_median(
            [ln.font_size for ln in lines if ln.is_vertical == vertical],
            config.min_line_ratio,
        )
        for vertical in (True, False)
    }


def _span_gap(a0: float, a1: float, b0: float, b1: float) -> float:
    return max(0.0, max(a0, b0) - min(a1, b1))


def _span_overlap(a0: float, a1: float, b0: float, b1: float) -> float:
    return max(0.0, min(a1, b1) - max(a0, b0))


def can_merge(
    a: ProcessedLine,
    b: ProcessedLine,
    medians: Dict[bool, float],
    config: MergeConfig,
) -> bool:
    """Pairwise affinity test between two lines of one clustering pass."""
    if a.is_vertical != b.is_vertical:
        return False

    median_size = medians[a.is_vertical]
    min_primary = median_size * config.min_line_ratio
    mixed = (a.font_size >= min_primary) != (b.font_size >= min_primary)

    ratio_threshold = config.font_ratio_for_mixed if mixed else config.font_ratio
    if a.font_size <= 0 or b.font_size <= 0:
        return False
    font_ratio = max(a.font_size / b.font_size, b.font_size / a.font_size)
    if font_ratio > ratio_threshold:
        return False

    ba, bb = a.bbox, b.bbox
    if a.is_vertical:
        gap = _span_gap(ba.x, ba.right, bb.x, bb.right)
        overlap = _span_overlap(ba.y, ba.bottom, bb.y, bb.bottom)
        smaller_perp = min(ba.height, bb.height)
    else:
        gap = _span_gap(ba.y, ba.bottom, bb.y, bb.bottom)
        overlap = _span_overlap(ba.x, ba.right, bb.x, bb.right)
        smaller_perp = min(ba.width, bb.width)

    if gap > median_size * config.dist_k:
        return False

    if smaller_perp > 0:
        overlap_ratio = overlap / smaller_perp
        if overlap_ratio < config.overlap_min:
            return False
        if mixed and overlap_ratio < config.mixed_min_overlap_ratio:
            return False

    return True


def _windows(ordered: List[ProcessedLine], natural_height: float) -> List[List[ProcessedLine]]:
    if natural_height <= CHUNK_MAX_HEIGHT:
        return [ordered]

    out: List[List[ProcessedLine]] = []
    start = 0
    while start < len(ordered):
        top = ordered[start].pixel_top
        end = start
        for i in range(start + 1, len(ordered)):
            if ordered[i].pixel_bottom - top <= CHUNK_MAX_HEIGHT:
                end = i
            else:
                break
        out.append(ordered[start : end + 1])
        start = end + 1
    return out


def cluster_lines(
    processed: Sequence[ProcessedLine], natural_height: float, config: MergeConfig
) -> List[List[ProcessedLine]]:
    """Partition lines into groups; groups come out in top-to-bottom order of their first line."""
    ordered = sorted(processed, key=lambda ln: ln.pixel_top)

    groups: List[List[ProcessedLine]] = []
    for window in _windows(ordered, natural_height):
        uf = UnionFind(len(window))
        medians = orientation_medians(window, config)

        for i in range(len(window)):
            for j in range(i + 1, len(window)):
                if can_merge(window[i], window[j], medians, config):
                    uf.union(i, j)

        by_root: Dict[int, List[ProcessedLine]] = {}
        for i, ln in enumerate(window):
            by_root.setdefault(uf.find(i), []).append(ln)
        groups.extend(by_root.values())

    return groups


def _center(b: BoundingBox) -> Tuple[float, float]:
    return b.x + b.width / 2, b.y + b.height / 2


def merge_group(members: Sequence[OcrResult], verticals: Sequence[bool], config: MergeConfig) -> OcrResult:
    """Build one region from >=2 lines: majority orientation, reading order, box union."""
    vertical_count = sum(1 for v in verticals if v)
    is_vertical_group = vertical_count > len(members) / 2

    if is_vertical_group:
        # columns right-to-left, then top-to-bottom
        def key(ln: OcrResult) -> Tuple[float, float]:
            cx, cy = _center(ln.tight_bounding_box)
            return -cx, cy
    else:
        def key(ln: OcrResult) -> Tuple[float, float]:
            cx, cy = _center(ln.tight_bounding_box)
            return cy, cx

    ordered = sorted(members, key=key)
    joiner = " " if config.add_space_on_merge else ZERO_WIDTH_SPACE
    text = joiner.join(ln.text for ln in ordered)

    boxes = [ln.tight_bounding_box for ln in ordered]
    min_x = min(b.x for b in boxes)
    min_y = min(b.y for b in boxes)
    max_r = max(b.right for b in boxes)
    max_b = max(b.bottom for b in boxes)

    return OcrResult(
        text=text,
        is_merged=True,
        forced_orientation="vertical" if is_vertical_group else "horizontal",
        tight_bounding_box=BoundingBox(x=min_x, y=min_y, width=max_r - min_x, height=max_b - min_y),
    )


def auto_merge(
    lines: Sequence[OcrResult],
    natural_width: float,
    natural_height: float,
    config: MergeConfig | None = None,
) -> List[OcrResult]:
    """Merge the lines detected on one image (or chunk) of the given pixel size."""
    config = config or MergeConfig()
    if not config.enabled or len(lines) < 2 or not natural_width or not natural_height:
        return list(lines)

    processed = normalize_lines(lines, natural_width, natural_height)
    out: List[OcrResult] = []
    for group in cluster_lines(processed, natural_height, config):
        if len(group) == 1:
            out.append(lines[group[0].original_index])
            continue
        members = [lines[ln.original_index] for ln in group]
        out.append(merge_group(members, [ln.is_vertical for ln in group], config))
    return out
