import os
from typing import Dict, List, Tuple

import numpy as np

import pytesseract
from pytesseract import Output  # type: ignore

from ..schema import Segment
from .itxt import ITxtDetector, segment_from_pixels

# Allow override on Windows (desktop dev)
if os.name == "nt":
    tpath = os.getenv("TESSERACT_PATH")
    if tpath and os.path.exists(tpath):
        pytesseract.pytesseract.tesseract_cmd = tpath


def _cfg(psm: int = 3) -> str:
    # psm 3 = automatic page segmentation; lines are regrouped from tokens below.
    return f"--oem 1 --psm {psm} -c preserve_interword_spaces=1"


def _safe_float(x) -> float:
    try:
        return float(x)
    except Exception:
        return float("nan")


def _group_tokens(data: Dict[str, List], width: int, height: int, min_conf: float = 0.0) -> List[Segment]:
    """
    Group image_to_data tokens back into lines using (block_num, par_num, line_num).
    Returns one Segment per line with the line bbox over its tokens.
    """
    n = len(data.get("text", []))
    groups: Dict[Tuple[int, int, int], List[int]] = {}

    for i in range(n):
        txt = (data["text"][i] or "").strip()
        if not txt:
            continue
        conf_raw = _safe_float(data.get("conf", ["-1"])[i])
        if np.isnan(conf_raw) or conf_raw < 0:
            continue
        if conf_raw / 100.0 < min_conf:
            continue

        key = (
            int(data.get("block_num", [0])[i]),
            int(data.get("par_num", [0])[i]),
            int(data.get("line_num", [0])[i]),
        )
        groups.setdefault(key, []).append(i)

    out: List[Segment] = []
    for key, idxs in groups.items():
        # preserve token order left->right
        idxs_sorted = sorted(idxs, key=lambda j: int(data.get("left", [0])[j]))
        toks = [str(data["text"][j]).strip() for j in idxs_sorted]

        lefts = [int(data["left"][j]) for j in idxs_sorted]
        tops = [int(data["top"][j]) for j in idxs_sorted]
        rights = [int(data["left"][j]) + int(data["width"][j]) for j in idxs_sorted]
        bottoms = [int(data["top"][j]) + int(data["height"][j]) for j in idxs_sorted]

        text = " ".join(toks)
        out.append(segment_from_pixels(text, min(lefts), min(tops), max(rights), max(bottoms), width, height))

    # top->bottom, then left->right
    out.sort(key=lambda s: (s.center_y - s.height / 2, s.center_x - s.width / 2))
    return out


class TesseractDetector(ITxtDetector):
    name = "tesseract"

    def __init__(self, lang: str = ""):
        self.lang = lang or os.getenv("TESSERACT_LANG", "eng")

    def run(self, rgb: np.ndarray) -> List[Segment]:
        h, w = rgb.shape[:2]
        data = pytesseract.image_to_data(rgb, lang=self.lang, output_type=Output.DICT, config=_cfg())
        return _group_tokens(data, w, h)
