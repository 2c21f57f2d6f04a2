from __future__ import annotations

import os
from dataclasses import dataclass, field

from .ocr.merge import MergeConfig


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def merge_config_from_env() -> MergeConfig:
    d = MergeConfig()
    return MergeConfig(
        enabled=_get_bool("OCR_MERGE_ENABLED", d.enabled),
        dist_k=_get_float("OCR_MERGE_DIST_K", d.dist_k),
        font_ratio=_get_float("OCR_MERGE_FONT_RATIO", d.font_ratio),
        perp_tol=_get_float("OCR_MERGE_PERP_TOL", d.perp_tol),
        overlap_min=_get_float("OCR_MERGE_OVERLAP_MIN", d.overlap_min),
        min_line_ratio=_get_float("OCR_MERGE_MIN_LINE_RATIO", d.min_line_ratio),
        font_ratio_for_mixed=_get_float("OCR_MERGE_FONT_RATIO_FOR_MIXED", d.font_ratio_for_mixed),
        mixed_min_overlap_ratio=_get_float("OCR_MERGE_MIXED_MIN_OVERLAP_RATIO", d.mixed_min_overlap_ratio),
        add_space_on_merge=_get_bool("OCR_MERGE_ADD_SPACE", d.add_space_on_merge),
    )


@dataclass(frozen=True)
class Settings:
    # Bind
    host: str = "127.0.0.1"
    port: int = 3000

    # Directory holding ocr-cache.json
    cache_path: str = "."

    # OCR
    ocr_engine: str = "rapidocr"  # rapidocr | tesseract
    detect_timeout_seconds: float = 60.0
    fetch_timeout_seconds: float = 30.0
    max_chunk_height: int = 3000
    # Threads reserved for text detection; a timed-out call holds one until it returns
    detect_workers: int = 4

    # Chapter preprocessing: pages in flight per job
    job_concurrency: int = 6

    merge: MergeConfig = field(default_factory=MergeConfig)

    # General
    environment: str = "stage"

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            host=(os.getenv("OCR_HOST") or "127.0.0.1").strip(),
            port=_get_int("OCR_PORT", 3000),
            cache_path=(os.getenv("OCR_CACHE_PATH") or os.getcwd()).strip(),
            ocr_engine=(os.getenv("OCR_ENGINE") or "rapidocr").strip().lower(),
            detect_timeout_seconds=_get_float("OCR_DETECT_TIMEOUT_SECONDS", 60.0),
            fetch_timeout_seconds=_get_float("OCR_FETCH_TIMEOUT_SECONDS", 30.0),
            max_chunk_height=_get_int("OCR_MAX_CHUNK_HEIGHT", 3000),
            detect_workers=max(1, _get_int("OCR_DETECT_WORKERS", 4)),
            job_concurrency=max(1, _get_int("OCR_JOB_CONCURRENCY", 6)),
            merge=merge_config_from_env(),
            environment=(os.getenv("ENVIRONMENT") or os.getenv("ENV") or "stage").strip() or "stage",
        )
