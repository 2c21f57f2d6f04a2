from __future__ import annotations


class OcrError(Exception):
    """Base for failures surfaced by the OCR pipeline."""

    status_code = 500


class InvalidRequest(OcrError):
    status_code = 400


class FetchFailure(OcrError):
    pass


class DecodeFailure(OcrError):
    pass


class DetectionFailure(OcrError):
    pass


class CachePersistenceFailure(OcrError):
    # logged by the cache, never returned to a client
    pass
