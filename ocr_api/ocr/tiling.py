from __future__ import annotations

from dataclasses import dataclass, replace
from io import BytesIO
from typing import Iterator, List, Tuple

from PIL import Image, ImageFile, UnidentifiedImageError

from ..errors import DecodeFailure
from .schema import BoundingBox, OcrResult

ImageFile.LOAD_TRUNCATED_IMAGES = True

MAX_CHUNK_HEIGHT = 3000


@dataclass(frozen=True)
class Chunk:
    y_offset: int
    height: int
    png: bytes


def load_image(image_bytes: bytes) -> Image.Image:
    try:
        im = Image.open(BytesIO(image_bytes))
        im.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeFailure(f"Failed to decode image: {e}") from e
    if im.mode not in ("RGB", "RGBA", "L"):
        im = im.convert("RGBA" if "A" in im.getbands() else "RGB")
    return im


def encode_png(im: Image.Image) -> bytes:
    buf = BytesIO()
    im.save(buf, format="PNG")
    return buf.getvalue()


def chunk_bounds(height: int, max_chunk_height: int = MAX_CHUNK_HEIGHT) -> List[Tuple[int, int]]:
    """(y_offset, chunk_height) strips covering [0, height) without gaps or overlap."""
    return [(y, min(max_chunk_height, height - y)) for y in range(0, height, max_chunk_height)]


def iter_chunks(im: Image.Image, max_chunk_height: int = MAX_CHUNK_HEIGHT) -> Iterator[Chunk]:
    width, height = im.size
    for y_offset, chunk_height in chunk_bounds(height, max_chunk_height):
        if chunk_height == height:
            strip = im
        else:
            strip = im.crop((0, y_offset, width, y_offset + chunk_height))
        yield Chunk(y_offset=y_offset, height=chunk_height, png=encode_png(strip))


def remap_to_image(result: OcrResult, y_offset: int, chunk_height: int, full_height: int) -> OcrResult:
    """Chunk-local fractions -> whole-image fractions. Chunks span the full width, so x is untouched."""
    b = result.tight_bounding_box
    box = BoundingBox(
        x=b.x,
        y=(b.y * chunk_height + y_offset) / full_height,
        width=b.width,
        height=(b.height * chunk_height) / full_height,
    )
    return replace(result, tight_bounding_box=box)
