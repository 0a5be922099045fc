"""Raster header parsing, data references and EMU sizing."""

from __future__ import annotations

import base64
import struct
from typing import Optional, Tuple

from .models import SizeSpec

EMU_PER_INCH = 914400
ASSUMED_DPI = 96
EMU_PER_PIXEL = EMU_PER_INCH // ASSUMED_DPI

# 6.5 inches: letter page minus one-inch margins.
MAX_WIDTH_EMU = 5943600
DEFAULT_VECTOR_SIZE = SizeSpec(width=5486400, height=3200400)
DEFAULT_RASTER_PIXELS = (800, 600)

PNG_DATA_PREFIX = "data:image/png;base64,"
SVG_DATA_PREFIX = "data:image/svg+xml;base64,"
SVG_EXTENSION = ".svg"


def get_png_dimensions(data: bytes) -> Tuple[int, int]:
    # 8-byte signature, then IHDR: length(4) + type(4) + width(4) + height(4).
    if len(data) < 24:
        return DEFAULT_RASTER_PIXELS
    width, height = struct.unpack(">II", data[16:24])
    return width, height


def pixels_to_emu(pixels: int) -> int:
    return pixels * EMU_PER_PIXEL


def fit_to_max_width(width: int, height: int, max_width: int = MAX_WIDTH_EMU) -> SizeSpec:
    if width <= max_width:
        return SizeSpec(width=width, height=height)
    return SizeSpec(width=max_width, height=round(height * max_width / width))


def raster_size(data: bytes, max_width: int = MAX_WIDTH_EMU) -> SizeSpec:
    width_px, height_px = get_png_dimensions(data)
    return fit_to_max_width(pixels_to_emu(width_px), pixels_to_emu(height_px), max_width)


def encode_svg_data_uri(svg: str) -> str:
    return SVG_DATA_PREFIX + base64.b64encode(svg.encode("utf-8")).decode("ascii")


def decode_data_uri(src: str, prefix: str) -> bytes:
    if not src.startswith(prefix):
        raise ValueError(f"Not a {prefix.rstrip(',')} reference")
    return base64.b64decode(src[len(prefix) :], validate=True)


def decode_raster(raster_b64: Optional[str]) -> Optional[bytes]:
    """Decode a stored base64 raster, accepting a bare payload or a PNG data URI."""
    if not raster_b64:
        return None
    payload = raster_b64[len(PNG_DATA_PREFIX) :] if raster_b64.startswith(PNG_DATA_PREFIX) else raster_b64
    return base64.b64decode(payload)


def is_linked_vector(src: str) -> bool:
    return src.lower().endswith(SVG_EXTENSION) and not src.startswith("data:")


def encode_png_data_uri(raster_b64: str) -> str:
    if raster_b64.startswith(PNG_DATA_PREFIX):
        return raster_b64
    return PNG_DATA_PREFIX + raster_b64
