"""
Image Sniffer
Reads native pixel dimensions straight from raster image headers.
"""
import struct
from typing import Tuple

import structlog

from app.models.schemas import FALLBACK_DIMENSIONS, MimeClass

logger = structlog.get_logger()

MIN_HEADER_BYTES = 24
MAX_DIMENSION = 10000

# Start-of-frame markers: baseline and progressive
JPEG_SOF_MARKERS = {0xC0, 0xC2}


def _valid(width: int, height: int) -> bool:
    return 0 < width < MAX_DIMENSION and 0 < height < MAX_DIMENSION


def _png_size(data: bytes) -> Tuple[int, int]:
    # IHDR chunk: width and height follow the signature and chunk header
    return struct.unpack(">II", data[16:24])


def _gif_size(data: bytes) -> Tuple[int, int]:
    return struct.unpack("<HH", data[6:10])


def _jpeg_size(data: bytes) -> Tuple[int, int]:
    offset = 2
    while offset < len(data) - 10:
        if data[offset] != 0xFF:
            break
        marker = data[offset + 1]
        (segment_length,) = struct.unpack(">H", data[offset + 2:offset + 4])
        if marker in JPEG_SOF_MARKERS:
            height, width = struct.unpack(">HH", data[offset + 5:offset + 9])
            if _valid(width, height):
                return width, height
        offset += segment_length + 2
    return FALLBACK_DIMENSIONS


def get_image_dimensions(data: bytes, mime_class: MimeClass) -> Tuple[int, int]:
    """
    Get (width, height) of an image without decoding it.

    Args:
        data: Raw image bytes
        mime_class: Declared image format

    Returns:
        Native dimensions, or (600, 400) when the header is missing,
        truncated or out of range. Never raises.
    """
    if not data or len(data) < MIN_HEADER_BYTES:
        logger.warning("Image buffer too small for header", size=len(data or b""))
        return FALLBACK_DIMENSIONS

    try:
        if mime_class == MimeClass.PNG:
            width, height = _png_size(data)
        elif mime_class == MimeClass.JPEG:
            width, height = _jpeg_size(data)
        elif mime_class == MimeClass.GIF:
            width, height = _gif_size(data)
        else:
            return FALLBACK_DIMENSIONS
    except (struct.error, IndexError) as e:
        logger.warning("Could not read image dimensions", error=str(e))
        return FALLBACK_DIMENSIONS

    if _valid(width, height):
        return width, height
    return FALLBACK_DIMENSIONS
