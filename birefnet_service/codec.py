"""
Pixel buffer codec: oriented decoding into RGBA8 and lossless PNG encoding.

Buffers are `uint8` numpy arrays shaped (height, width, 4) with straight
(non-premultiplied) alpha. Orientation handling is a pure array transform so
it can be exercised without touching the filesystem.
"""

from __future__ import annotations

from io import BytesIO
import logging
from pathlib import Path
from typing import Callable, Dict, Tuple, Type, Union

import numpy as np
from PIL import Image

from .errors import BackgroundRemovalError, DecodeError, EncodeError

logger = logging.getLogger(__name__)

EXIF_ORIENTATION_TAG = 0x0112

PixelSource = Union[np.ndarray, bytes, bytearray, memoryview]


def pixel_view(
    buffer: PixelSource,
    width: int,
    height: int,
    channels: int,
    error_cls: Type[BackgroundRemovalError],
) -> np.ndarray:
    """
    Return `buffer` as a contiguous uint8 array shaped for the given geometry.

    Flat byte sequences and already shaped arrays are both accepted; the only
    requirement is that the element count matches width*height*channels.
    """
    if width <= 0 or height <= 0:
        raise error_cls()
    if isinstance(buffer, (bytes, bytearray, memoryview)):
        array = np.frombuffer(buffer, dtype=np.uint8)
    else:
        array = np.asarray(buffer)
        if array.dtype != np.uint8:
            raise error_cls()
    if array.size != width * height * channels:
        raise error_cls()
    shape = (height, width, channels) if channels > 1 else (height, width)
    return np.ascontiguousarray(array.reshape(shape))


_ORIENTATION_TRANSFORMS: Dict[int, Callable[[np.ndarray], np.ndarray]] = {
    2: np.fliplr,
    3: lambda a: np.rot90(a, 2),
    4: np.flipud,
    5: lambda a: np.swapaxes(a, 0, 1),
    6: lambda a: np.rot90(a, -1),
    7: lambda a: np.rot90(np.swapaxes(a, 0, 1), 2),
    8: lambda a: np.rot90(a, 1),
}


def apply_orientation(pixels: np.ndarray, tag: int) -> np.ndarray:
    """
    Map an EXIF orientation tag onto the pixel array so the result is upright.

    Tags 5-8 swap width and height. Tag 1 and unknown tags return a copy.
    """
    transform = _ORIENTATION_TRANSFORMS.get(tag)
    if transform is None:
        return np.array(pixels, copy=True)
    return np.ascontiguousarray(transform(pixels))


def read_orientation(image: Image.Image) -> int:
    """Return the EXIF orientation of `image`, or 1 when missing or unreadable."""
    try:
        value = image.getexif().get(EXIF_ORIENTATION_TAG, 1)
        tag = int(value)
    except Exception as exc:  # noqa: BLE001
        logger.debug("decode: ignoring unreadable EXIF orientation: %s", exc)
        return 1
    if tag < 1 or tag > 8:
        logger.debug("decode: ignoring out-of-range EXIF orientation %s", tag)
        return 1
    return tag


def _to_eight_bit(image: Image.Image) -> Image.Image:
    """Rescale 16-bit integer and float modes to 8-bit; Pillow would clip them."""
    if image.mode == "I" or image.mode.startswith("I;16"):
        values = np.array(image, dtype=np.int64)
        return Image.fromarray((np.clip(values, 0, 0xFFFF) >> 8).astype(np.uint8))
    if image.mode == "F":
        values = np.array(image, dtype=np.float32)
        scaled = np.floor(np.clip(values, 0.0, 1.0) * 255.0 + 0.5)
        return Image.fromarray(scaled.astype(np.uint8))
    return image


def decode_oriented(path: Union[str, Path]) -> Tuple[np.ndarray, int, int]:
    """
    Decode an image file into an upright RGBA8 buffer.

    Returns:
        (rgba, width, height) where rgba has shape (height, width, 4).

    Raises:
        DecodeError: when the file cannot be read or parsed as an image, or
            when either dimension is zero.
    """
    try:
        with Image.open(path) as image:
            image.load()
            orientation = read_orientation(image)
            rgba = np.array(_to_eight_bit(image).convert("RGBA"), dtype=np.uint8)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError() from exc

    if rgba.ndim != 3 or rgba.shape[0] == 0 or rgba.shape[1] == 0:
        raise DecodeError()

    if orientation != 1:
        logger.debug("decode: applying EXIF orientation %d", orientation)
        rgba = apply_orientation(rgba, orientation)

    height, width = rgba.shape[:2]
    return rgba, width, height


def encode_lossless_rgba(buffer: PixelSource, width: int, height: int) -> bytes:
    """
    Serialize an RGBA8 buffer to PNG, keeping every channel bit-exact.

    Raises:
        EncodeError: on a geometry mismatch or when the encoder rejects the buffer.
    """
    pixels = pixel_view(buffer, width, height, 4, EncodeError)
    try:
        image = Image.fromarray(pixels)
        buf = BytesIO()
        image.save(buf, format="PNG")
    except (OSError, ValueError, TypeError) as exc:
        raise EncodeError() from exc
    return buf.getvalue()
