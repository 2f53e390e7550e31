"""
High-quality 2-D resampling for RGBA images and single-channel masks.

Width and height scale independently: callers stretch straight to the target
geometry, there is no letterboxing. Sources are never modified.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

import cv2
import numpy as np

from .codec import PixelSource, pixel_view
from .errors import ResizeError

logger = logging.getLogger(__name__)


def _passes(src_w: int, src_h: int, dst_w: int, dst_h: int) -> List[Tuple[Tuple[int, int], int]]:
    """
    Plan the cv2.resize calls as ((width, height), interpolation) steps.

    Area averaging on shrinking axes, bicubic on growing ones. When the axes
    disagree the shrinking axis is resampled first, on its own.
    """
    if dst_w <= src_w and dst_h <= src_h:
        return [((dst_w, dst_h), cv2.INTER_AREA)]
    if dst_w >= src_w and dst_h >= src_h:
        return [((dst_w, dst_h), cv2.INTER_CUBIC)]
    if dst_w < src_w:
        return [((dst_w, src_h), cv2.INTER_AREA), ((dst_w, dst_h), cv2.INTER_CUBIC)]
    return [((src_w, dst_h), cv2.INTER_AREA), ((dst_w, dst_h), cv2.INTER_CUBIC)]


def _resize(
    src: PixelSource,
    src_w: int,
    src_h: int,
    dst_w: int,
    dst_h: int,
    channels: int,
) -> np.ndarray:
    if dst_w <= 0 or dst_h <= 0:
        raise ResizeError()
    pixels = pixel_view(src, src_w, src_h, channels, ResizeError)
    if (src_w, src_h) == (dst_w, dst_h):
        return pixels.copy()

    passes = _passes(src_w, src_h, dst_w, dst_h)
    logger.debug(
        "resize: %dx%d -> %dx%d channels=%d passes=%s",
        src_w,
        src_h,
        dst_w,
        dst_h,
        channels,
        [interpolation for _, interpolation in passes],
    )
    try:
        resized = pixels
        for size, interpolation in passes:
            resized = cv2.resize(resized, size, interpolation=interpolation)
    except cv2.error as exc:
        raise ResizeError() from exc
    return np.ascontiguousarray(resized, dtype=np.uint8)


def resize_rgba(src: PixelSource, src_w: int, src_h: int, dst_w: int, dst_h: int) -> np.ndarray:
    """Resample an RGBA8 buffer; returns an array shaped (dst_h, dst_w, 4)."""
    return _resize(src, src_w, src_h, dst_w, dst_h, channels=4)


def resize_mask(src: PixelSource, src_w: int, src_h: int, dst_w: int, dst_h: int) -> np.ndarray:
    """Resample a single-channel mask; returns an array shaped (dst_h, dst_w)."""
    return _resize(src, src_w, src_h, dst_w, dst_h, channels=1)
