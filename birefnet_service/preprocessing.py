"""
Image loading and tensor preparation for BiRefNet.

The image is stretched to the fixed model square and normalized into the
ImageNet mean/std space. The pixel scale is adaptive: every byte is divided by
the brightest R/G/B value of the resized image rather than a fixed 255.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from . import config
from .codec import PixelSource, decode_oriented, pixel_view
from .errors import TensorError
from .resampling import resize_rgba

logger = logging.getLogger(__name__)

NORMALIZATION_EPSILON = 1e-6


@dataclass
class PreparedInput:
    tensor: np.ndarray  # (1, 3, H, W) float32
    original_rgba: np.ndarray  # (orig_h, orig_w, 4) uint8
    orig_size: Tuple[int, int]  # (width, height)

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.tensor.shape)


def prepare_tensor(
    buffer: PixelSource,
    width: int,
    height: int,
    mean: Sequence[float],
    std: Sequence[float],
) -> np.ndarray:
    """
    Convert an RGBA8 buffer at model resolution into a planar float32 tensor.

    The first pass finds the largest R/G/B byte (alpha is ignored) and uses it,
    floored to a tiny epsilon, as the divisor; the second pass normalizes each
    channel with `(byte / divisor - mean[c]) / std[c]`.

    Returns:
        C-contiguous float32 array shaped (1, 3, height, width).

    Raises:
        TensorError: if the buffer does not hold width*height*4 bytes.
    """
    pixels = pixel_view(buffer, width, height, 4, TensorError)
    rgb = pixels[..., :3]

    max_pixel = float(rgb.max())
    divisor = np.float32(max(max_pixel, NORMALIZATION_EPSILON))

    mean_arr = np.asarray(mean, dtype=np.float32)
    std_arr = np.asarray(std, dtype=np.float32)
    if mean_arr.shape != (3,) or std_arr.shape != (3,):
        raise TensorError()

    scaled = rgb.astype(np.float32) / divisor
    normalized = (scaled - mean_arr) / std_arr
    tensor = np.ascontiguousarray(np.transpose(normalized, (2, 0, 1)), dtype=np.float32)

    logger.debug("prepare: %dx%d divisor=%.1f", width, height, float(divisor))
    return tensor[np.newaxis, ...]


def prepare_input_from_pixels(
    rgba: PixelSource,
    width: int,
    height: int,
    settings: Optional[config.Settings] = None,
) -> PreparedInput:
    """Resize an in-memory RGBA8 buffer to the model square and build its tensor."""
    settings = settings or config.get_settings()
    model_w, model_h = settings.model_width, settings.model_height

    resized = resize_rgba(rgba, width, height, model_w, model_h)
    tensor = prepare_tensor(
        resized,
        model_w,
        model_h,
        mean=settings.normalization_mean,
        std=settings.normalization_std,
    )
    return PreparedInput(
        tensor=tensor,
        original_rgba=pixel_view(rgba, width, height, 4, TensorError),
        orig_size=(width, height),
    )


def prepare_input(
    image_path: Union[str, Path],
    settings: Optional[config.Settings] = None,
) -> PreparedInput:
    """
    Decode an image with its orientation applied and build the model input.

    The decoded full-resolution buffer is kept on the result so the
    compositor can reuse it without decoding the file a second time.
    """
    rgba, width, height = decode_oriented(image_path)
    logger.info("prepare: decoded %s (%dx%d)", image_path, width, height)
    return prepare_input_from_pixels(rgba, width, height, settings=settings)
