"""Post-processing for BiRefNet logits: activation, mask quantization and alpha compositing."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from . import config
from .codec import PixelSource, encode_lossless_rgba, pixel_view
from .errors import OutputError
from .resampling import resize_mask

logger = logging.getLogger(__name__)

RANGE_EPSILON = 1e-6


def sigmoid(values: np.ndarray) -> np.ndarray:
    """
    Numerically stable logistic function in float32.

    Non-negative inputs use 1 / (1 + e^-x) and negative inputs e^x / (1 + e^x),
    so the exponent never overflows.
    """
    x = np.asarray(values, dtype=np.float32)
    z = np.exp(-np.abs(x))
    return np.where(x >= 0, 1.0 / (1.0 + z), z / (1.0 + z)).astype(np.float32)


def mask_dimensions(output_shape: Sequence[int], model_w: int, model_h: int) -> Tuple[int, int]:
    """
    Resolve the (width, height) of the mask carried by an output tensor.

    Rank >= 4 reads the trailing two dimensions; rank 2 and 3 fall back to the
    model resolution.
    """
    shape = [int(dim) for dim in output_shape]
    if len(shape) < 2:
        raise OutputError()
    if len(shape) >= 4:
        height, width = shape[-2], shape[-1]
    else:
        height, width = model_h, model_w
    if width <= 0 or height <= 0:
        raise OutputError()
    return width, height


def quantize_mask(activated: np.ndarray) -> np.ndarray:
    """
    Stretch activations to the full byte range using their own min and max.

    The range is floored to a tiny epsilon, so a constant input maps to 0.
    Rounding is half away from zero.
    """
    activated = np.asarray(activated, dtype=np.float32)
    low = activated.min()
    high = activated.max()
    value_range = np.float32(max(float(high - low), RANGE_EPSILON))
    normalized = (activated - low) / value_range
    return np.clip(np.floor(normalized * 255.0 + 0.5), 0, 255).astype(np.uint8)


def mask_from_output(
    raw_output: np.ndarray,
    output_shape: Sequence[int],
    model_w: int,
    model_h: int,
) -> np.ndarray:
    """Turn raw logits into a uint8 mask shaped (height, width)."""
    width, height = mask_dimensions(output_shape, model_w, model_h)
    required = width * height

    flat = np.asarray(raw_output, dtype=np.float32).reshape(-1)
    if flat.size < required:
        raise OutputError()

    activated = sigmoid(flat[:required])
    logger.debug(
        "postprocess: mask %dx%d activation min=%.6f max=%.6f",
        width,
        height,
        float(activated.min()),
        float(activated.max()),
    )
    return quantize_mask(activated).reshape(height, width)


def composite_alpha(rgba: PixelSource, mask: PixelSource, width: int, height: int) -> np.ndarray:
    """Return a copy of `rgba` whose alpha channel is replaced by `mask`."""
    pixels = pixel_view(rgba, width, height, 4, OutputError)
    alpha = pixel_view(mask, width, height, 1, OutputError)
    out = pixels.copy()
    out[..., 3] = alpha
    return out


def _maybe_dump_debug(mask: np.ndarray, rgba: np.ndarray, debug_dir: Path) -> None:
    """Optionally write the model mask and the cutout when DEBUG is enabled."""
    try:
        debug_dir.mkdir(parents=True, exist_ok=True)
        mask_path = debug_dir / "mask.png"
        cutout_path = debug_dir / "cutout.png"

        cv2.imwrite(str(mask_path), mask)
        cv2.imwrite(str(cutout_path), cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA))
        logger.debug("postprocess: wrote debug outputs to %s", debug_dir)
    except Exception as exc:  # noqa: BLE001
        logger.warning("postprocess: failed to write debug outputs: %s", exc)


def postprocess(
    raw_output: np.ndarray,
    output_shape: Sequence[int],
    original_rgba: PixelSource,
    original_w: int,
    original_h: int,
    settings: Optional[config.Settings] = None,
) -> bytes:
    """
    Build the transparent PNG for the original image from the model output.

    Steps: sigmoid, min-max quantization, mask resize to the original
    resolution, alpha replacement, lossless encoding.
    """
    settings = settings or config.get_settings()

    mask = mask_from_output(raw_output, output_shape, settings.model_width, settings.model_height)
    mask_h, mask_w = mask.shape
    full_mask = resize_mask(mask, mask_w, mask_h, original_w, original_h)

    rgba = composite_alpha(original_rgba, full_mask, original_w, original_h)

    if settings.debug:
        _maybe_dump_debug(mask, rgba, Path(settings.debug_output_dir))

    return encode_lossless_rgba(rgba, original_w, original_h)
