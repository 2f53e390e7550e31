"""
High-level BiRefNet processing pipeline.

`remove_background` is the main entry point used by the JSON runtime, the
HTTP API and batch workers. It keeps orchestration simple:
image file -> preprocessing -> engine -> post-processing -> RGBA PNG bytes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

from . import config
from .engine import InferenceEngine
from .postprocessing import postprocess
from .preprocessing import PreparedInput, prepare_input, prepare_input_from_pixels

logger = logging.getLogger(__name__)


def _run_inference(prepared: PreparedInput, engine: InferenceEngine) -> np.ndarray:
    """Run the engine once; its errors propagate unchanged."""
    output = np.asarray(engine.infer(prepared.tensor), dtype=np.float32)
    logger.debug("inference: input shape=%s output shape=%s", prepared.shape, output.shape)
    return output


def remove_background(
    image_path: Union[str, Path],
    engine: InferenceEngine,
    settings: Optional[config.Settings] = None,
) -> bytes:
    """
    Full pipeline from an image file to transparent PNG bytes.

    Raises:
        BackgroundRemovalError: the first stage failure, unchanged.
    """
    settings = settings or config.get_settings()

    prepared = prepare_input(image_path, settings=settings)
    output = _run_inference(prepared, engine)

    orig_w, orig_h = prepared.orig_size
    png_bytes = postprocess(
        output.reshape(-1),
        output.shape,
        prepared.original_rgba,
        orig_w,
        orig_h,
        settings=settings,
    )
    logger.info("pipeline: produced %d bytes for %s", len(png_bytes), image_path)
    return png_bytes


def warm_up(engine: InferenceEngine, settings: Optional[config.Settings] = None) -> Tuple[int, ...]:
    """
    Push a plain white square through preprocessing and the engine.

    Returns the output tensor shape so callers can check the model answers.
    """
    settings = settings or config.get_settings()
    size = settings.warmup_size
    white = np.full((size, size, 4), 255, dtype=np.uint8)

    prepared = prepare_input_from_pixels(white, size, size, settings=settings)
    output = _run_inference(prepared, engine)
    return tuple(output.shape)
