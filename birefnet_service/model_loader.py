"""
Engine loading utilities.

The loader:
 - validates that the model file exists,
 - builds the configured backend (ONNX by default, TorchScript optionally),
 - keeps a single shared engine keyed by backend and model path,
 - exposes `get_engine()` / `reset_engine()` for the request boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Optional, Tuple, Union

from . import config
from .engine import InferenceEngine, OnnxEngine
from .errors import MissingModelFile

logger = logging.getLogger(__name__)

_ENGINE: Optional[InferenceEngine] = None
_ENGINE_KEY: Optional[Tuple[str, Path]] = None
_LOCK = Lock()


def _load_engine(model_path: Path, settings: config.Settings) -> InferenceEngine:
    if not model_path.exists():
        raise MissingModelFile()

    if settings.engine_backend == "torchscript":
        # torch is only imported when the TorchScript backend is selected.
        from .torch_engine import TorchScriptEngine

        logger.info("Loading TorchScript engine from %s", model_path)
        return TorchScriptEngine(model_path, settings)

    logger.info("Loading ONNX engine from %s", model_path)
    return OnnxEngine(model_path, settings)


def get_engine(
    model_path: Union[str, Path],
    settings: Optional[config.Settings] = None,
) -> InferenceEngine:
    """
    Return the shared engine for `model_path`, loading it on first access.

    A request for a different path or backend replaces the cached engine.
    """
    global _ENGINE, _ENGINE_KEY
    settings = settings or config.get_settings()
    key = (settings.engine_backend, Path(model_path))

    with _LOCK:
        if _ENGINE is not None and _ENGINE_KEY == key:
            return _ENGINE
        _ENGINE = None
        _ENGINE_KEY = None
        engine = _load_engine(key[1], settings)
        _ENGINE, _ENGINE_KEY = engine, key
    return engine


def reset_engine() -> None:
    """Drop the cached engine so its session memory can be reclaimed."""
    global _ENGINE, _ENGINE_KEY
    with _LOCK:
        if _ENGINE is not None:
            logger.debug("Released engine for %s", _ENGINE_KEY)
        _ENGINE = None
        _ENGINE_KEY = None
