"""Shared fixtures: stub engines and small on-disk images."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Tuple

import numpy as np
import pytest
from PIL import Image

from birefnet_service.config import Settings


class StubEngine:
    """Returns a fixed output tensor and records the inputs it saw."""

    def __init__(self, output: np.ndarray) -> None:
        self.output = output
        self.calls: List[np.ndarray] = []

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        self.calls.append(tensor)
        return self.output


class FailingEngine:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        raise self.exc


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(debug_output_dir=tmp_path / "debug")


@pytest.fixture()
def small_settings(tmp_path: Path) -> Settings:
    """A 16x16 model square keeps pipeline tests light."""
    return Settings(model_width=16, model_height=16, debug_output_dir=tmp_path / "debug")


@pytest.fixture()
def write_image(tmp_path: Path) -> Callable[..., Path]:
    def _write(pixels: np.ndarray, name: str = "input.png", **save_kwargs: object) -> Path:
        path = tmp_path / name
        Image.fromarray(pixels).save(path, **save_kwargs)
        return path

    return _write


@pytest.fixture()
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "birefnet.onnx"
    path.write_bytes(b"not a real model")
    return path


def gradient_rgba(width: int, height: int) -> np.ndarray:
    ys, xs = np.mgrid[0:height, 0:width]
    rgba = np.zeros((height, width, 4), dtype=np.uint8)
    rgba[..., 0] = (xs * 255 // max(width - 1, 1)).astype(np.uint8)
    rgba[..., 1] = (ys * 255 // max(height - 1, 1)).astype(np.uint8)
    rgba[..., 2] = 77
    rgba[..., 3] = 255
    return rgba


def decode_png(data: bytes) -> Tuple[np.ndarray, str]:
    from io import BytesIO

    with Image.open(BytesIO(data)) as image:
        image.load()
        return np.array(image), image.mode
