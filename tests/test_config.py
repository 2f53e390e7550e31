"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from birefnet_service.config import MODEL_SIZE_THRESHOLD_BYTES, Settings


def test_defaults() -> None:
    settings = Settings()
    assert (settings.model_width, settings.model_height) == (1024, 1024)
    assert settings.normalization_mean == (0.485, 0.456, 0.406)
    assert settings.normalization_std == (0.229, 0.224, 0.225)
    assert settings.model_size_threshold_bytes == MODEL_SIZE_THRESHOLD_BYTES == 256 * 1024 * 1024
    assert settings.engine_backend == "onnx"


def test_reads_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BIREFNET_MODEL_WIDTH", "512")
    monkeypatch.setenv("BIREFNET_ENGINE_BACKEND", "torchscript")
    monkeypatch.setenv("BIREFNET_LOG_LEVEL", "debug")
    settings = Settings()
    assert settings.model_width == 512
    assert settings.engine_backend == "torchscript"
    assert settings.log_level == "DEBUG"


def test_rejects_non_positive_std() -> None:
    with pytest.raises(ValidationError):
        Settings(normalization_std=(0.2, 0.0, 0.2))


def test_rejects_unknown_backend() -> None:
    with pytest.raises(ValidationError):
        Settings(engine_backend="tensorrt")
