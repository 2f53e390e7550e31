"""
Configuration loader for the BiRefNet background-removal runtime.

Environment variables are centralized here to keep the rest of the code
focused on the pixel pipeline and to make operational tuning clear.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MODEL_SIZE_THRESHOLD_BYTES = 256 * 1024 * 1024


class Settings(BaseSettings):
    """Runtime settings loaded from BIREFNET_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BIREFNET_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Model + preprocessing
    model_path: Optional[Path] = None
    engine_backend: Literal["onnx", "torchscript"] = "onnx"
    model_width: int = Field(1024, ge=1)
    model_height: int = Field(1024, ge=1)
    normalization_mean: Tuple[float, float, float] = (0.485, 0.456, 0.406)
    normalization_std: Tuple[float, float, float] = (0.229, 0.224, 0.225)

    # Inference session
    intra_op_threads: int = Field(1, ge=0)
    keep_session_loaded: bool = False

    # Model validation
    model_size_threshold_bytes: int = Field(MODEL_SIZE_THRESHOLD_BYTES, ge=0)
    validate_warmup: bool = False
    warmup_size: int = Field(64, ge=1)

    # Logging
    log_level: str = "INFO"

    # Debugging
    debug: bool = False
    debug_output_dir: Path = Path("/tmp/birefnet_debug")

    @field_validator("normalization_std")
    @classmethod
    def validate_std(cls, v: Tuple[float, float, float]) -> Tuple[float, float, float]:
        if any(value <= 0 for value in v):
            raise ValueError("normalization_std values must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be one of DEBUG|INFO|WARNING|ERROR|CRITICAL")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
