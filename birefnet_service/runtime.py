"""
JSON request boundary for the background removal runtime.

The process reads a single JSON object from stdin and writes a single JSON
object to stdout:

    request:  {"action": "removeBackground", "arguments": {"imagePath": ...}}
    response: {"ok": true, "payload": {...}} | {"ok": false, "error": "..."}

Actions:
 - status
 - validateRuntime (modelPath)
 - removeBackground (imagePath, modelPath, outputPath)
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
import sys
import tempfile
from typing import Any, BinaryIO, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from . import config, model_loader, pipeline
from .engine import InferenceEngine
from .errors import (
    BackgroundRemovalError,
    InvalidModelFile,
    InvalidRequest,
    MissingAction,
    MissingArgument,
    MissingModelFile,
)

logger = logging.getLogger(__name__)

ACTION_STATUS = "status"
ACTION_VALIDATE_RUNTIME = "validateRuntime"
ACTION_REMOVE_BACKGROUND = "removeBackground"


class RuntimeRequest(BaseModel):
    action: Optional[str] = None
    arguments: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("action", mode="before")
    @classmethod
    def coerce_action(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None

    @field_validator("arguments", mode="before")
    @classmethod
    def coerce_arguments(cls, v: Any) -> Dict[str, Any]:
        return v if isinstance(v, dict) else {}


class RuntimeResponse(BaseModel):
    ok: bool
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def require_string(arguments: Mapping[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value:
        raise MissingArgument(key)
    return value


def validate_model_file(path: str, settings: Optional[config.Settings] = None) -> None:
    """
    Check that the model artifact exists and passes the size rule.

    A file is accepted only when it is strictly larger than the configured
    threshold (256 MiB by default); anything at or below it is invalid.
    """
    settings = settings or config.get_settings()
    model_path = Path(path)
    if not model_path.is_file():
        raise MissingModelFile()
    size = model_path.stat().st_size
    if size <= settings.model_size_threshold_bytes:
        logger.warning(
            "Model file %s rejected: %d bytes (threshold %d)",
            model_path,
            size,
            settings.model_size_threshold_bytes,
        )
        raise InvalidModelFile()


def _write_atomic(path: Path, data: bytes) -> None:
    """Write to a sibling temp file and rename it over `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def _remove_background(
    arguments: Mapping[str, Any],
    settings: config.Settings,
    engine: Optional[InferenceEngine],
) -> Dict[str, Any]:
    image_path = require_string(arguments, "imagePath")
    model_path = require_string(arguments, "modelPath")
    output_path = require_string(arguments, "outputPath")

    if not Path(model_path).is_file():
        raise MissingModelFile()

    try:
        active_engine = engine or model_loader.get_engine(model_path, settings)
        png_bytes = pipeline.remove_background(image_path, active_engine, settings=settings)
    finally:
        if engine is None and not settings.keep_session_loaded:
            model_loader.reset_engine()

    output = Path(output_path).expanduser().resolve()
    _write_atomic(output, png_bytes)
    logger.info("Wrote %d bytes to %s", len(png_bytes), output)
    return {"outputPath": str(output), "bytes": len(png_bytes)}


def _validate_runtime(
    arguments: Mapping[str, Any],
    settings: config.Settings,
    engine: Optional[InferenceEngine],
) -> Dict[str, Any]:
    model_path = require_string(arguments, "modelPath")
    validate_model_file(model_path, settings)

    if settings.validate_warmup:
        try:
            active_engine = engine or model_loader.get_engine(model_path, settings)
            shape = pipeline.warm_up(active_engine, settings=settings)
            logger.info("Warm-up inference returned shape %s", shape)
        finally:
            if engine is None:
                model_loader.reset_engine()
    return {"validated": True}


def handle(
    action: Optional[str],
    arguments: Mapping[str, Any],
    settings: Optional[config.Settings] = None,
    engine: Optional[InferenceEngine] = None,
) -> Dict[str, Any]:
    """
    Execute one action and return its payload.

    `engine` overrides the cached model engine; tests and embedders use it to
    supply their own inference implementation.
    """
    settings = settings or config.get_settings()
    if not action:
        raise MissingAction()

    if action == ACTION_STATUS:
        return {"ready": True}
    if action == ACTION_VALIDATE_RUNTIME:
        return _validate_runtime(arguments, settings, engine)
    if action == ACTION_REMOVE_BACKGROUND:
        return _remove_background(arguments, settings, engine)
    raise InvalidRequest()


def dispatch(
    request: RuntimeRequest,
    settings: Optional[config.Settings] = None,
    engine: Optional[InferenceEngine] = None,
) -> RuntimeResponse:
    """Run a parsed request and fold any failure into the response envelope."""
    try:
        payload = handle(request.action, request.arguments, settings=settings, engine=engine)
    except BackgroundRemovalError as exc:
        logger.error("Action %r failed: %s", request.action, exc)
        return RuntimeResponse(ok=False, error=str(exc))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Action %r failed unexpectedly: %s", request.action, exc)
        return RuntimeResponse(ok=False, error=str(exc) or exc.__class__.__name__)
    return RuntimeResponse(ok=True, payload=payload)


def parse_request(data: bytes) -> RuntimeRequest:
    if not data or not data.strip():
        raise InvalidRequest()
    try:
        return RuntimeRequest.model_validate_json(data)
    except ValidationError as exc:
        raise InvalidRequest() from exc


def process(
    data: bytes,
    json_rpc: bool = True,
    settings: Optional[config.Settings] = None,
    engine: Optional[InferenceEngine] = None,
) -> RuntimeResponse:
    """Turn raw request bytes into a response envelope."""
    try:
        if not json_rpc:
            raise InvalidRequest()
        request = parse_request(data)
    except InvalidRequest as exc:
        logger.error("Rejected request: %s", exc)
        return RuntimeResponse(ok=False, error=str(exc))
    return dispatch(request, settings=settings, engine=engine)


def write_response(response: RuntimeResponse, stream: BinaryIO) -> None:
    stream.write(response.model_dump_json(exclude_none=True).encode("utf-8"))
    stream.flush()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="BiRefNet background removal runtime")
    parser.add_argument(
        "--json-rpc",
        action="store_true",
        help="Read one JSON request from stdin and write one JSON response to stdout",
    )
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        logger.debug("Ignoring unknown arguments: %s", unknown)
    return args


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO), stream=sys.stderr)

    data = sys.stdin.buffer.read() if args.json_rpc else b""
    response = process(data, json_rpc=args.json_rpc, settings=settings)
    write_response(response, sys.stdout.buffer)
    return 0


if __name__ == "__main__":
    sys.exit(main())
