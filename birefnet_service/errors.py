"""
Error taxonomy for the background removal runtime.

Every error carries the human-readable message that the request boundary
returns to the caller, so `str(exc)` is always safe to surface.
"""

from __future__ import annotations


class BackgroundRemovalError(Exception):
    default_message = "Background removal failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


# Pipeline stages


class DecodeError(BackgroundRemovalError):
    default_message = "Failed to decode image for BiRefNet processing."


class ResizeError(BackgroundRemovalError):
    default_message = "Failed to resize image for model input."


class TensorError(BackgroundRemovalError):
    default_message = "Failed to create model tensor input."


class OutputError(BackgroundRemovalError):
    default_message = "BiRefNet returned invalid output."


class EncodeError(BackgroundRemovalError):
    default_message = "Failed to encode transparent output image."


# Request boundary


class MissingAction(BackgroundRemovalError):
    default_message = "Missing action in request."


class InvalidRequest(BackgroundRemovalError):
    default_message = "Invalid JSON-RPC request."


class MissingArgument(BackgroundRemovalError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Missing argument: {key}.")


class MissingModelFile(BackgroundRemovalError):
    default_message = "Model file is missing."


class InvalidModelFile(BackgroundRemovalError):
    default_message = "Model file is invalid."


# Inference engine


class RuntimeUnavailable(BackgroundRemovalError):
    default_message = "ONNX runtime session is unavailable."


class InferenceFailed(BackgroundRemovalError):
    default_message = "BiRefNet inference failed."
