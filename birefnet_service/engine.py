"""
Inference boundary for BiRefNet.

The pipeline only depends on the `InferenceEngine` protocol: one synchronous
call taking the prepared (1, 3, H, W) float32 tensor and returning the raw
output tensor. `OnnxEngine` is the production implementation; tests plug in
stub engines that return synthetic tensors.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, List, Protocol, Sequence, Union

import numpy as np
from onnxruntime import GraphOptimizationLevel, InferenceSession, RunOptions, SessionOptions

from .errors import InferenceFailed, InvalidModelFile, MissingModelFile, RuntimeUnavailable

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

PREFERRED_OUTPUT_TOKENS = ("mask", "alpha", "pred", "output")


class InferenceEngine(Protocol):
    """Protocol for a synchronous segmentation model."""

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        """Run the model on a (1, 3, H, W) float32 tensor and return its raw output."""
        ...


def choose_primary_output_name(output_names: Sequence[str]) -> str:
    """Pick the output most likely to hold the mask logits."""
    if not output_names:
        raise InvalidModelFile()
    for token in PREFERRED_OUTPUT_TOKENS:
        for name in output_names:
            if token in name.lower():
                return name
    return output_names[0]


class OnnxEngine:
    """BiRefNet on onnxruntime's CPU execution provider."""

    def __init__(self, model_path: Union[str, Path], settings: Settings) -> None:
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise MissingModelFile()

        try:
            self._session = InferenceSession(
                str(self.model_path),
                sess_options=self._build_session_options(settings),
                providers=["CPUExecutionProvider"],
            )
        except Exception as exc:  # noqa: BLE001
            raise RuntimeUnavailable(f"Failed to initialize BiRefNet session: {exc}") from exc

        inputs = self._session.get_inputs()
        if not inputs:
            raise InvalidModelFile()
        self.input_name: str = inputs[0].name
        self.output_name: str = choose_primary_output_name(
            [output.name for output in self._session.get_outputs()]
        )
        logger.info(
            "Loaded ONNX session from %s (input=%s, output=%s)",
            self.model_path,
            self.input_name,
            self.output_name,
        )

    @staticmethod
    def _build_session_options(settings: Settings) -> SessionOptions:
        opts = SessionOptions()
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_ENABLE_BASIC
        opts.intra_op_num_threads = settings.intra_op_threads
        # Keep memory predictable: no persistent prepacked weights, no spinning workers.
        opts.add_session_config_entry("session.disable_prepacking", "1")
        opts.add_session_config_entry("session.force_spinning_stop", "1")
        opts.add_session_config_entry("session.intra_op.allow_spinning", "0")
        return opts

    @staticmethod
    def _build_run_options() -> RunOptions:
        run_options = RunOptions()
        run_options.add_run_config_entry("memory.enable_memory_arena_shrinkage", "cpu:0")
        return run_options

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        try:
            outputs: List[np.ndarray] = self._session.run(
                [self.output_name],
                {self.input_name: np.ascontiguousarray(tensor, dtype=np.float32)},
                run_options=self._build_run_options(),
            )
        except Exception as exc:  # noqa: BLE001
            raise InferenceFailed(f"BiRefNet inference failed: {exc}") from exc
        if not outputs:
            raise InferenceFailed("Model did not return expected output tensor.")
        return np.asarray(outputs[0], dtype=np.float32)
