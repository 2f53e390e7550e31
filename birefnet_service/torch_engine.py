"""
TorchScript backend for BiRefNet.

Loads a scripted/traced export of the network and keeps it on the best
available device. Multi-scale exports return a list of predictions; the last
one is the full-resolution mask.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Union

import numpy as np
import torch

from .errors import InferenceFailed, MissingModelFile, RuntimeUnavailable

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)


def get_device() -> torch.device:
    """Prefer CUDA -> Apple MPS -> CPU."""
    if torch.cuda.is_available():
        return torch.device("cuda")
    if torch.backends.mps.is_available():  # type: ignore[attr-defined]
        return torch.device("mps")
    return torch.device("cpu")


class TorchScriptEngine:
    def __init__(self, model_path: Union[str, Path], settings: Settings) -> None:
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise MissingModelFile()

        self.device = get_device()
        if settings.intra_op_threads > 0:
            torch.set_num_threads(settings.intra_op_threads)
        try:
            model = torch.jit.load(str(self.model_path), map_location=self.device)
        except Exception as exc:  # noqa: BLE001
            raise RuntimeUnavailable(f"Failed to load TorchScript model: {exc}") from exc
        model.eval()
        self._model = model
        logger.info("Loaded TorchScript model from %s on %s", self.model_path, self.device)

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        inputs = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32)).to(self.device)
        try:
            with torch.no_grad():
                prediction = self._model(inputs)
        except Exception as exc:  # noqa: BLE001
            raise InferenceFailed(f"BiRefNet inference failed: {exc}") from exc
        if isinstance(prediction, (list, tuple)):
            if not prediction:
                raise InferenceFailed("Model did not return expected output tensor.")
            prediction = prediction[-1]
        return prediction.detach().float().cpu().numpy()
