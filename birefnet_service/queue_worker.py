"""
Batch worker.

Runs a list of background removal jobs through the same request boundary as
the JSON runtime, strictly one after another. Queue/transport concerns are
left to the caller so this can be embedded into any worker framework.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, Iterable, List, Optional

from . import config
from .engine import InferenceEngine
from .runtime import ACTION_REMOVE_BACKGROUND, RuntimeRequest, dispatch

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    image_path: str
    output_path: str


def process_batch(
    items: Iterable[BatchItem],
    model_path: str,
    settings: Optional[config.Settings] = None,
    engine: Optional[InferenceEngine] = None,
) -> List[Dict[str, Any]]:
    """
    Process a batch of images sequentially.

    Returns one response envelope per item, in input order. A failing item
    yields an error envelope and does not stop the remaining items.
    """
    responses: List[Dict[str, Any]] = []
    for item in items:
        logger.info("Processing batch item image=%s output=%s", item.image_path, item.output_path)
        request = RuntimeRequest(
            action=ACTION_REMOVE_BACKGROUND,
            arguments={
                "imagePath": item.image_path,
                "modelPath": model_path,
                "outputPath": item.output_path,
            },
        )
        response = dispatch(request, settings=settings, engine=engine)
        responses.append(response.model_dump(exclude_none=True))
    return responses
