"""
FastAPI layer exposing the runtime actions over HTTP.

Endpoints:
 - GET /health
 - POST /rpc  (same envelope as the stdin/stdout runtime)

Serve with `uvicorn birefnet_service.api:app`, or build a configured app with
`create_app(settings, engine)`.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Optional

from fastapi import FastAPI

from . import __version__, config, runtime
from .engine import InferenceEngine

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[config.Settings] = None,
    engine: Optional[InferenceEngine] = None,
) -> FastAPI:
    """
    Build the HTTP app.

    Requests are serialized: only one pipeline runs at a time.
    """
    settings = settings or config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    app = FastAPI(title="BiRefNet Background Removal Runtime", version=__version__)
    request_lock = Lock()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/rpc", response_model=runtime.RuntimeResponse, response_model_exclude_none=True)
    def rpc(body: runtime.RuntimeRequest) -> runtime.RuntimeResponse:
        with request_lock:
            logger.info("rpc: action=%s", body.action)
            return runtime.dispatch(body, settings=settings, engine=engine)

    return app


def __getattr__(name: str):
    # `uvicorn birefnet_service.api:app` builds the default app on first access.
    if name == "app":
        global app
        app = create_app()
        return app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
