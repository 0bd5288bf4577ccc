"""
FastAPI Application Entry Point.

Creates and configures the FastAPI application for the voice pipeline:
routing, logging, the InvalidInput envelope for malformed requests, and
the orchestrator's background work.

Usage:
    # Run with uvicorn
    uvicorn voice_pipeline.main:app --host 0.0.0.0 --port 8000

    # Or through the CLI
    voice-pipeline serve --port 8000
"""
from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from voice_pipeline import __version__
from voice_pipeline.api.dependencies import get_pipeline
from voice_pipeline.api.routes import error_response, router
from voice_pipeline.core.errors import InvalidInputError
from voice_pipeline.core.logging import configure_logging, get_logger, info, set_request_id
from voice_pipeline.services.orchestrator import reset_orchestrator

_LOG = get_logger("voice-pipeline.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the orchestrator's cache sweeper; close everything on shutdown."""
    pipeline = app.dependency_overrides.get(get_pipeline, get_pipeline)()
    pipeline.start()
    info(_LOG, "startup", version=__version__)
    try:
        yield
    finally:
        pipeline.voice_cache.stop_sweeper()
        if get_pipeline not in app.dependency_overrides:
            reset_orchestrator()
        info(_LOG, "shutdown")


async def _validation_error(request: Request, exc: RequestValidationError):
    rid = str(uuid.uuid4())[:12]
    set_request_id(rid)
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    return error_response(
        InvalidInputError("Malformed request", details={"code": "MALFORMED_REQUEST", "fields": fields}),
        rid,
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function:
        1. Configures structured logging (reads VOICE_PIPELINE_LOG_LEVEL)
        2. Creates a FastAPI instance with the service title
        3. Registers the pipeline router
        4. Maps request validation errors to the InvalidInput envelope

    Returns:
        FastAPI: Configured application instance ready to serve requests.
    """
    configure_logging()

    app = FastAPI(title="voice-pipeline", version=__version__, lifespan=lifespan)
    app.include_router(router)
    app.add_exception_handler(RequestValidationError, _validation_error)
    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
