"""
FastAPI application for the Rebar research backend.

Wires the routers under ``/api`` and maps service errors onto
``{"error": ...}`` JSON responses. Run with ``rebar-api`` or
``uvicorn rebar_agentic.api.main:app``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rebar_agentic import __version__
from rebar_agentic.api.routes import accounts, chat, misc, preferences, profiles, research, signals
from rebar_agentic.services.errors import ApiError
from rebar_agentic.services.supabase_client import SupabaseError
from rebar_agentic.workers.utils import configure_logging, load_env_files

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Rebar API v%s", __version__)
    yield
    logger.info("Shutting down Rebar API")


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def supabase_error_handler(request: Request, exc: SupabaseError) -> JSONResponse:
    logger.error("Data access error in %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal error"})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Rebar Research API",
        description="Streaming company research chat, tracked accounts, signals and bulk research.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(SupabaseError, supabase_error_handler)

    for module in (chat, accounts, research, signals, preferences, profiles, misc):
        app.include_router(module.router, prefix="/api")
    return app


app = create_app()


def run() -> None:
    import uvicorn

    load_env_files()
    configure_logging()
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":  # pragma: no cover
    run()
