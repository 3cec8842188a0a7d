"""
FastAPI application for the Work Item Tracker.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, List

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .db.base import init_database
from .errors import InternalError, TrackerError
from .logging_setup import configure_logging
from .routes import router

logger = structlog.get_logger()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("Starting Work Item Tracker", environment=settings.environment)

    try:
        init_database()
    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        raise

    yield

    logger.info("Shutdown complete")


app = FastAPI(
    title="Work Item Tracker",
    description="Work items, links and ordering for planning spaces",
    version=importlib.metadata.version("work-item-tracker"),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag", "Last-Modified", "Location"],
)


# =============================================================================
# Error responses
# =============================================================================


def _errors(errors: List[Dict[str, Any]], status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"errors": errors})


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error(
            "Internal error",
            path=request.url.path,
            error=exc.message,
            cause=repr(exc.cause) if exc.cause else None,
        )
    else:
        logger.info("Request failed", path=request.url.path, code=exc.code, error=exc.message)
    return _errors([exc.to_dict()], exc.status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        errors.append(
            {
                "code": "bad_parameter",
                "status": "400",
                "detail": error.get("msg", "invalid value"),
                "source": {"parameter": location},
            }
        )
    return _errors(errors, 400)


# Health and Info Endpoints
@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("work-item-tracker")}


app.include_router(router)
