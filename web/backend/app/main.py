"""FastAPI application for the modguard moderation service.

Provides REST API endpoints wrapping the modguard package for:
- Content analysis through the tiered moderation pipeline
- Moderation configuration and blocklist management
- The human review queue and its statistics
- Per-user violation records and admin blocks
- The admin audit trail
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from modguard import __version__
from modguard.moderation.errors import StoreCorruptedError
from web.backend.app.middleware.auth import get_settings
from web.backend.app.routers import moderation

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="modguard API",
    description=(
        "REST API for tiered content moderation. "
        "Provides endpoints for content analysis, moderation configuration, "
        "the review queue, user blocks, and the audit trail."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(moderation.router)


@app.exception_handler(StoreCorruptedError)
async def store_corrupted(request: Request, exc: StoreCorruptedError):
    """A damaged store file is left untouched and reported as unavailable."""
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "modguard API",
        "version": __version__,
        "description": "Tiered content moderation REST API",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health():
    """Simple health check."""
    return {"status": "ok"}
