"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from haarscan.config import Settings

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from haarscan.api.routes import router
from haarscan.config import get_settings
from haarscan.ml.cascade import CascadeModel
from haarscan.ml.face_detector import FaceDetector
from haarscan.ml.search_pool import SearchPool

logger = logging.getLogger(__name__)


def build_detector(settings: Settings) -> FaceDetector | None:
    """Load the configured cascade once and wrap it in a detector.

    Raises:
        CascadeFormatError: If the configured cascade cannot be parsed.
    """
    if settings.cascade_path is None:
        logger.warning("HAARSCAN_CASCADE_PATH is not set; detection endpoints will return 503")
        return None
    model = CascadeModel.load_file(settings.cascade_path)
    return FaceDetector(
        model,
        reference_size=settings.reference_size,
        strategy=settings.search_strategy,
        max_pixels=settings.max_image_pixels,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting HaarScan (cascade=%s, strategy=%s, max_concurrent=%s)",
        settings.cascade_path,
        settings.search_strategy,
        settings.max_concurrent,
    )

    app.state.detector = build_detector(settings)
    search_pool = SearchPool(settings)
    app.state.search_pool = search_pool

    logger.info("HaarScan ready")
    yield

    logger.info("Shutting down HaarScan")
    search_pool.shutdown()
    logger.info("HaarScan shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="HaarScan",
        description="Single-face detection with a Viola-Jones cascade",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("haarscan.main:app", host=settings.host, port=settings.port)
