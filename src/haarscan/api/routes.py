"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status
from fastapi.responses import Response

from haarscan.api.middleware import verify_api_key
from haarscan.api.schemas import (
    DetectionResponse,
    ErrorResponse,
    FaceBox,
    HealthResponse,
    ModelInfo,
)
from haarscan.ml.cascade import WINDOW_SIZE
from haarscan.ml.preprocessing import InvalidImageError, crop_face, decode_image, draw_face, encode_jpeg

if TYPE_CHECKING:
    from PIL import Image

    from haarscan.config import Settings
    from haarscan.ml.face_detector import DetectionResult, FaceDetector
    from haarscan.ml.search_pool import SearchPool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_HTTP_413_CONTENT_TOO_LARGE = 413

_DETECTION_ERRORS = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    _HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}

_JPEG_RESPONSES = {
    status.HTTP_200_OK: {"content": {"image/jpeg": {}}},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    **_DETECTION_ERRORS,
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_search_pool(request: Request) -> SearchPool:
    pool: SearchPool = request.app.state.search_pool
    return pool


def _get_detector(request: Request) -> FaceDetector:
    detector: FaceDetector | None = request.app.state.detector
    if detector is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No cascade model configured",
        )
    return detector


async def _read_image(request: Request, file: UploadFile) -> Image.Image:
    settings = _get_settings(request)
    data = await file.read()
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=_HTTP_413_CONTENT_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    try:
        return decode_image(data, max_pixels=settings.max_image_pixels)
    except InvalidImageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


async def _run_detection(request: Request, image: Image.Image) -> DetectionResult | None:
    detector = _get_detector(request)
    pool = _get_search_pool(request)
    try:
        return await pool.detect(detector, image)
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Detection queue is full, retry later",
        ) from exc
    except InvalidImageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


async def _detect_or_404(request: Request, file: UploadFile) -> tuple[Image.Image, DetectionResult]:
    image = await _read_image(request, file)
    result = await _run_detection(request, image)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No face detected")
    return image, result


@router.post(
    "/detect-face",
    response_model=DetectionResponse,
    responses=_DETECTION_ERRORS,
    summary="Locate a face in an image",
)
async def detect_face(request: Request, file: UploadFile) -> DetectionResponse:
    """Return the first square region the cascade accepts, or ``found=false``."""
    image = await _read_image(request, file)
    result = await _run_detection(request, image)
    logger.info("Detection on %s (%dx%d): %s", file.filename, image.width, image.height, result)
    return DetectionResponse(
        found=result is not None,
        face=FaceBox(**result.to_dict()) if result is not None else None,
        image_width=image.width,
        image_height=image.height,
    )


@router.post(
    "/crop-face",
    response_class=Response,
    responses=_JPEG_RESPONSES,
    summary="Crop the detected face as JPEG",
)
async def crop_face_jpeg(request: Request, file: UploadFile) -> Response:
    """Cut the detected square out of the uploaded image."""
    image, result = await _detect_or_404(request, file)
    return Response(content=encode_jpeg(crop_face(image, result)), media_type="image/jpeg")


@router.post(
    "/annotate",
    response_class=Response,
    responses=_JPEG_RESPONSES,
    summary="Outline the detected face and return JPEG",
)
async def annotate_jpeg(request: Request, file: UploadFile) -> Response:
    """Draw the detected square onto the uploaded image."""
    image, result = await _detect_or_404(request, file)
    return Response(content=encode_jpeg(draw_face(image, result)), media_type="image/jpeg")


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_search_pool(request)
    return HealthResponse(
        status="ok",
        model_loaded=request.app.state.detector is not None,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/model",
    response_model=ModelInfo,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Describe the loaded cascade",
)
async def model_info(request: Request) -> ModelInfo:
    """Return statistics for the loaded cascade model."""
    settings = _get_settings(request)
    detector = _get_detector(request)
    stats = detector.model.stats()
    return ModelInfo(
        path=str(settings.cascade_path) if settings.cascade_path is not None else None,
        window_size=WINDOW_SIZE,
        stages=stats.stages,
        trees=stats.trees,
        nodes=stats.nodes,
        rects=stats.rects,
        search_strategy=settings.search_strategy,
    )
