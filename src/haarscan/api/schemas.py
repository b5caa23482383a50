"""Pydantic request/response schemas for the HaarScan API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class FaceBox(BaseModel):
    """Detected square region in original-image pixel coordinates."""

    x: float = Field(description="Left edge in pixels")
    y: float = Field(description="Top edge in pixels")
    w: float = Field(gt=0, description="Side length in pixels (width == height)")


class DetectionResponse(BaseModel):
    """Result of a detection request. ``face`` is null when no face was found."""

    found: bool
    face: FaceBox | None = None
    image_width: int
    image_height: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    model_loaded: bool
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Statistics for the loaded cascade."""

    path: str | None
    window_size: int
    stages: int
    trees: int
    nodes: int
    rects: int
    search_strategy: str = Field(description="'sequential' or 'vectorized'")


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
