"""Single-face detection with a Viola-Jones cascade.

``FaceDetector`` ties the pieces together: optional pre-scaling toward the
reference frame, integral image construction, the greedy window search, and
mapping the hit back to the caller's coordinates.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

import numpy as np

from haarscan.ml.integral_image import build_integral_image
from haarscan.ml.preprocessing import (
    REFERENCE_SIZE,
    InvalidImageError,
    downscale_ratio,
    resample,
    resample_pixels,
    resampled_size,
    to_grayscale,
)
from haarscan.ml.search import SlidingWindowSearch

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from PIL import Image

    from haarscan.ml.cascade import CascadeModel
    from haarscan.ml.search import SearchStrategy, Window

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    """Detected square in original-image pixel coordinates (width == height == w)."""

    x: float
    y: float
    w: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


class FaceDetector:
    """Locate at most one face per image.

    The model is shared read-only; every call builds its own integral
    tables, so one detector may serve concurrent calls.
    """

    def __init__(
        self,
        model: CascadeModel,
        reference_size: tuple[int, int] | None = REFERENCE_SIZE,
        strategy: SearchStrategy = "sequential",
        max_pixels: int | None = None,
    ) -> None:
        self._model = model
        self._reference_size = reference_size
        self._max_pixels = max_pixels
        self._search = SlidingWindowSearch(model, strategy=strategy)

    @property
    def model(self) -> CascadeModel:
        return self._model

    def detect(self, pixels: NDArray[np.uint8]) -> DetectionResult | None:
        """Detect a face in an HxW grayscale buffer.

        Returns:
            The first accepted window in original coordinates, or None if no
            window passes the cascade.

        Raises:
            InvalidImageError: If the buffer is not 2-D, has zero area, or the
                pre-scaled search frame exceeds ``max_pixels``.
        """
        pixels = np.asarray(pixels)
        _check_buffer(pixels)
        height, width = pixels.shape
        ratio = self._ratio(width, height)
        self._check_frame(width, height, ratio)
        if ratio != 1:
            pixels = resample_pixels(pixels, ratio)
        return self._detect_prepared(pixels, ratio)

    def detect_image(self, image: Image.Image) -> DetectionResult | None:
        """Detect a face in a Pillow image.

        Colour images are resampled before the grayscale conversion.
        """
        if image.width < 1 or image.height < 1:
            raise InvalidImageError(f"Image has zero area ({image.width}x{image.height})")
        ratio = self._ratio(image.width, image.height)
        self._check_frame(image.width, image.height, ratio)
        if ratio != 1:
            image = resample(image, ratio)
        return self._detect_prepared(to_grayscale(image), ratio)

    def _ratio(self, width: int, height: int) -> float:
        if self._reference_size is None:
            return 1
        ratio = downscale_ratio(width, height, self._reference_size)
        if ratio == 0:
            return 1
        logger.debug("Pre-scaling %dx%d by 1/%.4f", width, height, ratio)
        return ratio

    def _check_frame(self, width: int, height: int, ratio: float) -> None:
        """Reject inputs whose search frame would exceed the pixel limit.

        Narrow inputs can be upscaled far beyond their own size, so the limit
        applies to the frame after pre-scaling.
        """
        if self._max_pixels is None:
            return
        frame_width, frame_height = (width, height) if ratio == 1 else resampled_size(width, height, ratio)
        if frame_width * frame_height > self._max_pixels:
            raise InvalidImageError(
                f"Search frame {frame_width}x{frame_height} for {width}x{height} input exceeds "
                f"the limit of {self._max_pixels} pixels"
            )

    def _detect_prepared(self, pixels: NDArray[np.uint8], ratio: float) -> DetectionResult | None:
        integral = build_integral_image(pixels)
        window = self._search.search(integral)
        if window is None:
            logger.debug("No face found in %dx%d search frame", integral.width, integral.height)
            return None
        return _to_result(window, ratio)


def _check_buffer(pixels: NDArray[np.uint8]) -> None:
    if pixels.ndim != 2:
        raise InvalidImageError(f"Expected a 2-D grayscale buffer, got shape {pixels.shape}")
    if pixels.size == 0:
        raise InvalidImageError(f"Pixel buffer has zero area ({pixels.shape[1]}x{pixels.shape[0]})")


def _to_result(window: Window, ratio: float) -> DetectionResult:
    return DetectionResult(x=window.x * ratio, y=window.y * ratio, w=window.size * ratio)
