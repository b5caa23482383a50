"""Image glue around the detector.

Decoding uploads, grayscale conversion, the pre-scaling policy that maps
inputs toward a 320x240 frame, and the crop/overlay/JPEG helpers used by
the API.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageDraw, UnidentifiedImageError

from haarscan.ml.evaluator import round_half_up
from haarscan.ml.integral_image import InvalidImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from haarscan.ml.face_detector import DetectionResult

REFERENCE_SIZE: tuple[int, int] = (320, 240)

# ITU-R 601 luma weights
_LUMA_WEIGHTS = (0.2989, 0.587, 0.114)

OVERLAY_COLOR = (255, 0, 0)


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> Image.Image:
    """Decode raw image bytes into an RGB Pillow image.

    Raises:
        InvalidImageError: If the bytes are not a readable image, the image has
            zero area, or it exceeds ``max_pixels``.
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        width, height = image.size
        if max_pixels is not None and width * height > max_pixels:
            raise InvalidImageError(f"Image has {width * height} pixels, limit is {max_pixels}")
        image = image.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise InvalidImageError("Data does not contain a valid image") from exc
    if width < 1 or height < 1:
        raise InvalidImageError(f"Image has zero area ({width}x{height})")
    return image


def to_grayscale(image: Image.Image) -> NDArray[np.uint8]:
    """Convert an image to an HxW intensity buffer, truncating the weighted sum."""
    rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
    r_weight, g_weight, b_weight = _LUMA_WEIGHTS
    gray = r_weight * rgb[..., 0] + g_weight * rgb[..., 1] + b_weight * rgb[..., 2]
    return gray.astype(np.uint8)


def downscale_ratio(width: int, height: int, reference: tuple[int, int] = REFERENCE_SIZE) -> float:
    """Return the factor by which the image is shrunk before searching.

    The axis is chosen by comparing how far each side is from the reference
    frame, not by which side needs the larger reduction. Cascade thresholds
    were tuned against this convention.
    """
    ref_width, ref_height = reference
    if (ref_width - width) > (ref_height - height):
        return width / ref_width
    return height / ref_height


def resampled_size(width: int, height: int, ratio: float) -> tuple[int, int]:
    return max(round_half_up(width / ratio), 1), max(round_half_up(height / ratio), 1)


def resample(image: Image.Image, ratio: float) -> Image.Image:
    """Resize ``image`` by ``1 / ratio`` with area averaging."""
    return image.resize(resampled_size(image.width, image.height, ratio), Image.Resampling.BOX)


def resample_pixels(pixels: NDArray[np.uint8], ratio: float) -> NDArray[np.uint8]:
    """Resize a grayscale buffer by ``1 / ratio``."""
    resized = resample(Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)), ratio)
    return np.asarray(resized, dtype=np.uint8)


def _face_box(result: DetectionResult) -> tuple[int, int, int, int]:
    x, y, w = int(result.x), int(result.y), int(result.w)
    return x, y, x + w, y + w


def crop_face(image: Image.Image, result: DetectionResult) -> Image.Image:
    """Cut the detected square out of the image."""
    return image.crop(_face_box(result))


def draw_face(image: Image.Image, result: DetectionResult) -> Image.Image:
    """Return a copy of ``image`` with the detected square outlined."""
    annotated = image.convert("RGB")
    ImageDraw.Draw(annotated).rectangle(_face_box(result), outline=OVERLAY_COLOR)
    return annotated


def encode_jpeg(image: Image.Image, quality: int = 75) -> bytes:
    buffer = io.BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()
