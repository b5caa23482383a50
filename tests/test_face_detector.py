"""End-to-end tests for the detector facade and image glue."""

from __future__ import annotations

import io

import numpy as np
import pytest
from conftest import SQUARE_BOX, square_image
from PIL import Image

from haarscan.ml.cascade import CascadeModel
from haarscan.ml.face_detector import DetectionResult, FaceDetector
from haarscan.ml.preprocessing import (
    InvalidImageError,
    crop_face,
    decode_image,
    downscale_ratio,
    draw_face,
    encode_jpeg,
    resampled_size,
    to_grayscale,
)


def _png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class TestDownscaleRatio:
    @pytest.mark.parametrize(
        ("width", "height", "expected"),
        [
            (320, 240, 1.0),
            (640, 480, 2.0),
            (100, 400, 100 / 320),
            # Width is the axis further from its reference, but the
            # comparison of differences still selects height.
            (1000, 300, 300 / 240),
            (160, 240, 0.5),
        ],
    )
    def test_axis_selection(self, width: int, height: int, expected: float) -> None:
        assert downscale_ratio(width, height) == pytest.approx(expected)

    def test_custom_reference(self) -> None:
        assert downscale_ratio(200, 100, reference=(100, 100)) == pytest.approx(1.0)
        assert downscale_ratio(300, 100, reference=(100, 100)) == pytest.approx(1.0)
        assert downscale_ratio(50, 100, reference=(100, 100)) == pytest.approx(0.5)

    def test_resampled_size(self) -> None:
        assert resampled_size(640, 480, 2.0) == (320, 240)
        assert resampled_size(100, 80, 0.3125) == (320, 256)


class TestGrayscale:
    def test_luma_weights_truncate(self) -> None:
        image = Image.new("RGB", (4, 1))
        image.putdata([(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 255)])
        assert to_grayscale(image).tolist() == [[76, 149, 29, 254]]

    def test_shape_is_height_by_width(self) -> None:
        assert to_grayscale(Image.new("RGB", (7, 3))).shape == (3, 7)


class TestImageGlue:
    def test_decode_png(self) -> None:
        image = decode_image(_png_bytes(Image.new("L", (12, 8), 40)))
        assert image.mode == "RGB"
        assert image.size == (12, 8)

    def test_decode_garbage(self) -> None:
        with pytest.raises(InvalidImageError, match="valid image"):
            decode_image(b"definitely not an image")

    def test_decode_pixel_limit(self) -> None:
        with pytest.raises(InvalidImageError, match="limit"):
            decode_image(_png_bytes(Image.new("RGB", (100, 100))), max_pixels=9_999)

    def test_crop_truncates_coordinates(self) -> None:
        image = Image.new("RGB", (100, 100))
        cropped = crop_face(image, DetectionResult(x=10.7, y=20.2, w=30.9))
        assert cropped.size == (30, 30)

    def test_draw_outlines_in_red(self) -> None:
        image = Image.new("RGB", (50, 50))
        annotated = draw_face(image, DetectionResult(x=5, y=5, w=20))
        assert annotated.getpixel((5, 5)) == (255, 0, 0)
        assert annotated.getpixel((15, 15)) == (0, 0, 0)
        assert image.getpixel((5, 5)) == (0, 0, 0)

    def test_encode_jpeg(self) -> None:
        data = encode_jpeg(Image.new("L", (16, 16), 90))
        assert data[:2] == b"\xff\xd8"


class TestFaceDetector:
    def test_finds_square(self, bar_model: CascadeModel) -> None:
        result = FaceDetector(bar_model).detect(square_image())

        assert result is not None
        assert result.w > 0
        sx, sy, side = SQUARE_BOX
        assert result.x < sx + side and sx < result.x + result.w
        assert result.y < sy + side and sy < result.y + result.w

    def test_blank_buffer_has_no_face(self, bar_model: CascadeModel) -> None:
        for value in (0, 128, 255):
            assert FaceDetector(bar_model).detect(np.full((240, 320), value, dtype=np.uint8)) is None

    def test_tiny_buffer_without_prescaling(self, accept_all_model: CascadeModel) -> None:
        detector = FaceDetector(accept_all_model, reference_size=None)
        assert detector.detect(np.zeros((18, 25), dtype=np.uint8)) is None

    def test_tiny_buffer_is_prescaled(self, accept_all_model: CascadeModel) -> None:
        # 25x18 maps to 320x230 before searching, so the accept-all cascade fires.
        result = FaceDetector(accept_all_model).detect(np.zeros((18, 25), dtype=np.uint8))
        assert result is not None
        assert result.x == 0 and result.y == 0
        assert result.w < 25

    def test_deterministic(self, bar_model: CascadeModel) -> None:
        detector = FaceDetector(bar_model)
        pixels = square_image()
        assert detector.detect(pixels) == detector.detect(pixels)

    def test_coordinates_scale_back_to_original(self, bar_model: CascadeModel) -> None:
        detector = FaceDetector(bar_model)
        sx, sy, side = SQUARE_BOX
        small = detector.detect(square_image())
        large = detector.detect(square_image(640, 480, (2 * sx, 2 * sy, 2 * side)))

        assert small is not None
        assert large is not None
        assert large == DetectionResult(x=small.x * 2, y=small.y * 2, w=small.w * 2)

    def test_prescaled_result_matches_presized_input(self, accept_all_model: CascadeModel) -> None:
        detector = FaceDetector(accept_all_model)
        direct = detector.detect(np.zeros((80, 100), dtype=np.uint8))
        presized = FaceDetector(accept_all_model, reference_size=None).detect(np.zeros((256, 320), dtype=np.uint8))

        assert direct is not None
        assert presized is not None
        ratio = 100 / 320
        assert direct.x == pytest.approx(presized.x * ratio)
        assert direct.y == pytest.approx(presized.y * ratio)
        assert direct.w == pytest.approx(presized.w * ratio)

    @pytest.mark.parametrize("strategy", ["sequential", "vectorized"])
    def test_detect_image(self, bar_model: CascadeModel, strategy: str) -> None:
        image = Image.fromarray(square_image()).convert("RGB")
        result = FaceDetector(bar_model, strategy=strategy).detect_image(image)  # type: ignore[arg-type]
        expected = FaceDetector(bar_model).detect(square_image())
        assert result is not None
        assert expected is not None
        # White becomes 254 after the luma conversion; the contrast ratio is unchanged.
        assert result == expected

    @pytest.mark.parametrize("shape", [(0, 10), (10, 0), (5, 5, 3)])
    def test_invalid_buffers(self, accept_all_model: CascadeModel, shape: tuple[int, ...]) -> None:
        with pytest.raises(InvalidImageError):
            FaceDetector(accept_all_model).detect(np.zeros(shape, dtype=np.uint8))

    def test_upscaled_frame_over_pixel_limit(self, accept_all_model: CascadeModel) -> None:
        # A 1x1000 strip is upscaled by 320 along both axes.
        assert resampled_size(1, 1000, downscale_ratio(1, 1000)) == (320, 320_000)
        detector = FaceDetector(accept_all_model, max_pixels=16_777_216)
        with pytest.raises(InvalidImageError, match="320x320000"):
            detector.detect(np.zeros((1000, 1), dtype=np.uint8))
        with pytest.raises(InvalidImageError, match="320x320000"):
            detector.detect_image(Image.new("RGB", (1, 1000)))

    def test_pixel_limit_applies_to_search_frame(self, accept_all_model: CascadeModel) -> None:
        # 640x480 input is searched at 320x240.
        detector = FaceDetector(accept_all_model, max_pixels=320 * 240)
        assert detector.detect(np.zeros((480, 640), dtype=np.uint8)) is not None
        unscaled = FaceDetector(accept_all_model, reference_size=None, max_pixels=320 * 240)
        with pytest.raises(InvalidImageError, match="limit of 76800 pixels"):
            unscaled.detect(np.zeros((480, 640), dtype=np.uint8))

    def test_error_shared_with_integral_image(self) -> None:
        from haarscan.ml import integral_image

        assert InvalidImageError is integral_image.InvalidImageError

    def test_result_to_dict(self) -> None:
        assert DetectionResult(x=1.0, y=2.0, w=3.0).to_dict() == {"x": 1.0, "y": 2.0, "w": 3.0}
