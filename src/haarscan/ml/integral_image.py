"""Summed-area tables for constant-time rectangle sums.

Both tables carry a one-row/one-column zero border so that the sum over any
rectangle reduces to four lookups.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


class InvalidImageError(ValueError):
    """Raised for images that cannot be decoded or have no pixels."""


@dataclass(frozen=True)
class IntegralImage:
    """Linear (``ii``) and squared (``ii2``) summed-area tables.

    Both arrays have shape ``(height + 1, width + 1)``.
    """

    ii: NDArray[np.int64]
    ii2: NDArray[np.int64]

    @property
    def width(self) -> int:
        return int(self.ii.shape[1]) - 1

    @property
    def height(self) -> int:
        return int(self.ii.shape[0]) - 1

    def rect_sum(self, x: int, y: int, w: int, h: int) -> int:
        """Sum of pixel intensities in the rectangle at (x, y) of size w x h."""
        return _rect_sum(self.ii, x, y, w, h)

    def rect_sum_squared(self, x: int, y: int, w: int, h: int) -> int:
        """Sum of squared pixel intensities in the rectangle at (x, y) of size w x h."""
        return _rect_sum(self.ii2, x, y, w, h)


def _rect_sum(table: NDArray[np.int64], x: int, y: int, w: int, h: int) -> int:
    return int(table[y + h, x + w] + table[y, x] - table[y + h, x] - table[y, x + w])


def build_integral_image(pixels: NDArray[np.uint8]) -> IntegralImage:
    """Compute the linear and squared integral images of a grayscale buffer.

    Args:
        pixels: HxW array of 0-255 intensities.

    Raises:
        InvalidImageError: If the buffer is not two-dimensional or has zero area.
    """
    if pixels.ndim != 2:
        raise InvalidImageError(f"Expected a 2-D grayscale buffer, got shape {pixels.shape}")
    height, width = pixels.shape
    if width < 1 or height < 1:
        raise InvalidImageError(f"Pixel buffer has zero area ({width}x{height})")

    values = pixels.astype(np.int64)
    ii = np.zeros((height + 1, width + 1), dtype=np.int64)
    ii2 = np.zeros((height + 1, width + 1), dtype=np.int64)
    ii[1:, 1:] = values.cumsum(axis=0).cumsum(axis=1)
    ii2[1:, 1:] = (values * values).cumsum(axis=0).cumsum(axis=1)
    return IntegralImage(ii=ii, ii2=ii2)
