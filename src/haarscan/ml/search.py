"""Greedy big-to-small sliding window search.

Windows are visited from the largest scale to the smallest, top to bottom,
left to right. The first window the full cascade accepts is returned; no
other candidates are collected or compared.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, NamedTuple

import numpy as np

from haarscan.ml.cascade import WINDOW_SIZE
from haarscan.ml.evaluator import CascadeEvaluator, round_half_up

if TYPE_CHECKING:
    from collections.abc import Iterator

    from haarscan.ml.cascade import CascadeModel
    from haarscan.ml.integral_image import IntegralImage

logger = logging.getLogger(__name__)

SCALE_UPDATE: float = 1 / 1.2
MIN_STEP: int = 2

SearchStrategy = Literal["sequential", "vectorized"]


class Window(NamedTuple):
    """Candidate square at (x, y) with side ``size`` in integral-image coordinates."""

    x: int
    y: int
    scale: float
    size: int


class ScaleLevel(NamedTuple):
    scale: float
    size: int
    step: int


def iter_scales(width: int, height: int) -> Iterator[ScaleLevel]:
    """Yield scale levels from ``min(width, height) / 20`` down to just above 1."""
    scale = min(width / WINDOW_SIZE, height / WINDOW_SIZE)
    while scale > 1:
        yield ScaleLevel(
            scale=scale,
            size=round_half_up(WINDOW_SIZE * scale),
            step=round_half_up(max(scale, MIN_STEP)),
        )
        scale *= SCALE_UPDATE


def iter_windows(width: int, height: int) -> Iterator[Window]:
    """Yield every candidate window in scan order."""
    for level in iter_scales(width, height):
        end_x = width - level.size - 1
        end_y = height - level.size - 1
        for y in range(0, end_y, level.step):
            for x in range(0, end_x, level.step):
                yield Window(x=x, y=y, scale=level.scale, size=level.size)


class SlidingWindowSearch:
    """Find the first window a cascade accepts.

    The ``vectorized`` strategy evaluates each scale level as one numpy batch
    and reports the accepted window earliest in scan order, which is the same
    window the ``sequential`` scan returns.
    """

    def __init__(self, model: CascadeModel, strategy: SearchStrategy = "sequential") -> None:
        if strategy not in ("sequential", "vectorized"):
            raise ValueError(f"Unknown search strategy: {strategy}")
        self._evaluator = CascadeEvaluator(model)
        self._strategy = strategy

    @property
    def strategy(self) -> SearchStrategy:
        return self._strategy

    def search(self, integral: IntegralImage) -> Window | None:
        """Return the first accepted window, or None if every window is rejected."""
        if self._strategy == "vectorized":
            return self._search_vectorized(integral)
        return self._search_sequential(integral)

    def _search_sequential(self, integral: IntegralImage) -> Window | None:
        ii = integral.ii.tolist()
        ii2 = integral.ii2.tolist()
        evaluate = self._evaluator.evaluate

        for window in iter_windows(integral.width, integral.height):
            inv_area = 1 / (window.size * window.size)
            if evaluate(ii, ii2, window.x, window.y, window.scale, window.size, inv_area):
                return window
        return None

    def _search_vectorized(self, integral: IntegralImage) -> Window | None:
        width, height = integral.width, integral.height

        for level in iter_scales(width, height):
            ys_axis = np.arange(0, height - level.size - 1, level.step, dtype=np.int64)
            xs_axis = np.arange(0, width - level.size - 1, level.step, dtype=np.int64)
            if ys_axis.size == 0 or xs_axis.size == 0:
                continue
            # Row-major flattening keeps scan order: y outer, x inner.
            ys, xs = (grid.ravel() for grid in np.meshgrid(ys_axis, xs_axis, indexing="ij"))
            logger.debug("Scale %.3f: evaluating %d windows of size %d", level.scale, xs.size, level.size)

            accepted = np.flatnonzero(self._evaluator.evaluate_batch(integral, xs, ys, level.scale, level.size))
            if accepted.size:
                first = int(accepted[0])
                return Window(x=int(xs[first]), y=int(ys[first]), scale=level.scale, size=level.size)
        return None
