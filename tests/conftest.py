"""Shared fixtures: synthetic cascades and images."""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest

from haarscan.ml.cascade import CascadeModel

# ---------------------------------------------------------------------------
# Raw cascade data in the persisted nested shape
# ---------------------------------------------------------------------------


def leaf_node(threshold: float, left_val: float, right_val: float, rects: list[list[float]] | None = None) -> list[Any]:
    return [[threshold, left_val, right_val, -1, -1], rects or []]


def accept_all_data() -> list[Any]:
    # No rects: feature is 0 >= 0 * vnorm, so every tree goes right.
    return [[[[leaf_node(0.0, -1.0, 1.0)]], 0.5]]


def reject_all_data() -> list[Any]:
    return [[[[leaf_node(0.0, -1.0, -1.0)]], 0.0]]


# Bright central band between two dark side bands. All four rects share the
# same width and height, so a uniform window scores exactly zero.
BAR_RECTS: list[list[float]] = [
    [0, 5, 5, 10, -1.0],
    [5, 5, 5, 10, 1.0],
    [10, 5, 5, 10, 1.0],
    [15, 5, 5, 10, -1.0],
]


def bar_cascade_data() -> list[Any]:
    return [[[[leaf_node(0.25, -1.0, 1.0, BAR_RECTS)]], 0.0]]


def branching_cascade_data() -> list[Any]:
    """Two stages with a three-node tree, exercising child indices."""
    root = [[0.05, 0.0, 0.0, 1, 2], [[0, 0, 10, 20, -1.0], [10, 0, 10, 20, 1.0]]]
    left = [[0.1, -1.0, 0.4, -1, -1], [[0, 0, 20, 10, -1.0], [0, 10, 20, 10, 1.0]]]
    right = [[0.02, 0.2, 1.0, -1, -1], BAR_RECTS]
    stage0 = [[[root, left, right]], 0.3]
    stage1 = [[[leaf_node(0.1, -0.5, 0.6, BAR_RECTS)], [leaf_node(-0.2, -0.3, 0.3, [[4, 4, 12, 12, 1.0]])]], 0.0]
    return [stage0, stage1]


# ---------------------------------------------------------------------------
# Synthetic images
# ---------------------------------------------------------------------------

SQUARE_FRAME = (320, 240)
SQUARE_BOX = (130, 90, 60)


def square_image(width: int = 320, height: int = 240, box: tuple[int, int, int] = SQUARE_BOX) -> np.ndarray:
    """Black frame with a white square at ``box`` = (x, y, side)."""
    pixels = np.zeros((height, width), dtype=np.uint8)
    x, y, side = box
    pixels[y : y + side, x : x + side] = 255
    return pixels


@pytest.fixture()
def accept_all_model() -> CascadeModel:
    return CascadeModel.from_decoded(accept_all_data())


@pytest.fixture()
def reject_all_model() -> CascadeModel:
    return CascadeModel.from_decoded(reject_all_data())


@pytest.fixture()
def bar_model() -> CascadeModel:
    return CascadeModel.from_decoded(bar_cascade_data())


@pytest.fixture()
def branching_model() -> CascadeModel:
    return CascadeModel.from_decoded(branching_cascade_data())
