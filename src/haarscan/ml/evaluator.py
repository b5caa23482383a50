"""Cascade evaluation for candidate windows.

Two evaluators share one set of semantics:

* ``CascadeEvaluator.evaluate`` walks a single window stage by stage and
  tree by tree, stopping at the first stage whose sum falls below its
  threshold. This is the reference behaviour.
* ``CascadeEvaluator.evaluate_batch`` runs the same arithmetic over many
  windows of one scale at once with numpy. Operations are applied in the
  same order so both produce identical decisions.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np

from haarscan.ml.cascade import LEAF

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from haarscan.ml.cascade import CascadeModel, Node, Tree
    from haarscan.ml.integral_image import IntegralImage


def round_half_up(value: float) -> int:
    """Round to the nearest integer with ties away from zero for positive values."""
    return math.floor(value + 0.5)


class CascadeEvaluator:
    """Accepts or rejects windows against a loaded cascade model."""

    def __init__(self, model: CascadeModel) -> None:
        self._model = model

    @property
    def model(self) -> CascadeModel:
        return self._model

    # -- Single window ------------------------------------------------------

    def evaluate(
        self,
        ii: Sequence[Sequence[int]],
        ii2: Sequence[Sequence[int]],
        x: int,
        y: int,
        scale: float,
        size: int,
        inv_area: float,
    ) -> bool:
        """Run the full cascade on the square window at (x, y) of side ``size``.

        Args:
            ii: Linear integral table as nested row lists.
            ii2: Squared integral table as nested row lists.
            x: Window left edge.
            y: Window top edge.
            scale: Feature scale for this window size.
            size: Window side length in pixels.
            inv_area: ``1 / (size * size)``.

        Returns:
            True if every stage meets its threshold.
        """
        mean = (ii[y + size][x + size] + ii[y][x] - ii[y + size][x] - ii[y][x + size]) * inv_area
        vnorm = (ii2[y + size][x + size] + ii2[y][x] - ii2[y + size][x] - ii2[y][x + size]) * inv_area - (
            mean * mean
        )
        vnorm = math.sqrt(vnorm) if vnorm > 1 else 1

        for stage in self._model.stages:
            stage_sum = 0.0
            for tree in stage.trees:
                stage_sum += self._evaluate_tree(tree, ii, x, y, scale, inv_area, vnorm)
            if stage_sum < stage.threshold:
                return False
        return True

    def _evaluate_tree(
        self,
        tree: Tree,
        ii: Sequence[Sequence[int]],
        x: int,
        y: int,
        scale: float,
        inv_area: float,
        vnorm: float,
    ) -> float:
        node = tree.nodes[0]
        while True:
            rect_sum = 0.0
            for rect in node.rects:
                rx = round_half_up(rect.x * scale + x)
                ry = round_half_up(rect.y * scale + y)
                rw = round_half_up(rect.width * scale)
                rh = round_half_up(rect.height * scale)
                rect_sum += (ii[ry + rh][rx + rw] + ii[ry][rx] - ii[ry + rh][rx] - ii[ry][rx + rw]) * rect.weight
            rect_sum *= inv_area

            if rect_sum >= node.threshold * vnorm:
                if node.right_idx == LEAF:
                    return node.right_val
                node = tree.nodes[node.right_idx]
            else:
                if node.left_idx == LEAF:
                    return node.left_val
                node = tree.nodes[node.left_idx]

    # -- Batched ------------------------------------------------------------

    def evaluate_batch(
        self,
        integral: IntegralImage,
        xs: NDArray[np.int64],
        ys: NDArray[np.int64],
        scale: float,
        size: int,
    ) -> NDArray[np.bool_]:
        """Evaluate many same-sized windows at once.

        Returns:
            Boolean mask aligned with ``xs``/``ys``; True where the window is accepted.
        """
        inv_area = 1 / (size * size)
        ii, ii2 = integral.ii, integral.ii2

        mean = _rect_sums(ii, xs, ys, size, size) * inv_area
        vnorm = _rect_sums(ii2, xs, ys, size, size) * inv_area - (mean * mean)
        vnorm = np.where(vnorm > 1, np.sqrt(np.maximum(vnorm, 1.0)), 1.0)

        accepted = np.zeros(len(xs), dtype=bool)
        alive = np.arange(len(xs))
        for stage in self._model.stages:
            if alive.size == 0:
                return accepted
            stage_sum = np.zeros(alive.size)
            for tree in stage.trees:
                stage_sum += self._evaluate_tree_batch(
                    tree, ii, xs[alive], ys[alive], scale, inv_area, vnorm[alive]
                )
            alive = alive[~(stage_sum < stage.threshold)]
        accepted[alive] = True
        return accepted

    def _evaluate_tree_batch(
        self,
        tree: Tree,
        ii: NDArray[np.int64],
        xs: NDArray[np.int64],
        ys: NDArray[np.int64],
        scale: float,
        inv_area: float,
        vnorm: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        out = np.zeros(len(xs))
        current = np.zeros(len(xs), dtype=np.int64)
        pending = np.ones(len(xs), dtype=bool)

        while pending.any():
            for node_idx in np.unique(current[pending]):
                sel = np.flatnonzero(pending & (current == node_idx))
                node = tree.nodes[int(node_idx)]
                value = _node_feature(node, ii, xs[sel], ys[sel], scale, inv_area)
                go_right = value >= node.threshold * vnorm[sel]
                _advance(sel[go_right], node.right_idx, node.right_val, current, pending, out)
                _advance(sel[~go_right], node.left_idx, node.left_val, current, pending, out)
        return out


def _advance(
    sel: NDArray[np.intp],
    child: int,
    leaf_val: float,
    current: NDArray[np.int64],
    pending: NDArray[np.bool_],
    out: NDArray[np.float64],
) -> None:
    if child == LEAF:
        out[sel] = leaf_val
        pending[sel] = False
    else:
        current[sel] = child


def _node_feature(
    node: Node,
    ii: NDArray[np.int64],
    xs: NDArray[np.int64],
    ys: NDArray[np.int64],
    scale: float,
    inv_area: float,
) -> NDArray[np.float64]:
    rect_sum = np.zeros(len(xs))
    for rect in node.rects:
        rx = np.floor(rect.x * scale + xs + 0.5).astype(np.int64)
        ry = np.floor(rect.y * scale + ys + 0.5).astype(np.int64)
        rw = round_half_up(rect.width * scale)
        rh = round_half_up(rect.height * scale)
        rect_sum += _rect_sums(ii, rx, ry, rw, rh) * rect.weight
    rect_sum *= inv_area
    return rect_sum


def _rect_sums(
    table: NDArray[np.int64],
    xs: NDArray[np.int64],
    ys: NDArray[np.int64],
    w: int,
    h: int,
) -> NDArray[np.int64]:
    return table[ys + h, xs + w] + table[ys, xs] - table[ys + h, xs] - table[ys, xs + w]
