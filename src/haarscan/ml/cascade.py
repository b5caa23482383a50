"""Cascade model: stages of boosted decision trees over Haar-like rectangles.

A model is loaded once and never mutated. The persisted shape is the one
used by the existing pretrained ``detection.dat`` files::

    stage = [trees, threshold]
    tree  = [node, ...]                      # node 0 is the root
    node  = [[threshold, leftval, rightval, leftidx, rightidx], [rect, ...]]
    rect  = [x, y, width, height, weight]

Child indices address nodes within the same tree; ``-1`` means the node's
own leaf value is the tree output for that branch.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import phpserialize

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

WINDOW_SIZE: int = 20
"""Side length of the square window the features were trained on."""

LEAF: int = -1


class CascadeFormatError(ValueError):
    """Raised when cascade data does not have the required structure."""


@dataclass(frozen=True)
class Rect:
    """Weighted rectangle relative to the window origin, in unscaled units."""

    x: float
    y: float
    width: float
    height: float
    weight: float


@dataclass(frozen=True)
class Node:
    threshold: float
    left_val: float
    right_val: float
    left_idx: int
    right_idx: int
    rects: tuple[Rect, ...]


@dataclass(frozen=True)
class Tree:
    nodes: tuple[Node, ...]


@dataclass(frozen=True)
class Stage:
    trees: tuple[Tree, ...]
    threshold: float


@dataclass(frozen=True)
class CascadeStats:
    stages: int
    trees: int
    nodes: int
    rects: int


@dataclass(frozen=True)
class CascadeModel:
    """Immutable sequence of classification stages."""

    stages: tuple[Stage, ...]

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_decoded(cls, data: Any) -> CascadeModel:
        """Build a model from already-decoded nested sequences.

        Raises:
            CascadeFormatError: If the data does not match the persisted shape.
        """
        stages = tuple(_parse_stage(raw, i) for i, raw in enumerate(_as_sequence(data, "cascade")))
        if not stages:
            raise CascadeFormatError("Cascade has no stages")
        return cls(stages=stages)

    @classmethod
    def load(cls, data: bytes) -> CascadeModel:
        """Parse a serialized cascade (JSON or PHP ``serialize()`` output).

        Raises:
            CascadeFormatError: If the bytes cannot be decoded or have the wrong shape.
        """
        stripped = data.lstrip()
        if stripped.startswith(b"a:"):
            try:
                decoded = phpserialize.loads(stripped)
            except ValueError as exc:
                raise CascadeFormatError(f"Invalid PHP-serialized cascade: {exc}") from exc
            decoded = _php_arrays_to_lists(decoded)
        else:
            try:
                decoded = json.loads(stripped)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise CascadeFormatError(f"Invalid JSON cascade: {exc}") from exc
        return cls.from_decoded(decoded)

    @classmethod
    def load_file(cls, path: str | Path) -> CascadeModel:
        """Read and parse a cascade file."""
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise CascadeFormatError(f"Couldn't load detection data from {path}: {exc}") from exc
        model = cls.load(data)
        stats = model.stats()
        logger.info(
            "Loaded cascade %s (%d stages, %d trees, %d nodes)",
            path,
            stats.stages,
            stats.trees,
            stats.nodes,
        )
        return model

    # -- Introspection ------------------------------------------------------

    def stats(self) -> CascadeStats:
        trees = [tree for stage in self.stages for tree in stage.trees]
        nodes = [node for tree in trees for node in tree.nodes]
        return CascadeStats(
            stages=len(self.stages),
            trees=len(trees),
            nodes=len(nodes),
            rects=sum(len(node.rects) for node in nodes),
        )


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _php_arrays_to_lists(value: Any) -> Any:
    # PHP arrays decode to int-keyed dicts.
    if isinstance(value, dict):
        try:
            keys = sorted(value)
        except TypeError as exc:
            raise CascadeFormatError("PHP array has mixed key types") from exc
        return [_php_arrays_to_lists(value[key]) for key in keys]
    return value


def _as_sequence(value: Any, where: str) -> Sequence[Any]:
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
        raise CascadeFormatError(f"{where}: expected a sequence, got {type(value).__name__}")
    return value


def _as_number(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CascadeFormatError(f"{where}: expected a number, got {value!r}")
    return float(value)


def _as_index(value: Any, where: str) -> int:
    number = _as_number(value, where)
    if not number.is_integer():
        raise CascadeFormatError(f"{where}: expected an integer index, got {value!r}")
    return int(number)


def _parse_stage(raw: Any, i: int) -> Stage:
    where = f"stage {i}"
    fields = _as_sequence(raw, where)
    if len(fields) != 2:
        raise CascadeFormatError(f"{where}: expected [trees, threshold]")
    trees = tuple(_parse_tree(t, f"{where} tree {j}") for j, t in enumerate(_as_sequence(fields[0], where)))
    if not trees:
        raise CascadeFormatError(f"{where}: stage has no trees")
    return Stage(trees=trees, threshold=_as_number(fields[1], f"{where} threshold"))


def _parse_tree(raw: Any, where: str) -> Tree:
    nodes = tuple(_parse_node(n, f"{where} node {k}") for k, n in enumerate(_as_sequence(raw, where)))
    if not nodes:
        raise CascadeFormatError(f"{where}: tree has no nodes")
    for k, node in enumerate(nodes):
        for child in (node.left_idx, node.right_idx):
            if child != LEAF and not 0 <= child < len(nodes):
                raise CascadeFormatError(
                    f"{where} node {k}: child index {child} outside tree of {len(nodes)} nodes"
                )
    _check_acyclic(nodes, where)
    return Tree(nodes=nodes)


def _check_acyclic(nodes: tuple[Node, ...], where: str) -> None:
    # Every node reachable from the root must be reached exactly once.
    visited = {0}
    pending = [0]
    while pending:
        k = pending.pop()
        for child in (nodes[k].left_idx, nodes[k].right_idx):
            if child == LEAF:
                continue
            if child in visited:
                raise CascadeFormatError(f"{where} node {k}: child index {child} revisits node {child}")
            visited.add(child)
            pending.append(child)


def _parse_node(raw: Any, where: str) -> Node:
    fields = _as_sequence(raw, where)
    if len(fields) != 2:
        raise CascadeFormatError(f"{where}: expected [values, rects]")
    values = _as_sequence(fields[0], where)
    if len(values) != 5:
        raise CascadeFormatError(f"{where}: expected 5 node values, got {len(values)}")
    rects = tuple(_parse_rect(r, f"{where} rect {m}") for m, r in enumerate(_as_sequence(fields[1], where)))
    return Node(
        threshold=_as_number(values[0], f"{where} threshold"),
        left_val=_as_number(values[1], f"{where} leftval"),
        right_val=_as_number(values[2], f"{where} rightval"),
        left_idx=_as_index(values[3], f"{where} leftidx"),
        right_idx=_as_index(values[4], f"{where} rightidx"),
        rects=rects,
    )


def _parse_rect(raw: Any, where: str) -> Rect:
    fields = _as_sequence(raw, where)
    if len(fields) != 5:
        raise CascadeFormatError(f"{where}: expected [x, y, width, height, weight]")
    x, y, width, height, weight = (_as_number(v, where) for v in fields)
    return Rect(x=x, y=y, width=width, height=height, weight=weight)
