"""Graph coloring for sparse Jacobian and Hessian computation.

Greedy coloring assigns colors to vertices such that conflicting vertices
get different colors.
Column coloring lets one JVP compute several Jacobian columns at once,
row coloring does the same for rows with VJPs,
and symmetric (star) coloring exploits Hessian symmetry.

Greedy coloring is a heuristic: the number of colors is valid
but not necessarily minimal.

Algorithms adapted from SparseMatrixColorings.jl (MIT license)
Copyright (c) 2024 Guillaume Dalle, Alexis Montoison, and contributors
https://github.com/gdalle/SparseMatrixColorings.jl
"""

import logging
from collections.abc import Callable
from typing import Literal

import numpy as np
from numpy.typing import NDArray

from sparsetrace.detection import hessian_sparsity, jacobian_sparsity
from sparsetrace.pattern import ColoredPattern, SparsityPattern

logger = logging.getLogger(__name__)

Order = Literal["largest_first", "natural"]
Partition = Literal["row", "column", "auto"]

_DEFAULT_ORDER: Order = "largest_first"

# =========================================================================
# Public API: high-level convenience functions
# =========================================================================


def jacobian_coloring(
    f: Callable,
    n: int,
    partition: Partition = "auto",
    order: Order = _DEFAULT_ORDER,
) -> ColoredPattern:
    """Detect Jacobian sparsity and color it in one step.

    Args:
        f: Function taking a 1D array of length ``n``.
        n: Input dimension.
        partition: Which partition to color (see `color_jacobian_pattern`).
        order: Vertex ordering for the greedy pass.

    Returns:
        A `ColoredPattern` ready for `sparsetrace.jacobian`.
    """
    return color_jacobian_pattern(jacobian_sparsity(f, n), partition, order)


def hessian_coloring(f: Callable, n: int, order: Order = _DEFAULT_ORDER) -> ColoredPattern:
    """Detect Hessian sparsity and star-color it in one step.

    Returns:
        A `ColoredPattern` ready for `sparsetrace.hessian`.
    """
    return color_hessian_pattern(hessian_sparsity(f, n), order)


# =========================================================================
# Public API: pattern coloring
# =========================================================================


def color_jacobian_pattern(
    sparsity: SparsityPattern,
    partition: Partition = "auto",
    order: Order = _DEFAULT_ORDER,
) -> ColoredPattern:
    """Color a sparsity pattern for sparse Jacobian computation.

    Args:
        sparsity: Sparsity pattern of shape ``(m, n)``.
        partition: ``"column"`` colors columns (one JVP per color),
            ``"row"`` colors rows (one VJP per color),
            ``"auto"`` picks whichever needs fewer colors.
            Ties go to column coloring since JVPs are cheaper.
        order: Vertex ordering for the greedy pass.

    Returns:
        A `ColoredPattern` ready for `sparsetrace.jacobian`.
    """
    if partition == "column":
        colors, num = color_cols(sparsity, order)
        colored = ColoredPattern(sparsity, colors=colors, num_colors=num, mode="JVP")
    elif partition == "row":
        colors, num = color_rows(sparsity, order)
        colored = ColoredPattern(sparsity, colors=colors, num_colors=num, mode="VJP")
    elif partition == "auto":
        col_colors, num_col = color_cols(sparsity, order)
        row_colors, num_row = color_rows(sparsity, order)
        if num_col <= num_row:
            colored = ColoredPattern(
                sparsity, colors=col_colors, num_colors=num_col, mode="JVP"
            )
        else:
            colored = ColoredPattern(
                sparsity, colors=row_colors, num_colors=num_row, mode="VJP"
            )
    else:
        msg = f"partition must be 'row', 'column' or 'auto', got {partition!r}"
        raise ValueError(msg)

    logger.debug("Colored Jacobian pattern: %r", colored)
    return colored


def color_hessian_pattern(
    sparsity: SparsityPattern, order: Order = _DEFAULT_ORDER
) -> ColoredPattern:
    """Color a symmetric sparsity pattern for sparse Hessian computation.

    Uses star coloring,
    which needs fewer colors than column coloring on symmetric patterns.
    """
    colors, num = color_symmetric(sparsity, order)
    colored = ColoredPattern(sparsity, colors=colors, num_colors=num, mode="HVP")
    logger.debug("Colored Hessian pattern: %r", colored)
    return colored


# =========================================================================
# Public API: low-level coloring algorithms
# =========================================================================


def color_cols(
    sparsity: SparsityPattern, order: Order = _DEFAULT_ORDER
) -> tuple[NDArray[np.int32], int]:
    """Greedy column coloring for sparse Jacobian computation.

    Assigns colors to columns such that no two columns sharing a nonzero row
    have the same color.
    Each column receives the smallest color
    not yet used by a column it conflicts with.

    Columns without nonzeros conflict with nothing,
    so an all-zero pattern with ``n > 0`` columns uses exactly one color.

    Args:
        sparsity: Sparsity pattern of shape ``(m, n)``.
        order: ``"largest_first"`` visits columns by decreasing number
            of conflicts (ties by index),
            ``"natural"`` visits them by index.

    Returns:
        Tuple ``(colors, num_colors)`` where ``colors`` has shape ``(n,)``.
    """
    return _greedy_color(_conflict_sets(sparsity.n, sparsity.row_to_cols), order)


def color_rows(
    sparsity: SparsityPattern, order: Order = _DEFAULT_ORDER
) -> tuple[NDArray[np.int32], int]:
    """Greedy row coloring for sparse Jacobian computation.

    Assigns colors to rows such that no two rows sharing a nonzero column
    have the same color,
    so that one VJP with a combined seed computes all rows of a color.

    Returns:
        Tuple ``(colors, num_colors)`` where ``colors`` has shape ``(m,)``.
    """
    return _greedy_color(_conflict_sets(sparsity.m, sparsity.col_to_rows), order)


def color_symmetric(
    sparsity: SparsityPattern, order: Order = _DEFAULT_ORDER
) -> tuple[NDArray[np.int32], int]:
    """Greedy star coloring for sparse Hessian computation.

    A star coloring is a distance-1 coloring of the adjacency graph
    in which every path on 4 vertices uses at least 3 colors
    (Gebremedhin et al., 2005, Algorithm 4.1).
    This allows symmetric decompression.

    Vertices two steps apart through a still uncolored vertex
    never share a color,
    since that vertex would later close a two-colored 4-path.

    Returns:
        Tuple ``(colors, num_colors)`` where ``colors`` has shape ``(n,)``.

    Raises:
        ValueError: If the pattern is not square.
    """
    if sparsity.m != sparsity.n:
        msg = f"Symmetric coloring requires a square pattern, got shape {sparsity.shape}"
        raise ValueError(msg)

    n = sparsity.n
    adj: list[set[int]] = [set() for _ in range(n)]
    for i, j in zip(sparsity.rows, sparsity.cols, strict=True):
        i, j = int(i), int(j)
        if i != j:
            adj[i].add(j)
            adj[j].add(i)

    colors = np.full(n, -1, dtype=np.int32)
    num_colors = 0

    for v in _vertex_order(adj, order):
        forbidden = {int(colors[w]) for w in adj[v] if colors[w] >= 0}

        for w in adj[v]:
            if colors[w] < 0:
                # w is colored later and must not join two equal colors:
                # v may not repeat any color already two steps away via w.
                forbidden.update(
                    int(colors[u]) for u in adj[w] if u != v and colors[u] >= 0
                )
                continue
            # Giving v the color of u, two steps away via w, is forbidden
            # if u already has another neighbor x colored like w:
            # x-u-w-v would be a 4-path using two colors.
            for u in adj[w]:
                if u == v or colors[u] < 0 or colors[u] in forbidden:
                    continue
                if any(x != w and colors[x] == colors[w] for x in adj[u]):
                    forbidden.add(int(colors[u]))

        color = _smallest_missing(forbidden)
        colors[v] = color
        num_colors = max(num_colors, color + 1)

    return colors, num_colors


# =========================================================================
# Private helpers
# =========================================================================


def _greedy_color(conflicts: list[set[int]], order: Order) -> tuple[NDArray[np.int32], int]:
    """Assign each vertex, in order, the smallest color unused by its conflicts."""
    colors = np.full(len(conflicts), -1, dtype=np.int32)
    num_colors = 0

    for v in _vertex_order(conflicts, order):
        used = {int(colors[w]) for w in conflicts[v] if colors[w] >= 0}
        color = _smallest_missing(used)
        colors[v] = color
        num_colors = max(num_colors, color + 1)

    return colors, num_colors


def _vertex_order(adjacency: list[set[int]], order: Order) -> list[int]:
    vertices = range(len(adjacency))
    if order == "natural":
        return list(vertices)
    if order == "largest_first":
        # sorted() is stable, so equal degrees keep index order.
        return sorted(vertices, key=lambda v: len(adjacency[v]), reverse=True)
    msg = f"order must be 'largest_first' or 'natural', got {order!r}"
    raise ValueError(msg)


def _smallest_missing(used: set[int]) -> int:
    color = 0
    while color in used:
        color += 1
    return color


def _conflict_sets(num_vertices: int, groups: dict[int, list[int]]) -> list[set[int]]:
    """Build the conflict graph: vertices in a common group conflict pairwise.

    For column coloring the groups are the rows (``row_to_cols``),
    for row coloring the columns (``col_to_rows``).
    """
    conflicts: list[set[int]] = [set() for _ in range(num_vertices)]
    for members in groups.values():
        for k, a in enumerate(members):
            for b in members[k + 1 :]:
                conflicts[a].add(b)
                conflicts[b].add(a)
    return conflicts
