"""Pattern data structures shared by detection, coloring and decompression."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Set
from dataclasses import dataclass
from functools import cached_property
from typing import Literal

import jax.numpy as jnp
import numpy as np
from jax.experimental.sparse import BCOO
from numpy.typing import NDArray
from scipy.sparse import coo_matrix

from sparsetrace._display import colored_repr, colored_str, sparsity_repr, sparsity_str

Mode = Literal["JVP", "VJP", "HVP"]


@dataclass(frozen=True)
class SparsityPattern:
    """Boolean matrix pattern holding only the positions of possible nonzeros.

    Row and column indices are stored as parallel arrays,
    sorted by row and then by column when built from index sets.

    Attributes:
        rows: Row indices of nonzero entries, shape ``(nnz,)``.
        cols: Column indices of nonzero entries, shape ``(nnz,)``.
        shape: Matrix dimensions ``(m, n)``.
    """

    rows: NDArray[np.int32]
    cols: NDArray[np.int32]
    shape: tuple[int, int]

    def __post_init__(self) -> None:
        if len(self.rows) != len(self.cols):
            msg = (
                "rows and cols must have same length, "
                f"got {len(self.rows)} and {len(self.cols)}"
            )
            raise ValueError(msg)
        m, n = self.shape
        if self.nnz and (
            self.rows.min() < 0
            or self.cols.min() < 0
            or self.rows.max() >= m
            or self.cols.max() >= n
        ):
            msg = f"Pattern indices out of bounds for shape {self.shape}"
            raise ValueError(msg)

    @property
    def nnz(self) -> int:
        """Number of structural nonzeros."""
        return len(self.rows)

    @property
    def m(self) -> int:
        """Number of rows (outputs)."""
        return self.shape[0]

    @property
    def n(self) -> int:
        """Number of columns (inputs)."""
        return self.shape[1]

    @property
    def density(self) -> float:
        """Fraction of entries that are structural nonzeros."""
        total = self.m * self.n
        return self.nnz / total if total > 0 else 0.0

    @cached_property
    def col_to_rows(self) -> dict[int, list[int]]:
        """Row indices of the nonzeros in each column."""
        result: dict[int, list[int]] = defaultdict(list)
        for row, col in zip(self.rows, self.cols, strict=True):
            result[int(col)].append(int(row))
        return dict(result)

    @cached_property
    def row_to_cols(self) -> dict[int, list[int]]:
        """Column indices of the nonzeros in each row."""
        result: dict[int, list[int]] = defaultdict(list)
        for row, col in zip(self.rows, self.cols, strict=True):
            result[int(row)].append(int(col))
        return dict(result)

    # Constructors

    @classmethod
    def from_coordinates(
        cls,
        rows: NDArray[np.int32] | list[int],
        cols: NDArray[np.int32] | list[int],
        shape: tuple[int, int],
    ) -> SparsityPattern:
        """Create a pattern from row and column index arrays."""
        return cls(
            rows=np.asarray(rows, dtype=np.int32),
            cols=np.asarray(cols, dtype=np.int32),
            shape=(int(shape[0]), int(shape[1])),
        )

    @classmethod
    def from_index_sets(cls, index_sets: Iterable[Set[int]], n: int) -> SparsityPattern:
        """Create a pattern with one row per dependency set.

        Entry ``(i, j)`` is present iff ``j`` is in ``index_sets[i]``.

        Example: ``[{0, 2}, {1}, {0, 1}]`` with ``n=3`` gives::

            ● ⋅ ●
            ⋅ ● ⋅
            ● ● ⋅
        """
        rows: list[int] = []
        cols: list[int] = []
        m = 0
        for i, deps in enumerate(index_sets):
            m = i + 1
            for j in sorted(deps):
                rows.append(i)
                cols.append(j)
        return cls.from_coordinates(rows, cols, (m, n))

    @classmethod
    def from_dense(cls, dense: NDArray) -> SparsityPattern:
        """Create a pattern from a dense matrix; nonzeros mark pattern entries."""
        dense = np.asarray(dense)
        rows, cols = np.nonzero(dense)
        return cls.from_coordinates(rows, cols, (dense.shape[0], dense.shape[1]))

    @classmethod
    def from_bcoo(cls, bcoo: BCOO) -> SparsityPattern:
        """Create a pattern from the stored indices of a JAX BCOO matrix."""
        indices = np.asarray(bcoo.indices).reshape(-1, 2)
        return cls.from_coordinates(indices[:, 0], indices[:, 1], bcoo.shape)

    # Conversion

    def todense(self) -> NDArray[np.int8]:
        """Dense 0/1 matrix with ones at pattern positions."""
        result = np.zeros(self.shape, dtype=np.int8)
        if self.nnz > 0:
            result[self.rows, self.cols] = 1
        return result

    def to_bcoo(self, data: jnp.ndarray | None = None) -> BCOO:
        """Convert to a JAX BCOO matrix.

        Args:
            data: Values in pattern order.
                If None, every entry is 1.
        """
        if data is None:
            data = jnp.ones(self.nnz, dtype=jnp.int8)
        if self.nnz == 0:
            indices = jnp.zeros((0, 2), dtype=jnp.int32)
        else:
            indices = jnp.stack([self.rows, self.cols], axis=1)
        return BCOO((data, indices), shape=self.shape)

    def to_scipy(self) -> coo_matrix:
        """Convert to a boolean ``scipy.sparse`` COO matrix."""
        return coo_matrix(
            (np.ones(self.nnz, dtype=bool), (self.rows, self.cols)),
            shape=self.shape,
            dtype=bool,
        )

    def __str__(self) -> str:
        return sparsity_str(self)

    def __repr__(self) -> str:
        return sparsity_repr(self)


@dataclass(frozen=True, repr=False)
class ColoredPattern:
    """A sparsity pattern together with a coloring of its rows or columns.

    Attributes:
        sparsity: The sparsity pattern that was colored.
        colors: Color of every column (``"JVP"``, ``"HVP"``)
            or every row (``"VJP"``), starting at 0.
        num_colors: Number of distinct colors,
            which is the number of AD products needed.
        mode: AD product evaluated once per color.
    """

    sparsity: SparsityPattern
    colors: NDArray[np.int32]
    num_colors: int
    mode: Mode

    def __post_init__(self) -> None:
        expected = self.sparsity.m if self.mode == "VJP" else self.sparsity.n
        if len(self.colors) != expected:
            msg = (
                f"{self.mode} coloring of a pattern with shape {self.sparsity.shape} "
                f"needs {expected} colors, got {len(self.colors)}"
            )
            raise ValueError(msg)

    @property
    def compresses_columns(self) -> bool:
        """Whether columns (JVP, HVP) or rows (VJP) were merged."""
        return self.mode != "VJP"

    @property
    def product_size(self) -> int:
        """Length of each AD product: ``m`` for JVPs, ``n`` otherwise."""
        return self.sparsity.m if self.mode == "JVP" else self.sparsity.n

    @cached_property
    def seed_matrix(self) -> NDArray[np.bool_]:
        """Boolean seeds of shape ``(num_colors, len(colors))``.

        Row ``c`` is the mask ``colors == c``.
        """
        return np.arange(self.num_colors)[:, None] == self.colors[None, :]

    @cached_property
    def extraction_indices(self) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
        """Positions of the pattern entries in the compressed matrix.

        Returns ``(elem_idx, color_idx)`` such that for a compressed matrix
        ``C`` of shape ``(product_size, num_colors)``::

            data = C[elem_idx, color_idx]

        lists the nonzero values in pattern order.

        For JVP: ``elem_idx = rows``, ``color_idx = colors[cols]``.
        For VJP: ``elem_idx = cols``, ``color_idx = colors[rows]``.
        For HVP: see `_star_extraction_indices`.
        """
        rows = self.sparsity.rows.astype(np.intp)
        cols = self.sparsity.cols.astype(np.intp)
        if self.mode == "JVP":
            return rows, self.colors[cols].astype(np.intp)
        if self.mode == "VJP":
            return cols, self.colors[rows].astype(np.intp)
        return self._star_extraction_indices()

    def _star_extraction_indices(self) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
        """Extraction indices for a star-colored symmetric pattern.

        For each nonzero ``(i, j)``:

        - diagonal: read ``C[i, colors[i]]``;
        - off-diagonal: read ``C[j, colors[i]]`` if no other row of
          column ``j`` shares ``colors[i]``, else ``C[i, colors[j]]``.

        Star coloring guarantees one of the two reads is unambiguous.
        """
        col_to_rows = self.sparsity.col_to_rows
        nnz = self.sparsity.nnz
        elem_idx = np.empty(nnz, dtype=np.intp)
        color_idx = np.empty(nnz, dtype=np.intp)

        for k, (i, j) in enumerate(
            zip(self.sparsity.rows, self.sparsity.cols, strict=True)
        ):
            i, j = int(i), int(j)
            color_i = self.colors[i]
            shared = any(
                r != i and self.colors[r] == color_i for r in col_to_rows.get(j, [])
            )
            if i == j or not shared:
                elem_idx[k], color_idx[k] = j, color_i
            else:
                elem_idx[k], color_idx[k] = i, self.colors[j]

        return elem_idx, color_idx

    def __repr__(self) -> str:
        return colored_repr(self)

    def __str__(self) -> str:
        return colored_str(self)
