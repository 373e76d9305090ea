"""Sparse Jacobian and Hessian recovery from compressed AD products.

Column coloring + JVPs: same-colored columns share no nonzero row,
so one JVP with the sum of their unit vectors yields all of them.
Row coloring + VJPs: the transposed argument.
Star coloring + HVPs: exploits Hessian symmetry for fewer colors.

The pipeline is

    seeds = seed_vectors(colored)
    compressed = compress(product_fn, seeds)
    matrix = decompress(compressed, colored)

where ``product_fn`` is supplied by a differentiation engine.
`jvp_operator`, `vjp_operator` and `hvp_operator` build it with JAX.

Decompression only reads positions in the declared pattern.
If the pattern misses a true nonzero, that entry is silently absent
from the result; use `sparsetrace.verify` to compare against a dense reference.
"""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import jax
import jax.numpy as jnp
import numpy as np
from jax.experimental.sparse import BCOO
from numpy.typing import ArrayLike, DTypeLike, NDArray

from sparsetrace._commons import as_input, scalar_function, vector_function
from sparsetrace.coloring import hessian_coloring, jacobian_coloring
from sparsetrace.pattern import ColoredPattern

logger = logging.getLogger(__name__)

ProductFn = Callable[[NDArray], ArrayLike]
"""Maps a seed vector to a JVP, VJP or HVP at a fixed point."""


# =========================================================================
# Compression and decompression
# =========================================================================


def seed_vectors(
    colored_pattern: ColoredPattern, dtype: DTypeLike = np.float64
) -> NDArray:
    """One 0/1 seed per color, shape ``(num_colors, len(colors))``.

    Seed ``c`` has a 1 at every column (or row, for VJPs) of color ``c``.
    """
    return colored_pattern.seed_matrix.astype(dtype)


def compress(
    product_fn: ProductFn,
    seeds: ArrayLike,
    *,
    max_workers: int | None = None,
) -> NDArray:
    """Evaluate ``product_fn`` once per seed and stack the results as columns.

    Products for different colors are independent.
    With ``max_workers``, they are evaluated on a thread pool;
    column ``c`` always holds the product for seed ``c``.
    Errors raised by ``product_fn`` propagate unchanged.

    Args:
        product_fn: Returns the AD product for one seed.
        seeds: Seed vectors, one per row.
        max_workers: Thread pool size.
            If None, products are evaluated sequentially.

    Returns:
        Compressed matrix of shape ``(product_size, num_seeds)``.
    """
    seeds = np.asarray(seeds)
    if len(seeds) == 0:
        return np.zeros((0, 0))

    if max_workers is None:
        products = [np.ravel(product_fn(seed)) for seed in seeds]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            products = [np.ravel(p) for p in executor.map(product_fn, seeds)]

    logger.debug("Evaluated %d AD products", len(products))
    return np.column_stack(products)


def decompress(compressed: ArrayLike, colored_pattern: ColoredPattern) -> BCOO:
    """Read every pattern entry out of the compressed matrix.

    For a JVP coloring, entry ``(i, j)`` is ``compressed[i, colors[j]]``.
    For a VJP coloring, it is ``compressed[j, colors[i]]``.
    For an HVP (star) coloring, the unambiguous one of
    ``compressed[j, colors[i]]`` and ``compressed[i, colors[j]]`` is used.

    Returns:
        Sparse matrix with exactly the pattern's support, as BCOO.

    Raises:
        ValueError: If ``compressed`` does not have shape
            ``(product_size, num_colors)``.
    """
    sparsity = colored_pattern.sparsity
    if sparsity.nnz == 0:
        return sparsity.to_bcoo(data=jnp.zeros(0))

    compressed = np.asarray(compressed)
    expected = (colored_pattern.product_size, colored_pattern.num_colors)
    if compressed.shape != expected:
        msg = (
            f"Compressed matrix for {colored_pattern!r} must have shape {expected}, "
            f"got {compressed.shape}"
        )
        raise ValueError(msg)

    elem_idx, color_idx = colored_pattern.extraction_indices
    return sparsity.to_bcoo(data=jnp.asarray(compressed[elem_idx, color_idx]))


# =========================================================================
# JAX product operators
# =========================================================================


def jvp_operator(f: Callable, x: ArrayLike) -> ProductFn:
    """Seed ``v`` ↦ ``J(x) @ v`` via forward-mode AD."""
    fn = vector_function(f)
    x = as_input(x)

    def jvp(seed: NDArray) -> NDArray:
        tangent = jnp.asarray(seed, dtype=x.dtype)
        _, out = jax.jvp(fn, (x,), (tangent,))
        return np.asarray(out)

    return jvp


def vjp_operator(f: Callable, x: ArrayLike) -> ProductFn:
    """Seed ``u`` ↦ ``u @ J(x)`` via reverse-mode AD.

    The forward pass runs once; each call only pulls back a seed.
    """
    y, pullback = jax.vjp(vector_function(f), as_input(x))

    def vjp(seed: NDArray) -> NDArray:
        (out,) = pullback(jnp.asarray(seed, dtype=y.dtype))
        return np.asarray(out)

    return vjp


def hvp_operator(f: Callable, x: ArrayLike) -> ProductFn:
    """Seed ``v`` ↦ ``H(x) @ v`` via forward-over-reverse AD."""
    grad = jax.grad(scalar_function(f))
    x = as_input(x)

    def hvp(seed: NDArray) -> NDArray:
        tangent = jnp.asarray(seed, dtype=x.dtype)
        _, out = jax.jvp(grad, (x,), (tangent,))
        return np.asarray(out)

    return hvp


# =========================================================================
# End-to-end sparse derivatives
# =========================================================================


def jacobian(
    f: Callable,
    x: ArrayLike,
    colored_pattern: ColoredPattern | None = None,
    *,
    max_workers: int | None = None,
) -> BCOO:
    """Compute the sparse Jacobian of ``f`` at ``x``.

    Uses column coloring + JVPs or row coloring + VJPs,
    as chosen by the colored pattern.

    Args:
        f: Function taking a 1D array and returning an array or a sequence
            of scalars. It must be traceable by `sparsetrace.jacobian_sparsity`
            when no ``colored_pattern`` is given.
        x: 1D input point.
        colored_pattern: Pre-computed result of `jacobian_coloring`
            or `color_jacobian_pattern`.
            If None, sparsity is detected and colored automatically.
        max_workers: Evaluate the AD products on this many threads.

    Returns:
        Sparse Jacobian of shape ``(m, n)`` as BCOO.
    """
    x = as_input(x)
    if colored_pattern is None:
        colored_pattern = jacobian_coloring(f, x.size)
    _check_input(colored_pattern, x)

    if colored_pattern.sparsity.nnz == 0:
        return colored_pattern.sparsity.to_bcoo(data=jnp.zeros(0, dtype=x.dtype))

    if colored_pattern.mode == "JVP":
        product_fn = jvp_operator(f, x)
    elif colored_pattern.mode == "VJP":
        product_fn = vjp_operator(f, x)
    else:
        msg = f"Expected a JVP or VJP coloring for a Jacobian, got {colored_pattern!r}"
        raise ValueError(msg)

    seeds = seed_vectors(colored_pattern, dtype=x.dtype)
    compressed = compress(product_fn, seeds, max_workers=max_workers)
    return decompress(compressed, colored_pattern)


def hessian(
    f: Callable,
    x: ArrayLike,
    colored_pattern: ColoredPattern | None = None,
    *,
    max_workers: int | None = None,
) -> BCOO:
    """Compute the sparse Hessian of scalar-valued ``f`` at ``x``.

    Args:
        f: Function taking a 1D array and returning a scalar
            (or a single-element sequence).
        x: 1D input point.
        colored_pattern: Pre-computed result of `hessian_coloring`
            or `color_hessian_pattern`.
            If None, sparsity is detected and star-colored automatically.
        max_workers: Evaluate the HVPs on this many threads.

    Returns:
        Sparse Hessian of shape ``(n, n)`` as BCOO.
    """
    x = as_input(x)
    if colored_pattern is None:
        colored_pattern = hessian_coloring(f, x.size)
    _check_input(colored_pattern, x)

    if colored_pattern.sparsity.nnz == 0:
        return colored_pattern.sparsity.to_bcoo(data=jnp.zeros(0, dtype=x.dtype))

    if colored_pattern.mode != "HVP":
        msg = f"Expected an HVP coloring for a Hessian, got {colored_pattern!r}"
        raise ValueError(msg)

    seeds = seed_vectors(colored_pattern, dtype=x.dtype)
    compressed = compress(hvp_operator(f, x), seeds, max_workers=max_workers)
    return decompress(compressed, colored_pattern)


# =========================================================================
# Private helpers
# =========================================================================


def _check_input(colored_pattern: ColoredPattern, x: jax.Array) -> None:
    if colored_pattern.sparsity.n != x.size:
        msg = (
            f"Input of size {x.size} does not match {colored_pattern!r}, "
            f"which expects {colored_pattern.sparsity.n} inputs"
        )
        raise ValueError(msg)
