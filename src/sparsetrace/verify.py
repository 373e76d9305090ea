"""Verification of sparse results against dense JAX references.

Tracing can only under-report nonzeros through zero-derivative operations
such as ``sign`` or ``floor`` used as switches.
Such omissions are invisible to decompression,
so comparing with a dense reference is the way to catch them.
"""

from collections.abc import Callable

import jax
import numpy as np
from numpy.typing import ArrayLike

from sparsetrace._commons import as_input, scalar_function, vector_function
from sparsetrace.coloring import hessian_coloring, jacobian_coloring
from sparsetrace.decompression import hessian, jacobian
from sparsetrace.pattern import ColoredPattern


class VerificationError(AssertionError):
    """Raised when a sparse result does not match the dense JAX reference.

    This means the sparsity pattern is missing nonzeros,
    typically because the function switches on a zero-derivative operation.
    """


def check_jacobian_correctness(
    f: Callable,
    x: ArrayLike,
    *,
    colored_pattern: ColoredPattern | None = None,
    rtol: float = 1e-7,
    atol: float = 1e-7,
) -> None:
    """Compare the sparse Jacobian at ``x`` with ``jax.jacobian``.

    Args:
        f: Function taking a 1D array, written against `sparsetrace.ops`.
        x: Point at which both Jacobians are evaluated.
        colored_pattern: Pattern to check.
            Detected and colored from ``f`` when omitted.
        rtol: Relative tolerance passed to ``assert_allclose``.
        atol: Absolute tolerance passed to ``assert_allclose``.

    Raises:
        VerificationError: If an entry outside the pattern is nonzero
            or any value differs beyond the tolerances.
    """
    x = as_input(x)
    if colored_pattern is None:
        colored_pattern = jacobian_coloring(f, x.size)

    sparse = jacobian(f, x, colored_pattern).todense()
    dense = jax.jacobian(vector_function(f))(x)
    _check_allclose(sparse, dense, "Jacobian", rtol=rtol, atol=atol)


def check_hessian_correctness(
    f: Callable,
    x: ArrayLike,
    *,
    colored_pattern: ColoredPattern | None = None,
    rtol: float = 1e-7,
    atol: float = 1e-7,
) -> None:
    """Compare the sparse Hessian at ``x`` with ``jax.hessian``.

    Same arguments as `check_jacobian_correctness`,
    for a scalar-valued ``f``.
    """
    x = as_input(x)
    if colored_pattern is None:
        colored_pattern = hessian_coloring(f, x.size)

    sparse = hessian(f, x, colored_pattern).todense()
    dense = jax.hessian(scalar_function(f))(x)
    _check_allclose(sparse, dense, "Hessian", rtol=rtol, atol=atol)


def _check_allclose(
    sparse: ArrayLike,
    dense: ArrayLike,
    name: str,
    *,
    rtol: float,
    atol: float,
) -> None:
    sparse = np.asarray(sparse)
    dense = np.asarray(dense)

    if sparse.shape != dense.shape:
        msg = (
            f"Sparse {name} has shape {sparse.shape} "
            f"but the dense reference has shape {dense.shape}."
        )
        raise VerificationError(msg)

    try:
        np.testing.assert_allclose(sparse, dense, rtol=rtol, atol=atol)
    except AssertionError:
        msg = (
            f"Sparse {name} does not match the dense reference. "
            "The sparsity pattern is likely missing nonzeros."
        )
        raise VerificationError(msg) from None
