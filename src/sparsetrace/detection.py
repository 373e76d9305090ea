"""Jacobian and Hessian sparsity detection by operator-overloading tracing."""

import logging
from collections.abc import Callable

import jax
import numpy as np

from sparsetrace._tracer import (
    GradientTracer,
    HessianTracer,
    IndexSet,
    Tracer,
    TraceIncompatibleError,
    is_constant,
)
from sparsetrace.pattern import SparsityPattern

logger = logging.getLogger(__name__)


def jacobian_sparsity(f: Callable, n: int) -> SparsityPattern:
    """Detect the global Jacobian sparsity pattern of f: R^n -> R^m.

    Runs ``f`` once on a 1D numpy object array of `GradientTracer`s,
    where input ``i`` depends only on index ``i``.
    No derivatives and no function values are computed,
    so the result is valid for all inputs.

    ``f`` may return a scalar, a sequence or an array.
    Outputs that are plain constants have empty rows.

    Args:
        f: Function taking a 1D array of length ``n``.
        n: Input dimension.

    Returns:
        SparsityPattern of shape ``(m, n)``.
            Entry ``(i, j)`` is present if output ``i`` may depend on input ``j``.

    Raises:
        TraceIncompatibleError: If ``f`` needs concrete values of its inputs
            or calls an operation tracers do not support.
    """
    outputs = _trace(f, GradientTracer, n)
    index_sets = [_gradient_indices(y, i) for i, y in enumerate(outputs)]
    pattern = SparsityPattern.from_index_sets(index_sets, n)
    logger.debug("Detected Jacobian sparsity: %r", pattern)
    return pattern


trace = jacobian_sparsity


def hessian_sparsity(f: Callable, n: int) -> SparsityPattern:
    """Detect the global Hessian sparsity pattern of f: R^n -> R.

    Runs ``f`` once on `HessianTracer`s,
    which track second-order interactions alongside first-order dependencies.
    A single-element output like ``[y]`` is accepted as a scalar.

    Args:
        f: Scalar-valued function taking a 1D array of length ``n``.
        n: Input dimension.

    Returns:
        Symmetric SparsityPattern of shape ``(n, n)``.
            Entry ``(i, j)`` is present if ``H[i, j]`` may be nonzero.

    Raises:
        ValueError: If ``f`` returns more than one value.
        TraceIncompatibleError: If ``f`` cannot be traced.
    """
    outputs = _trace(f, HessianTracer, n)
    if len(outputs) != 1:
        msg = f"Expected scalar-valued function, but f returned {len(outputs)} values."
        raise ValueError(msg)

    (y,) = outputs
    if isinstance(y, HessianTracer):
        pairs = y.hessian
    elif is_constant(y):
        pairs = frozenset()
    else:
        raise _unsupported_output(y, 0)

    rows: list[int] = []
    cols: list[int] = []
    for i, j in sorted(pairs):
        rows.append(i)
        cols.append(j)
        if i != j:
            rows.append(j)
            cols.append(i)
    pattern = SparsityPattern.from_coordinates(rows, cols, (n, n))
    logger.debug("Detected Hessian sparsity: %r", pattern)
    return pattern


def _trace(f: Callable, tracer_type: type[Tracer], n: int) -> np.ndarray:
    """Call ``f`` on seeded tracers and return its outputs as a flat object array."""
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n < 0:
        msg = f"Input dimension must be a non-negative integer, got {n!r}"
        raise ValueError(msg)

    inputs = np.empty(n, dtype=object)
    for i in range(n):
        inputs[i] = tracer_type.seed(i)

    try:
        result = f(inputs)
    except TraceIncompatibleError:
        raise
    except TypeError as e:
        msg = f"Function is not trace-compatible: {e}"
        raise TraceIncompatibleError(msg) from e

    if isinstance(result, Tracer):
        return np.array([result], dtype=object)
    if isinstance(result, jax.Array):
        result = np.asarray(result)
    return np.asarray(result, dtype=object).ravel()


def _gradient_indices(y: object, i: int) -> IndexSet:
    if isinstance(y, GradientTracer):
        return y.indices
    if is_constant(y):
        return frozenset()
    raise _unsupported_output(y, i)


def _unsupported_output(y: object, i: int) -> TraceIncompatibleError:
    msg = (
        f"Output {i} of the traced function has type {type(y).__name__}, "
        "expected a tracer or a numeric constant."
    )
    return TraceIncompatibleError(msg)
