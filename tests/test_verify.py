"""Tests for the verification utilities."""

import jax.numpy as jnp
import numpy as np
import pytest

from sparsetrace import (
    VerificationError,
    check_hessian_correctness,
    check_jacobian_correctness,
    hessian_coloring,
    jacobian_coloring,
    ops,
)

# Jacobian verification


@pytest.mark.jacobian
def test_check_jacobian_passes():
    def f(x):
        return (x[1:] - x[:-1]) ** 2

    check_jacobian_correctness(f, np.array([1.0, 2.0, 3.0, 4.0]))


@pytest.mark.jacobian
def test_check_jacobian_with_precomputed_pattern():
    def f(x):
        return x**2

    colored_pattern = jacobian_coloring(f, 3)
    check_jacobian_correctness(
        f, np.array([1.0, 2.0, 3.0]), colored_pattern=colored_pattern
    )


@pytest.mark.jacobian
def test_check_jacobian_custom_tolerances():
    check_jacobian_correctness(
        ops.sin, np.array([0.5, 1.0, 1.5]), rtol=1e-5, atol=1e-5
    )


@pytest.mark.jacobian
def test_check_jacobian_raises_on_mismatch():
    """A diagonal pattern used for a dense function misses off-diagonal entries."""

    def f_dense(x):
        s = x[0] + x[1] + x[2]
        return [s, s, s]

    colored_pattern = jacobian_coloring(lambda x: x**2, 3)

    with pytest.raises(VerificationError, match="does not match"):
        check_jacobian_correctness(
            f_dense, np.array([1.0, 2.0, 3.0]), colored_pattern=colored_pattern
        )


@pytest.mark.jacobian
@pytest.mark.fallback
def test_check_jacobian_with_zero_derivative_switch():
    """sign() drops x0, which is exact wherever sign is differentiable."""

    def f(x):
        s = (ops.sign(x[0]) + 1) / 2
        return [s * x[1] + (1 - s) * x[2]]

    check_jacobian_correctness(f, np.array([1.0, 2.0, 3.0]))
    check_jacobian_correctness(f, np.array([-1.0, 2.0, 3.0]))


@pytest.mark.jacobian
def test_check_jacobian_shape_mismatch():
    """A pattern detected for a different output size is reported."""
    colored_pattern = jacobian_coloring(lambda x: jnp.zeros(2), 3)

    with pytest.raises(VerificationError, match="shape"):
        check_jacobian_correctness(
            lambda x: x**2, np.ones(3), colored_pattern=colored_pattern
        )


@pytest.mark.jacobian
def test_verification_error_is_assertion_error():
    assert issubclass(VerificationError, AssertionError)


# Hessian verification


@pytest.mark.hessian
def test_check_hessian_passes():
    def f(x):
        return ops.sum((1 - x[:-1]) ** 2 + 100 * (x[1:] - x[:-1] ** 2) ** 2)

    check_hessian_correctness(f, np.array([1.0, 1.0, 1.0, 1.0]))


@pytest.mark.hessian
def test_check_hessian_with_precomputed_pattern():
    def f(x):
        return x[0] * x[1] + x[2] ** 2

    colored_pattern = hessian_coloring(f, 3)
    check_hessian_correctness(
        f, jnp.array([1.0, 2.0, 3.0]), colored_pattern=colored_pattern
    )


@pytest.mark.hessian
def test_check_hessian_raises_on_mismatch():
    """A diagonal pattern misses the cross terms of x0*x1 + x1*x2."""

    def f(x):
        return x[0] * x[1] + x[1] * x[2]

    colored_pattern = hessian_coloring(lambda x: ops.sum(x**2), 3)

    with pytest.raises(VerificationError, match="does not match"):
        check_hessian_correctness(
            f, np.array([1.0, 2.0, 3.0]), colored_pattern=colored_pattern
        )
