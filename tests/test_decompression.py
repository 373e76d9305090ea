"""Tests for compression, decompression and sparse Jacobian/Hessian computation."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest
from numpy.testing import assert_allclose

from sparsetrace import (
    SparsityPattern,
    check_hessian_correctness,
    color_jacobian_pattern,
    compress,
    decompress,
    hessian,
    hessian_coloring,
    jacobian,
    jacobian_coloring,
    ops,
    seed_vectors,
)


def _dense_jacobian(f, x):
    return np.asarray(jax.jacobian(lambda x: jnp.ravel(jnp.asarray(f(x))))(x))


def _dense_hessian(f, x):
    return np.asarray(jax.hessian(f)(x))


def _worked_example(x):
    return [x[0] + x[2], x[1], x[0] * x[1]]


# =============================================================================
# Engine-independent compression
# =============================================================================


@pytest.mark.jacobian
def test_seed_vectors_worked_example():
    colored = jacobian_coloring(_worked_example, 3, partition="column")

    seeds = seed_vectors(colored)

    np.testing.assert_array_equal(seeds, [[1.0, 0.0, 0.0], [0.0, 1.0, 1.0]])
    assert seeds.dtype == np.float64


@pytest.mark.jacobian
@pytest.mark.parametrize("partition", ["column", "row"])
def test_matrix_product_round_trip(partition):
    """Decompression recovers a known matrix from plain numpy products."""
    J = np.array(
        [
            [2.0, 0.0, 0.0, 1.5],
            [0.0, -1.0, 0.0, 0.0],
            [0.0, 4.0, 3.0, 0.0],
            [0.0, 0.0, 0.0, 7.0],
        ]
    )
    colored = color_jacobian_pattern(SparsityPattern.from_dense(J), partition)
    product_fn = (lambda v: J @ v) if partition == "column" else (lambda u: u @ J)

    compressed = compress(product_fn, seed_vectors(colored))
    result = decompress(compressed, colored)

    assert compressed.shape == (4, colored.num_colors)
    np.testing.assert_array_equal(result.todense(), J)


@pytest.mark.jacobian
def test_decompress_reads_only_pattern_positions():
    """A pattern missing true nonzeros yields a result on its own support only."""
    J = np.ones((3, 3))
    colored = color_jacobian_pattern(SparsityPattern.from_dense(np.eye(3)), "column")

    result = decompress(compress(lambda v: J @ v, seed_vectors(colored)), colored)

    dense = np.asarray(result.todense())
    assert result.nse == 3
    np.testing.assert_array_equal(dense[~np.eye(3, dtype=bool)], 0.0)


@pytest.mark.jacobian
def test_decompress_shape_mismatch_raises():
    colored = jacobian_coloring(_worked_example, 3, partition="column")

    with pytest.raises(ValueError, match="must have shape"):
        decompress(np.zeros((3, 3)), colored)


@pytest.mark.jacobian
def test_decompress_empty_pattern():
    colored = color_jacobian_pattern(SparsityPattern.from_coordinates([], [], (2, 3)))

    result = decompress(np.zeros((2, 1)), colored)

    assert result.shape == (2, 3)
    np.testing.assert_array_equal(result.todense(), np.zeros((2, 3)))


@pytest.mark.jacobian
def test_compress_threaded_matches_sequential():
    rng = np.random.default_rng(0)
    J = rng.standard_normal((6, 5))
    seeds = rng.standard_normal((4, 5))

    sequential = compress(lambda v: J @ v, seeds)
    threaded = compress(lambda v: J @ v, seeds, max_workers=3)

    assert_allclose(threaded, sequential)
    assert_allclose(sequential, J @ seeds.T)


@pytest.mark.jacobian
@pytest.mark.parametrize("max_workers", [None, 2])
def test_compress_propagates_product_errors(max_workers):
    def product_fn(seed):
        raise RuntimeError("engine failure")

    with pytest.raises(RuntimeError, match="engine failure"):
        compress(product_fn, np.eye(2), max_workers=max_workers)


@pytest.mark.jacobian
def test_compress_no_seeds():
    assert compress(lambda v: v, np.zeros((0, 3))).shape == (0, 0)


# =============================================================================
# Sparse Jacobians with JAX
# =============================================================================


@pytest.mark.jacobian
@pytest.mark.parametrize(
    "f",
    [
        pytest.param(lambda x: x**2, id="diagonal"),
        pytest.param(lambda x: [x[0], x[0] + x[1], x[0] + x[1] + x[2]], id="triangular"),
        pytest.param(
            lambda x: [x[0] * x[1], ops.sin(x[2]) + x[0], ops.exp(x[1]) * x[3]],
            id="mixed",
        ),
        pytest.param(lambda x: [ops.sum(x), ops.sum(x**2)], id="dense"),
        pytest.param(lambda x: (x[1:] - x[:-1]) ** 2, id="bidiagonal"),
        pytest.param(lambda x: [ops.where(x[0] > 0, x[1], x[2]), x[3]], id="where"),
    ],
)
def test_jacobian_matches_dense(f):
    x = jnp.array([0.7, -1.2, 2.0, 0.3])

    result = jacobian(f, x)

    assert_allclose(result.todense(), _dense_jacobian(f, x), rtol=1e-5, atol=1e-6)


@pytest.mark.jacobian
def test_jacobian_worked_example():
    x = jnp.array([1.0, 2.0, 3.0])

    result = jacobian(_worked_example, x)

    expected = np.array([[1.0, 0.0, 1.0], [0.0, 1.0, 0.0], [2.0, 1.0, 0.0]])
    assert_allclose(result.todense(), expected)


@pytest.mark.jacobian
def test_jacobian_row_partition():
    """A dense row is cheaper with one VJP per row color."""

    def f(x):
        return [ops.sum(x**2), x[0]]

    x = jnp.arange(1.0, 6.0)
    colored = jacobian_coloring(f, 5)

    result = jacobian(f, x, colored)

    assert colored.mode == "VJP"
    assert_allclose(result.todense(), _dense_jacobian(f, x), rtol=1e-5)


@pytest.mark.jacobian
def test_jacobian_reuses_pattern_at_different_points():
    def f(x):
        return ops.tanh(x) * x[0]

    colored = jacobian_coloring(f, 4)
    for seed in range(3):
        x = jax.random.normal(jax.random.key(seed), (4,))
        result = jacobian(f, x, colored)
        assert_allclose(result.todense(), _dense_jacobian(f, x), rtol=1e-5, atol=1e-6)


@pytest.mark.jacobian
def test_jacobian_zero_pattern():
    def f(x):
        return jnp.array([1.0, 2.0])

    result = jacobian(f, jnp.ones(3))

    assert result.shape == (2, 3)
    np.testing.assert_array_equal(result.todense(), np.zeros((2, 3)))


@pytest.mark.jacobian
def test_jacobian_threaded():
    def f(x):
        return (x[1:] - x[:-1]) ** 3

    x = jnp.linspace(-1.0, 1.0, 8)

    result = jacobian(f, x, max_workers=4)

    assert_allclose(result.todense(), _dense_jacobian(f, x), rtol=1e-5, atol=1e-6)


@pytest.mark.jacobian
def test_jacobian_integer_input_is_promoted():
    result = jacobian(lambda x: x**2, np.array([1, 2, 3]))
    assert_allclose(result.todense(), np.diag([2.0, 4.0, 6.0]))


@pytest.mark.jacobian
def test_jacobian_rejects_hessian_coloring():
    colored = hessian_coloring(lambda x: x[0] * x[1], 2)

    with pytest.raises(ValueError, match="JVP or VJP"):
        jacobian(lambda x: x, jnp.ones(2), colored)


@pytest.mark.jacobian
def test_jacobian_input_size_mismatch_raises():
    colored = jacobian_coloring(_worked_example, 3)

    with pytest.raises(ValueError, match="does not match"):
        jacobian(_worked_example, jnp.ones(4), colored)


@pytest.mark.jacobian
def test_jacobian_2d_input_raises():
    with pytest.raises(ValueError, match="1D"):
        jacobian(lambda x: x, jnp.ones((2, 2)))


# =============================================================================
# Sparse Hessians with JAX
# =============================================================================


def _rosenbrock(x):
    return ops.sum((1 - x[:-1]) ** 2 + 100 * (x[1:] - x[:-1] ** 2) ** 2)


@pytest.mark.hessian
@pytest.mark.parametrize(
    "f",
    [
        pytest.param(_rosenbrock, id="rosenbrock"),
        pytest.param(lambda x: x[0] * x[1] + ops.sin(x[2]), id="product_sin"),
        pytest.param(lambda x: ops.sum(x**3), id="diagonal"),
        pytest.param(lambda x: x[0] * ops.sum(x), id="arrow"),
    ],
)
def test_hessian_matches_dense(f):
    x = jnp.array([0.5, -1.0, 1.5, 2.0, -0.3])

    result = hessian(f, x)

    assert_allclose(result.todense(), _dense_hessian(f, x), rtol=1e-5, atol=1e-4)


def _pairwise_products(edges):
    def f(x):
        total = 0.0
        for i, j in edges:
            total = total + x[i] * x[j]
        return total

    return f


@pytest.mark.hessian
def test_hessian_path_natural_order():
    """x0*x3 + x3*x1 + x1*x2 has a path-shaped Hessian 0-3-1-2."""
    f = _pairwise_products([(0, 3), (3, 1), (1, 2)])
    colored = hessian_coloring(f, 4, order="natural")

    result = hessian(f, jnp.array([1.0, 2.0, 3.0, 4.0]), colored)

    expected = np.array(
        [
            [0.0, 0.0, 0.0, 1.0],
            [0.0, 0.0, 1.0, 1.0],
            [0.0, 1.0, 0.0, 0.0],
            [1.0, 1.0, 0.0, 0.0],
        ]
    )
    np.testing.assert_array_equal(result.todense(), expected)
    check_hessian_correctness(
        f, jnp.array([1.0, 2.0, 3.0, 4.0]), colored_pattern=colored
    )


@pytest.mark.hessian
@pytest.mark.parametrize("seed", range(30))
def test_hessian_random_pairwise_products(seed):
    """Hessians of sums of x_i * x_j have a 1 at every edge."""
    n = 4 + seed % 9
    rng = np.random.default_rng(seed)
    edges = [
        (i, j) for i in range(n) for j in range(i + 1, n) if rng.random() < 0.25
    ]
    f = _pairwise_products(edges)
    x = jnp.asarray(rng.standard_normal(n), dtype=jnp.float32)

    result = hessian(f, x)

    expected = np.zeros((n, n))
    for i, j in edges:
        expected[i, j] = expected[j, i] = 1.0
    np.testing.assert_array_equal(result.todense(), expected)


@pytest.mark.hessian
def test_hessian_threaded():
    x = jnp.linspace(-1.0, 1.0, 10)

    result = hessian(_rosenbrock, x, max_workers=3)

    assert_allclose(
        result.todense(), _dense_hessian(_rosenbrock, x), rtol=1e-5, atol=1e-4
    )


@pytest.mark.hessian
def test_hessian_linear_function_is_zero():
    result = hessian(lambda x: 2 * x[0] + x[1], jnp.ones(2))
    np.testing.assert_array_equal(result.todense(), np.zeros((2, 2)))


@pytest.mark.hessian
def test_hessian_rejects_jacobian_coloring():
    colored = jacobian_coloring(lambda x: x**2, 2)

    with pytest.raises(ValueError, match="HVP coloring"):
        hessian(lambda x: ops.sum(x**2), jnp.ones(2), colored)
