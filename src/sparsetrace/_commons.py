"""Adapters between user functions and JAX transformations."""

from collections.abc import Callable

import jax
import jax.numpy as jnp
from numpy.typing import ArrayLike


def as_input(x: ArrayLike) -> jax.Array:
    """Convert ``x`` to a 1D floating-point JAX array."""
    x = jnp.asarray(x)
    if x.ndim != 1:
        msg = f"Input must be a 1D array, got shape {x.shape}"
        raise ValueError(msg)
    if not jnp.issubdtype(x.dtype, jnp.inexact):
        x = x.astype(jnp.result_type(float))
    return x


def vector_function(f: Callable) -> Callable[[jax.Array], jax.Array]:
    """Wrap ``f`` so that it returns a flat JAX array.

    Lets ``f`` return a list of scalars, as is common for traced functions.
    """

    def fn(x):
        return jnp.ravel(jnp.asarray(f(x)))

    return fn


def scalar_function(f: Callable) -> Callable[[jax.Array], jax.Array]:
    """Wrap ``f`` so that it returns a JAX scalar, squeezing ``[y]`` to ``y``."""

    def fn(x):
        y = jnp.squeeze(jnp.asarray(f(x)))
        if y.shape != ():
            msg = f"Expected scalar-valued function, but f has output shape {y.shape}."
            raise ValueError(msg)
        return y

    return fn
