"""Elementary functions usable both under tracing and on numeric arrays.

Each function checks its arguments:

- a `Tracer` is dispatched to the matching tracer operation,
- a numpy object array (as passed to ``f`` during detection)
  is mapped element-wise,
- anything else is forwarded to ``jax.numpy``.

Writing ``f`` against these functions lets the same definition
be traced for sparsity and differentiated by JAX.
"""

from collections.abc import Callable
from functools import reduce
from operator import add

import jax
import jax.numpy as jnp
import jax.scipy.special
import numpy as np

from sparsetrace._tracer import Tracer


def _is_object_array(x: object) -> bool:
    return isinstance(x, np.ndarray) and x.dtype == object


def _is_traced(x: object) -> bool:
    return isinstance(x, Tracer) or _is_object_array(x)


def _unary(kind: str, numeric: Callable) -> Callable:
    def scalar(v):
        return v.unary(kind) if isinstance(v, Tracer) else numeric(v)

    elementwise = np.frompyfunc(scalar, 1, 1)

    def fn(x):
        if isinstance(x, Tracer):
            return x.unary(kind)
        if _is_object_array(x):
            return elementwise(x)
        return numeric(x)

    fn.__name__ = kind
    fn.__doc__ = f"Element-wise ``{kind}`` on tracers or arrays."
    return fn


def _binary(kind: str, numeric: Callable) -> Callable:
    def scalar(a, b):
        if isinstance(a, Tracer):
            return a.binary(kind, b)
        if isinstance(b, Tracer):
            return b.binary(kind, a, reflected=True)
        return numeric(a, b)

    elementwise = np.frompyfunc(scalar, 2, 1)

    def fn(a, b):
        if _is_object_array(a) or _is_object_array(b):
            return elementwise(a, b)
        if isinstance(a, Tracer) or isinstance(b, Tracer):
            return scalar(a, b)
        return numeric(a, b)

    fn.__name__ = kind
    fn.__doc__ = f"Element-wise ``{kind}`` on tracers or arrays."
    return fn


exp = _unary("exp", jnp.exp)
log = _unary("log", jnp.log)
log1p = _unary("log1p", jnp.log1p)
expm1 = _unary("expm1", jnp.expm1)
sin = _unary("sin", jnp.sin)
cos = _unary("cos", jnp.cos)
tan = _unary("tan", jnp.tan)
sinh = _unary("sinh", jnp.sinh)
cosh = _unary("cosh", jnp.cosh)
tanh = _unary("tanh", jnp.tanh)
arcsin = _unary("arcsin", jnp.arcsin)
arccos = _unary("arccos", jnp.arccos)
arctan = _unary("arctan", jnp.arctan)
arcsinh = _unary("arcsinh", jnp.arcsinh)
arccosh = _unary("arccosh", jnp.arccosh)
arctanh = _unary("arctanh", jnp.arctanh)
sqrt = _unary("sqrt", jnp.sqrt)
cbrt = _unary("cbrt", jnp.cbrt)
square = _unary("square", jnp.square)
reciprocal = _unary("reciprocal", jnp.reciprocal)
sigmoid = _unary("sigmoid", jax.nn.sigmoid)
softplus = _unary("softplus", jax.nn.softplus)
erf = _unary("erf", jax.scipy.special.erf)
abs = _unary("abs", jnp.abs)  # noqa: A001
sign = _unary("sign", jnp.sign)
floor = _unary("floor", jnp.floor)
ceil = _unary("ceil", jnp.ceil)
round = _unary("round", jnp.round)  # noqa: A001
trunc = _unary("trunc", jnp.trunc)

maximum = _binary("maximum", jnp.maximum)
minimum = _binary("minimum", jnp.minimum)
arctan2 = _binary("atan2", jnp.arctan2)
hypot = _binary("hypot", jnp.hypot)


def where(condition, x, y):
    """Select ``x`` where ``condition`` holds, else ``y``.

    A traced condition has no concrete value,
    so each result depends on both branches.
    The condition itself contributes no dependencies.
    A concrete condition picks its branch exactly.

    Example: ``where(x > 0, x, 0.0)`` on ``x = [t0, t1]``
        Output deps: ``[{0}, {1}]``
    """
    if not (_is_traced(condition) or _is_traced(x) or _is_traced(y)):
        return jnp.where(condition, x, y)

    def select(c, a, b):
        if not isinstance(c, Tracer):
            return a if c else b
        if isinstance(a, Tracer):
            return a.binary("select", b)
        if isinstance(b, Tracer):
            return b.binary("select", a, reflected=True)
        return type(c).empty()

    if any(np.ndim(v) > 0 for v in (condition, x, y)):
        return np.frompyfunc(select, 3, 1)(condition, x, y)
    return select(condition, x, y)


def sum(x):  # noqa: A001
    """Sum all elements of ``x``."""
    if isinstance(x, Tracer):
        return x
    if _is_traced(x):
        return reduce(add, np.ravel(x), 0)
    return jnp.sum(x)
