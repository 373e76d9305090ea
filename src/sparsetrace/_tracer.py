"""Operator-overloading tracers for sparsity detection.

A tracer stands in for a number while a function runs.
Instead of a value, it carries the set of input indices
the number may depend on.
Every supported operation returns a new tracer
whose dependencies are derived from the operands' dependencies.

The set of supported operations is closed:
each is listed in ``_UNARY_KINDS`` or ``_BINARY_KINDS``
together with flags telling which partial derivatives can be nonzero.
Python operators and the helpers in `sparsetrace.ops`
all route through `Tracer.unary` and `Tracer.binary`.

Two tracer flavours exist:

- `GradientTracer` tracks first-order dependencies (Jacobian sparsity).
- `HessianTracer` additionally tracks second-order interactions
  (Hessian sparsity).

Both are global: the result does not depend on any input value
and is valid at every point.
Zero-derivative operations (``sign``, ``floor``, comparisons, ...)
drop all dependencies.
This narrows patterns but is unsound for functions whose non-smooth
branches carry a derivative, e.g. a step function used as a switch.
"""

from __future__ import annotations

import numbers
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import NamedTuple

import jax
import numpy as np

IndexSet = frozenset[int]
"""Input indices a traced value may depend on."""

PairSet = frozenset[tuple[int, int]]
"""Unordered input index pairs ``(i, j)`` with ``i <= j``."""


class TraceIncompatibleError(TypeError):
    """Raised when a traced function needs something a tracer cannot provide.

    Tracers carry dependency sets, not numbers.
    Branching on a tracer (``if x > 0:``),
    converting it to ``float``,
    or passing it to a library function without a tracer rule
    makes the function incompatible with sparsity tracing.
    """


class _Unary(NamedTuple):
    first: bool
    second: bool


class _Binary(NamedTuple):
    dx: bool
    dy: bool
    dxx: bool
    dxy: bool
    dyy: bool

    def swapped(self) -> _Binary:
        """Partials with the roles of ``x`` and ``y`` exchanged."""
        return _Binary(self.dy, self.dx, self.dyy, self.dxy, self.dxx)


_NONLINEAR = _Unary(first=True, second=True)
_LINEAR = _Unary(first=True, second=False)
_ZERO = _Unary(first=False, second=False)

_UNARY_KINDS: dict[str, _Unary] = {
    # Nonzero first and second derivative
    "exp": _NONLINEAR,
    "log": _NONLINEAR,
    "log1p": _NONLINEAR,
    "expm1": _NONLINEAR,
    "sin": _NONLINEAR,
    "cos": _NONLINEAR,
    "tan": _NONLINEAR,
    "sinh": _NONLINEAR,
    "cosh": _NONLINEAR,
    "tanh": _NONLINEAR,
    "arcsin": _NONLINEAR,
    "arccos": _NONLINEAR,
    "arctan": _NONLINEAR,
    "arcsinh": _NONLINEAR,
    "arccosh": _NONLINEAR,
    "arctanh": _NONLINEAR,
    "sqrt": _NONLINEAR,
    "cbrt": _NONLINEAR,
    "square": _NONLINEAR,
    "reciprocal": _NONLINEAR,
    "sigmoid": _NONLINEAR,
    "softplus": _NONLINEAR,
    "erf": _NONLINEAR,
    # Piecewise linear
    "abs": _LINEAR,
    "neg": _LINEAR,
    "pos": _LINEAR,
    "identity": _LINEAR,
    # Piecewise constant: zero derivative almost everywhere
    "sign": _ZERO,
    "floor": _ZERO,
    "ceil": _ZERO,
    "round": _ZERO,
    "trunc": _ZERO,
}

_COMPARISON = _Binary(dx=False, dy=False, dxx=False, dxy=False, dyy=False)

_BINARY_KINDS: dict[str, _Binary] = {
    "add": _Binary(dx=True, dy=True, dxx=False, dxy=False, dyy=False),
    "sub": _Binary(dx=True, dy=True, dxx=False, dxy=False, dyy=False),
    "mul": _Binary(dx=True, dy=True, dxx=False, dxy=True, dyy=False),
    "div": _Binary(dx=True, dy=True, dxx=False, dxy=True, dyy=True),
    "pow": _Binary(dx=True, dy=True, dxx=True, dxy=True, dyy=True),
    "atan2": _Binary(dx=True, dy=True, dxx=True, dxy=True, dyy=True),
    "hypot": _Binary(dx=True, dy=True, dxx=True, dxy=True, dyy=True),
    # Piecewise selection of one operand
    "maximum": _Binary(dx=True, dy=True, dxx=False, dxy=False, dyy=False),
    "minimum": _Binary(dx=True, dy=True, dxx=False, dxy=False, dyy=False),
    "select": _Binary(dx=True, dy=True, dxx=False, dxy=False, dyy=False),
    "lt": _COMPARISON,
    "le": _COMPARISON,
    "gt": _COMPARISON,
    "ge": _COMPARISON,
    "eq": _COMPARISON,
    "ne": _COMPARISON,
}

UNARY_KINDS = frozenset(_UNARY_KINDS)
"""Names of all supported unary operations."""

BINARY_KINDS = frozenset(_BINARY_KINDS)
"""Names of all supported binary operations."""


def is_constant(value: object) -> bool:
    """Whether ``value`` is a concrete scalar that carries no dependencies."""
    if isinstance(value, (numbers.Number, np.generic)):
        return True
    if isinstance(value, np.ndarray):
        return value.shape == () and value.dtype != object
    return isinstance(value, jax.Array) and value.shape == ()


def _unary_method(kind: str):
    def method(self):
        return self.unary(kind)

    method.__name__ = kind
    method.__qualname__ = f"Tracer.{kind}"
    method.__doc__ = f"Trace ``{kind}``."
    return method


class Tracer(ABC):
    """Base class for dependency-tracking values.

    Subclasses implement `empty`, `seed`,
    `_propagate_unary` and `_propagate_binary`.
    Everything else, including operator overloading, lives here.
    """

    __slots__ = ()

    # Interface

    @classmethod
    @abstractmethod
    def empty(cls) -> Tracer:
        """Tracer without any dependencies."""

    @classmethod
    @abstractmethod
    def seed(cls, index: int) -> Tracer:
        """Tracer for input ``index``, depending only on itself."""

    @abstractmethod
    def _propagate_unary(self, rule: _Unary) -> Tracer:
        """Result of a unary operation with the given derivative flags."""

    @abstractmethod
    def _propagate_binary(self, other: Tracer | None, rule: _Binary) -> Tracer:
        """Result of a binary operation; ``other`` is None for a constant."""

    # Dispatch

    def unary(self, kind: str) -> Tracer:
        """Apply the unary operation ``kind``."""
        rule = _UNARY_KINDS.get(kind)
        if rule is None:
            msg = f"Unsupported unary operation {kind!r} on {type(self).__name__}."
            raise TraceIncompatibleError(msg)
        return self._propagate_unary(rule)

    def binary(self, kind: str, other: object, *, reflected: bool = False) -> Tracer:
        """Apply the binary operation ``kind`` with ``self`` as first operand.

        With ``reflected=True``, ``self`` is the second operand,
        as in ``other - self``.
        ``other`` may be a tracer of the same type or a constant.
        """
        rule = _BINARY_KINDS.get(kind)
        if rule is None:
            msg = f"Unsupported binary operation {kind!r} on {type(self).__name__}."
            raise TraceIncompatibleError(msg)
        if reflected:
            rule = rule.swapped()
        if isinstance(other, type(self)):
            return self._propagate_binary(other, rule)
        if is_constant(other):
            return self._propagate_binary(None, rule)
        msg = (
            f"Cannot combine {type(self).__name__} with {type(other).__name__} "
            f"in {kind!r}."
        )
        raise TraceIncompatibleError(msg)

    def _operator(self, kind: str, other: object, *, reflected: bool = False):
        if isinstance(other, Tracer) or is_constant(other):
            return self.binary(kind, other, reflected=reflected)
        # Let numpy object arrays and other containers broadcast over us.
        return NotImplemented

    # Arithmetic

    def __add__(self, other):
        return self._operator("add", other)

    def __radd__(self, other):
        return self._operator("add", other, reflected=True)

    def __sub__(self, other):
        return self._operator("sub", other)

    def __rsub__(self, other):
        return self._operator("sub", other, reflected=True)

    def __mul__(self, other):
        return self._operator("mul", other)

    def __rmul__(self, other):
        return self._operator("mul", other, reflected=True)

    def __truediv__(self, other):
        return self._operator("div", other)

    def __rtruediv__(self, other):
        return self._operator("div", other, reflected=True)

    def __pow__(self, other):
        # Constant exponents 0 and 1 have known derivative structure.
        if is_constant(other):
            if other == 0:
                return self._propagate_unary(_ZERO)
            if other == 1:
                return self._propagate_unary(_LINEAR)
        return self._operator("pow", other)

    def __rpow__(self, other):
        return self._operator("pow", other, reflected=True)

    def __neg__(self):
        return self.unary("neg")

    def __pos__(self):
        return self.unary("pos")

    def __abs__(self):
        return self.unary("abs")

    def __round__(self, ndigits=None):
        return self.unary("round")

    def __floor__(self):
        return self.unary("floor")

    def __ceil__(self):
        return self.unary("ceil")

    def __trunc__(self):
        return self.unary("trunc")

    # Comparisons return dependency-free tracers, never booleans.

    def __lt__(self, other):
        return self._operator("lt", other)

    def __le__(self, other):
        return self._operator("le", other)

    def __gt__(self, other):
        return self._operator("gt", other)

    def __ge__(self, other):
        return self._operator("ge", other)

    def __eq__(self, other):
        return self._operator("eq", other)

    def __ne__(self, other):
        return self._operator("ne", other)

    __hash__ = None

    # Concrete values are not available

    def _no_value(self, what: str):
        msg = (
            f"Function is not trace-compatible: it requires {what} of a "
            f"{type(self).__name__}, which carries no numeric value. "
            "Replace Python control flow on inputs with `sparsetrace.ops.where`."
        )
        raise TraceIncompatibleError(msg)

    def __bool__(self):
        self._no_value("the truth value")

    def __float__(self):
        self._no_value("a float value")

    def __int__(self):
        self._no_value("an int value")

    def __complex__(self):
        self._no_value("a complex value")

    def __index__(self):
        self._no_value("an index value")

    # Named methods let numpy object-array ufuncs (np.exp, np.sin, ...)
    # dispatch to tracers.

    exp = _unary_method("exp")
    log = _unary_method("log")
    log1p = _unary_method("log1p")
    expm1 = _unary_method("expm1")
    sin = _unary_method("sin")
    cos = _unary_method("cos")
    tan = _unary_method("tan")
    sinh = _unary_method("sinh")
    cosh = _unary_method("cosh")
    tanh = _unary_method("tanh")
    arcsin = _unary_method("arcsin")
    arccos = _unary_method("arccos")
    arctan = _unary_method("arctan")
    arcsinh = _unary_method("arcsinh")
    arccosh = _unary_method("arccosh")
    arctanh = _unary_method("arctanh")
    sqrt = _unary_method("sqrt")
    cbrt = _unary_method("cbrt")
    square = _unary_method("square")
    reciprocal = _unary_method("reciprocal")
    sigmoid = _unary_method("sigmoid")
    softplus = _unary_method("softplus")
    erf = _unary_method("erf")
    abs = _unary_method("abs")  # noqa: A003
    sign = _unary_method("sign")
    floor = _unary_method("floor")
    ceil = _unary_method("ceil")
    round = _unary_method("round")  # noqa: A003
    trunc = _unary_method("trunc")


@dataclass(frozen=True, eq=False)
class GradientTracer(Tracer):
    """Tracer for first-order (Jacobian) sparsity.

    Attributes:
        indices: Input indices this value may depend on.
    """

    indices: IndexSet = frozenset()

    @classmethod
    def empty(cls) -> GradientTracer:
        return cls()

    @classmethod
    def seed(cls, index: int) -> GradientTracer:
        return cls(frozenset((index,)))

    def _propagate_unary(self, rule: _Unary) -> GradientTracer:
        return GradientTracer(self.indices if rule.first else frozenset())

    def _propagate_binary(
        self, other: GradientTracer | None, rule: _Binary
    ) -> GradientTracer:
        indices = self.indices if rule.dx else frozenset()
        if other is not None and rule.dy:
            indices = indices | other.indices
        return GradientTracer(indices)


def _pairs(a: IndexSet, b: IndexSet) -> PairSet:
    """All unordered pairs with one index from ``a`` and one from ``b``."""
    return frozenset((min(i, j), max(i, j)) for i in a for j in b)


@dataclass(frozen=True, eq=False)
class HessianTracer(Tracer):
    """Tracer for second-order (Hessian) sparsity.

    For ``g = h(a)``::

        G_g = G_a                        if h' != 0
        H_g = H_a ∪ (G_a × G_a)          (second term only if h'' != 0)

    For ``g = h(a, b)`` the partial flags select which of
    ``H_a``, ``H_b``, ``G_a × G_a``, ``G_a × G_b`` and ``G_b × G_b``
    enter the result.

    Example: ``x0 * x1`` has ``G = {0, 1}`` and ``H = {(0, 1)}``.

    Attributes:
        gradient: Input indices this value may depend on.
        hessian: Input index pairs with possibly nonzero second derivative.
    """

    gradient: IndexSet = frozenset()
    hessian: PairSet = frozenset()

    @classmethod
    def empty(cls) -> HessianTracer:
        return cls()

    @classmethod
    def seed(cls, index: int) -> HessianTracer:
        return cls(gradient=frozenset((index,)))

    def _propagate_unary(self, rule: _Unary) -> HessianTracer:
        if not rule.first:
            return HessianTracer()
        hessian = self.hessian
        if rule.second:
            hessian = hessian | _pairs(self.gradient, self.gradient)
        return HessianTracer(self.gradient, hessian)

    def _propagate_binary(
        self, other: HessianTracer | None, rule: _Binary
    ) -> HessianTracer:
        ga = self.gradient
        gb = other.gradient if other is not None else frozenset()
        hb = other.hessian if other is not None else frozenset()

        gradient: IndexSet = frozenset()
        hessian: PairSet = frozenset()
        if rule.dx:
            gradient |= ga
            hessian |= self.hessian
        if rule.dy:
            gradient |= gb
            hessian |= hb
        if rule.dxx:
            hessian |= _pairs(ga, ga)
        if rule.dyy:
            hessian |= _pairs(gb, gb)
        if rule.dxy:
            hessian |= _pairs(ga, gb)
        return HessianTracer(gradient, hessian)
