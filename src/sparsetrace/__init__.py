"""sparsetrace - Sparse Jacobians and Hessians via tracer-based sparsity detection.

Sparsity is detected by running a function on tracer values
that record which inputs each result may depend on.
Greedy coloring then groups structurally independent columns (or rows),
so that one AD product per color recovers the whole sparse matrix.
"""

import logging

from sparsetrace import ops
from sparsetrace._tracer import (
    GradientTracer,
    HessianTracer,
    Tracer,
    TraceIncompatibleError,
)
from sparsetrace.coloring import (
    color_cols,
    color_hessian_pattern,
    color_jacobian_pattern,
    color_rows,
    color_symmetric,
    hessian_coloring,
    jacobian_coloring,
)
from sparsetrace.decompression import (
    compress,
    decompress,
    hessian,
    hvp_operator,
    jacobian,
    jvp_operator,
    seed_vectors,
    vjp_operator,
)
from sparsetrace.detection import hessian_sparsity, jacobian_sparsity, trace
from sparsetrace.pattern import ColoredPattern, SparsityPattern
from sparsetrace.verify import (
    VerificationError,
    check_hessian_correctness,
    check_jacobian_correctness,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ColoredPattern",
    "GradientTracer",
    "HessianTracer",
    "SparsityPattern",
    "TraceIncompatibleError",
    "Tracer",
    "VerificationError",
    "check_hessian_correctness",
    "check_jacobian_correctness",
    "color_cols",
    "color_hessian_pattern",
    "color_jacobian_pattern",
    "color_rows",
    "color_symmetric",
    "compress",
    "decompress",
    "hessian",
    "hessian_coloring",
    "hessian_sparsity",
    "hvp_operator",
    "jacobian",
    "jacobian_coloring",
    "jacobian_sparsity",
    "jvp_operator",
    "ops",
    "seed_vectors",
    "trace",
    "vjp_operator",
]
