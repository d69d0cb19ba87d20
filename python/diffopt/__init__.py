"""
diffopt: Differentiable Convex Optimization
===========================================

diffopt solves LPs, convex QPs and conic programs and differentiates
their solutions with respect to the problem data.

- KKT engine: reverse-mode gradients of a loss l(z*) w.r.t. the QP data
  (Q, q, G, h, A, b), for polyhedral constraints.
- Conic engine: forward-mode derivative of (x, y, s) along a perturbation
  (dA, db, dc) of the conic data, for every supported cone.

Quick Start
-----------
>>> import numpy as np
>>> import diffopt
>>> model = diffopt.Model()
>>> x = model.add_var(name="x")
>>> y = model.add_var(name="y")
>>> model.add_constr(x + y >= 1)
>>> model.add_constr(x >= 0)
>>> model.add_constr(y >= 0)
>>> model.minimize(x*x + y*y)
>>> result = model.optimize()
>>> print(result.status)
optimal
>>> grads = model.backward(["q", "h"], np.ones(2))

Conic programs go through SCS:

>>> from diffopt.sets import SecondOrderCone
>>> model = diffopt.Model(solver="scs")
>>> t, u, v = model.add_vars(3)
>>> model.add_cone_constr([t, u - 1, v - 2], SecondOrderCone(3))
>>> model.minimize(t)
>>> model.optimize()
>>> m, n = model.conic_data().A.shape
>>> dx, dy, ds = model.backward_conic(np.zeros((m, n)), np.ones(m), np.zeros(n))
"""

__version__ = "0.1.0"
__author__ = "diffopt Contributors"

from .model import Model, Variable, Constraint, LinearExpr, QuadExpr
from .canonical import ConicForm, QPForm, conic_form, qp_form, split_by_cones
from .kkt import Param, backward
from .conic import ConicDerivative, backward_conic
from .solver import solve_qp, solve_conic
from .result import BasisStatus, SolveResult, Status
from .sets import (
    GreaterThan,
    LessThan,
    EqualTo,
    Interval,
    Zeros,
    Nonnegatives,
    Nonpositives,
    SecondOrderCone,
    PositiveSemidefiniteConeTriangle,
    ExponentialCone,
    DualExponentialCone,
)
from .exceptions import (
    DiffOptError,
    UnsupportedStatusError,
    IntrospectionError,
    UnsupportedConstraintError,
    SolverError,
    DimensionError,
    InvalidInputError,
)
from .logging import get_logger, set_log_level, configure_logging

__all__ = [
    # Version
    "__version__",

    # Model building
    "Model",
    "Variable",
    "Constraint",
    "LinearExpr",
    "QuadExpr",

    # Sets
    "GreaterThan",
    "LessThan",
    "EqualTo",
    "Interval",
    "Zeros",
    "Nonnegatives",
    "Nonpositives",
    "SecondOrderCone",
    "PositiveSemidefiniteConeTriangle",
    "ExponentialCone",
    "DualExponentialCone",

    # Canonical forms
    "ConicForm",
    "QPForm",
    "conic_form",
    "qp_form",
    "split_by_cones",

    # Sensitivities
    "Param",
    "backward",
    "ConicDerivative",
    "backward_conic",

    # Solving
    "solve_qp",
    "solve_conic",

    # Results
    "BasisStatus",
    "SolveResult",
    "Status",

    # Exceptions
    "DiffOptError",
    "UnsupportedStatusError",
    "IntrospectionError",
    "UnsupportedConstraintError",
    "SolverError",
    "DimensionError",
    "InvalidInputError",

    # Logging
    "get_logger",
    "set_log_level",
    "configure_logging",
]


def info() -> str:
    """Return information about the diffopt installation."""
    import platform

    import numpy
    import scipy
    import scs

    lines = [
        f"diffopt version: {__version__}",
        f"Python version: {platform.python_version()}",
        f"Platform: {platform.platform()}",
        f"NumPy version: {numpy.__version__}",
        f"SciPy version: {scipy.__version__}",
        f"SCS version: {getattr(scs, '__version__', 'unknown')}",
    ]
    return "\n".join(lines)
