"""
diffopt Result Classes
======================

Termination status and the raw result returned by a backend.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

import numpy as np


class Status(Enum):
    """
    Solver termination status codes.

    Attributes:
        OPTIMAL: Solution found within tolerance
        LOCALLY_SOLVED: Local optimum found (global for convex problems)
        ALMOST_OPTIMAL: Solution found to a relaxed tolerance
        INFEASIBLE: Problem has no feasible solution
        DUAL_INFEASIBLE: Problem is unbounded (objective -> -inf)
        ITERATION_LIMIT: Maximum iteration limit reached
        TIME_LIMIT: Time limit exceeded
        NUMERICAL_ERROR: Numerical issues encountered
        OPTIMIZE_NOT_CALLED: Model not solved since its last modification
    """
    OPTIMAL = "optimal"
    LOCALLY_SOLVED = "locally_solved"
    ALMOST_OPTIMAL = "almost_optimal"
    INFEASIBLE = "infeasible"
    DUAL_INFEASIBLE = "dual_infeasible"
    ITERATION_LIMIT = "iteration_limit"
    TIME_LIMIT = "time_limit"
    NUMERICAL_ERROR = "numerical_error"
    OPTIMIZE_NOT_CALLED = "optimize_not_called"

    def __str__(self) -> str:
        return self.value

    @property
    def is_differentiable(self) -> bool:
        """True if sensitivities may be computed at the returned point."""
        return self in DIFFERENTIABLE_STATUSES


DIFFERENTIABLE_STATUSES = frozenset(
    (Status.OPTIMAL, Status.LOCALLY_SOLVED, Status.ALMOST_OPTIMAL)
)


class BasisStatus(Enum):
    """
    Basis status of a scalar constraint at an LP/QP solution.

    Attributes:
        BASIC: Constraint is not binding
        NONBASIC: Equality constraint
        NONBASIC_AT_LOWER: Binding at its lower bound
        NONBASIC_AT_UPPER: Binding at its upper bound
    """
    BASIC = "basic"
    NONBASIC = "nonbasic"
    NONBASIC_AT_LOWER = "nonbasic_at_lower"
    NONBASIC_AT_UPPER = "nonbasic_at_upper"

    def __str__(self) -> str:
        return self.value


@dataclass
class SolveResult:
    """
    Raw result of a backend solve, laid out like the conic form.

    Attributes:
        status: Termination status
        objective: Objective value of the canonical (minimization) problem
        x: Primal solution, one entry per variable in model order
        y: Dual solution, one entry per conic row (conic sign convention)
        s: Slack, one entry per conic row
        iterations: Number of iterations performed
        solve_time: Wall clock time in seconds
        solver_name: Name of the backend that produced the result

    Example:
        >>> result = model.optimize()
        >>> if result.status.is_differentiable:
        ...     print(result.objective)
    """

    status: Status
    objective: float
    x: np.ndarray
    y: np.ndarray
    s: np.ndarray
    iterations: int = 0
    solve_time: float = 0.0
    solver_name: str = ""
    info: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"SolveResult(status={self.status}, "
            f"objective={self.objective:.6g}, "
            f"iterations={self.iterations}, "
            f"time={self.solve_time:.4f}s)"
        )

    def summary(self) -> str:
        """Return a formatted summary of the solve result."""
        lines = [
            "=" * 50,
            "diffopt Solve Summary",
            "=" * 50,
            f"Solver:           {self.solver_name}",
            f"Status:           {self.status}",
            f"Objective:        {self.objective:.10g}",
            f"Iterations:       {self.iterations}",
            f"Solve time:       {self.solve_time:.4f} s",
            "-" * 50,
            f"Variables:        {self.x.size}",
            f"Conic rows:       {self.y.size}",
            "=" * 50,
        ]
        return "\n".join(lines)
