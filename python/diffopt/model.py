"""
diffopt Model Builder
=====================

Algebraic interface for building differentiable LP/QP/conic models.

The :class:`Model` is the variable/constraint store: it hands out stable
identifiers, forwards the canonical problem to a backend solver, keeps the
Solution Point of the last successful solve, and exposes the two backward
passes (:meth:`Model.backward` and :meth:`Model.backward_conic`).
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import sparse

from .exceptions import (
    DimensionError,
    IntrospectionError,
    InvalidInputError,
    UnsupportedConstraintError,
    UnsupportedStatusError,
)
from .logging import get_logger
from .result import BasisStatus, SolveResult, Status
from .sets import (
    SCALAR_SETS,
    VECTOR_SETS,
    EqualTo,
    GreaterThan,
    Interval,
    LessThan,
)

if TYPE_CHECKING:
    from .conic import ConicDerivative

logger = get_logger(__name__)


@dataclass
class Variable:
    """
    Decision variable in an optimization model.

    Attributes:
        index: Stable identifier, never reused after deletion
        name: Optional name for the variable

    Example:
        >>> model = Model()
        >>> x = model.add_var(name="x")
        >>> model.add_constr(x >= 0)
    """

    index: int
    name: Optional[str] = None

    def __repr__(self) -> str:
        if self.name:
            return f"Variable({self.name})"
        return f"Variable(x_{self.index})"

    def __hash__(self) -> int:
        return hash(("Variable", self.index))

    # Operator overloading for algebraic syntax
    def __add__(self, other: Union["Variable", "LinearExpr", "QuadExpr", float]) -> Any:
        return LinearExpr.from_var(self) + other

    def __radd__(self, other: Union["Variable", "LinearExpr", float]) -> Any:
        return self.__add__(other)

    def __sub__(self, other: Union["Variable", "LinearExpr", "QuadExpr", float]) -> Any:
        return LinearExpr.from_var(self) - other

    def __rsub__(self, other: Union["Variable", "LinearExpr", float]) -> Any:
        return (-1) * LinearExpr.from_var(self) + other

    def __mul__(self, other: Union["Variable", "LinearExpr", float]) -> Any:
        if isinstance(other, (Variable, LinearExpr)):
            return LinearExpr.from_var(self) * other
        return LinearExpr.from_var(self, coef=other)

    def __rmul__(self, other: float) -> "LinearExpr":
        return LinearExpr.from_var(self, coef=other)

    def __neg__(self) -> "LinearExpr":
        return self.__mul__(-1)

    def __truediv__(self, other: float) -> "LinearExpr":
        return self.__mul__(1.0 / other)

    # Comparisons against a constant keep the single-variable function kind
    def __le__(self, other: Union["Variable", "LinearExpr", float]) -> "Constraint":
        if isinstance(other, (Variable, LinearExpr)):
            return LinearExpr.from_var(self) <= other
        return Constraint(self, LessThan(float(other)))

    def __ge__(self, other: Union["Variable", "LinearExpr", float]) -> "Constraint":
        if isinstance(other, (Variable, LinearExpr)):
            return LinearExpr.from_var(self) >= other
        return Constraint(self, GreaterThan(float(other)))

    def __eq__(self, other: Union["Variable", "LinearExpr", float]) -> "Constraint":  # type: ignore[override]
        if isinstance(other, (Variable, LinearExpr)):
            return LinearExpr.from_var(self) == other
        return Constraint(self, EqualTo(float(other)))


@dataclass
class LinearExpr:
    """
    Linear expression: sum of coefficient * variable + constant.

    Example:
        >>> expr = 2*x + 3*y + 5
        >>> print(expr)
        2*x + 3*y + 5
    """

    terms: Dict[int, float] = field(default_factory=dict)  # var_index -> coefficient
    constant: float = 0.0
    _var_names: Dict[int, str] = field(default_factory=dict)  # For pretty printing

    @classmethod
    def from_var(cls, var: Variable, coef: float = 1.0) -> "LinearExpr":
        """Create expression from a single variable."""
        expr = cls()
        expr.terms[var.index] = float(coef)
        if var.name:
            expr._var_names[var.index] = var.name
        return expr

    def __repr__(self) -> str:
        parts = []
        for idx, coef in sorted(self.terms.items()):
            name = self._var_names.get(idx, f"x_{idx}")
            if coef == 1:
                parts.append(name)
            elif coef == -1:
                parts.append(f"-{name}")
            else:
                parts.append(f"{coef}*{name}")
        if self.constant != 0 or not parts:
            parts.append(str(self.constant))
        return " + ".join(parts).replace("+ -", "- ")

    def copy(self) -> "LinearExpr":
        return LinearExpr(dict(self.terms), self.constant, dict(self._var_names))

    def __add__(self, other: Union[Variable, "LinearExpr", "QuadExpr", float]) -> Any:
        if isinstance(other, QuadExpr):
            return other + self
        result = self.copy()
        if isinstance(other, Variable):
            result.terms[other.index] = result.terms.get(other.index, 0.0) + 1.0
            if other.name:
                result._var_names[other.index] = other.name
        elif isinstance(other, LinearExpr):
            for idx, coef in other.terms.items():
                result.terms[idx] = result.terms.get(idx, 0.0) + coef
            result._var_names.update(other._var_names)
            result.constant += other.constant
        else:
            result.constant += float(other)
        return result

    def __radd__(self, other: Union[Variable, "LinearExpr", float]) -> Any:
        return self.__add__(other)

    def __sub__(self, other: Union[Variable, "LinearExpr", "QuadExpr", float]) -> Any:
        if isinstance(other, (Variable, LinearExpr, QuadExpr)):
            return self + (-1) * other
        return self + (-float(other))

    def __rsub__(self, other: Union[Variable, "LinearExpr", float]) -> Any:
        return (-1) * self + other

    def __mul__(self, other: Union[Variable, "LinearExpr", float]) -> Any:
        if isinstance(other, Variable):
            other = LinearExpr.from_var(other)
        if isinstance(other, LinearExpr):
            return QuadExpr.from_product(self, other)
        return LinearExpr(
            {k: v * other for k, v in self.terms.items()},
            self.constant * other,
            dict(self._var_names),
        )

    def __rmul__(self, other: float) -> "LinearExpr":
        return self.__mul__(other)

    def __neg__(self) -> "LinearExpr":
        return self.__mul__(-1)

    def __truediv__(self, other: float) -> "LinearExpr":
        return self.__mul__(1.0 / other)

    # Comparison operators for constraints; the constant moves into the set
    def _difference(self, other: Union[Variable, "LinearExpr", float]) -> Tuple["LinearExpr", float]:
        if isinstance(other, Variable):
            other = LinearExpr.from_var(other)
        elif not isinstance(other, LinearExpr):
            other = LinearExpr(constant=float(other))
        lhs = self - other
        rhs = -lhs.constant
        lhs.constant = 0.0
        return lhs, rhs

    def __le__(self, other: Union[Variable, "LinearExpr", float]) -> "Constraint":
        lhs, rhs = self._difference(other)
        return Constraint(lhs, LessThan(rhs))

    def __ge__(self, other: Union[Variable, "LinearExpr", float]) -> "Constraint":
        lhs, rhs = self._difference(other)
        return Constraint(lhs, GreaterThan(rhs))

    def __eq__(self, other: Union[Variable, "LinearExpr", float]) -> "Constraint":  # type: ignore[override]
        lhs, rhs = self._difference(other)
        return Constraint(lhs, EqualTo(rhs))


@dataclass(eq=False)
class QuadExpr:
    """
    Quadratic expression: sum of coef * x_i * x_j plus a linear part.

    Quadratic terms are keyed by ordered variable index pairs (i <= j).

    Example:
        >>> obj = x*x + 2*x*y + 3*x
    """

    quad_terms: Dict[Tuple[int, int], float] = field(default_factory=dict)
    linear: LinearExpr = field(default_factory=LinearExpr)

    @classmethod
    def from_product(cls, left: LinearExpr, right: LinearExpr) -> "QuadExpr":
        """Expand the product of two linear expressions."""
        expr = cls()
        for i, a in left.terms.items():
            for j, b in right.terms.items():
                key = (min(i, j), max(i, j))
                expr.quad_terms[key] = expr.quad_terms.get(key, 0.0) + a * b
        linear = left * right.constant + right * left.constant
        linear.constant = left.constant * right.constant
        expr.linear = linear
        return expr

    def __repr__(self) -> str:
        parts = [f"{coef}*x_{i}*x_{j}" for (i, j), coef in sorted(self.quad_terms.items())]
        return " + ".join(parts + [repr(self.linear)])

    def __add__(self, other: Union[Variable, LinearExpr, "QuadExpr", float]) -> "QuadExpr":
        result = QuadExpr(dict(self.quad_terms), self.linear.copy())
        if isinstance(other, QuadExpr):
            for key, coef in other.quad_terms.items():
                result.quad_terms[key] = result.quad_terms.get(key, 0.0) + coef
            result.linear = result.linear + other.linear
        else:
            result.linear = result.linear + other
        return result

    def __radd__(self, other: Union[Variable, LinearExpr, float]) -> "QuadExpr":
        return self.__add__(other)

    def __sub__(self, other: Union[Variable, LinearExpr, "QuadExpr", float]) -> "QuadExpr":
        return self + (-1) * other

    def __rsub__(self, other: Union[Variable, LinearExpr, float]) -> "QuadExpr":
        return (-1) * self + other

    def __mul__(self, other: float) -> "QuadExpr":
        return QuadExpr(
            {k: v * other for k, v in self.quad_terms.items()},
            self.linear * other,
        )

    def __rmul__(self, other: float) -> "QuadExpr":
        return self.__mul__(other)

    def __neg__(self) -> "QuadExpr":
        return self.__mul__(-1)


class FunctionKind(Enum):
    """Kinds of constraint functions."""

    SINGLE_VARIABLE = "single_variable"
    SCALAR_AFFINE = "scalar_affine"
    VECTOR_OF_VARIABLES = "vector_of_variables"
    VECTOR_AFFINE = "vector_affine"


SCALAR_FUNCTIONS = frozenset((FunctionKind.SINGLE_VARIABLE, FunctionKind.SCALAR_AFFINE))
VECTOR_FUNCTIONS = frozenset((FunctionKind.VECTOR_OF_VARIABLES, FunctionKind.VECTOR_AFFINE))

ScalarFunction = Union[Variable, LinearExpr]
VectorFunction = Tuple[ScalarFunction, ...]


def function_kind(func: Union[ScalarFunction, VectorFunction]) -> FunctionKind:
    """Classify a constraint function."""
    if isinstance(func, Variable):
        return FunctionKind.SINGLE_VARIABLE
    if isinstance(func, LinearExpr):
        return FunctionKind.SCALAR_AFFINE
    if isinstance(func, tuple) and func:
        if all(isinstance(f, Variable) for f in func):
            return FunctionKind.VECTOR_OF_VARIABLES
        if all(isinstance(f, (Variable, LinearExpr)) for f in func):
            return FunctionKind.VECTOR_AFFINE
    raise UnsupportedConstraintError(f"function of type {type(func).__name__}")


def function_rows(func: Union[ScalarFunction, VectorFunction]) -> List[Tuple[Dict[int, float], float]]:
    """Rows (terms, constant) of ``func``, one per output component."""
    parts = func if isinstance(func, tuple) else (func,)
    rows = []
    for part in parts:
        if isinstance(part, Variable):
            rows.append(({part.index: 1.0}, 0.0))
        else:
            rows.append((dict(part.terms), part.constant))
    return rows


def function_variables(func: Union[ScalarFunction, VectorFunction]) -> set:
    """Indices of the variables ``func`` references."""
    return {idx for terms, _ in function_rows(func) for idx in terms}


@dataclass(eq=False)
class Constraint:
    """
    Constraint ``function in set`` of an optimization model.

    Attributes:
        function: Variable / LinearExpr (scalar) or a tuple of them (vector)
        set: One of the sets in :mod:`diffopt.sets`
        name: Optional constraint name
        index: Stable identifier (set when added to model)
    """

    function: Union[ScalarFunction, VectorFunction]
    set: Any
    name: Optional[str] = None
    index: int = -1

    @property
    def kind(self) -> Tuple[FunctionKind, type]:
        """(function kind, set type) tag of this constraint."""
        return function_kind(self.function), type(self.set)

    @property
    def is_equality(self) -> bool:
        return self.set.is_equality

    def __hash__(self) -> int:
        return hash(("Constraint", self.index))

    def __repr__(self) -> str:
        name_str = f"{self.name}: " if self.name else ""
        return f"{name_str}{self.function} in {self.set}"


def check_supported(func: Union[ScalarFunction, VectorFunction], s: Any) -> None:
    """Raise UnsupportedConstraintError for pairs outside the supported family."""
    kind = function_kind(func)
    if kind in SCALAR_FUNCTIONS and isinstance(s, SCALAR_SETS):
        return
    if kind in VECTOR_FUNCTIONS and isinstance(s, VECTOR_SETS):
        if len(func) != s.dimension:
            raise DimensionError(
                f"function has {len(func)} rows, {type(s).__name__} has dimension {s.dimension}"
            )
        return
    raise UnsupportedConstraintError(f"{kind.value} function in {type(s).__name__}")


class Model:
    """
    Differentiable optimization model.

    Supports LPs, convex QPs and conic programs over the cones of
    :mod:`diffopt.sets`.

    Args:
        name: Optional model name
        solver: Backend name: "auto", "qp" or "scs". "auto" picks the QP
            backend when every constraint is polyhedral, SCS otherwise.
        params: Default solver parameters, merged under per-call params.

    Example:
        >>> model = Model()
        >>> x = model.add_var(name="x")
        >>> y = model.add_var(name="y")
        >>> model.add_constr(x + y >= 1)
        >>> model.add_constr(x >= 0)
        >>> model.add_constr(y >= 0)
        >>> model.minimize(x*x + y*y)
        >>> model.optimize()
        >>> grads = model.backward(["q", "h"], np.ones(2))
    """

    def __init__(
        self,
        name: str = "",
        solver: str = "auto",
        params: Optional[Dict[str, Any]] = None,
    ):
        from .solver import get_backend

        get_backend(solver)  # validate the name early
        self.name = name
        self.solver = solver
        self.params: Dict[str, Any] = dict(params or {})
        self.empty()

    # ------------------------------------------------------------------
    # Store state
    # ------------------------------------------------------------------

    def empty(self) -> None:
        """Remove every variable, constraint, objective and solution."""
        self._vars: Dict[int, Variable] = {}
        self._constrs: Dict[int, Constraint] = {}
        self._next_var = 0
        self._next_constr = 0
        self._objective: Union[LinearExpr, QuadExpr] = LinearExpr()
        self._sense: str = "minimize"
        self._starts: Dict[int, float] = {}
        self._status = Status.OPTIMIZE_NOT_CALLED
        self._result: Optional[SolveResult] = None
        self._backend: Any = None
        self.primal_optimal: Dict[int, float] = {}
        self.dual_optimal: Dict[int, np.ndarray] = {}
        self.slack_optimal: Dict[int, np.ndarray] = {}

    @property
    def is_empty(self) -> bool:
        return (
            not self._vars
            and not self._constrs
            and not self.primal_optimal
            and not self.dual_optimal
        )

    @property
    def num_vars(self) -> int:
        """Number of variables in the model."""
        return len(self._vars)

    @property
    def num_constrs(self) -> int:
        """Number of constraints in the model."""
        return len(self._constrs)

    @property
    def variables(self) -> List[Variable]:
        """Variables in the fixed model ordering."""
        return list(self._vars.values())

    @property
    def constraints(self) -> List[Constraint]:
        """Constraints in insertion order."""
        return list(self._constrs.values())

    @property
    def objective(self) -> Union[LinearExpr, QuadExpr]:
        return self._objective

    @property
    def sense(self) -> str:
        return self._sense

    @property
    def status(self) -> Status:
        """Termination status of the last solve."""
        return self._status

    @property
    def backend(self) -> Any:
        """Backend instance that produced the last result."""
        return self._backend

    @property
    def solve_time(self) -> float:
        return self._result.solve_time if self._result is not None else 0.0

    @property
    def solver_name(self) -> str:
        return self._backend.name if self._backend is not None else ""

    @property
    def objective_value(self) -> float:
        """Objective value of the last solve in the user's sense."""
        if self._result is None:
            raise UnsupportedStatusError("Model has not been solved", self._status)
        value = self._result.objective
        return -value if self._sense == "maximize" else value

    def _invalidate(self) -> None:
        if self._status is not Status.OPTIMIZE_NOT_CALLED:
            logger.debug("model modified; previous solution no longer differentiable")
        self._status = Status.OPTIMIZE_NOT_CALLED

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def add_var(self, name: Optional[str] = None) -> Variable:
        """
        Add a single decision variable to the model.

        Variables are free; bounds are ordinary constraints (``x >= 0``).

        Args:
            name: Variable name

        Returns:
            The created Variable object
        """
        var = Variable(index=self._next_var, name=name)
        self._next_var += 1
        self._vars[var.index] = var
        self._invalidate()
        return var

    def add_vars(self, count: int, name_prefix: str = "x") -> List[Variable]:
        """
        Add multiple decision variables to the model.

        Args:
            count: Number of variables to add
            name_prefix: Prefix for variable names

        Returns:
            List of created Variable objects
        """
        if count < 0:
            raise InvalidInputError(f"count must be nonnegative, got {count}")
        return [self.add_var(name=f"{name_prefix}_{i}") for i in range(count)]

    def get_var_by_name(self, name: str) -> Optional[Variable]:
        for var in self._vars.values():
            if var.name == name:
                return var
        return None

    def set_start(self, var: Variable, value: float) -> None:
        """Set a primal warm start for ``var``."""
        self._require_valid(var)
        self._starts[var.index] = float(value)

    # ------------------------------------------------------------------
    # Constraints
    # ------------------------------------------------------------------

    def add_constr(self, constraint: Constraint, name: Optional[str] = None) -> Constraint:
        """
        Add a constraint to the model.

        Args:
            constraint: Constraint object (from comparison operators)
            name: Optional constraint name

        Returns:
            The added Constraint object

        Example:
            >>> model.add_constr(x + 2*y <= 20, name="capacity")
        """
        if not isinstance(constraint, Constraint):
            raise InvalidInputError(f"expected a Constraint, got {type(constraint).__name__}")
        check_supported(constraint.function, constraint.set)
        unknown = function_variables(constraint.function) - self._vars.keys()
        if unknown:
            raise InvalidInputError(f"constraint references unknown variables {sorted(unknown)}")
        if name:
            constraint.name = name
        constraint.index = self._next_constr
        self._next_constr += 1
        self._constrs[constraint.index] = constraint
        self._invalidate()
        return constraint

    def add_constrs(self, constraints: Iterable[Constraint]) -> List[Constraint]:
        """
        Add multiple constraints to the model.

        Args:
            constraints: Iterable of Constraint objects

        Returns:
            List of added Constraint objects
        """
        return [self.add_constr(c) for c in constraints]

    def add_range(
        self,
        expr: Union[Variable, LinearExpr],
        lb: float,
        ub: float,
        name: Optional[str] = None,
    ) -> Constraint:
        """Add ``lb <= expr <= ub`` as a single interval constraint."""
        if isinstance(expr, LinearExpr) and expr.constant != 0:
            shift = expr.constant
            expr = expr.copy()
            expr.constant = 0.0
            lb, ub = lb - shift, ub - shift
        return self.add_constr(Constraint(expr, Interval(float(lb), float(ub))), name=name)

    def add_cone_constr(
        self,
        exprs: Sequence[Union[Variable, LinearExpr]],
        cone: Any,
        name: Optional[str] = None,
    ) -> Constraint:
        """
        Add the vector constraint ``(exprs[0], ..., exprs[k-1]) in cone``.

        Example:
            >>> model.add_cone_constr([t, x, y], SecondOrderCone(3))
        """
        return self.add_constr(Constraint(tuple(exprs), cone), name=name)

    def get_constr_by_name(self, name: str) -> Optional[Constraint]:
        for constr in self._constrs.values():
            if constr.name == name:
                return constr
        return None

    def get_set(self, constr: Constraint) -> Any:
        self._require_valid(constr)
        return constr.set

    def set_set(self, constr: Constraint, new_set: Any) -> None:
        """Replace the set of ``constr`` by another set of the same type."""
        self._require_valid(constr)
        if type(new_set) is not type(constr.set):
            raise InvalidInputError(
                f"cannot change {type(constr.set).__name__} into {type(new_set).__name__}"
            )
        check_supported(constr.function, new_set)
        constr.set = new_set
        self._invalidate()

    def get_function(self, constr: Constraint) -> Union[ScalarFunction, VectorFunction]:
        self._require_valid(constr)
        return constr.function

    def set_function(self, constr: Constraint, func: Union[ScalarFunction, VectorFunction]) -> None:
        """Replace the function of ``constr``; scalar stays scalar, vector stays vector."""
        self._require_valid(constr)
        if isinstance(func, list):
            func = tuple(func)
        old_scalar = function_kind(constr.function) in SCALAR_FUNCTIONS
        if (function_kind(func) in SCALAR_FUNCTIONS) != old_scalar:
            raise InvalidInputError("cannot change between scalar and vector functions")
        check_supported(func, constr.set)
        unknown = function_variables(func) - self._vars.keys()
        if unknown:
            raise InvalidInputError(f"function references unknown variables {sorted(unknown)}")
        constr.function = func
        self._invalidate()

    def modify_coefficient(
        self,
        constr: Constraint,
        var: Variable,
        value: float,
        row: int = 0,
    ) -> None:
        """Set the coefficient of ``var`` in (row ``row`` of) ``constr``."""
        self._require_valid(constr)
        self._require_valid(var)
        parts = list(constr.function) if isinstance(constr.function, tuple) else [constr.function]
        if not 0 <= row < len(parts):
            raise DimensionError(f"row {row} out of range for {len(parts)} rows")
        part = parts[row]
        expr = LinearExpr.from_var(part) if isinstance(part, Variable) else part.copy()
        expr.terms[var.index] = float(value)
        parts[row] = expr
        constr.function = tuple(parts) if isinstance(constr.function, tuple) else parts[0]
        self._invalidate()

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def is_valid(self, obj: Union[Variable, Constraint]) -> bool:
        if isinstance(obj, Variable):
            return self._vars.get(obj.index) is obj
        if isinstance(obj, Constraint):
            return self._constrs.get(obj.index) is obj
        return False

    def _require_valid(self, obj: Union[Variable, Constraint]) -> None:
        if not self.is_valid(obj):
            raise InvalidInputError(f"{obj!r} does not belong to this model")

    def delete(self, obj: Union[Variable, Constraint, Sequence[Union[Variable, Constraint]]]) -> None:
        """
        Delete a variable, a constraint, or a list of them.

        Deleting a variable also deletes every constraint referencing it
        and removes it from the objective.
        """
        if isinstance(obj, (list, tuple)):
            for item in obj:
                self.delete(item)
            return
        self._require_valid(obj)
        if isinstance(obj, Constraint):
            del self._constrs[obj.index]
        else:
            dependent = [
                idx for idx, c in self._constrs.items()
                if obj.index in function_variables(c.function)
            ]
            for idx in dependent:
                del self._constrs[idx]
            if dependent:
                logger.debug("deleting %r removed %d constraints", obj, len(dependent))
            self._drop_from_objective(obj.index)
            self._starts.pop(obj.index, None)
            del self._vars[obj.index]
        self._invalidate()

    def _drop_from_objective(self, index: int) -> None:
        obj = self._objective
        linear = obj.linear if isinstance(obj, QuadExpr) else obj
        linear.terms.pop(index, None)
        if isinstance(obj, QuadExpr):
            obj.quad_terms = {k: v for k, v in obj.quad_terms.items() if index not in k}

    # ------------------------------------------------------------------
    # Objective
    # ------------------------------------------------------------------

    def minimize(self, expr: Union[QuadExpr, LinearExpr, Variable, float]) -> None:
        """
        Set the objective to minimize.

        Args:
            expr: Linear or quadratic expression to minimize
        """
        self._objective = self._to_expr(expr)
        self._sense = "minimize"
        self._invalidate()

    def maximize(self, expr: Union[QuadExpr, LinearExpr, Variable, float]) -> None:
        """
        Set the objective to maximize.

        Gradients always refer to the equivalent minimization problem.

        Args:
            expr: Linear or quadratic expression to maximize
        """
        self._objective = self._to_expr(expr)
        self._sense = "maximize"
        self._invalidate()

    def set_objective_coefficient(self, var: Variable, value: float) -> None:
        """Set the linear objective coefficient of ``var``."""
        self._require_valid(var)
        linear = self._objective.linear if isinstance(self._objective, QuadExpr) else self._objective
        linear.terms[var.index] = float(value)
        self._invalidate()

    def _to_expr(self, expr: Union[QuadExpr, LinearExpr, Variable, float]) -> Union[LinearExpr, QuadExpr]:
        """Convert various types to LinearExpr / QuadExpr."""
        if isinstance(expr, QuadExpr):
            result: Union[LinearExpr, QuadExpr] = QuadExpr(dict(expr.quad_terms), expr.linear.copy())
            used = {i for key in expr.quad_terms for i in key} | set(expr.linear.terms)
        elif isinstance(expr, LinearExpr):
            result = expr.copy()
            used = set(expr.terms)
        elif isinstance(expr, Variable):
            result = LinearExpr.from_var(expr)
            used = {expr.index}
        else:
            return LinearExpr(constant=float(expr))
        unknown = used - self._vars.keys()
        if unknown:
            raise InvalidInputError(f"objective references unknown variables {sorted(unknown)}")
        return result

    @property
    def is_quadratic(self) -> bool:
        return isinstance(self._objective, QuadExpr) and any(
            v != 0 for v in self._objective.quad_terms.values()
        )

    # ------------------------------------------------------------------
    # Solving
    # ------------------------------------------------------------------

    def optimize(self, params: Optional[Dict[str, Any]] = None) -> SolveResult:
        """
        Solve the model and store the Solution Point.

        The solution is stored only when the termination status is
        optimal, locally solved or almost optimal; otherwise a warning is
        emitted and the previous Solution Point is left untouched.

        Args:
            params: Solver parameters (tolerance, max_iterations, ...)

        Returns:
            SolveResult with status, objective and raw solution vectors
        """
        from .canonical import conic_form
        from .solver import select_backend

        merged = dict(self.params)
        merged.update(params or {})

        form = conic_form(self)
        backend = select_backend(self.solver, form)
        warm_start = None
        if self._starts:
            warm_start = np.array([self._starts.get(idx, 0.0) for idx in form.variables])

        logger.debug(
            "optimizing with %s: n=%d, m=%d, cones=%d",
            backend.name, form.n, form.m, len(form.cones),
        )
        result = backend.solve(form, merged, warm_start=warm_start)
        result.objective += form.offset
        self._result = result
        self._backend = backend
        self._status = result.status

        if result.status.is_differentiable:
            self.primal_optimal = dict(zip(form.variables, result.x.tolist()))
            self.dual_optimal = form.split(result.y)
            self.slack_optimal = form.split(result.s)
        else:
            warnings.warn(f"problem status: {result.status}", UserWarning, stacklevel=2)
        return result

    def solve(self, params: Optional[Dict[str, Any]] = None) -> SolveResult:
        """Alias of :meth:`optimize`."""
        return self.optimize(params)

    def _require_solution(self) -> None:
        if not self._status.is_differentiable:
            raise UnsupportedStatusError(f"problem status: {self._status}", self._status)

    def get_value(self, var: Variable) -> float:
        """
        Get the solution value for a specific variable.

        Args:
            var: Variable object from the model

        Returns:
            Optimal value of the variable
        """
        self._require_solution()
        self._require_valid(var)
        return self.primal_optimal[var.index]

    def get_values(self, vars: Sequence[Variable]) -> np.ndarray:
        """Get solution values for multiple variables."""
        return np.array([self.get_value(v) for v in vars])

    def get_dual(self, constr: Constraint) -> Union[float, np.ndarray]:
        """
        Get the dual value of a constraint in the convention of its set.

        Duals of LessThan / Nonpositives constraints are nonpositive,
        those of GreaterThan / Nonnegatives constraints nonnegative.
        """
        from .canonical import report_dual

        self._require_solution()
        self._require_valid(constr)
        return report_dual(constr, self.dual_optimal[constr.index])

    def get_slack(self, constr: Constraint) -> np.ndarray:
        """Conic slack block of ``constr``."""
        self._require_solution()
        self._require_valid(constr)
        return self.slack_optimal[constr.index]

    def get_constr_value(self, constr: Constraint) -> Union[float, np.ndarray]:
        """Value of the constraint function at the primal solution."""
        self._require_solution()
        self._require_valid(constr)
        values = np.array([
            sum(coef * self.primal_optimal[idx] for idx, coef in terms.items()) + const
            for terms, const in function_rows(constr.function)
        ])
        return float(values[0]) if not isinstance(constr.function, tuple) else values

    def get_basis_status(self, constr: Constraint) -> BasisStatus:
        """
        Basis status of a scalar constraint after a qp-backend solve.

        A row counts as binding when its slack is within ``active_tol``.

        Raises:
            UnsupportedConstraintError: If ``constr`` is a vector constraint
            IntrospectionError: If the last solve did not use the qp backend
        """
        from .solver import DEFAULT_PARAMS

        self._require_solution()
        self._require_valid(constr)
        if not isinstance(constr.set, SCALAR_SETS):
            raise UnsupportedConstraintError("basis status is only defined for scalar constraints")
        if self.solver_name != "qp":
            raise IntrospectionError(f"backend {self.solver_name!r} does not report basis status")

        if isinstance(constr.set, EqualTo):
            return BasisStatus.NONBASIC
        tol = self.params.get("active_tol", DEFAULT_PARAMS["active_tol"])
        slack = self.slack_optimal[constr.index]
        if isinstance(constr.set, LessThan):
            return BasisStatus.NONBASIC_AT_UPPER if slack[0] <= tol else BasisStatus.BASIC
        if slack[0] <= tol:
            return BasisStatus.NONBASIC_AT_LOWER
        # Interval rows are [f - lower, upper - f]
        if isinstance(constr.set, Interval) and slack[1] <= tol:
            return BasisStatus.NONBASIC_AT_UPPER
        return BasisStatus.BASIC

    # ------------------------------------------------------------------
    # Sensitivities
    # ------------------------------------------------------------------

    def conic_data(self):
        """Fresh conic form (A, b, c, cones) of the current store."""
        from .canonical import conic_form

        return conic_form(self)

    def qp_data(self):
        """Fresh QP form (Q, q, G, h, A, b) plus the Solution Point."""
        from .canonical import qp_form

        return qp_form(self)

    def backward(self, params: Sequence[Any], dl_dz: np.ndarray) -> Dict[Any, np.ndarray]:
        """
        Vector-Jacobian products of the optimal primal point.

        See :func:`diffopt.kkt.backward`.
        """
        from .kkt import backward

        return backward(self, params, dl_dz)

    def backward_conic(
        self,
        dA: Any,
        db: np.ndarray,
        dc: np.ndarray,
        tol: float = 1e-4,
    ) -> "ConicDerivative":
        """
        Directional derivative of (x, y, s) along (dA, db, dc).

        See :func:`diffopt.conic.backward_conic`.
        """
        from .conic import backward_conic

        return backward_conic(self, dA, db, dc, tol=tol)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_matrices(
        cls,
        q: np.ndarray,
        G: Optional[Any] = None,
        h: Optional[np.ndarray] = None,
        A: Optional[Any] = None,
        b: Optional[np.ndarray] = None,
        Q: Optional[Any] = None,
        name: str = "",
        solver: str = "auto",
    ) -> "Model":
        """
        Create model directly from canonical QP data.

            minimize    (1/2) z'Qz + q'z
            subject to  G z <= h, A z == b

        Rows are added in the given order, so the canonical form of the
        returned model reproduces (Q, q, G, h, A, b) exactly.

        Args:
            q: Linear cost (n,)
            G: Inequality constraint matrix (m_ineq, n)
            h: Inequality RHS (m_ineq,)
            A: Equality constraint matrix (m_eq, n)
            b: Equality RHS (m_eq,)
            Q: Quadratic cost (n, n), symmetric positive semidefinite
            name: Model name
            solver: Backend name

        Returns:
            Model object ready to solve
        """
        q = np.asarray(q, dtype=np.float64).ravel()
        n = q.size
        model = cls(name=name, solver=solver)
        z = model.add_vars(n, name_prefix="z")

        def _rows(mat: Any, rhs: Optional[np.ndarray], label: str) -> List[Tuple[Dict[int, float], float]]:
            if mat is None:
                return []
            mat = sparse.csr_matrix(mat)
            if mat.shape[1] != n:
                raise DimensionError(f"{label} has {mat.shape[1]} columns, expected {n}")
            rhs = np.asarray(rhs, dtype=np.float64).ravel()
            if rhs.size != mat.shape[0]:
                raise DimensionError(f"{label} has {mat.shape[0]} rows but rhs has {rhs.size}")
            rows = []
            for i in range(mat.shape[0]):
                row = mat.getrow(i)
                terms = {z[j].index: float(v) for j, v in zip(row.indices, row.data)}
                rows.append((terms, float(rhs[i])))
            return rows

        for terms, rhs in _rows(G, h, "G"):
            model.add_constr(Constraint(LinearExpr(terms), LessThan(rhs)))
        for terms, rhs in _rows(A, b, "A"):
            model.add_constr(Constraint(LinearExpr(terms), EqualTo(rhs)))

        linear = LinearExpr({z[j].index: float(q[j]) for j in range(n)})
        if Q is None:
            model.minimize(linear)
        else:
            Q = np.asarray(sparse.csr_matrix(Q).todense(), dtype=np.float64)
            if Q.shape != (n, n):
                raise DimensionError(f"Q must be ({n},{n}), got {Q.shape}")
            Q = 0.5 * (Q + Q.T)
            quad = {}
            for i in range(n):
                for j in range(i, n):
                    coef = 0.5 * Q[i, i] if i == j else Q[i, j]
                    if coef != 0:
                        quad[(z[i].index, z[j].index)] = float(coef)
            model.minimize(QuadExpr(quad, linear))
        return model

    def __repr__(self) -> str:
        return f"Model(vars={self.num_vars}, constrs={self.num_constrs}, status={self._status})"
