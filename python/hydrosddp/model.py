"""
hydrosddp Model Builder
=======================

Algebraic interface for the linear programs of the stage subproblems, the
deterministic horizon and the extensive form.

Variables and expressions share one set of operators, so stage rows read
like their equations:

    >>> model = Model(name="stage_0")
    >>> release = model.add_var(lb=0, ub=120, name="release[R3]")
    >>> spill = model.add_var(lb=0, ub=20, name="spillage[R3]")
    >>> volume = model.add_var(lb=0, ub=200, name="outgoing[R3]")
    >>> model.add_constr(volume + spill + release == 190 + 140, name="water_balance[R3]")
"""

from dataclasses import dataclass, field
from itertools import chain
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
from scipy import sparse

from .exceptions import DimensionError, InvalidInputError

if TYPE_CHECKING:
    from .result import SolveResult
    from .solver import LPSolver

Operand = Union["Variable", "LinearExpr", float]


class _Algebra:
    """Arithmetic and comparison operators shared by variables and expressions."""

    __hash__ = None  # __eq__ builds a Constraint

    def as_expr(self) -> "LinearExpr":
        raise NotImplementedError

    def __add__(self, other: Operand) -> "LinearExpr":
        return _combine(self.as_expr(), other, 1.0)

    __radd__ = __add__

    def __sub__(self, other: Operand) -> "LinearExpr":
        return _combine(self.as_expr(), other, -1.0)

    def __rsub__(self, other: Operand) -> "LinearExpr":
        return _combine(self.as_expr().scaled(-1.0), other, 1.0)

    def __mul__(self, factor: float) -> "LinearExpr":
        return self.as_expr().scaled(float(factor))

    __rmul__ = __mul__

    def __truediv__(self, divisor: float) -> "LinearExpr":
        return self.as_expr().scaled(1.0 / float(divisor))

    def __neg__(self) -> "LinearExpr":
        return self.as_expr().scaled(-1.0)

    def __le__(self, other: Operand) -> "Constraint":
        return Constraint(_combine(self.as_expr(), other, -1.0), "<=", 0.0)

    def __ge__(self, other: Operand) -> "Constraint":
        return Constraint(_combine(self.as_expr(), other, -1.0), ">=", 0.0)

    def __eq__(self, other: Operand) -> "Constraint":  # type: ignore[override]
        return Constraint(_combine(self.as_expr(), other, -1.0), "==", 0.0)


@dataclass(eq=False)
class Variable(_Algebra):
    """
    Decision variable.

    Attributes:
        index: Column of the variable in its model
        lb: Lower bound
        ub: Upper bound (may be +inf)
        name: Label used in expressions and error messages
    """

    index: int
    lb: float = 0.0
    ub: float = float("inf")
    name: Optional[str] = None

    def __repr__(self) -> str:
        return f"Variable({self.label})"

    @property
    def label(self) -> str:
        return self.name or f"x_{self.index}"

    def as_expr(self) -> "LinearExpr":
        return LinearExpr({self.index: 1.0}, 0.0, {self.index: self.label})


@dataclass(eq=False)
class LinearExpr(_Algebra):
    """
    Affine expression ``sum(terms[j] * x_j) + constant``.

    Terms that cancel keep their column with a zero coefficient.
    """

    terms: Dict[int, float] = field(default_factory=dict)
    constant: float = 0.0
    names: Dict[int, str] = field(default_factory=dict, repr=False)

    def __repr__(self) -> str:
        parts = [f"{coef:g}*{self.names.get(j, f'x_{j}')}" for j, coef in sorted(self.terms.items())]
        if self.constant or not parts:
            parts.append(f"{self.constant:g}")
        return " + ".join(parts).replace("+ -", "- ")

    def as_expr(self) -> "LinearExpr":
        return self

    def copy(self) -> "LinearExpr":
        return LinearExpr(dict(self.terms), self.constant, dict(self.names))

    def scaled(self, factor: float) -> "LinearExpr":
        return LinearExpr(
            {j: factor * coef for j, coef in self.terms.items()},
            factor * self.constant,
            dict(self.names),
        )

    def value(self, x: np.ndarray) -> float:
        """Evaluate at a primal solution vector."""
        return float(sum(coef * x[j] for j, coef in self.terms.items()) + self.constant)


def _as_expr(operand: Operand) -> LinearExpr:
    if isinstance(operand, _Algebra):
        return operand.as_expr()
    return LinearExpr(constant=float(operand))


def _accumulate(target: LinearExpr, operand: Operand, sign: float) -> None:
    expr = _as_expr(operand)
    for j, coef in expr.terms.items():
        target.terms[j] = target.terms.get(j, 0.0) + sign * coef
    target.names.update(expr.names)
    target.constant += sign * expr.constant


def _combine(expr: LinearExpr, operand: Operand, sign: float) -> LinearExpr:
    out = expr.copy()
    _accumulate(out, operand, sign)
    return out


def quicksum(items: Iterable[Operand]) -> LinearExpr:
    """Sum variables, expressions and numbers without intermediate copies."""
    total = LinearExpr()
    for item in items:
        _accumulate(total, item, 1.0)
    return total


@dataclass(eq=False)
class Constraint:
    """
    Row ``lhs sense rhs``; expressions keep everything on the left.

    Attributes:
        lhs: Left-hand side, constant included
        sense: "<=", ">=" or "=="
        rhs: Right-hand side constant
        name: Row label
        index: Row of the constraint once added to a model
    """

    lhs: LinearExpr
    sense: str
    rhs: float
    name: Optional[str] = None
    index: int = -1

    def __repr__(self) -> str:
        label = f"{self.name}: " if self.name else ""
        return f"{label}{self.lhs} {self.sense} {self.rhs:g}"


def _bounds(value: Union[float, np.ndarray], count: int, label: str) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim == 0:
        return np.full(count, float(arr))
    if arr.shape != (count,):
        raise DimensionError(f"{label} has length {len(arr)}, expected {count}")
    return arr


class Model:
    """
    Linear program under construction. The objective is always minimised.

    Args:
        name: Model label, shown in repr and logs
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._vars: List[Variable] = []
        self._constrs: List[Constraint] = []
        self._objective: Optional[LinearExpr] = None

    def __repr__(self) -> str:
        return f"Model(name={self.name!r}, vars={self.num_vars}, constrs={self.num_constrs})"

    @property
    def num_vars(self) -> int:
        return len(self._vars)

    @property
    def num_constrs(self) -> int:
        return len(self._constrs)

    @property
    def objective(self) -> Optional[LinearExpr]:
        return self._objective

    def add_var(
        self,
        lb: float = 0.0,
        ub: float = float("inf"),
        name: Optional[str] = None,
    ) -> Variable:
        """
        Add one variable with bounds ``[lb, ub]``.

        Raises:
            InvalidInputError: ``lb > ub``
        """
        if lb > ub:
            raise InvalidInputError(f"variable {name or len(self._vars)} has lb {lb} > ub {ub}")
        var = Variable(len(self._vars), float(lb), float(ub), name)
        self._vars.append(var)
        return var

    def add_vars(
        self,
        count: int,
        lb: Union[float, np.ndarray] = 0.0,
        ub: Union[float, np.ndarray] = float("inf"),
        name_prefix: str = "x",
        names: Optional[List[str]] = None,
    ) -> List[Variable]:
        """
        Add ``count`` variables.

        Bounds are scalars or arrays of length ``count``. Variables are named
        ``name_prefix[names[i]]`` when ``names`` is given, else
        ``name_prefix_i``.
        """
        lbs = _bounds(lb, count, "lb")
        ubs = _bounds(ub, count, "ub")
        if names is None:
            labels = [f"{name_prefix}_{i}" for i in range(count)]
        elif len(names) != count:
            raise DimensionError(f"names has length {len(names)}, expected {count}")
        else:
            labels = [f"{name_prefix}[{n}]" for n in names]
        return [self.add_var(lo, hi, label) for lo, hi, label in zip(lbs, ubs, labels)]

    def add_constr(self, constraint: Constraint, name: Optional[str] = None) -> Constraint:
        """
        Add a row built with ``<=``, ``>=`` or ``==``.

        Example:
            >>> model.add_constr(release + purchase == demand, name="energy_balance")
        """
        if not isinstance(constraint, Constraint):
            raise InvalidInputError(f"expected a Constraint, got {type(constraint).__name__}")
        if name:
            constraint.name = name
        constraint.index = len(self._constrs)
        self._constrs.append(constraint)
        return constraint

    def minimize(self, expr: Operand) -> None:
        self._objective = _as_expr(expr)

    def solve(
        self,
        solver: Optional["LPSolver"] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> "SolveResult":
        """
        Solve once with ``solver`` (HiGHS by default).

        The objective constant is added back to ``result.objective`` and
        ``result.slack`` is filled with ``A x - b``.
        """
        from .solver import HighsSolver

        solver = solver if solver is not None else HighsSolver()
        A, b, c, lb, ub, senses = self.to_standard_form()
        result = solver.solve(c=c, A=A, b=b, lb=lb, ub=ub, senses=senses, params=params)
        if self._objective is not None and result.status.is_successful:
            result.objective += self._objective.constant
        if result.x is not None and len(result.x) == self.num_vars and self.num_constrs:
            result.slack = np.asarray(A @ result.x - b, dtype=np.float64).ravel()
        return result

    def to_standard_form(
        self,
    ) -> Tuple[Any, np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Matrix form ``(A, b, c, lb, ub, senses)`` with row ``i`` reading
        ``A[i] @ x  senses[i]  b[i]``.

        Expression constants are moved to ``b``; ``A`` is CSR.
        """
        n, rows = self.num_vars, self._constrs

        c = np.zeros(n)
        if self._objective is not None:
            for j, coef in self._objective.terms.items():
                c[j] += coef

        lb = np.array([v.lb for v in self._vars], dtype=np.float64)
        ub = np.array([v.ub for v in self._vars], dtype=np.float64)

        lengths = np.array([len(r.lhs.terms) for r in rows], dtype=np.int64)
        row_idx = np.repeat(np.arange(len(rows), dtype=np.int64), lengths)
        nnz = int(lengths.sum())
        col_idx = np.fromiter(
            chain.from_iterable(r.lhs.terms.keys() for r in rows), dtype=np.int64, count=nnz
        )
        data = np.fromiter(
            chain.from_iterable(r.lhs.terms.values() for r in rows), dtype=np.float64, count=nnz
        )
        A = sparse.csr_matrix((data, (row_idx, col_idx)), shape=(len(rows), n))
        b = np.array([r.rhs - r.lhs.constant for r in rows], dtype=np.float64)
        senses = np.array([r.sense for r in rows], dtype="<U2")

        return A, b, c, lb, ub, senses
