"""
hydrosddp Result Classes
========================

Outcome of one LP solve: status, primal point and the sensitivities the
SDDP cuts and the damage diagnostics are read from.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

import numpy as np

if TYPE_CHECKING:
    from .model import Constraint, Variable


class Status(Enum):
    """
    Terminal state of an LP solve.

    ``TIME_LIMIT``, ``ERROR`` and ``UNSOLVED`` are solver failures and are
    retried once; ``INFEASIBLE`` and ``UNBOUNDED`` describe the model and
    are not.
    """

    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    TIME_LIMIT = "time_limit"
    ERROR = "error"
    UNSOLVED = "unsolved"

    def __str__(self) -> str:
        return self.value

    @property
    def is_successful(self) -> bool:
        return self is Status.OPTIMAL

    @property
    def is_failure(self) -> bool:
        return self in (Status.TIME_LIMIT, Status.ERROR, Status.UNSOLVED)


def _empty() -> np.ndarray:
    return np.zeros(0)


@dataclass
class SolveResult:
    """
    Solution of one LP.

    Attributes:
        status: Terminal status
        objective: Optimal value, objective constant included (nan unless optimal)
        x: Primal values by variable index
        y: Constraint duals by row, as d objective / d rhs of the row as written
        iterations: Simplex or IPM iterations reported by the solver
        solve_time: Wall clock time in seconds
        slack: ``A x - b`` by row; zero on binding rows
        reduced_costs: Bound sensitivities by variable
        message: Solver message
    """

    status: Status
    objective: float
    x: np.ndarray
    y: np.ndarray
    iterations: int = 0
    solve_time: float = 0.0
    slack: np.ndarray = field(default_factory=_empty)
    reduced_costs: np.ndarray = field(default_factory=_empty)
    message: str = ""

    def __repr__(self) -> str:
        return (
            f"SolveResult(status={self.status}, objective={self.objective:.6g}, "
            f"iterations={self.iterations}, time={self.solve_time:.4f}s)"
        )

    def get_value(self, var: "Variable") -> float:
        return float(self.x[var.index])

    def get_values(self, variables: Sequence["Variable"]) -> np.ndarray:
        return self.x[[v.index for v in variables]]

    def get_dual(self, constr: "Constraint") -> float:
        """
        Shadow price of ``constr``.

        Positive when raising the row's right-hand side raises the optimal
        cost, whatever the row's sense.
        """
        return float(self.y[constr.index])

    def get_duals(self, constrs: Sequence["Constraint"]) -> np.ndarray:
        return self.y[[c.index for c in constrs]]

    def get_slack(self, constr: "Constraint") -> float:
        return float(self.slack[constr.index])

    def get_reduced_cost(self, var: "Variable") -> float:
        return float(self.reduced_costs[var.index])

    def summary(self) -> str:
        """Formatted summary."""
        lines = [
            "=" * 50,
            "LP Solve",
            "=" * 50,
            f"Status:            {self.status}",
            f"Objective:         {self.objective:.10g}",
            f"Variables:         {len(self.x)}",
            f"Constraints:       {len(self.y)}",
            f"Iterations:        {self.iterations}",
            f"Solve time:        {self.solve_time:.4f}s",
        ]
        if self.message:
            lines.append(f"Message:           {self.message}")
        lines.append("=" * 50)
        return "\n".join(lines)
