"""hydrosddp Solver Interface."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

import numpy as np
from scipy import sparse

from .exceptions import (
    DimensionError,
    InfeasibleError,
    InvalidInputError,
    SolverFailureError,
    UnboundedError,
)
from .result import SolveResult, Status

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)

DEFAULT_PARAMS: Dict[str, Any] = {
    "time_limit": 60.0,
    "tolerance": 1e-7,
    "relax_factor": 100.0,
    "presolve": True,
    "verbose": False,
}


class LPSolver(ABC):
    """
    Linear programming capability used by every solve in the package.

    Implementations receive a problem in standard form

        minimize    c'x
        subject to  A[i] x  senses[i]  b[i]
                    lb <= x <= ub

    and must return a SolveResult whose ``y`` holds, for every row, the
    derivative of the optimal objective with respect to ``b[i]``.
    Any valid optimal dual is acceptable when the LP is degenerate.
    """

    @abstractmethod
    def solve(
        self,
        c: np.ndarray,
        A: Union[np.ndarray, sparse.spmatrix],
        b: np.ndarray,
        lb: np.ndarray,
        ub: np.ndarray,
        senses: np.ndarray,
        params: Optional[Dict[str, Any]] = None,
    ) -> SolveResult:
        """Solve the LP and report status, primal values and duals."""


class HighsSolver(LPSolver):
    """
    HiGHS dual simplex / IPM through ``scipy.optimize.linprog``.

    Args:
        method: linprog method ("highs", "highs-ds" or "highs-ipm")
        params: Default parameters, overridden per call
    """

    _status_map = {
        0: Status.OPTIMAL,
        1: Status.TIME_LIMIT,
        2: Status.INFEASIBLE,
        3: Status.UNBOUNDED,
        4: Status.ERROR,
    }

    def __init__(self, method: str = "highs", params: Optional[Dict[str, Any]] = None) -> None:
        if method not in ("highs", "highs-ds", "highs-ipm"):
            raise InvalidInputError(f"unknown HiGHS method '{method}'")
        self.method = method
        self.params = dict(params or {})

    def __repr__(self) -> str:
        return f"HighsSolver(method={self.method!r})"

    def solve(self, c, A, b, lb, ub, senses, params=None) -> SolveResult:
        from scipy.optimize import linprog

        start_time = time.perf_counter()
        params = {**DEFAULT_PARAMS, **self.params, **(params or {})}
        tol = float(params.get("tolerance", 1e-7))

        c = np.asarray(c, dtype=np.float64).ravel()
        n = len(c)
        lb = np.asarray(lb, dtype=np.float64).ravel()
        ub = np.asarray(ub, dtype=np.float64).ravel()
        if len(lb) != n or len(ub) != n:
            raise DimensionError(f"Bounds mismatch: lb={len(lb)}, ub={len(ub)}, n={n}")

        A = sparse.csr_matrix(A) if not sparse.issparse(A) else A.tocsr()
        m = A.shape[0]
        if m and A.shape[1] != n:
            raise DimensionError(f"A columns {A.shape[1]} != n={n}")
        b = np.asarray(b, dtype=np.float64).ravel()
        senses = np.asarray(senses)
        if len(b) != m or len(senses) != m:
            raise DimensionError(f"A has {m} rows but b has {len(b)} and senses {len(senses)}")

        eq_idx = np.flatnonzero(np.isin(senses, ("==", "=")))
        le_idx = np.flatnonzero(np.isin(senses, ("<=", "<")))
        ge_idx = np.flatnonzero(np.isin(senses, (">=", ">")))
        if len(eq_idx) + len(le_idx) + len(ge_idx) != m:
            raise InvalidInputError(f"unknown constraint sense in {sorted(set(senses.tolist()))}")

        A_eq = A[eq_idx] if len(eq_idx) else None
        b_eq = b[eq_idx] if len(eq_idx) else None
        A_ub, b_ub = None, None
        if len(le_idx) or len(ge_idx):
            A_ub = sparse.vstack([A[le_idx], -A[ge_idx]]).tocsr()
            b_ub = np.concatenate([b[le_idx], -b[ge_idx]])

        bounds = [
            (None if np.isinf(l) else l, None if np.isinf(u) else u)
            for l, u in zip(lb, ub)
        ]
        options = {
            "disp": bool(params.get("verbose", False)),
            "presolve": bool(params.get("presolve", True)),
            "time_limit": float(params.get("time_limit", 60.0)),
            "primal_feasibility_tolerance": tol,
            "dual_feasibility_tolerance": tol,
        }

        try:
            res = linprog(
                c, A_ub=A_ub, b_ub=b_ub, A_eq=A_eq, b_eq=b_eq,
                bounds=bounds, method=self.method, options=options,
            )
        except (ValueError, RuntimeError) as e:
            logger.warning("HiGHS failed: %s", e)
            return SolveResult(
                status=Status.ERROR, objective=float("nan"), x=np.zeros(n), y=np.zeros(m),
                solve_time=time.perf_counter() - start_time, message=str(e),
            )

        status = self._status_map.get(res.status, Status.ERROR)
        x = res.x if res.x is not None else np.zeros(n)

        y = np.zeros(m)
        if status.is_successful:
            y[eq_idx] = _marginals(res, "eqlin", len(eq_idx))
            ineq = _marginals(res, "ineqlin", len(le_idx) + len(ge_idx))
            y[le_idx] = ineq[: len(le_idx)]
            # rows stored negated, so the sensitivity flips sign
            y[ge_idx] = -ineq[len(le_idx):]
            reduced = _marginals(res, "lower", n) + _marginals(res, "upper", n)
        else:
            reduced = np.zeros(n)

        return SolveResult(
            status=status,
            objective=float(res.fun) if status.is_successful else float("nan"),
            x=np.asarray(x, dtype=np.float64),
            y=y,
            iterations=int(getattr(res, "nit", 0) or 0),
            solve_time=time.perf_counter() - start_time,
            reduced_costs=reduced,
            message=str(getattr(res, "message", "")),
        )


def _marginals(res: Any, attr: str, size: int) -> np.ndarray:
    block = getattr(res, attr, None)
    values = getattr(block, "marginals", None) if block is not None else None
    if values is None or len(values) != size:
        return np.zeros(size)
    return np.nan_to_num(np.asarray(values, dtype=np.float64))


def solve_model(
    model: "Model",
    solver: Optional[LPSolver] = None,
    params: Optional[Dict[str, Any]] = None,
) -> SolveResult:
    """
    Solve a model and translate non-optimal outcomes into exceptions.

    A solver error or timeout is retried once with the feasibility
    tolerance multiplied by ``params["relax_factor"]``.

    Raises:
        InfeasibleError: The LP has no feasible point
        UnboundedError: The objective is unbounded below
        SolverFailureError: Both attempts failed
    """
    params = {**DEFAULT_PARAMS, **(params or {})}
    result = model.solve(solver=solver, params=params)
    attempts = 1

    if result.status.is_failure:
        relaxed = dict(params)
        relaxed["tolerance"] = float(params["tolerance"]) * float(params["relax_factor"])
        logger.warning(
            "solver returned %s on %s; retrying with tolerance %.1e",
            result.status, model.name or "model", relaxed["tolerance"],
        )
        result = model.solve(solver=solver, params=relaxed)
        attempts += 1
        if result.status.is_failure:
            raise SolverFailureError(
                f"LP solver failed on {model.name or 'model'} after {attempts} attempts: "
                f"{result.status} {result.message}".rstrip(),
                status=str(result.status),
                attempts=attempts,
            )

    if result.status == Status.INFEASIBLE:
        raise InfeasibleError(f"{model.name or 'model'} is infeasible")
    if result.status == Status.UNBOUNDED:
        raise UnboundedError(f"{model.name or 'model'} is unbounded")
    return result

