"""
Deterministic Solver Orchestrator
=================================

Chains every stage subproblem into one full-horizon LP (no recourse) and
solves it exactly. Stage ``t+1`` receives the ``outgoing`` variables of
stage ``t`` as its incoming volumes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ..exceptions import InfeasibleError, InfeasibleStageError
from ..model import Model, quicksum
from ..result import SolveResult
from ..solver import LPSolver, solve_model
from .subproblem import StageBlock, add_stage_block
from .system import Decision, HydroSystem, Scenario

logger = logging.getLogger(__name__)


@dataclass
class DeterministicResult:
    """
    Solution of the full-horizon deterministic problem.

    Attributes:
        total_cost: Optimal total cost over the horizon
        decisions: Decision per stage
        volumes: Outgoing volumes per stage, shape (T, n_reservoirs)
        stage_costs: Immediate cost per stage
        damage_duals: Dual of each damage constraint, shape (T, n_reservoirs).
            Equal to the damage rate where damage is positive at the optimum.
        damage_slacks: Slack of each damage constraint, shape (T, n_reservoirs).
            Zero where the constraint binds.
        reservoir_ids: Reservoir ordering of every vector
        solve_time: Wall clock time in seconds
    """

    total_cost: float
    decisions: List[Decision]
    volumes: np.ndarray
    stage_costs: np.ndarray
    damage_duals: np.ndarray
    damage_slacks: np.ndarray
    reservoir_ids: List[str]
    solve_time: float
    upstream: List[List[int]] = field(default_factory=list, repr=False)
    result: Optional[SolveResult] = field(default=None, repr=False)

    def __repr__(self) -> str:
        return (
            f"DeterministicResult(\n"
            f"  total_cost={self.total_cost:.4f},\n"
            f"  stages={len(self.decisions)},\n"
            f"  purchase={self.total_purchase:.4f},\n"
            f"  damage={self.damage.sum():.4f}\n"
            f")"
        )

    @property
    def purchases(self) -> np.ndarray:
        return np.array([d.purchase for d in self.decisions])

    @property
    def total_purchase(self) -> float:
        return float(self.purchases.sum())

    @property
    def releases(self) -> np.ndarray:
        return np.array([d.release for d in self.decisions])

    @property
    def damage(self) -> np.ndarray:
        return np.array([d.damage for d in self.decisions])

    def damage_dual(self, stage: int, reservoir_id: str) -> float:
        return float(self.damage_duals[stage, self.reservoir_ids.index(reservoir_id)])

    def damage_slack(self, stage: int, reservoir_id: str) -> float:
        return float(self.damage_slacks[stage, self.reservoir_ids.index(reservoir_id)])

    def water_balance_residuals(self) -> np.ndarray:
        """Residual of every water balance, shape (T, n_reservoirs); ~0 at a solution."""
        return np.array([d.water_balance_residual(self.upstream) for d in self.decisions])

    def to_frame(self) -> pd.DataFrame:
        """One row per stage and reservoir."""
        rows = []
        for d in self.decisions:
            for i, rid in enumerate(self.reservoir_ids):
                rows.append(
                    {
                        "stage": d.stage,
                        "reservoir": rid,
                        "incoming": d.incoming[i],
                        "inflow": d.inflows[i],
                        "release": d.release[i],
                        "spillage": d.spillage[i],
                        "outgoing": d.outgoing[i],
                        "damage": d.damage[i],
                        "damage_dual": self.damage_duals[d.stage, i],
                        "purchase": d.purchase,
                        "price": d.price,
                        "stage_cost": d.stage_cost,
                    }
                )
        return pd.DataFrame(rows)

    def summary(self) -> str:
        """Formatted summary."""
        lines = [
            "=" * 50,
            "Deterministic Schedule",
            "=" * 50,
            f"Total cost:        {self.total_cost:.4f}",
            f"Grid purchase:     {self.total_purchase:.4f}",
            f"Total damage:      {self.damage.sum():.4f}",
            f"Solve time:        {self.solve_time:.4f}s",
            "-" * 50,
        ]
        for d in self.decisions:
            lines.append(
                f"  stage {d.stage}: cost={d.stage_cost:.2f} purchase={d.purchase:.2f} "
                f"volumes={np.round(d.outgoing, 2).tolist()}"
            )
        lines.append("=" * 50)
        return "\n".join(lines)


class DeterministicSolver:
    """
    Exact full-horizon solve with known prices and inflows.

    Stages with several branches are replaced by their expected-value
    scenario.

    Args:
        system: Hydro system
        solver: LP solver capability (default: HiGHS)
        params: Solver parameters

    Example:
        >>> from hydrosddp.hydro import DeterministicSolver, datasets
        >>> result = DeterministicSolver(datasets.rivervault_week()).solve()
        >>> result.total_cost
        400000.0
    """

    def __init__(
        self,
        system: HydroSystem,
        solver: Optional[LPSolver] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.system = system
        self.solver = solver
        self.params = params
        self.scenarios: List[Scenario] = [
            system.expected_scenario(t) for t in range(system.n_stages)
        ]

    def build(self, n_stages: Optional[int] = None) -> tuple:
        """
        Build the chained model over the first ``n_stages`` stages.

        Returns:
            (model, blocks)
        """
        n_stages = self.system.n_stages if n_stages is None else n_stages
        model = Model(name=f"deterministic_{n_stages}")
        blocks: List[StageBlock] = []
        incoming = list(self.system.initial_state)
        for t in range(n_stages):
            block = add_stage_block(model, self.system, t, incoming, self.scenarios[t])
            blocks.append(block)
            incoming = block.outgoing
        model.minimize(quicksum(b.cost for b in blocks))
        return model, blocks

    def solve(self) -> DeterministicResult:
        """
        Solve the horizon.

        Raises:
            InfeasibleStageError: No feasible schedule; ``stage`` names the
                first stage that cannot be reached feasibly
        """
        start_time = time.perf_counter()
        model, blocks = self.build()
        try:
            result = solve_model(model, solver=self.solver, params=self.params)
        except InfeasibleError as e:
            stage = self.offending_stage()
            raise InfeasibleStageError(stage=stage, phase="deterministic") from e

        decisions = []
        incoming = self.system.initial_state
        for block in blocks:
            decision = block.decision(result, incoming)
            decisions.append(decision)
            incoming = decision.outgoing

        solve_time = time.perf_counter() - start_time
        logger.info(
            "deterministic solve: cost %.4f over %d stages in %.3fs",
            result.objective, len(blocks), solve_time,
        )
        return DeterministicResult(
            total_cost=result.objective,
            decisions=decisions,
            volumes=np.array([d.outgoing for d in decisions]),
            stage_costs=np.array([d.stage_cost for d in decisions]),
            damage_duals=np.array([result.get_duals(b.damage_constrs) for b in blocks]),
            damage_slacks=np.array([[result.get_slack(c) for c in b.damage_constrs] for b in blocks]),
            reservoir_ids=self.system.reservoir_ids,
            solve_time=solve_time,
            upstream=[self.system.upstream_of(i) for i in range(self.system.n_reservoirs)],
            result=result,
        )

    def _prefix_feasible(self, n_stages: int) -> bool:
        model, blocks = self.build(n_stages)
        model.minimize(0.0)
        try:
            solve_model(model, solver=self.solver, params=self.params)
        except InfeasibleError:
            return False
        return True

    def offending_stage(self) -> int:
        """
        Index of the stage that makes the horizon infeasible.

        It is the last stage of the shortest infeasible prefix. Prefix
        infeasibility is monotone in the prefix length, so bisection finds it.
        """
        lo, hi = 1, self.system.n_stages
        if self._prefix_feasible(hi):
            raise ValueError("the horizon is feasible")
        while lo < hi:
            mid = (lo + hi) // 2
            if self._prefix_feasible(mid):
                lo = mid + 1
            else:
                hi = mid
        return lo - 1

    def damage_floor(self, stage: int, reservoir_id: str) -> float:
        """
        Smallest damage achievable at (stage, reservoir) over every feasible
        schedule of the whole horizon, whatever it costs.

        A positive floor means the damage is structurally forced by the
        initial state and the balance and bound equations.
        """
        i = self.system.reservoir_index(reservoir_id)
        model, blocks = self.build()
        model.minimize(blocks[stage].damage[i])
        try:
            result = solve_model(model, solver=self.solver, params=self.params)
        except InfeasibleError as e:
            raise InfeasibleStageError(stage=self.offending_stage(), phase="deterministic") from e
        return result.objective
