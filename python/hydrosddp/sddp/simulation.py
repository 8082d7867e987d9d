"""
Policy Simulator
================

Monte Carlo evaluation of a trained policy. The cuts are frozen by a
snapshot when the simulation starts; each path then samples one branch
per stage and follows the policy's decisions.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from ..exceptions import InvalidInputError
from ..hydro.system import Decision
from .cuts import Cut
from .policy import PolicyGraph, normal_interval

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    """
    Cost statistics of simulated paths.

    Attributes:
        costs: Total cost of every path
        mean: Sample mean (estimate of the expected cost)
        variance: Sample variance (ddof=1)
        std: Sample standard deviation
        std_error: ``std / sqrt(n_paths)``
        ci_lower: Lower end of the normal confidence interval
        ci_upper: Upper end of the normal confidence interval
        trajectories: Decisions of the first ``keep_trajectories`` paths
        paths: Branch index per stage of the kept trajectories
        reservoir_ids: Reservoir ordering of the decision vectors
        solve_time: Wall clock time in seconds
    """

    costs: np.ndarray
    mean: float
    variance: float
    std: float
    std_error: float
    ci_lower: float
    ci_upper: float
    trajectories: List[List[Decision]] = field(default_factory=list, repr=False)
    paths: List[List[int]] = field(default_factory=list, repr=False)
    reservoir_ids: List[str] = field(default_factory=list, repr=False)
    solve_time: float = 0.0

    def __repr__(self) -> str:
        return (
            f"SimulationResult(\n"
            f"  n_paths={self.n_paths},\n"
            f"  mean={self.mean:.4f},\n"
            f"  std_error={self.std_error:.4f}\n"
            f")"
        )

    @property
    def n_paths(self) -> int:
        return len(self.costs)

    def summary(self) -> str:
        lines = [
            "=" * 50,
            "Policy Simulation",
            "=" * 50,
            f"Paths:             {self.n_paths}",
            f"Expected cost:     {self.mean:.4f}",
            f"Std deviation:     {self.std:.4f}",
            f"Std error:         {self.std_error:.4f}",
            f"Confidence band:   [{self.ci_lower:.4f}, {self.ci_upper:.4f}]",
            f"Min / max cost:    {self.costs.min():.4f} / {self.costs.max():.4f}",
            f"Solve time:        {self.solve_time:.4f}s",
            "=" * 50,
        ]
        return "\n".join(lines)

    def to_frame(self) -> pd.DataFrame:
        """Kept trajectories in long format, one row per path, stage and reservoir."""
        rows = []
        for p, trajectory in enumerate(self.trajectories):
            for d in trajectory:
                for i, rid in enumerate(self.reservoir_ids):
                    rows.append(
                        {
                            "path": p,
                            "stage": d.stage,
                            "branch": d.scenario_index,
                            "reservoir": rid,
                            "incoming": d.incoming[i],
                            "inflow": d.inflows[i],
                            "release": d.release[i],
                            "spillage": d.spillage[i],
                            "outgoing": d.outgoing[i],
                            "damage": d.damage[i],
                            "purchase": d.purchase,
                            "price": d.price,
                            "stage_cost": d.stage_cost,
                        }
                    )
        return pd.DataFrame(rows)


class PolicySimulator:
    """
    Simulate a trained :class:`PolicyGraph`.

    Paths are independent: each gets its own random generator spawned from
    the seed, so the costs do not depend on ``n_workers``.

    Example:
        >>> sim = PolicySimulator(graph).simulate(1000, seed=1)
        >>> print(sim.mean, sim.std_error)
    """

    def __init__(self, graph: PolicyGraph) -> None:
        self.graph = graph

    def _run_path(self, path: Sequence[int], cuts: List[List[Cut]]) -> List[Decision]:
        graph = self.graph
        n_stages = graph.n_stages
        state = graph.system.initial_state
        decisions = []
        for t, k in enumerate(path):
            future = cuts[t + 1] if t + 1 < n_stages else []
            sol = graph.solve_stage(t, state, graph.scenario(t, k), cuts=future, phase="simulation")
            decisions.append(sol.decision)
            state = sol.outgoing
        return decisions

    def simulate(
        self,
        n_paths: int,
        seed: Optional[int] = None,
        n_workers: int = 1,
        keep_trajectories: int = 10,
        confidence_level: float = 0.95,
        scenario_paths: Optional[Sequence[Sequence[int]]] = None,
    ) -> SimulationResult:
        """
        Simulate ``n_paths`` sampled paths.

        Args:
            n_paths: Number of paths (ignored when ``scenario_paths`` is given)
            seed: Root seed
            n_workers: Threads solving paths concurrently
            keep_trajectories: How many paths keep their decisions
            confidence_level: Level of the reported interval
            scenario_paths: Explicit branch index per stage for each path,
                replacing the sampling

        Raises:
            InfeasibleStageError: A stage on some path has no solution
        """
        graph = self.graph
        n_stages = graph.n_stages
        if scenario_paths is not None:
            paths = [list(map(int, p)) for p in scenario_paths]
            if not paths:
                raise InvalidInputError("scenario_paths is empty")
            for p in paths:
                if len(p) != n_stages:
                    raise InvalidInputError(f"scenario path {p} must have {n_stages} entries")
                for t, k in enumerate(p):
                    if not 0 <= k < len(graph.system.scenarios(t)):
                        raise InvalidInputError(f"stage {t} has no branch {k}")
        else:
            if n_paths < 1:
                raise InvalidInputError("n_paths must be >= 1")
            children = np.random.SeedSequence(seed).spawn(n_paths)
            paths = [graph.sample_path(np.random.default_rng(c)) for c in children]

        start_time = time.perf_counter()
        cuts = graph.cuts.snapshot()

        if n_workers > 1:
            with ThreadPoolExecutor(max_workers=n_workers) as executor:
                results = list(executor.map(lambda p: self._run_path(p, cuts), paths))
        else:
            results = [self._run_path(p, cuts) for p in paths]

        costs = np.array([sum(d.stage_cost for d in r) for r in results], dtype=np.float64)
        mean, std_error, ci_lower, ci_upper = normal_interval(costs, confidence_level)
        variance = float(costs.var(ddof=1)) if costs.size > 1 else 0.0
        solve_time = time.perf_counter() - start_time
        logger.info(
            "simulated %d paths: mean %.6g, std error %.6g (%.3fs)",
            costs.size, mean, std_error, solve_time,
        )
        return SimulationResult(
            costs=costs,
            mean=mean,
            variance=variance,
            std=float(np.sqrt(variance)),
            std_error=std_error,
            ci_lower=ci_lower,
            ci_upper=ci_upper,
            trajectories=results[:keep_trajectories],
            paths=paths[:keep_trajectories],
            reservoir_ids=graph.system.reservoir_ids,
            solve_time=solve_time,
        )
