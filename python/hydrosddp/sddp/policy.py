"""
Stochastic Policy Graph
=======================

Stochastic dual dynamic programming (SDDP) over a linear chain of stages,
each with a finite set of (price, inflow) branches.

The expected cost-to-go ``V_t(s)`` of entering stage ``t`` with volumes
``s`` is approximated from below by the cuts stored for stage ``t``;
stage ``t-1`` bounds its ``theta`` with them. Each iteration:

1. Forward pass: sample one branch per stage, solve the stages in order
   with the current cuts, and record the visited states.
2. Backward pass: from the last stage back to the first, solve every
   branch at each visited state and average the results into one cut

       slope     = sum_b p_b * pi_b
       intercept = sum_b p_b * (obj_b - pi_b' s)

   where ``pi_b`` are the water balance duals. The stage 0 solves give the
   lower bound ``sum_b p_b * obj_b``.

Any optimal dual is accepted. When the stage LP is degenerate the cut is
still valid but may be looser than the tightest one.
"""

from __future__ import annotations

import logging
import time
import warnings
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..exceptions import ConvergenceWarning, InvalidInputError
from ..hydro.subproblem import StageSolution, solve_stage
from ..hydro.system import HydroSystem, Scenario
from ..solver import LPSolver
from ..utils.logger import IterationLogger, console_logging
from ..utils.validation import validate_state
from .cuts import Cut, CutManager

logger = logging.getLogger(__name__)

# Relative slack of the band test; absorbs LP tolerances when the band collapses
BAND_SLACK = 1e-6


@dataclass
class IterationRecord:
    """Bounds and counters after one training iteration."""

    iteration: int
    lower_bound: float
    sampled_cost: float
    upper_bound: float
    n_cuts: int
    elapsed: float


@dataclass
class TrainingResult:
    """
    Outcome of :meth:`PolicyGraph.train`.

    Attributes:
        converged: True if a stopping rule fired (not the iteration or
            time budget)
        stop_reason: "lower_bound_stable", "bound_in_confidence",
            "time_limit" or "iteration_limit"
        iterations: Iterations run in this call
        lower_bound: Final deterministic lower bound
        upper_bound: Mean cost of the last out-of-sample simulation of the
            policy, or the running mean of the forward costs when no band
            was simulated
        ci_lower: Lower end of the upper bound's confidence interval
        ci_upper: Upper end of the upper bound's confidence interval
        gap: ``upper_bound - lower_bound``
        history: Per-iteration records
        solve_time: Wall clock time in seconds
    """

    converged: bool
    stop_reason: str
    iterations: int
    lower_bound: float
    upper_bound: float
    ci_lower: float
    ci_upper: float
    gap: float
    history: List[IterationRecord] = field(default_factory=list)
    solve_time: float = 0.0

    def __repr__(self) -> str:
        return (
            f"TrainingResult(\n"
            f"  converged={self.converged},\n"
            f"  stop_reason='{self.stop_reason}',\n"
            f"  iterations={self.iterations},\n"
            f"  lower_bound={self.lower_bound:.4f},\n"
            f"  upper_bound={self.upper_bound:.4f}\n"
            f")"
        )

    @property
    def relative_gap(self) -> float:
        return self.gap / max(1.0, abs(self.upper_bound))

    def summary(self) -> str:
        """Formatted summary."""
        lines = [
            "=" * 50,
            "SDDP Training",
            "=" * 50,
            f"Converged:         {self.converged} ({self.stop_reason})",
            f"Iterations:        {self.iterations}",
            f"Lower bound:       {self.lower_bound:.4f}",
            f"Upper bound:       {self.upper_bound:.4f}",
            f"Confidence band:   [{self.ci_lower:.4f}, {self.ci_upper:.4f}]",
            f"Gap:               {self.gap:.4f} ({100 * self.relative_gap:.2f}%)",
            f"Solve time:        {self.solve_time:.4f}s",
            "=" * 50,
        ]
        return "\n".join(lines)


def normal_interval(samples: Sequence[float], confidence_level: float) -> tuple:
    """(mean, std_error, lower, upper) of a normal confidence interval."""
    from scipy import stats

    arr = np.asarray(samples, dtype=np.float64)
    mean = float(arr.mean())
    if arr.size < 2:
        return mean, float("inf"), -np.inf, np.inf
    std_error = float(arr.std(ddof=1) / np.sqrt(arr.size))
    alpha = 1 - confidence_level
    z = float(stats.norm.ppf(1 - alpha / 2))
    return mean, std_error, mean - z * std_error, mean + z * std_error


class PolicyGraph:
    """
    SDDP policy for a hydro system.

    Args:
        system: Hydro system with its stage branches
        solver: LP solver capability (default: HiGHS)
        params: Solver parameters passed to every stage solve
        theta_lower_bound: Lower bound of the future cost variable. Costs
            are non-negative, so 0 is valid.

    Example:
        >>> from hydrosddp.hydro import datasets
        >>> graph = PolicyGraph(datasets.rivervault_two_branch())
        >>> result = graph.train(iteration_limit=30, seed=0)
        >>> result.lower_bound >= 400_000
        True
    """

    def __init__(
        self,
        system: HydroSystem,
        solver: Optional[LPSolver] = None,
        params: Optional[Dict[str, Any]] = None,
        theta_lower_bound: float = 0.0,
    ) -> None:
        self.system = system
        self.solver = solver
        self.params = params
        self.theta_lower_bound = float(theta_lower_bound)
        self.cuts = CutManager(system.n_stages, system.n_reservoirs)
        self.history: List[IterationRecord] = []
        self._sampled_costs: List[float] = []
        self._scenarios = [system.scenarios(t) for t in range(system.n_stages)]
        self._probabilities = [system.probabilities(t) for t in range(system.n_stages)]

    def __repr__(self) -> str:
        return (
            f"PolicyGraph(system='{self.system.name}', stages={self.system.n_stages}, "
            f"cuts={self.cuts.n_cuts})"
        )

    @property
    def n_stages(self) -> int:
        return self.system.n_stages

    def future_cuts(self, t: int) -> List[Cut]:
        """Cuts bounding ``theta`` of stage ``t`` (those of stage ``t+1``)."""
        if t + 1 >= self.n_stages:
            return []
        return self.cuts.cuts(t + 1)

    def solve_stage(
        self,
        t: int,
        state: Sequence[float],
        scenario: Scenario,
        cuts: Optional[List[Cut]] = None,
        phase: str = "forward",
    ) -> StageSolution:
        """Solve stage ``t``; ``cuts`` defaults to the current future cuts."""
        return solve_stage(
            self.system,
            t,
            state,
            scenario,
            cuts=self.future_cuts(t) if cuts is None else cuts,
            theta_lower_bound=self.theta_lower_bound,
            solver=self.solver,
            params=self.params,
            phase=phase,
        )

    def sample_path(self, rng: np.random.Generator) -> List[int]:
        """Branch index per stage, drawn by branch probabilities."""
        return [int(rng.choice(len(p), p=p)) for p in self._probabilities]

    def scenario(self, t: int, index: int) -> Scenario:
        return self._scenarios[t][index]

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def forward_pass(self, path: Sequence[int]) -> tuple:
        """
        Solve the stages in order along ``path``.

        Returns:
            (states, solutions, cost): the incoming state of every stage,
            the stage solutions, and the sampled total cost
        """
        state = self.system.initial_state
        states, solutions = [], []
        for t, k in enumerate(path):
            states.append(state)
            sol = self.solve_stage(t, state, self._scenarios[t][k], phase="forward")
            solutions.append(sol)
            state = sol.outgoing
        cost = float(sum(s.stage_cost for s in solutions))
        return states, solutions, cost

    def backward_step(
        self,
        t: int,
        state: np.ndarray,
        executor: Optional[Executor] = None,
        iteration: int = 0,
    ) -> tuple:
        """
        Solve every branch of stage ``t`` from ``state`` and install the
        resulting cut in stage ``t``'s set.

        Returns:
            (cut, expected_objective); ``cut`` is None for a duplicate
        """
        cuts = self.future_cuts(t)
        scenarios = self._scenarios[t]

        def solve(scenario: Scenario) -> StageSolution:
            return self.solve_stage(t, state, scenario, cuts=cuts, phase="backward")

        if executor is not None and len(scenarios) > 1:
            solutions = list(executor.map(solve, scenarios))
        else:
            solutions = [solve(sc) for sc in scenarios]

        probs = self._probabilities[t]
        objectives = np.array([s.objective for s in solutions])
        duals = np.array([s.state_duals for s in solutions])
        slope = probs @ duals
        intercept = float(probs @ (objectives - duals @ state))
        cut = self.cuts.add_cut(t, slope, intercept, iteration=iteration)
        return cut, float(probs @ objectives)

    def iterate(
        self,
        rng: np.random.Generator,
        forward_passes: int = 1,
        executor: Optional[Executor] = None,
    ) -> tuple:
        """
        One SDDP iteration.

        Returns:
            (lower_bound, sampled_costs)
        """
        iteration = len(self.history) + 1
        trajectories = []
        costs = []
        for _ in range(forward_passes):
            states, _, cost = self.forward_pass(self.sample_path(rng))
            trajectories.append(states)
            costs.append(cost)

        lower_bound = -np.inf
        for t in range(self.n_stages - 1, -1, -1):
            for states in trajectories:
                _, expected = self.backward_step(t, states[t], executor, iteration)
                if t == 0:
                    lower_bound = expected
        return lower_bound, costs

    def train(
        self,
        iteration_limit: int = 100,
        stall_iterations: Optional[int] = 5,
        tolerance: float = 1e-4,
        confidence_level: Optional[float] = 0.95,
        min_iterations: int = 20,
        forward_passes: int = 1,
        time_limit: Optional[float] = None,
        seed: Optional[int] = None,
        n_workers: int = 1,
        verbose: bool = False,
        simulation_paths: int = 200,
    ) -> TrainingResult:
        """
        Train the policy.

        Calling ``train`` again continues from the cuts already stored.

        The confidence band is not built from the forward costs, which mix
        in iterations run with few or no cuts. It comes from a fresh
        simulation of ``simulation_paths`` paths with the cuts frozen at
        that iteration. When both rules are enabled the band is only
        simulated once the lower bound is stable, and at most once every
        ``stall_iterations`` iterations; training stops when the band then
        contains the bound (``"bound_in_confidence"``). The stall rule
        alone (``confidence_level=None``) stops with
        ``"lower_bound_stable"``.

        Args:
            iteration_limit: Maximum number of iterations
            stall_iterations: Stop when the lower bound moved by at most
                ``tolerance`` (relative) over this many iterations; None
                disables the rule
            tolerance: Relative tolerance of the stall rule
            confidence_level: Stop when the lower bound is inside this
                confidence interval of the simulated cost of the current
                policy; None disables it
            min_iterations: Neither rule fires before this many iterations
                of this call
            forward_passes: Sampled trajectories per iteration
            time_limit: Wall clock budget in seconds
            seed: Seed of the branch sampler
            n_workers: Threads for the per-branch backward solves
            verbose: Print the iteration table
            simulation_paths: Paths of each out-of-sample simulation behind
                the confidence band

        Returns:
            TrainingResult. When the iteration budget runs out a
            ConvergenceWarning is issued and ``converged`` is False.

        Raises:
            InfeasibleStageError: A forward or backward stage has no solution
            SolverFailureError: The LP solver failed twice on a stage
        """
        if iteration_limit < 1:
            raise InvalidInputError("iteration_limit must be >= 1")
        if forward_passes < 1:
            raise InvalidInputError("forward_passes must be >= 1")
        if confidence_level is not None and not 0 < confidence_level < 1:
            raise InvalidInputError("confidence_level must be in (0, 1)")
        if confidence_level is not None and simulation_paths < 2:
            raise InvalidInputError("simulation_paths must be >= 2")
        if stall_iterations is not None and stall_iterations < 1:
            raise InvalidInputError("stall_iterations must be >= 1")

        rng = np.random.default_rng(seed)
        start_time = time.perf_counter()
        table = IterationLogger()
        executor = ThreadPoolExecutor(max_workers=n_workers) if n_workers > 1 else None
        stop_reason = "iteration_limit"
        first_record = len(self.history)
        ci_lower, ci_upper = -np.inf, np.inf
        upper_bound = np.nan
        band: Optional[tuple] = None
        last_check: Optional[int] = None
        first_check = max(min_iterations, (stall_iterations or 0) + 1)

        try:
            with console_logging(verbose):
                table.header()
                for k in range(1, iteration_limit + 1):
                    lower_bound, costs = self.iterate(rng, forward_passes, executor)
                    self._sampled_costs.extend(costs)
                    elapsed = time.perf_counter() - start_time
                    upper_bound, _, ci_lower, ci_upper = normal_interval(
                        self._sampled_costs, confidence_level or 0.95
                    )
                    record = IterationRecord(
                        iteration=len(self.history) + 1,
                        lower_bound=lower_bound,
                        sampled_cost=float(np.mean(costs)),
                        upper_bound=upper_bound,
                        n_cuts=self.cuts.n_cuts,
                        elapsed=elapsed,
                    )
                    self.history.append(record)
                    table.row(
                        record.iteration, lower_bound, record.sampled_cost, record.n_cuts, elapsed
                    )

                    if k >= first_check:
                        stable = self._lower_bound_stable(stall_iterations, tolerance)
                        if confidence_level is None:
                            if stable:
                                stop_reason = "lower_bound_stable"
                                break
                        elif stall_iterations is None or (
                            stable
                            and (last_check is None or k - last_check >= stall_iterations)
                        ):
                            last_check = k
                            band = self._simulated_band(
                                simulation_paths, confidence_level, rng, n_workers
                            )
                            if self._bound_in_band(lower_bound, band[1], band[2]):
                                stop_reason = "bound_in_confidence"
                                break
                            logger.debug(
                                "iteration %d: lower bound %.6g outside simulated band "
                                "[%.6g, %.6g]",
                                record.iteration, lower_bound, band[1], band[2],
                            )
                    if time_limit is not None and elapsed >= time_limit:
                        stop_reason = "time_limit"
                        break
                table.footer(f"stopped: {stop_reason}")
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        new_records = self.history[first_record:]
        if band is not None:
            upper_bound, ci_lower, ci_upper = band
        lower_bound = new_records[-1].lower_bound
        converged = stop_reason in ("lower_bound_stable", "bound_in_confidence")
        if stop_reason == "iteration_limit":
            warnings.warn(
                f"SDDP stopped after {len(new_records)} iterations without meeting a "
                f"stopping rule; lower bound {lower_bound:.6g}, sampled cost "
                f"{upper_bound:.6g}",
                ConvergenceWarning,
                stacklevel=2,
            )
        logger.info(
            "training %s after %d iterations: lower bound %.6g",
            stop_reason, len(new_records), lower_bound,
        )
        return TrainingResult(
            converged=converged,
            stop_reason=stop_reason,
            iterations=len(new_records),
            lower_bound=lower_bound,
            upper_bound=upper_bound,
            ci_lower=ci_lower,
            ci_upper=ci_upper,
            gap=upper_bound - lower_bound,
            history=list(new_records),
            solve_time=time.perf_counter() - start_time,
        )

    def _lower_bound_stable(self, stall_iterations: Optional[int], tolerance: float) -> bool:
        if stall_iterations is None or len(self.history) <= stall_iterations:
            return False
        current = self.history[-1].lower_bound
        previous = self.history[-1 - stall_iterations].lower_bound
        return abs(current - previous) <= tolerance * max(1.0, abs(current))

    def _simulated_band(
        self,
        n_paths: int,
        confidence_level: float,
        rng: np.random.Generator,
        n_workers: int,
    ) -> tuple:
        """(mean, lower, upper) of the cost of the current policy, out of sample."""
        from .simulation import PolicySimulator

        sim = PolicySimulator(self).simulate(
            n_paths,
            seed=int(rng.integers(2**32)),
            n_workers=n_workers,
            keep_trajectories=0,
            confidence_level=confidence_level,
        )
        return sim.mean, sim.ci_lower, sim.ci_upper

    @staticmethod
    def _bound_in_band(lower_bound: float, ci_lower: float, ci_upper: float) -> bool:
        slack = BAND_SLACK * max(1.0, abs(lower_bound))
        return ci_lower - slack <= lower_bound <= ci_upper + slack

    # ------------------------------------------------------------------
    # Policy queries
    # ------------------------------------------------------------------

    def lower_bounds(self) -> List[float]:
        """Lower bound after every iteration so far."""
        return [r.lower_bound for r in self.history]

    @property
    def lower_bound(self) -> float:
        return self.history[-1].lower_bound if self.history else -np.inf

    def evaluate_value(self, stage: int, state: Sequence[float]) -> float:
        """
        Approximation of ``V_stage(state)`` applied by the stage LPs:
        ``max(theta_lower_bound, cuts)``, so ``theta_lower_bound`` before any
        cut is stored. :meth:`CutManager.evaluate` gives the bare cut maximum.
        """
        cut_value = self.cuts.evaluate(stage, validate_state(state, self.system.n_reservoirs))
        return max(self.theta_lower_bound, cut_value)

    def decide(
        self,
        stage: int,
        state: Sequence[float],
        scenario: Union[Scenario, int],
    ) -> StageSolution:
        """
        Policy decision at ``stage`` from ``state`` once ``scenario`` (a
        Scenario or a branch index) is revealed.
        """
        if not isinstance(scenario, Scenario):
            scenario = self._scenarios[stage][int(scenario)]
        return self.solve_stage(stage, state, scenario, phase="simulation")
