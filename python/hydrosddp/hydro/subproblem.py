"""
Stage Subproblem Builder
========================

Linear program of one stage of the cascade:

    minimize    price * purchase + damage_rate * sum(damage) [+ theta]
    subject to  sum(efficiency * release) + purchase          = demand
                outgoing + spillage + release - upstream release = incoming + inflow
                damage - outgoing                              >= -max_volume
                theta - slope_k' outgoing                      >= intercept_k
                min_volume <= outgoing <= critical_volume

The incoming volumes sit on the right-hand side of the water balance rows,
so the duals of those rows are the gradient of the stage cost with respect
to the incoming state. SDDP uses them as cut slopes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np

from ..exceptions import InfeasibleError, InfeasibleStageError
from ..model import Constraint, LinearExpr, Model, Variable, quicksum
from ..result import SolveResult
from ..solver import LPSolver, solve_model
from ..utils.validation import validate_state
from .system import Decision, HydroSystem, Scenario

Incoming = Sequence[Union[float, Variable, LinearExpr]]


@dataclass
class StageBlock:
    """Variables and constraints one stage contributes to a model."""

    stage: int
    release: List[Variable]
    purchase: Variable
    spillage: List[Variable]
    damage: List[Variable]
    outgoing: List[Variable]
    energy_balance: Constraint
    water_balance: List[Constraint]
    damage_constrs: List[Constraint]
    cost: LinearExpr
    scenario: Scenario
    theta: Optional[Variable] = None
    cut_constrs: List[Constraint] = field(default_factory=list)

    def decision(self, result: SolveResult, incoming: np.ndarray) -> Decision:
        """Read the stage's decision out of a solved model."""
        return Decision(
            stage=self.stage,
            release=result.get_values(self.release),
            purchase=result.get_value(self.purchase),
            spillage=result.get_values(self.spillage),
            damage=result.get_values(self.damage),
            incoming=incoming,
            outgoing=result.get_values(self.outgoing),
            stage_cost=self.cost.value(result.x),
            price=self.scenario.price,
            inflows=self.scenario.inflows,
            scenario_index=self.scenario.index,
        )


def add_stage_block(
    model: Model,
    system: HydroSystem,
    t: int,
    incoming: Incoming,
    scenario: Scenario,
    prefix: str = "",
) -> StageBlock:
    """
    Add the variables and constraints of stage ``t`` to ``model``.

    Args:
        model: Model to extend
        system: The hydro system
        t: Stage index
        incoming: Incoming volume per reservoir, as numbers or as the
            ``outgoing`` variables of the previous stage
        scenario: Realised price and inflows of the stage
        prefix: Name prefix, used to keep names unique in multi-stage models

    Returns:
        StageBlock with handles to everything that was added
    """
    stage = system.stages[t]
    ids = system.reservoir_ids
    res = system.reservoirs
    tag = f"{prefix}t{t}"

    release = [
        model.add_var(lb=r.min_release, ub=r.max_release, name=f"{tag}.release[{r.id}]")
        for r in res
    ]
    purchase = model.add_var(lb=0.0, ub=system.max_purchase, name=f"{tag}.purchase")
    spillage = [
        model.add_var(lb=0.0, ub=r.max_spillage, name=f"{tag}.spillage[{r.id}]") for r in res
    ]
    damage = [model.add_var(lb=0.0, name=f"{tag}.damage[{r.id}]") for r in res]
    outgoing = [
        model.add_var(lb=r.min_volume, ub=r.critical_volume, name=f"{tag}.outgoing[{r.id}]")
        for r in res
    ]

    energy = model.add_constr(
        quicksum(float(r.efficiency) * rel for r, rel in zip(res, release)) + purchase
        == float(stage.demand),
        name=f"{tag}.energy_balance",
    )

    water_balance = []
    for i, rid in enumerate(ids):
        inflow_from_plants = quicksum(release[u] for u in system.upstream_of(i))
        lhs = outgoing[i] + spillage[i] + release[i] - inflow_from_plants
        water_balance.append(
            model.add_constr(
                lhs == _incoming_term(incoming[i]) + float(scenario.inflows[i]),
                name=f"{tag}.water_balance[{rid}]",
            )
        )

    damage_constrs = [
        model.add_constr(
            damage[i] - outgoing[i] >= -r.max_volume,
            name=f"{tag}.damage[{r.id}]",
        )
        for i, r in enumerate(res)
    ]

    cost = float(scenario.price) * purchase + float(system.damage_rate) * quicksum(damage)

    return StageBlock(
        stage=t,
        release=release,
        purchase=purchase,
        spillage=spillage,
        damage=damage,
        outgoing=outgoing,
        energy_balance=energy,
        water_balance=water_balance,
        damage_constrs=damage_constrs,
        cost=cost,
        scenario=scenario,
    )


def _incoming_term(value: Union[float, Variable, LinearExpr]) -> Union[float, LinearExpr]:
    if isinstance(value, (Variable, LinearExpr)):
        return value + 0.0
    return float(value)


def add_future_cost(
    model: Model,
    block: StageBlock,
    cuts: Iterable[Any],
    theta_lower_bound: float = 0.0,
) -> Variable:
    """
    Add ``theta`` bounded below by each cut ``slope' outgoing + intercept``.

    ``cuts`` holds objects with ``slope`` and ``intercept`` attributes.
    """
    theta = model.add_var(
        lb=theta_lower_bound, ub=float("inf"), name=f"t{block.stage}.theta"
    )
    block.theta = theta
    for k, cut in enumerate(cuts):
        slope = np.asarray(cut.slope, dtype=np.float64)
        expr = theta - quicksum(float(a) * v for a, v in zip(slope, block.outgoing))
        block.cut_constrs.append(
            model.add_constr(expr >= float(cut.intercept), name=f"t{block.stage}.cut[{k}]")
        )
    return theta


@dataclass
class StageSolution:
    """
    Solved stage subproblem.

    Attributes:
        stage: Stage index
        decision: Releases, purchase, spillage, damage and volumes
        objective: Stage cost plus theta
        stage_cost: Immediate cost (purchase + damage)
        theta: Approximate expected future cost (0 when absent)
        state_duals: Water balance duals, d objective / d incoming volume
        outgoing: Read-only outgoing state, the next stage's incoming state
        result: Raw LP result
        block: Model handles, for slack and dual inspection
    """

    stage: int
    decision: Decision
    objective: float
    stage_cost: float
    theta: float
    state_duals: np.ndarray
    outgoing: np.ndarray
    result: SolveResult
    block: StageBlock

    def __repr__(self) -> str:
        return (
            f"StageSolution(stage={self.stage}, objective={self.objective:.6g}, "
            f"stage_cost={self.stage_cost:.6g}, theta={self.theta:.6g})"
        )


def build_stage_problem(
    system: HydroSystem,
    t: int,
    incoming: Sequence[float],
    scenario: Scenario,
    cuts: Optional[Iterable[Any]] = None,
    theta_lower_bound: float = 0.0,
) -> tuple:
    """
    Build the stage ``t`` LP as a standalone model.

    ``cuts=None`` gives the myopic subproblem; any iterable (even empty)
    adds ``theta``, except on the last stage, which has no future.

    Returns:
        (model, block)
    """
    model = Model(name=f"stage_{t}")
    block = add_stage_block(model, system, t, incoming, scenario)
    objective = block.cost
    if cuts is not None and t < system.n_stages - 1:
        theta = add_future_cost(model, block, cuts, theta_lower_bound)
        objective = objective + theta
    model.minimize(objective)
    return model, block


def solve_stage(
    system: HydroSystem,
    t: int,
    incoming: Sequence[float],
    scenario: Scenario,
    cuts: Optional[Iterable[Any]] = None,
    theta_lower_bound: float = 0.0,
    solver: Optional[LPSolver] = None,
    params: Optional[Dict[str, Any]] = None,
    phase: str = "forward",
) -> StageSolution:
    """
    Solve stage ``t`` from ``incoming`` under ``scenario``.

    A pure function of (incoming state, scenario, cuts): nothing outside
    the returned solution is modified.

    Raises:
        InfeasibleStageError: The stage admits no solution from this state
    """
    incoming = validate_state(incoming, system.n_reservoirs)
    model, block = build_stage_problem(system, t, incoming, scenario, cuts, theta_lower_bound)
    try:
        result = solve_model(model, solver=solver, params=params)
    except InfeasibleError as e:
        raise InfeasibleStageError(
            stage=t,
            phase=phase,
            message=f"Stage {t} is infeasible ({phase}) from state {incoming.tolist()} "
            f"under scenario {scenario.label or scenario.index}",
        ) from e

    decision = block.decision(result, incoming)
    theta = result.get_value(block.theta) if block.theta is not None else 0.0
    duals = result.get_duals(block.water_balance)
    duals.setflags(write=False)
    return StageSolution(
        stage=t,
        decision=decision,
        objective=result.objective,
        stage_cost=decision.stage_cost,
        theta=theta,
        state_duals=duals,
        outgoing=validate_state(decision.outgoing, system.n_reservoirs),
        result=result,
        block=block,
    )
