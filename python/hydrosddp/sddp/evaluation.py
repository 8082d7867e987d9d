"""
Extensive form
==============

Deterministic equivalent of the stochastic problem over its whole scenario
tree. Its optimal value is the exact ``V_t(s)``, the reference that SDDP
cuts must stay below and the benchmark for its bounds on small systems.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import InfeasibleError, InfeasibleStageError, InvalidInputError
from ..model import LinearExpr, Model, quicksum
from ..result import Status
from ..solver import LPSolver, solve_model
from ..hydro.subproblem import add_stage_block
from ..hydro.system import HydroSystem
from ..utils.validation import validate_state


@dataclass
class ExtensiveResult:
    """
    Exact expected cost from a stage and state.

    Attributes:
        objective: Optimal expected cost of the remaining stages
        n_nodes: Number of tree nodes in the model
        status: Solver status
        solve_time: Wall clock time in seconds
    """

    objective: float
    n_nodes: int
    status: Status
    solve_time: float = 0.0

    def __repr__(self) -> str:
        return (
            f"ExtensiveResult(objective={self.objective:.6g}, n_nodes={self.n_nodes}, "
            f"status={self.status.value})"
        )


def solve_extensive_form(
    system: HydroSystem,
    start_stage: int = 0,
    state: Optional[Sequence[float]] = None,
    solver: Optional[LPSolver] = None,
    params: Optional[Dict[str, Any]] = None,
    max_nodes: int = 20_000,
) -> ExtensiveResult:
    """
    Solve the scenario tree from ``start_stage`` exactly.

    Every tree node is a copy of the stage LP; a child node's incoming
    volumes are its parent's ``outgoing`` variables.

    Args:
        system: Hydro system
        start_stage: First stage of the tree
        state: Incoming volumes of ``start_stage`` (default: initial volumes)
        solver: LP solver capability
        params: Solver parameters
        max_nodes: Refuse trees larger than this

    Raises:
        InvalidInputError: The tree has more than ``max_nodes`` nodes
        InfeasibleStageError: No feasible policy from ``state``
    """
    if not 0 <= start_stage < system.n_stages:
        raise InvalidInputError(f"start_stage {start_stage} out of range")
    n_nodes = system.n_tree_nodes(start_stage)
    if n_nodes > max_nodes:
        raise InvalidInputError(
            f"scenario tree from stage {start_stage} has {n_nodes} nodes (max {max_nodes})"
        )
    if state is None:
        state = system.initial_state
    state = validate_state(state, system.n_reservoirs)

    start_time = time.perf_counter()
    model = Model(name=f"extensive_{start_stage}")
    costs: List[LinearExpr] = []
    # (incoming, probability of reaching the node)
    frontier = [(list(state), 1.0)]
    node_id = 0
    for t in range(start_stage, system.n_stages):
        next_frontier = []
        for incoming, reach in frontier:
            for scenario in system.scenarios(t):
                block = add_stage_block(
                    model, system, t, incoming, scenario, prefix=f"n{node_id}."
                )
                node_id += 1
                p = reach * scenario.probability
                costs.append(p * block.cost)
                next_frontier.append((block.outgoing, p))
        frontier = next_frontier

    model.minimize(quicksum(costs))
    try:
        result = solve_model(model, solver=solver, params=params)
    except InfeasibleError as e:
        raise InfeasibleStageError(
            stage=start_stage,
            phase="evaluation",
            message=f"No feasible policy from stage {start_stage} and state {state.tolist()}",
        ) from e

    return ExtensiveResult(
        objective=result.objective,
        n_nodes=node_id,
        status=result.status,
        solve_time=time.perf_counter() - start_time,
    )
