"""
Hydro cascade model: system data, stage subproblems, and the
deterministic full-horizon solve.
"""

from . import datasets
from .deterministic import DeterministicResult, DeterministicSolver
from .loaders import (
    load_system,
    load_system_csv,
    system_from_dict,
    system_from_frames,
    system_to_dict,
)
from .subproblem import (
    StageBlock,
    StageSolution,
    add_future_cost,
    add_stage_block,
    build_stage_problem,
    solve_stage,
)
from .system import (
    Decision,
    HydroSystem,
    InflowBranch,
    PriceBranch,
    Reservoir,
    Scenario,
    Stage,
)

__all__ = [
    "datasets",
    "Reservoir",
    "PriceBranch",
    "InflowBranch",
    "Scenario",
    "Stage",
    "HydroSystem",
    "Decision",
    "StageBlock",
    "StageSolution",
    "add_stage_block",
    "add_future_cost",
    "build_stage_problem",
    "solve_stage",
    "DeterministicSolver",
    "DeterministicResult",
    "system_from_dict",
    "system_to_dict",
    "load_system",
    "system_from_frames",
    "load_system_csv",
]
