"""
hydrosddp: Hydropower Cascade Scheduling
========================================

hydrosddp decides plant releases and grid purchases for a cascade of
reservoirs over a multi-day horizon. It minimises purchases plus damage
penalties for volumes above the safe maximum, either with one
deterministic LP or with stochastic dual dynamic programming (SDDP).

Quick Start
-----------
>>> from hydrosddp import DeterministicSolver, datasets
>>> result = DeterministicSolver(datasets.rivervault_week()).solve()
>>> print(result.total_cost, result.total_purchase)
400000.0 0.0

Stochastic inflows:

>>> from hydrosddp import PolicyGraph, PolicySimulator, build_report
>>> graph = PolicyGraph(datasets.rivervault_two_branch())
>>> training = graph.train(iteration_limit=50, seed=0)
>>> sim = PolicySimulator(graph).simulate(1000, seed=1)
>>> report = build_report(training=training, simulation=sim, cuts=graph.cuts)
"""

__version__ = "0.1.0"
__author__ = "hydrosddp Contributors"

from .model import Model, Variable, Constraint, LinearExpr, quicksum
from .solver import LPSolver, HighsSolver, solve_model
from .result import SolveResult, Status
from .exceptions import (
    HydroSDDPError,
    InfeasibleError,
    InfeasibleStageError,
    UnboundedError,
    SolverFailureError,
    DimensionError,
    InvalidInputError,
    ConvergenceWarning,
)
from .hydro import (
    datasets,
    Reservoir,
    PriceBranch,
    InflowBranch,
    Scenario,
    Stage,
    HydroSystem,
    Decision,
    DeterministicSolver,
    DeterministicResult,
    load_system,
    load_system_csv,
    system_from_dict,
    system_from_frames,
)
from .sddp import (
    CutManager,
    PolicyGraph,
    PolicySimulator,
    SimulationResult,
    TrainingResult,
    solve_extensive_form,
)
from .report import build_report, save_report

__all__ = [
    # Version
    "__version__",

    # Model building
    "Model",
    "Variable",
    "Constraint",
    "LinearExpr",
    "quicksum",

    # Solving
    "LPSolver",
    "HighsSolver",
    "solve_model",

    # Results
    "SolveResult",
    "Status",

    # Hydro system
    "datasets",
    "Reservoir",
    "PriceBranch",
    "InflowBranch",
    "Scenario",
    "Stage",
    "HydroSystem",
    "Decision",
    "load_system",
    "load_system_csv",
    "system_from_dict",
    "system_from_frames",

    # Deterministic
    "DeterministicSolver",
    "DeterministicResult",

    # SDDP
    "CutManager",
    "PolicyGraph",
    "TrainingResult",
    "PolicySimulator",
    "SimulationResult",
    "solve_extensive_form",

    # Report
    "build_report",
    "save_report",

    # Exceptions
    "HydroSDDPError",
    "InfeasibleError",
    "InfeasibleStageError",
    "UnboundedError",
    "SolverFailureError",
    "DimensionError",
    "InvalidInputError",
    "ConvergenceWarning",
]


def info() -> str:
    """Return information about the hydrosddp installation."""
    import platform

    import numpy
    import scipy

    lines = [
        f"hydrosddp version: {__version__}",
        f"Python version: {platform.python_version()}",
        f"Platform: {platform.platform()}",
        f"NumPy version: {numpy.__version__}",
        f"SciPy version: {scipy.__version__} (HiGHS LP backend)",
    ]
    return "\n".join(lines)
