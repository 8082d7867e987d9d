"""
Stochastic dual dynamic programming for hydro cascades.

Example:
    >>> from hydrosddp.hydro import datasets
    >>> from hydrosddp.sddp import PolicyGraph, PolicySimulator
    >>> graph = PolicyGraph(datasets.rivervault_two_branch())
    >>> training = graph.train(iteration_limit=50, seed=0)
    >>> sim = PolicySimulator(graph).simulate(500, seed=1)
"""

from .cuts import Cut, CutManager
from .evaluation import ExtensiveResult, solve_extensive_form
from .policy import IterationRecord, PolicyGraph, TrainingResult
from .simulation import PolicySimulator, SimulationResult

__all__ = [
    "Cut",
    "CutManager",
    "PolicyGraph",
    "TrainingResult",
    "IterationRecord",
    "PolicySimulator",
    "SimulationResult",
    "ExtensiveResult",
    "solve_extensive_form",
]
