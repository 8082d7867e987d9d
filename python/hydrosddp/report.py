"""
Output report.

Collects the results of a run into one JSON-serialisable document::

    {
      "deterministic": {"total_cost", "per_stage_decisions", "per_stage_volumes"},
      "stochastic": {"expected_cost", "std_error", "lower_bound", "converged",
                     "cuts_per_stage", "sample_trajectories"}
    }

Sections whose inputs are not given are left out.
"""

import json
from typing import Any, Dict, Optional

import numpy as np

from .hydro.deterministic import DeterministicResult
from .sddp.cuts import CutManager
from .sddp.policy import TrainingResult
from .sddp.simulation import SimulationResult


def _finite(value: float) -> Optional[float]:
    value = float(value)
    return value if np.isfinite(value) else None


def build_report(
    deterministic: Optional[DeterministicResult] = None,
    training: Optional[TrainingResult] = None,
    simulation: Optional[SimulationResult] = None,
    cuts: Optional[CutManager] = None,
) -> Dict[str, Any]:
    """
    Assemble the report document.

    Non-finite statistics (such as the standard error of a single path)
    are reported as None.
    """
    report: Dict[str, Any] = {}

    if deterministic is not None:
        ids = deterministic.reservoir_ids
        report["deterministic"] = {
            "total_cost": float(deterministic.total_cost),
            "per_stage_decisions": [d.to_dict(ids) for d in deterministic.decisions],
            "per_stage_volumes": [
                {rid: float(v) for rid, v in zip(ids, row)} for row in deterministic.volumes
            ],
        }

    if training is not None or simulation is not None or cuts is not None:
        stochastic: Dict[str, Any] = {}
        if simulation is not None:
            ids = simulation.reservoir_ids
            stochastic["expected_cost"] = _finite(simulation.mean)
            stochastic["std_error"] = _finite(simulation.std_error)
            stochastic["sample_trajectories"] = [
                [d.to_dict(ids) for d in trajectory] for trajectory in simulation.trajectories
            ]
        if training is not None:
            stochastic["lower_bound"] = _finite(training.lower_bound)
            stochastic["converged"] = bool(training.converged)
            stochastic["stop_reason"] = training.stop_reason
        if cuts is not None:
            stochastic["cuts_per_stage"] = cuts.counts()
        report["stochastic"] = stochastic

    return report


def save_report(report: Dict[str, Any], path: str) -> None:
    """Write a report built by :func:`build_report` as JSON."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
