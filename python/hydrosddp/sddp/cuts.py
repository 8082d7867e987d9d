"""
Cut Manager
===========

Per-stage store of Benders cuts ``V_t(s) >= slope' s + intercept``.

Cuts are append-only: a stage's approximation ``max_k (slope_k' s +
intercept_k)`` can only rise as cuts accumulate. Each stage has its own
lock, so backward-pass workers of different stages never contend, and
readers always get a snapshot.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import DimensionError, InvalidInputError
from ..utils.validation import check_finite

DUPLICATE_TOL = 1e-9


@dataclass(frozen=True, eq=False)
class Cut:
    """
    Affine lower bound on the expected cost-to-go of a stage.

    Attributes:
        stage: Stage whose value function the cut bounds
        slope: Gradient with respect to the incoming volumes (read-only)
        intercept: Constant term
        iteration: Training iteration that produced the cut
    """

    stage: int
    slope: np.ndarray
    intercept: float
    iteration: int = 0

    def __post_init__(self):
        slope = np.array(self.slope, dtype=np.float64).ravel()
        slope.setflags(write=False)
        object.__setattr__(self, "slope", slope)
        object.__setattr__(self, "intercept", float(self.intercept))

    def value(self, state: np.ndarray) -> float:
        return float(self.slope @ state + self.intercept)

    def same_as(self, other: "Cut", tol: float = DUPLICATE_TOL) -> bool:
        return (
            abs(self.intercept - other.intercept) <= tol
            and bool(np.all(np.abs(self.slope - other.slope) <= tol))
        )


class CutManager:
    """
    Thread-safe cut store for a horizon of ``n_stages`` stages.

    Args:
        n_stages: Number of stages
        n_states: Dimension of the state (number of reservoirs)

    Example:
        >>> cm = CutManager(n_stages=3, n_states=1)
        >>> cut = cm.add_cut(1, [-2.0], 100.0)
        >>> cm.evaluate(1, [10.0])
        80.0
    """

    def __init__(self, n_stages: int, n_states: int) -> None:
        if n_stages < 1 or n_states < 1:
            raise InvalidInputError("n_stages and n_states must be positive")
        self.n_stages = n_stages
        self.n_states = n_states
        self._cuts: List[List[Cut]] = [[] for _ in range(n_stages)]
        self._locks = [threading.Lock() for _ in range(n_stages)]

    def __repr__(self) -> str:
        return f"CutManager(n_stages={self.n_stages}, n_states={self.n_states}, n_cuts={self.n_cuts})"

    def _check_stage(self, stage: int) -> None:
        if not 0 <= stage < self.n_stages:
            raise IndexError(f"stage {stage} out of range [0, {self.n_stages})")

    def _check_state(self, state: Sequence[float]) -> np.ndarray:
        s = np.asarray(state, dtype=np.float64).ravel()
        if s.shape[0] != self.n_states:
            raise DimensionError(f"state has {s.shape[0]} entries, expected {self.n_states}")
        return s

    def add_cut(
        self,
        stage: int,
        slope: Sequence[float],
        intercept: float,
        iteration: int = 0,
    ) -> Optional[Cut]:
        """
        Install a cut for ``stage``.

        Returns:
            The stored cut, or None if an identical one was already there
        """
        self._check_stage(stage)
        cut = Cut(stage, self._check_state(slope), check_finite(intercept, "intercept"), iteration)
        if not np.all(np.isfinite(cut.slope)):
            raise InvalidInputError(f"cut slope must be finite, got {cut.slope.tolist()}")
        with self._locks[stage]:
            for existing in self._cuts[stage]:
                if existing.same_as(cut):
                    return None
            self._cuts[stage].append(cut)
        return cut

    def cuts(self, stage: int) -> List[Cut]:
        """Snapshot of the cuts of ``stage``."""
        self._check_stage(stage)
        with self._locks[stage]:
            return list(self._cuts[stage])

    def snapshot(self) -> List[List[Cut]]:
        """Snapshot of every stage."""
        return [self.cuts(t) for t in range(self.n_stages)]

    def evaluate(self, stage: int, state: Sequence[float]) -> float:
        """Cut approximation of ``V_stage(state)``; ``-inf`` with no cuts."""
        s = self._check_state(state)
        cuts = self.cuts(stage)
        if not cuts:
            return -np.inf
        return max(c.value(s) for c in cuts)

    @property
    def n_cuts(self) -> int:
        return sum(self.counts())

    def counts(self) -> List[int]:
        """Number of cuts per stage."""
        return [len(self.cuts(t)) for t in range(self.n_stages)]

    def prune_dominated(self, stage: int, states: Sequence[Sequence[float]], tol: float = 1e-9) -> List[int]:
        """
        Indices of the cuts of ``stage`` that are not the maximum at any of
        ``states`` (within ``tol``).

        The store is left untouched; callers decide what to do with them.
        """
        cuts = self.cuts(stage)
        if not cuts:
            return []
        points = np.array([self._check_state(s) for s in states])
        if points.size == 0:
            return list(range(len(cuts)))
        slopes = np.array([c.slope for c in cuts])
        intercepts = np.array([c.intercept for c in cuts])
        values = points @ slopes.T + intercepts  # (n_points, n_cuts)
        best = values.max(axis=1, keepdims=True)
        active = np.any(values >= best - tol, axis=0)
        return [k for k in range(len(cuts)) if not active[k]]

    def to_dict(self) -> Dict[int, List[Tuple[List[float], float]]]:
        """``{stage_index: [(slope, intercept), ...]}``."""
        return {
            t: [(c.slope.tolist(), c.intercept) for c in cuts]
            for t, cuts in enumerate(self.snapshot())
        }

    @classmethod
    def from_dict(cls, data: Mapping[Any, Any], n_stages: int, n_states: int) -> "CutManager":
        """
        Rebuild a manager from :meth:`to_dict` output.

        Raises:
            InvalidInputError: A stage key is not a stage of the horizon, or
                an entry is not a ``(slope, intercept)`` pair
            DimensionError: A slope does not have ``n_states`` entries
        """
        manager = cls(n_stages, n_states)
        for stage, cuts in data.items():
            try:
                t = int(stage)
            except (TypeError, ValueError):
                raise InvalidInputError(f"cut stage {stage!r} is not an integer") from None
            if not 0 <= t < n_stages:
                raise InvalidInputError(f"cut stage {t} out of range [0, {n_stages})")
            for entry in cuts:
                try:
                    slope, intercept = entry
                except (TypeError, ValueError):
                    raise InvalidInputError(
                        f"stage {t} entry {entry!r} is not a (slope, intercept) pair"
                    ) from None
                manager.add_cut(t, slope, intercept)
        return manager

    def save(self, path: str) -> None:
        """Write the cut sets to a JSON file."""
        doc = {
            "n_stages": self.n_stages,
            "n_states": self.n_states,
            "cuts": {str(t): [[s, b] for s, b in cuts] for t, cuts in self.to_dict().items()},
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2)

    @classmethod
    def load(cls, path: str) -> "CutManager":
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
        try:
            cuts, n_stages, n_states = doc["cuts"], doc["n_stages"], doc["n_states"]
        except (KeyError, TypeError):
            raise InvalidInputError(f"{path} is not a cut file") from None
        return cls.from_dict(cuts, int(n_stages), int(n_states))
