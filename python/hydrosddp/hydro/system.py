"""
Hydro System Data Model
=======================

Reservoirs, stages with their discrete price and inflow branches, the
scenarios a stage can realise, and the per-stage decision record.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..exceptions import InvalidInputError
from ..utils.validation import check_finite, validate_probabilities, validate_state

INF = float("inf")


@dataclass(frozen=True)
class Reservoir:
    """
    One reservoir and the plant below it.

    Volumes above ``max_volume`` are penalised as damage; ``critical_volume``
    is a hard upper bound.

    Args:
        id: Reservoir identifier
        min_volume: Lowest allowed volume
        max_volume: Safe maximum; the excess is damage
        critical_volume: Hard physical limit
        initial_volume: Volume entering the first stage
        order: Position in the cascade (upstream first)
        max_release: Turbine capacity per stage
        min_release: Mandatory release per stage
        max_spillage: Spillway capacity per stage
        efficiency: Energy produced per unit of water released
        downstream: Id of the reservoir receiving this plant's release
    """

    id: str
    min_volume: float
    max_volume: float
    critical_volume: float
    initial_volume: float
    order: int = 0
    max_release: float = INF
    min_release: float = 0.0
    max_spillage: float = INF
    efficiency: float = 1.0
    downstream: Optional[str] = None

    def __post_init__(self):
        for name in ("min_volume", "max_volume", "critical_volume", "initial_volume"):
            check_finite(getattr(self, name), f"{self.id}.{name}")
        if not (0 <= self.min_volume <= self.max_volume <= self.critical_volume):
            raise InvalidInputError(
                f"reservoir {self.id}: need 0 <= min <= max <= critical, got "
                f"{self.min_volume}, {self.max_volume}, {self.critical_volume}"
            )
        if not (self.min_volume <= self.initial_volume <= self.critical_volume):
            raise InvalidInputError(
                f"reservoir {self.id}: initial volume {self.initial_volume} outside "
                f"[{self.min_volume}, {self.critical_volume}]"
            )
        if not (0 <= self.min_release <= self.max_release):
            raise InvalidInputError(
                f"reservoir {self.id}: need 0 <= min_release <= max_release"
            )
        if self.max_spillage < 0:
            raise InvalidInputError(f"reservoir {self.id}: max_spillage must be >= 0")
        if not self.efficiency > 0:
            raise InvalidInputError(f"reservoir {self.id}: efficiency must be positive")


@dataclass(frozen=True)
class PriceBranch:
    """Grid price realisation with its probability."""

    value: float
    probability: float = 1.0


@dataclass(frozen=True)
class InflowBranch:
    """Inflow realisation (reservoir id -> volume) with its probability."""

    inflows: Dict[str, float]
    probability: float = 1.0


@dataclass(frozen=True, eq=False)
class Scenario:
    """
    One realised (price, inflow vector) pair of a stage.

    Attributes:
        price: Grid price
        inflows: Inflow per reservoir, in system order (read-only)
        probability: Probability of the realisation within its stage
        index: Position in the stage's scenario list
        label: Human-readable branch label
    """

    price: float
    inflows: np.ndarray
    probability: float = 1.0
    index: int = 0
    label: str = ""

    def __post_init__(self):
        inflows = np.array(self.inflows, dtype=np.float64).ravel()
        if np.any(inflows < 0):
            raise InvalidInputError(f"negative inflow in scenario {self.label or self.index}")
        inflows.setflags(write=False)
        object.__setattr__(self, "inflows", inflows)
        if not (0 <= self.probability <= 1 + 1e-12):
            raise InvalidInputError(
                f"probability of scenario {self.label or self.index} must be in [0, 1], "
                f"got {self.probability}"
            )


@dataclass
class Stage:
    """
    One decision period.

    Price and inflow distributions are independent; the stage's scenarios
    are their Cartesian product.

    Args:
        index: Position in the horizon (0-based)
        demand: Energy demand that must be met exactly
        price_branches: Discrete grid-price distribution
        inflow_branches: Discrete inflow distribution
        normalize: Rescale branch probabilities to sum to one
    """

    index: int
    demand: float
    price_branches: List[PriceBranch]
    inflow_branches: List[InflowBranch]
    normalize: bool = False

    def __post_init__(self):
        check_finite(self.demand, f"stage {self.index} demand")
        if self.demand < 0:
            raise InvalidInputError(f"stage {self.index}: demand must be >= 0")
        price_probs = validate_probabilities(
            [b.probability for b in self.price_branches],
            what=f"stage {self.index} price branches",
            normalize=self.normalize,
        )
        inflow_probs = validate_probabilities(
            [b.probability for b in self.inflow_branches],
            what=f"stage {self.index} inflow branches",
            normalize=self.normalize,
        )
        self.price_branches = [
            PriceBranch(check_finite(b.value, f"stage {self.index} price"), p)
            for b, p in zip(self.price_branches, price_probs)
        ]
        self.inflow_branches = [
            InflowBranch(dict(b.inflows), p) for b, p in zip(self.inflow_branches, inflow_probs)
        ]

    @property
    def n_branches(self) -> int:
        """Number of scenarios (price branches x inflow branches)."""
        return len(self.price_branches) * len(self.inflow_branches)

    def scenarios(self, reservoir_ids: Sequence[str]) -> List[Scenario]:
        """
        Enumerate the stage's scenarios for the given reservoir ordering.

        Reservoirs missing from an inflow branch receive zero inflow.
        """
        known = set(reservoir_ids)
        out = []
        for k, (pb, ib) in enumerate(itertools.product(self.price_branches, self.inflow_branches)):
            unknown = set(ib.inflows) - known
            if unknown:
                raise InvalidInputError(
                    f"stage {self.index}: inflow for unknown reservoir(s) {sorted(unknown)}"
                )
            out.append(
                Scenario(
                    price=pb.value,
                    inflows=np.array([float(ib.inflows.get(rid, 0.0)) for rid in reservoir_ids]),
                    probability=pb.probability * ib.probability,
                    index=k,
                    label=f"t{self.index}b{k}",
                )
            )
        return out


@dataclass
class HydroSystem:
    """
    A reservoir cascade and its planning horizon.

    Args:
        reservoirs: Reservoirs (sorted upstream to downstream by ``order``)
        stages: Stages of the horizon, in time order
        damage_rate: Penalty per unit of volume above ``max_volume``
        max_purchase: Cap on daily grid purchase (default: unbounded)

    Example:
        >>> system = HydroSystem(
        ...     reservoirs=[Reservoir("R1", 0, 50, 100, 40)],
        ...     stages=[Stage(0, 30, [PriceBranch(10)], [InflowBranch({"R1": 5})])],
        ...     damage_rate=1000,
        ... )
    """

    reservoirs: List[Reservoir]
    stages: List[Stage]
    damage_rate: float = 10_000.0
    max_purchase: float = INF
    name: str = "hydro"
    _scenarios: List[List[Scenario]] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        if not self.reservoirs:
            raise InvalidInputError("at least one reservoir is required")
        if not self.stages:
            raise InvalidInputError("at least one stage is required")
        self.reservoirs = sorted(self.reservoirs, key=lambda r: r.order)
        ids = [r.id for r in self.reservoirs]
        if len(set(ids)) != len(ids):
            raise InvalidInputError(f"duplicate reservoir ids in {ids}")
        for r in self.reservoirs:
            if r.downstream is not None and r.downstream not in ids:
                raise InvalidInputError(f"reservoir {r.id}: unknown downstream '{r.downstream}'")
            if r.downstream == r.id:
                raise InvalidInputError(f"reservoir {r.id} cannot flow into itself")
        if self.damage_rate < 0:
            raise InvalidInputError("damage_rate must be >= 0")
        if self.max_purchase < 0:
            raise InvalidInputError("max_purchase must be >= 0")
        for t, stage in enumerate(self.stages):
            if stage.index != t:
                raise InvalidInputError(f"stage at position {t} has index {stage.index}")
        self._scenarios = [stage.scenarios(ids) for stage in self.stages]
        self._upstream = self._build_upstream()

    def _build_upstream(self) -> List[List[int]]:
        """Indices of the plants whose release flows into each reservoir."""
        ids = self.reservoir_ids
        upstream: List[List[int]] = [[] for _ in ids]
        for i, r in enumerate(self.reservoirs):
            target = r.downstream
            if target is None and not self._explicit_topology:
                target = ids[i + 1] if i + 1 < len(ids) else None
            if target is not None:
                upstream[ids.index(target)].append(i)
        return upstream

    @property
    def _explicit_topology(self) -> bool:
        return any(r.downstream is not None for r in self.reservoirs)

    @property
    def reservoir_ids(self) -> List[str]:
        return [r.id for r in self.reservoirs]

    @property
    def n_reservoirs(self) -> int:
        return len(self.reservoirs)

    @property
    def n_stages(self) -> int:
        return len(self.stages)

    @property
    def initial_state(self) -> np.ndarray:
        """Read-only vector of initial volumes."""
        return validate_state([r.initial_volume for r in self.reservoirs], self.n_reservoirs)

    def reservoir_index(self, reservoir_id: str) -> int:
        try:
            return self.reservoir_ids.index(reservoir_id)
        except ValueError:
            raise InvalidInputError(f"unknown reservoir '{reservoir_id}'") from None

    def upstream_of(self, i: int) -> List[int]:
        """Plants releasing into reservoir ``i``."""
        return list(self._upstream[i])

    def scenarios(self, t: int) -> List[Scenario]:
        """All scenarios of stage ``t``."""
        return list(self._scenarios[t])

    def probabilities(self, t: int) -> np.ndarray:
        return np.array([s.probability for s in self._scenarios[t]])

    def expected_scenario(self, t: int) -> Scenario:
        """Probability-weighted mean scenario of stage ``t``."""
        scenarios = self._scenarios[t]
        if len(scenarios) == 1:
            return scenarios[0]
        probs = self.probabilities(t)
        return Scenario(
            price=float(sum(p * s.price for p, s in zip(probs, scenarios))),
            inflows=sum(p * s.inflows for p, s in zip(probs, scenarios)),
            probability=1.0,
            index=0,
            label=f"t{t}mean",
        )

    @property
    def is_deterministic(self) -> bool:
        return all(len(s) == 1 for s in self._scenarios)

    def n_tree_nodes(self, start_stage: int = 0) -> int:
        """Number of nodes in the scenario tree from ``start_stage`` on."""
        total, width = 0, 1
        for t in range(start_stage, self.n_stages):
            width *= len(self._scenarios[t])
            total += width
        return total


@dataclass(frozen=True, eq=False)
class Decision:
    """
    Decisions and outcome of one stage visit.

    All vectors follow the system's reservoir order and are read-only.
    """

    stage: int
    release: np.ndarray
    purchase: float
    spillage: np.ndarray
    damage: np.ndarray
    incoming: np.ndarray
    outgoing: np.ndarray
    stage_cost: float
    price: float
    inflows: np.ndarray
    scenario_index: int = 0

    def __post_init__(self):
        for name in ("release", "spillage", "damage", "incoming", "outgoing", "inflows"):
            arr = np.array(getattr(self, name), dtype=np.float64)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    def to_dict(self, reservoir_ids: Optional[Sequence[str]] = None) -> Dict[str, object]:
        """Plain-Python view, keyed by reservoir id when ids are given."""

        def vec(a: np.ndarray):
            if reservoir_ids is None:
                return a.tolist()
            return {rid: float(v) for rid, v in zip(reservoir_ids, a)}

        return {
            "stage": self.stage,
            "scenario": self.scenario_index,
            "price": self.price,
            "purchase": self.purchase,
            "stage_cost": self.stage_cost,
            "release": vec(self.release),
            "spillage": vec(self.spillage),
            "damage": vec(self.damage),
            "incoming": vec(self.incoming),
            "outgoing": vec(self.outgoing),
            "inflows": vec(self.inflows),
        }

    def water_balance_residual(self, upstream: Sequence[Sequence[int]]) -> np.ndarray:
        """``incoming + inflow + upstream release - release - outgoing - spillage``."""
        up = np.array([sum(self.release[u] for u in ups) for ups in upstream])
        return self.incoming + self.inflows + up - self.release - self.outgoing - self.spillage

