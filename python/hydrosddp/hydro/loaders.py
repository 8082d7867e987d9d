"""
Input loaders.

Two formats describe the same system:

* a nested document (dict / JSON)::

    {
      "reservoirs": [{"id": "R1", "min": 30, "max": 250, "critical": 300,
                      "initial_volume": 200, "order": 0}, ...],
      "stages": [{"demand": 248,
                  "price_branches": [{"value": 950, "probability": 1.0}],
                  "inflow_branches": [{"inflows": {"R1": 30}, "probability": 1.0}]}],
      "damage_rate": 10000
    }

  An inflow branch may also be written flat, ``{"R1": 30, "probability": 1.0}``.

* three tables (pandas DataFrames or CSV files ``reservoirs.csv``,
  ``stages.csv`` and ``inflows.csv``): one row per reservoir, one row per
  stage price branch, and one row per stage inflow branch with a column
  per reservoir.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from ..exceptions import InvalidInputError
from .system import INF, HydroSystem, InflowBranch, PriceBranch, Reservoir, Stage

# Accepted aliases -> Reservoir field
_RESERVOIR_KEYS = {
    "id": "id",
    "min": "min_volume",
    "min_volume": "min_volume",
    "max": "max_volume",
    "max_volume": "max_volume",
    "critical": "critical_volume",
    "critical_volume": "critical_volume",
    "initial_volume": "initial_volume",
    "initial": "initial_volume",
    "order": "order",
    "max_release": "max_release",
    "min_release": "min_release",
    "max_spillage": "max_spillage",
    "efficiency": "efficiency",
    "downstream": "downstream",
}

_REQUIRED = ("id", "min_volume", "max_volume", "critical_volume", "initial_volume")


def _reservoir(record: Mapping[str, Any], position: int) -> Reservoir:
    kwargs: Dict[str, Any] = {}
    for key, value in record.items():
        field_name = _RESERVOIR_KEYS.get(key)
        if field_name is None:
            raise InvalidInputError(f"reservoir {position}: unknown field '{key}'")
        if value is None or (isinstance(value, float) and np.isnan(value)):
            continue
        kwargs[field_name] = value
    missing = [k for k in _REQUIRED if k not in kwargs]
    if missing:
        raise InvalidInputError(f"reservoir {position}: missing {missing}")
    kwargs["id"] = str(kwargs["id"])
    kwargs.setdefault("order", position)
    kwargs["order"] = int(kwargs["order"])
    if "downstream" in kwargs:
        kwargs["downstream"] = str(kwargs["downstream"])
    for name, value in list(kwargs.items()):
        if name not in ("id", "order", "downstream"):
            kwargs[name] = float(value)
    return Reservoir(**kwargs)


def _inflow_branch(record: Mapping[str, Any]) -> InflowBranch:
    record = dict(record)
    probability = float(record.pop("probability", 1.0))
    inflows = record.pop("inflows", None)
    if inflows is None:
        inflows = record
    elif record:
        raise InvalidInputError(f"unexpected inflow branch fields {sorted(record)}")
    return InflowBranch({str(k): float(v) for k, v in inflows.items()}, probability)


def system_from_dict(data: Mapping[str, Any], normalize: bool = False) -> HydroSystem:
    """
    Build a HydroSystem from the nested document format.

    Args:
        data: Document with ``reservoirs`` and ``stages`` (and optionally
            ``damage_rate``, ``max_purchase``, ``name``)
        normalize: Rescale branch probabilities that do not sum to one

    Raises:
        InvalidInputError: Missing or malformed fields
    """
    try:
        reservoir_records = data["reservoirs"]
        stage_records = data["stages"]
    except KeyError as e:
        raise InvalidInputError(f"missing top-level field {e}") from None

    reservoirs = [_reservoir(r, k) for k, r in enumerate(reservoir_records)]
    stages = []
    for t, record in enumerate(stage_records):
        if "demand" not in record:
            raise InvalidInputError(f"stage {t}: missing demand")
        price_branches = [
            PriceBranch(float(b["value"]), float(b.get("probability", 1.0)))
            for b in record.get("price_branches", [])
        ]
        if not price_branches and "price" in record:
            price_branches = [PriceBranch(float(record["price"]))]
        inflow_branches = [_inflow_branch(b) for b in record.get("inflow_branches", [])]
        if not inflow_branches:
            inflow_branches = [InflowBranch({})]
        if not price_branches:
            raise InvalidInputError(f"stage {t}: no price given")
        stages.append(
            Stage(
                index=t,
                demand=float(record["demand"]),
                price_branches=price_branches,
                inflow_branches=inflow_branches,
                normalize=normalize,
            )
        )

    max_purchase = data.get("max_purchase")
    return HydroSystem(
        reservoirs=reservoirs,
        stages=stages,
        damage_rate=float(data.get("damage_rate", 10_000.0)),
        max_purchase=INF if max_purchase is None else float(max_purchase),
        name=str(data.get("name", "hydro")),
    )


def load_system(path: str, normalize: bool = False) -> HydroSystem:
    """Read a system document from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return system_from_dict(data, normalize=normalize)


def system_to_dict(system: HydroSystem) -> Dict[str, Any]:
    """Inverse of :func:`system_from_dict`; infinite limits are left out."""
    reservoirs = []
    for r in system.reservoirs:
        record: Dict[str, Any] = {
            "id": r.id,
            "min": r.min_volume,
            "max": r.max_volume,
            "critical": r.critical_volume,
            "initial_volume": r.initial_volume,
            "order": r.order,
            "min_release": r.min_release,
            "efficiency": r.efficiency,
        }
        if np.isfinite(r.max_release):
            record["max_release"] = r.max_release
        if np.isfinite(r.max_spillage):
            record["max_spillage"] = r.max_spillage
        if r.downstream is not None:
            record["downstream"] = r.downstream
        reservoirs.append(record)

    stages = [
        {
            "demand": s.demand,
            "price_branches": [
                {"value": b.value, "probability": b.probability} for b in s.price_branches
            ],
            "inflow_branches": [
                {"inflows": dict(b.inflows), "probability": b.probability}
                for b in s.inflow_branches
            ],
        }
        for s in system.stages
    ]
    data: Dict[str, Any] = {
        "name": system.name,
        "reservoirs": reservoirs,
        "stages": stages,
        "damage_rate": system.damage_rate,
    }
    if np.isfinite(system.max_purchase):
        data["max_purchase"] = system.max_purchase
    return data


def system_from_frames(
    reservoirs: pd.DataFrame,
    stages: pd.DataFrame,
    inflows: pd.DataFrame,
    damage_rate: float = 10_000.0,
    max_purchase: Optional[float] = None,
    normalize: bool = False,
    name: str = "hydro",
) -> HydroSystem:
    """
    Build a HydroSystem from tables.

    Args:
        reservoirs: One row per reservoir; columns as the document keys
            (``id``, ``min``, ``max``, ``critical``, ``initial_volume``, ...)
        stages: One row per price branch: ``stage``, ``demand``, ``price``
            and optionally ``probability``
        inflows: One row per inflow branch: ``stage``, optionally
            ``probability``, and one column per reservoir id
        damage_rate: Penalty per unit of damage
        max_purchase: Daily purchase cap (default: unbounded)
        normalize: Rescale branch probabilities
        name: System name
    """
    for frame, cols, what in (
        (stages, ("stage", "demand", "price"), "stages"),
        (inflows, ("stage",), "inflows"),
    ):
        missing = [c for c in cols if c not in frame.columns]
        if missing:
            raise InvalidInputError(f"{what} table: missing columns {missing}")

    records = reservoirs.to_dict(orient="records")
    reservoir_ids = [str(r["id"]) for r in records]
    inflow_columns = [c for c in inflows.columns if c not in ("stage", "branch", "probability")]
    unknown = sorted(set(map(str, inflow_columns)) - set(reservoir_ids))
    if unknown:
        raise InvalidInputError(f"inflows table: unknown reservoir columns {unknown}")

    stage_docs: List[Dict[str, Any]] = []
    for t, group in stages.groupby("stage", sort=True):
        demands = group["demand"].unique()
        if len(demands) != 1:
            raise InvalidInputError(f"stage {t}: conflicting demands {demands.tolist()}")
        prob = group["probability"] if "probability" in group else pd.Series(1.0, index=group.index)
        price_branches = [
            {"value": float(v), "probability": float(p)} for v, p in zip(group["price"], prob)
        ]
        rows = inflows[inflows["stage"] == t]
        inflow_branches = []
        for _, row in rows.iterrows():
            inflow_branches.append(
                {
                    "inflows": {str(c): float(row[c]) for c in inflow_columns},
                    "probability": float(row["probability"]) if "probability" in row else 1.0,
                }
            )
        stage_docs.append(
            {
                "demand": float(demands[0]),
                "price_branches": price_branches,
                "inflow_branches": inflow_branches,
            }
        )

    expected = list(range(len(stage_docs)))
    found = sorted(int(t) for t in stages["stage"].unique())
    if found != expected:
        raise InvalidInputError(f"stage indices must be 0..{len(stage_docs) - 1}, got {found}")

    return system_from_dict(
        {
            "name": name,
            "reservoirs": records,
            "stages": stage_docs,
            "damage_rate": damage_rate,
            "max_purchase": max_purchase,
        },
        normalize=normalize,
    )


def load_system_csv(directory: str, **kwargs: Any) -> HydroSystem:
    """
    Read ``reservoirs.csv``, ``stages.csv`` and ``inflows.csv`` from a
    directory. Keyword arguments go to :func:`system_from_frames`.
    """
    frames = []
    for filename in ("reservoirs.csv", "stages.csv", "inflows.csv"):
        path = os.path.join(directory, filename)
        if not os.path.exists(path):
            raise InvalidInputError(f"missing table {path}")
        frames.append(pd.read_csv(path))
    return system_from_frames(*frames, **kwargs)
