"""
Bundled example systems.

Rivervault is a three-lake cascade (R1 -> R2 -> R3) over one week. Plant
releases flow to the next lake down; spilled water leaves the system.

On day 1 R3 receives 140 units on top of its initial 190. Even with the
turbine (120) and the spillway (20) at full capacity it ends the day at
190, 40 above its safe maximum of 150, so the damage of 40 units is
forced whatever the releases are. Everything else can be scheduled
without buying from the grid, and the week costs 400,000.
"""

from typing import Any, Dict, List

from .loaders import system_from_dict
from .system import HydroSystem

RESERVOIRS: List[Dict[str, Any]] = [
    {"id": "R1", "min": 30, "max": 250, "critical": 300, "initial_volume": 200, "order": 0,
     "max_release": 250, "max_spillage": 100},
    {"id": "R2", "min": 30, "max": 180, "critical": 230, "initial_volume": 160, "order": 1,
     "max_release": 250, "max_spillage": 150},
    {"id": "R3", "min": 30, "max": 150, "critical": 200, "initial_volume": 190, "order": 2,
     "max_release": 120, "max_spillage": 20},
]

DEMAND = [248, 103, 85, 75, 65, 88, 510]
PRICE = [950, 850, 120, 5, 2, 250.5, 741]

# (R1, R2, R3) per day
INFLOWS = [
    (30, 20, 140),
    (25, 15, 10),
    (20, 10, 10),
    (20, 10, 5),
    (15, 10, 5),
    (15, 10, 5),
    (20, 10, 5),
]

DAMAGE_RATE = 10_000


def _inflows(values) -> Dict[str, float]:
    return {r["id"]: float(v) for r, v in zip(RESERVOIRS, values)}


def rivervault_week() -> HydroSystem:
    """Deterministic week: one price and one inflow vector per day."""
    stages = [
        {
            "demand": demand,
            "price_branches": [{"value": price, "probability": 1.0}],
            "inflow_branches": [{"inflows": _inflows(inflow), "probability": 1.0}],
        }
        for demand, price, inflow in zip(DEMAND, PRICE, INFLOWS)
    ]
    return system_from_dict(
        {
            "name": "rivervault_week",
            "reservoirs": RESERVOIRS,
            "stages": stages,
            "damage_rate": DAMAGE_RATE,
        }
    )


def rivervault_two_branch(dry: float = 0.5, wet: float = 1.5) -> HydroSystem:
    """
    Two-branch week.

    Day 1 is known. On days 2-7 the inflows are either ``dry`` or ``wet``
    times the deterministic ones, each with probability 1/2; prices stay
    known. With the default factors every day is feasible from any
    reachable state since the spillways can take any inflow.
    """
    stages = []
    for t, (demand, price, inflow) in enumerate(zip(DEMAND, PRICE, INFLOWS)):
        if t == 0:
            branches = [{"inflows": _inflows(inflow), "probability": 1.0}]
        else:
            branches = [
                {"inflows": _inflows([dry * v for v in inflow]), "probability": 0.5},
                {"inflows": _inflows([wet * v for v in inflow]), "probability": 0.5},
            ]
        stages.append(
            {
                "demand": demand,
                "price_branches": [{"value": price, "probability": 1.0}],
                "inflow_branches": branches,
            }
        )
    return system_from_dict(
        {
            "name": "rivervault_two_branch",
            "reservoirs": RESERVOIRS,
            "stages": stages,
            "damage_rate": DAMAGE_RATE,
        }
    )
