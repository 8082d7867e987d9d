"""
pytest configuration and fixtures for hydrosddp tests.
"""

import pytest
import numpy as np

from hydrosddp.hydro import (
    HydroSystem,
    InflowBranch,
    PriceBranch,
    Reservoir,
    Stage,
    datasets,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def simple_lp():
    """
    Simple LP problem for testing.

    minimize: -x - y
    subject to: x + 2y <= 10
                3x + y <= 15
                x, y >= 0

    Optimal: x=4, y=3, obj=-7
    """
    c = np.array([-1.0, -1.0])
    A = np.array([
        [1.0, 2.0],
        [3.0, 1.0],
    ])
    b = np.array([10.0, 15.0])
    lb = np.array([0.0, 0.0])
    ub = np.array([np.inf, np.inf])

    return {
        "c": c,
        "A": A,
        "b": b,
        "lb": lb,
        "ub": ub,
        "senses": np.array(["<=", "<="]),
        "expected_obj": -7.0,
        "expected_x": np.array([4.0, 3.0]),
    }


def make_small_system(inflows=(5.0, 25.0), prices=(10.0, 50.0, 100.0), initial=40.0):
    """
    One reservoir, three days, two equally likely inflow branches per day.

    Volume in [0, 100], safe maximum 50, turbine capacity 40, free
    spillway, demand 30 per day, damage rate 1000.
    """
    reservoir = Reservoir(
        "R1", min_volume=0, max_volume=50, critical_volume=100,
        initial_volume=initial, max_release=40,
    )
    p = 1.0 / len(inflows)
    stages = [
        Stage(
            index=t,
            demand=30,
            price_branches=[PriceBranch(price)],
            inflow_branches=[InflowBranch({"R1": v}, p) for v in inflows],
        )
        for t, price in enumerate(prices)
    ]
    return HydroSystem([reservoir], stages, damage_rate=1000, name="small")


@pytest.fixture
def small_system_factory():
    """Builder of small-system variants (inflows, prices, initial volume)."""
    return make_small_system


@pytest.fixture
def small_system():
    """Single reservoir, three stages, two inflow branches per stage."""
    return make_small_system()


@pytest.fixture
def small_deterministic_system():
    """The small system with one inflow (15) per stage."""
    return make_small_system(inflows=(15.0,))


@pytest.fixture
def rivervault():
    """Three-lake deterministic week."""
    return datasets.rivervault_week()


@pytest.fixture
def rivervault_two_branch():
    """Three-lake week with dry/wet inflows on days 2-7."""
    return datasets.rivervault_two_branch()


@pytest.fixture
def system_document():
    """Two-reservoir system in the nested document format."""
    return {
        "name": "doc",
        "reservoirs": [
            {"id": "A", "min": 10, "max": 80, "critical": 100, "initial_volume": 50, "order": 0},
            {"id": "B", "min": 10, "max": 60, "critical": 90, "initial_volume": 40, "order": 1,
             "max_release": 30},
        ],
        "stages": [
            {
                "demand": 20,
                "price_branches": [{"value": 40, "probability": 1.0}],
                "inflow_branches": [{"inflows": {"A": 5, "B": 2}, "probability": 1.0}],
            },
            {
                "demand": 25,
                "price_branches": [
                    {"value": 30, "probability": 0.5},
                    {"value": 60, "probability": 0.5},
                ],
                "inflow_branches": [
                    {"A": 0, "B": 0, "probability": 0.25},
                    {"A": 10, "B": 4, "probability": 0.75},
                ],
            },
        ],
        "damage_rate": 500,
    }


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
