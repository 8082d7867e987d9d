"""
Tests for the hydro system data model.
"""

import pytest
import numpy as np

from hydrosddp.exceptions import DimensionError, InvalidInputError
from hydrosddp.hydro import (
    Decision,
    HydroSystem,
    InflowBranch,
    PriceBranch,
    Reservoir,
    Scenario,
    Stage,
)


def one_stage(**kwargs):
    defaults = dict(
        index=0,
        demand=10,
        price_branches=[PriceBranch(5.0)],
        inflow_branches=[InflowBranch({"A": 1.0})],
    )
    defaults.update(kwargs)
    return Stage(**defaults)


class TestReservoir:

    def test_valid_reservoir(self):
        r = Reservoir("R3", min_volume=30, max_volume=150, critical_volume=200, initial_volume=190)
        assert r.max_release == float("inf")
        assert r.efficiency == 1.0

    @pytest.mark.parametrize(
        "bounds",
        [
            (50, 40, 100, 45),   # min > max
            (0, 120, 100, 50),   # max > critical
            (10, 50, 100, 5),    # initial below min
            (10, 50, 100, 150),  # initial above critical
        ],
    )
    def test_invalid_volumes(self, bounds):
        lo, hi, crit, init = bounds
        with pytest.raises(InvalidInputError):
            Reservoir("X", lo, hi, crit, init)

    def test_initial_above_max_allowed(self):
        # above the safe maximum is damage, not an error
        r = Reservoir("R3", 30, 150, 200, 190)
        assert r.initial_volume > r.max_volume

    def test_invalid_release_limits(self):
        with pytest.raises(InvalidInputError):
            Reservoir("X", 0, 50, 100, 10, min_release=20, max_release=10)

    def test_non_finite_volume(self):
        with pytest.raises(InvalidInputError):
            Reservoir("X", 0, float("nan"), 100, 10)


class TestStage:

    def test_branch_product(self):
        stage = one_stage(
            price_branches=[PriceBranch(10, 0.3), PriceBranch(20, 0.7)],
            inflow_branches=[InflowBranch({"A": 1}, 0.5), InflowBranch({"A": 3}, 0.5)],
        )
        scenarios = stage.scenarios(["A"])

        assert stage.n_branches == 4
        assert [s.price for s in scenarios] == [10, 10, 20, 20]
        assert [s.inflows[0] for s in scenarios] == [1, 3, 1, 3]
        assert sum(s.probability for s in scenarios) == pytest.approx(1.0)
        assert scenarios[3].probability == pytest.approx(0.35)

    def test_probabilities_must_sum_to_one(self):
        with pytest.raises(InvalidInputError):
            one_stage(inflow_branches=[InflowBranch({"A": 1}, 0.5), InflowBranch({"A": 2}, 0.4)])

    def test_normalize(self):
        stage = one_stage(
            inflow_branches=[InflowBranch({"A": 1}, 1.0), InflowBranch({"A": 2}, 3.0)],
            normalize=True,
        )
        assert [b.probability for b in stage.inflow_branches] == pytest.approx([0.25, 0.75])

    def test_negative_demand(self):
        with pytest.raises(InvalidInputError):
            one_stage(demand=-1)

    def test_unknown_reservoir_in_inflows(self):
        stage = one_stage(inflow_branches=[InflowBranch({"Z": 1.0})])
        with pytest.raises(InvalidInputError):
            stage.scenarios(["A"])

    def test_missing_reservoir_gets_zero_inflow(self):
        stage = one_stage()
        scenario = stage.scenarios(["A", "B"])[0]
        np.testing.assert_array_equal(scenario.inflows, [1.0, 0.0])


class TestScenario:

    def test_immutable(self):
        s = Scenario(price=10, inflows=[1.0, 2.0])
        with pytest.raises(ValueError):
            s.inflows[0] = 5.0
        with pytest.raises(AttributeError):
            s.price = 3.0

    def test_negative_inflow(self):
        with pytest.raises(InvalidInputError):
            Scenario(price=10, inflows=[-1.0])

    @pytest.mark.parametrize("probability", [-0.1, 1.5])
    def test_probability_out_of_range(self, probability):
        with pytest.raises(InvalidInputError, match="probability"):
            Scenario(price=10, inflows=[1.0], probability=probability)


class TestHydroSystem:

    def test_rivervault_layout(self, rivervault):
        assert rivervault.reservoir_ids == ["R1", "R2", "R3"]
        assert rivervault.n_stages == 7
        assert rivervault.is_deterministic
        np.testing.assert_array_equal(rivervault.initial_state, [200, 160, 190])
        assert rivervault.upstream_of(0) == []
        assert rivervault.upstream_of(1) == [0]
        assert rivervault.upstream_of(2) == [1]

    def test_reservoirs_sorted_by_order(self):
        system = HydroSystem(
            reservoirs=[Reservoir("down", 0, 10, 20, 5, order=1), Reservoir("up", 0, 10, 20, 5, order=0)],
            stages=[one_stage(inflow_branches=[InflowBranch({})])],
        )
        assert system.reservoir_ids == ["up", "down"]
        assert system.upstream_of(1) == [0]

    def test_explicit_topology(self):
        # two tributaries feeding one downstream lake
        system = HydroSystem(
            reservoirs=[
                Reservoir("a", 0, 10, 20, 5, order=0, downstream="c"),
                Reservoir("b", 0, 10, 20, 5, order=1, downstream="c"),
                Reservoir("c", 0, 10, 20, 5, order=2),
            ],
            stages=[one_stage(inflow_branches=[InflowBranch({})])],
        )
        assert system.upstream_of(2) == [0, 1]
        assert system.upstream_of(1) == []

    def test_unknown_downstream(self):
        with pytest.raises(InvalidInputError):
            HydroSystem(
                reservoirs=[Reservoir("a", 0, 10, 20, 5, downstream="nowhere")],
                stages=[one_stage(inflow_branches=[InflowBranch({})])],
            )

    def test_duplicate_ids(self):
        with pytest.raises(InvalidInputError):
            HydroSystem(
                reservoirs=[Reservoir("A", 0, 10, 20, 5), Reservoir("A", 0, 10, 20, 5, order=1)],
                stages=[one_stage()],
            )

    def test_stage_indices_checked(self):
        with pytest.raises(InvalidInputError):
            HydroSystem(reservoirs=[Reservoir("A", 0, 10, 20, 5)], stages=[one_stage(index=1)])

    def test_expected_scenario(self, rivervault_two_branch):
        mean = rivervault_two_branch.expected_scenario(1)
        np.testing.assert_allclose(mean.inflows, [25, 15, 10])
        assert mean.price == pytest.approx(850)

    def test_tree_size(self, rivervault_two_branch, small_system):
        assert rivervault_two_branch.n_tree_nodes() == 1 + 2 + 4 + 8 + 16 + 32 + 64
        assert small_system.n_tree_nodes() == 2 + 4 + 8
        assert small_system.n_tree_nodes(start_stage=2) == 2

    def test_initial_state_is_read_only(self, rivervault):
        state = rivervault.initial_state
        with pytest.raises(ValueError):
            state[0] = 0.0

    def test_unknown_reservoir_index(self, rivervault):
        with pytest.raises(InvalidInputError):
            rivervault.reservoir_index("R9")


class TestDecision:

    def test_vectors_read_only(self):
        d = Decision(
            stage=0, release=[1.0], purchase=0.0, spillage=[0.0], damage=[0.0],
            incoming=[10.0], outgoing=[9.0], stage_cost=0.0, price=1.0, inflows=[0.0],
        )
        with pytest.raises(ValueError):
            d.outgoing[0] = 3.0
        np.testing.assert_allclose(d.water_balance_residual([[]]), [0.0])
        assert d.to_dict(["R1"])["outgoing"] == {"R1": 9.0}
