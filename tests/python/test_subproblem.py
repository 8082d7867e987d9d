"""
Tests for the stage subproblem builder.
"""

import pytest
import numpy as np

from hydrosddp.exceptions import InfeasibleStageError
from hydrosddp.hydro import (
    HydroSystem,
    InflowBranch,
    PriceBranch,
    Reservoir,
    Scenario,
    Stage,
    build_stage_problem,
    solve_stage,
)
from hydrosddp.sddp import CutManager


def upstream(system):
    return [system.upstream_of(i) for i in range(system.n_reservoirs)]


class TestStageStructure:

    def test_variables_and_constraints(self, rivervault):
        model, block = build_stage_problem(
            rivervault, 0, rivervault.initial_state, rivervault.scenarios(0)[0]
        )

        assert len(block.release) == 3
        assert len(block.water_balance) == 3
        assert len(block.damage_constrs) == 3
        assert block.theta is None
        assert block.outgoing[2].ub == 200
        assert block.outgoing[2].lb == 30
        assert block.release[2].ub == 120
        assert block.spillage[2].ub == 20
        assert block.energy_balance.name == "t0.energy_balance"
        assert block.water_balance[1].name == "t0.water_balance[R2]"

    def test_incoming_on_rhs(self, rivervault):
        model, block = build_stage_problem(
            rivervault, 0, rivervault.initial_state, rivervault.scenarios(0)[0]
        )
        _, b, _, _, _, _ = model.to_standard_form()

        rhs = [b[c.index] for c in block.water_balance]
        np.testing.assert_allclose(rhs, [200 + 30, 160 + 20, 190 + 140])

    def test_theta_only_with_cuts(self, small_system):
        scenario = small_system.scenarios(0)[0]
        _, myopic = build_stage_problem(small_system, 0, [40.0], scenario)
        _, with_theta = build_stage_problem(small_system, 0, [40.0], scenario, cuts=[])
        _, last = build_stage_problem(small_system, 2, [40.0], small_system.scenarios(2)[0], cuts=[])

        assert myopic.theta is None
        assert with_theta.theta is not None
        assert with_theta.theta.lb == 0.0
        assert last.theta is None


class TestStageSolve:

    def test_water_balance_residual(self, rivervault):
        state = rivervault.initial_state
        for t in range(rivervault.n_stages):
            sol = solve_stage(rivervault, t, state, rivervault.scenarios(t)[0])
            residual = sol.decision.water_balance_residual(upstream(rivervault))
            np.testing.assert_allclose(residual, 0.0, atol=1e-6)
            state = sol.outgoing

    def test_damage_is_excess_over_max(self, rivervault):
        state = rivervault.initial_state
        max_volume = np.array([r.max_volume for r in rivervault.reservoirs])
        for t in range(rivervault.n_stages):
            d = solve_stage(rivervault, t, state, rivervault.scenarios(t)[0]).decision
            np.testing.assert_allclose(
                d.damage, np.maximum(0.0, d.outgoing - max_volume), atol=1e-6
            )
            state = d.outgoing

    def test_demand_met_exactly(self, rivervault):
        sol = solve_stage(rivervault, 0, rivervault.initial_state, rivervault.scenarios(0)[0])
        d = sol.decision
        assert d.release.sum() + d.purchase == pytest.approx(248.0)

    def test_myopic_day_one(self, rivervault):
        # day one alone: the only cost is the forced damage at R3
        sol = solve_stage(rivervault, 0, rivervault.initial_state, rivervault.scenarios(0)[0])
        assert sol.objective == pytest.approx(400_000.0)
        assert sol.theta == 0.0
        assert sol.decision.damage[2] == pytest.approx(40.0)

    def test_outgoing_state_is_fresh_and_read_only(self, rivervault):
        sol = solve_stage(rivervault, 0, rivervault.initial_state, rivervault.scenarios(0)[0])
        with pytest.raises(ValueError):
            sol.outgoing[0] = 0.0
        assert sol.outgoing is not sol.decision.outgoing

    def test_state_duals_are_value_gradient(self, small_system):
        # stage 2 alone: cost = 100 * (30 - release), release <= incoming + inflow
        scenario = small_system.scenarios(2)[0]  # inflow 5
        sol = solve_stage(small_system, 2, [10.0], scenario)
        assert sol.objective == pytest.approx(100 * (30 - 15))
        assert sol.state_duals[0] == pytest.approx(-100.0)

        bumped = solve_stage(small_system, 2, [11.0], scenario)
        assert bumped.objective - sol.objective == pytest.approx(sol.state_duals[0])

    def test_cuts_bound_theta(self, small_system):
        cuts = CutManager(small_system.n_stages, 1)
        cuts.add_cut(1, [-10.0], 2000.0)
        scenario = small_system.scenarios(0)[0]

        sol = solve_stage(small_system, 0, [40.0], scenario, cuts=cuts.cuts(1))
        assert sol.theta >= 2000.0 - 10.0 * sol.outgoing[0] - 1e-6
        assert sol.objective == pytest.approx(sol.stage_cost + sol.theta)

    def test_zero_inflow_zero_demand(self):
        system = HydroSystem(
            reservoirs=[
                Reservoir("A", 10, 80, 100, 50, order=0),
                Reservoir("B", 10, 60, 90, 40, order=1),
            ],
            stages=[
                Stage(0, 0.0, [PriceBranch(25.0)], [InflowBranch({"A": 0.0, "B": 0.0})]),
            ],
        )
        sol = solve_stage(system, 0, system.initial_state, system.scenarios(0)[0])
        d = sol.decision

        np.testing.assert_allclose(d.release, 0.0, atol=1e-9)
        assert d.purchase == pytest.approx(0.0, abs=1e-9)
        np.testing.assert_allclose(d.damage, 0.0, atol=1e-9)
        assert sol.objective == pytest.approx(0.0, abs=1e-9)

    def test_infeasible_stage(self):
        system = HydroSystem(
            reservoirs=[Reservoir("A", 0, 50, 100, 90, max_release=10, max_spillage=0)],
            stages=[Stage(0, 10.0, [PriceBranch(1.0)], [InflowBranch({"A": 50.0})])],
        )
        with pytest.raises(InfeasibleStageError) as info:
            solve_stage(system, 0, [90.0], system.scenarios(0)[0], phase="backward")

        assert info.value.stage == 0
        assert info.value.phase == "backward"

    def test_pure_function_of_inputs(self, rivervault):
        state = np.array([200.0, 160.0, 190.0])
        scenario = rivervault.scenarios(0)[0]
        first = solve_stage(rivervault, 0, state, scenario)
        second = solve_stage(rivervault, 0, state, scenario)

        np.testing.assert_array_equal(state, [200.0, 160.0, 190.0])
        assert first.objective == pytest.approx(second.objective)

    def test_explicit_scenario(self, small_system):
        wet = Scenario(price=100.0, inflows=[40.0])
        sol = solve_stage(small_system, 2, [0.0], wet)
        assert sol.decision.purchase == pytest.approx(0.0, abs=1e-9)
