"""
Tests for the extensive-form reference solve.
"""

import pytest

from hydrosddp.exceptions import InfeasibleStageError, InvalidInputError
from hydrosddp.hydro import DeterministicSolver, HydroSystem, InflowBranch, PriceBranch, Reservoir, Stage
from hydrosddp.result import Status
from hydrosddp.sddp import solve_extensive_form


class TestExtensiveForm:

    def test_small_system_value(self, small_system):
        result = solve_extensive_form(small_system)

        # dry first day: buy all 30 and keep the lake; wet: release down to 50
        assert result.objective == pytest.approx(287.5)
        assert result.n_nodes == 2 + 4 + 8
        assert result.status == Status.OPTIMAL

    def test_deterministic_system_matches_full_horizon(self, rivervault):
        result = solve_extensive_form(rivervault)
        assert result.n_nodes == 7
        assert result.objective == pytest.approx(DeterministicSolver(rivervault).solve().total_cost)

    def test_from_later_stage(self, small_system):
        # last day from an empty lake: buy whatever the inflow cannot cover
        result = solve_extensive_form(small_system, start_stage=2, state=[0.0])
        assert result.objective == pytest.approx(0.5 * (25 + 5) * 100)
        assert result.n_nodes == 2

    def test_value_decreases_with_more_water(self, small_system):
        low = solve_extensive_form(small_system, start_stage=1, state=[10.0]).objective
        high = solve_extensive_form(small_system, start_stage=1, state=[40.0]).objective
        assert high <= low

    @pytest.mark.slow
    def test_two_branch_week_bounded_by_day_one_damage(self, rivervault_two_branch):
        result = solve_extensive_form(rivervault_two_branch)
        assert result.n_nodes == sum(2 ** k for k in range(7))
        assert result.objective >= 400_000.0 - 1e-6

    def test_tree_too_large(self, small_system):
        with pytest.raises(InvalidInputError):
            solve_extensive_form(small_system, max_nodes=10)

    def test_bad_start_stage(self, small_system):
        with pytest.raises(InvalidInputError):
            solve_extensive_form(small_system, start_stage=3)

    def test_infeasible_tree(self):
        reservoir = Reservoir("A", 0, 50, 100, 90, max_release=10, max_spillage=0)
        stages = [
            Stage(0, 10.0, [PriceBranch(1.0)], [InflowBranch({"A": 0.0})]),
            Stage(1, 10.0, [PriceBranch(1.0)], [InflowBranch({"A": 0.0}, 0.5), InflowBranch({"A": 50.0}, 0.5)]),
        ]
        system = HydroSystem([reservoir], stages)

        with pytest.raises(InfeasibleStageError) as info:
            solve_extensive_form(system)
        assert info.value.phase == "evaluation"
