"""
Tests for SDDP training on the policy graph.
"""

import logging
import warnings

import pytest
import numpy as np

from hydrosddp import ConvergenceWarning
from hydrosddp.exceptions import InfeasibleStageError, InvalidInputError
from hydrosddp.hydro import (
    DeterministicSolver,
    HydroSystem,
    InflowBranch,
    PriceBranch,
    Reservoir,
    Stage,
)
from hydrosddp.sddp import PolicyGraph, solve_extensive_form


def train_quietly(graph, **kwargs):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        return graph.train(**kwargs)


@pytest.fixture(scope="module")
def trained_small():
    from conftest import make_small_system

    graph = PolicyGraph(make_small_system())
    train_quietly(
        graph, iteration_limit=40, stall_iterations=None, confidence_level=None,
        forward_passes=2, seed=11,
    )
    return graph


class TestLowerBound:

    def test_non_decreasing(self, trained_small):
        bounds = np.array(trained_small.lower_bounds())
        assert len(bounds) == 40
        assert np.all(np.diff(bounds) >= -1e-6)

    def test_below_exact_value(self, small_system, trained_small):
        exact = solve_extensive_form(small_system).objective
        assert trained_small.lower_bound <= exact + 1e-6

    def test_reaches_exact_value(self, small_system, trained_small):
        exact = solve_extensive_form(small_system).objective
        assert trained_small.lower_bound == pytest.approx(exact, rel=1e-3)

    def test_deterministic_system_matches_full_horizon(self, small_deterministic_system):
        graph = PolicyGraph(small_deterministic_system)
        result = train_quietly(graph, iteration_limit=20, confidence_level=None, seed=0)
        exact = DeterministicSolver(small_deterministic_system).solve().total_cost
        assert result.lower_bound == pytest.approx(exact, rel=1e-6)


class TestCutValidity:

    def test_cuts_underestimate_value_function(self, small_system, trained_small):
        states = np.linspace(0.0, 100.0, 9)
        for t in range(small_system.n_stages):
            cuts = trained_small.cuts.cuts(t)
            assert cuts, f"no cuts at stage {t}"
            for s in states:
                exact = solve_extensive_form(small_system, start_stage=t, state=[s]).objective
                for cut in cuts:
                    assert cut.value(np.array([s])) <= exact + 1e-5 * max(1.0, abs(exact))

    def test_evaluate_value_below_exact(self, small_system, trained_small):
        exact = solve_extensive_form(small_system, start_stage=1, state=[20.0]).objective
        approx = trained_small.evaluate_value(1, [20.0])
        assert approx <= exact + 1e-6

    def test_cut_counts(self, small_system, trained_small):
        counts = trained_small.cuts.counts()
        assert len(counts) == small_system.n_stages
        assert all(c >= 1 for c in counts)


class TestStoppingRules:

    def test_iteration_limit_warns(self, small_system):
        graph = PolicyGraph(small_system)
        with pytest.warns(ConvergenceWarning):
            result = graph.train(iteration_limit=2, seed=0)

        assert not result.converged
        assert result.stop_reason == "iteration_limit"
        assert result.iterations == 2
        assert result.gap == pytest.approx(result.upper_bound - result.lower_bound)

    def test_lower_bound_stable(self, small_deterministic_system):
        graph = PolicyGraph(small_deterministic_system)
        result = graph.train(
            iteration_limit=50, stall_iterations=3, confidence_level=None, seed=0
        )

        assert result.converged
        assert result.stop_reason == "lower_bound_stable"
        assert result.iterations < 50

    def test_bound_in_confidence(self, small_system):
        graph = PolicyGraph(small_system)
        result = graph.train(
            iteration_limit=200, stall_iterations=None, confidence_level=0.95,
            min_iterations=10, seed=3,
        )

        assert result.converged
        assert result.stop_reason == "bound_in_confidence"
        slack = 1e-4 * max(1.0, abs(result.lower_bound))
        assert result.ci_lower - slack <= result.lower_bound <= result.ci_upper + slack

    def test_rules_wait_for_min_iterations(self, small_deterministic_system):
        graph = PolicyGraph(small_deterministic_system)
        with pytest.warns(ConvergenceWarning):
            result = graph.train(
                iteration_limit=8, stall_iterations=2, confidence_level=None,
                min_iterations=20, seed=0,
            )

        assert result.stop_reason == "iteration_limit"
        assert result.iterations == 8

    def test_default_rules_stop_at_exact_value(self, small_system):
        graph = PolicyGraph(small_system)
        result = graph.train(iteration_limit=150, seed=0)
        exact = solve_extensive_form(small_system).objective

        assert result.converged
        assert result.stop_reason == "bound_in_confidence"
        assert result.iterations >= 20
        assert result.lower_bound == pytest.approx(exact, rel=1e-3)
        # the band comes from a simulation of the final policy
        assert result.ci_lower <= exact + 1e-3
        assert result.ci_lower < result.upper_bound < result.ci_upper

    def test_time_limit(self, small_system):
        graph = PolicyGraph(small_system)
        result = graph.train(
            iteration_limit=1000, stall_iterations=None, confidence_level=None, time_limit=0.0
        )

        assert result.stop_reason == "time_limit"
        assert result.iterations == 1
        assert not result.converged

    def test_training_continues(self, small_system):
        graph = PolicyGraph(small_system)
        train_quietly(graph, iteration_limit=3, seed=0)
        second = train_quietly(graph, iteration_limit=3, seed=1)

        assert len(graph.history) == 6
        assert second.history[0].iteration == 4

    def test_invalid_arguments(self, small_system):
        graph = PolicyGraph(small_system)
        with pytest.raises(InvalidInputError):
            graph.train(iteration_limit=0)
        with pytest.raises(InvalidInputError):
            graph.train(confidence_level=1.5)
        with pytest.raises(InvalidInputError):
            graph.train(simulation_paths=1)
        with pytest.raises(InvalidInputError):
            graph.train(stall_iterations=0)


class TestTrainingResult:

    def test_history_records(self, small_system):
        graph = PolicyGraph(small_system)
        result = train_quietly(graph, iteration_limit=4, seed=5)

        assert [r.iteration for r in result.history] == [1, 2, 3, 4]
        assert all(r.n_cuts >= 1 for r in result.history)
        assert result.history[-1].lower_bound == result.lower_bound
        assert "SDDP Training" in result.summary()

    def test_same_seed_same_bounds(self, small_system):
        first = train_quietly(PolicyGraph(small_system), iteration_limit=5, seed=42)
        second = train_quietly(PolicyGraph(small_system), iteration_limit=5, seed=42)
        assert [r.lower_bound for r in first.history] == pytest.approx(
            [r.lower_bound for r in second.history]
        )

    def test_threaded_backward_pass(self, small_system):
        serial = train_quietly(PolicyGraph(small_system), iteration_limit=5, seed=8)
        threaded = train_quietly(
            PolicyGraph(small_system), iteration_limit=5, seed=8, n_workers=4
        )
        assert threaded.lower_bound == pytest.approx(serial.lower_bound)

    def test_verbose_logs_table(self, small_system, caplog):
        graph = PolicyGraph(small_system)
        with caplog.at_level(logging.INFO, logger="hydrosddp"):
            train_quietly(graph, iteration_limit=2, seed=0, verbose=True)
        assert "Lower bound" in caplog.text


class TestPolicyQueries:

    def test_decide_uses_cuts(self, small_system, trained_small):
        # with the expensive days ahead the policy keeps water back on day one
        sol = trained_small.decide(0, small_system.initial_state, 0)
        assert sol.decision.purchase > 0
        assert sol.theta > 0

    def test_evaluate_value_without_cuts(self, small_system):
        graph = PolicyGraph(small_system)
        assert graph.evaluate_value(1, [10.0]) == 0.0
        assert graph.cuts.evaluate(1, [10.0]) == -np.inf

    def test_evaluate_value_floored_by_theta_bound(self, small_system):
        graph = PolicyGraph(small_system, theta_lower_bound=5.0)
        graph.cuts.add_cut(1, [-1.0], 20.0)

        # the cut is below the theta bound at 30 and above it at 10
        assert graph.evaluate_value(1, [30.0]) == pytest.approx(5.0)
        assert graph.evaluate_value(1, [10.0]) == pytest.approx(10.0)


class TestInfeasibility:

    def test_forward_infeasibility_is_fatal(self):
        reservoir = Reservoir("A", 0, 50, 100, 90, max_release=10, max_spillage=0)
        stages = [
            Stage(0, 10.0, [PriceBranch(1.0)], [InflowBranch({"A": 0.0})]),
            Stage(1, 10.0, [PriceBranch(1.0)], [InflowBranch({"A": 0.0}, 0.5), InflowBranch({"A": 50.0}, 0.5)]),
        ]
        graph = PolicyGraph(HydroSystem([reservoir], stages))

        with pytest.raises(InfeasibleStageError) as info:
            train_quietly(graph, iteration_limit=5, seed=0)
        assert info.value.stage == 1
        assert info.value.phase in ("forward", "backward")
