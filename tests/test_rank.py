"""Tests for the rank iteration engine."""

import itertools

import numpy as np
import pytest

from cbdrank.backend import NumpyBackend
from cbdrank.errors import MalformedGraph, NonConvergence
from cbdrank.graph import ContentGraph
from cbdrank.rank import (
    compute_rank,
    iterate_rank,
    run_rank_networkx,
    track_rank_convergence,
)


def star_leaf_rank(d: float) -> float:
    """Closed form leaf rank for the 4-leaf star with a dangling hub."""
    return 1.0 / (5.0 + 4.0 * d)


class TestComputeRank:
    """Test converged rank values."""

    def test_three_cycle_is_uniform(self, cycle_graph, backend) -> None:
        result = compute_rank(cycle_graph, 0.85, 1e-6, backend=backend)

        assert result.converged
        assert result.rank == pytest.approx([1 / 3, 1 / 3, 1 / 3], abs=1e-6)

    def test_single_node_converges_in_one_iteration(self, backend) -> None:
        graph = ContentGraph.from_edges([], [], num_nodes=1)

        result = compute_rank(graph, 0.85, 1e-6, backend=backend)

        assert result.iterations == 1
        assert result.converged
        assert result.rank.tolist() == [1.0]

    def test_empty_graph(self, backend) -> None:
        graph = ContentGraph.from_edges([], [], num_nodes=0)

        result = compute_rank(graph, 0.85, 1e-6, backend=backend)

        assert len(result.rank) == 0
        assert result.iterations == 0
        assert result.converged

    def test_star_matches_closed_form(self, star_graph, backend) -> None:
        result = compute_rank(star_graph, 0.85, 1e-12, max_iterations=1000, backend=backend)

        leaf = star_leaf_rank(0.85)
        assert result.rank[1:] == pytest.approx([leaf] * 4, abs=1e-9)
        assert result.rank[0] == pytest.approx(1.0 - 4 * leaf, abs=1e-9)

    def test_mass_conserved_with_dangling_nodes(self, random_graph, backend) -> None:
        tolerance = 1e-8
        assert (random_graph.out_count == 0).any()

        result = compute_rank(random_graph, 0.85, tolerance, max_iterations=1000, backend=backend)

        assert abs(result.rank.sum() - 1.0) < tolerance
        assert (result.rank > 0).all()

    def test_matches_networkx(self, random_graph, backend) -> None:
        ours = compute_rank(random_graph, 0.85, 1e-13, max_iterations=2000, backend=backend)
        reference = run_rank_networkx(random_graph, 0.85, 1e-14, max_iterations=2000)

        assert ours.rank == pytest.approx(reference.rank, abs=1e-9)

    def test_idempotent_on_converged_vector(self, random_graph, backend) -> None:
        first = compute_rank(random_graph, 0.85, 1e-12, max_iterations=2000, backend=backend)

        second = compute_rank(random_graph, 0.85, 1e-6, initial=first.rank, backend=backend)

        assert second.iterations == 1
        assert np.abs(second.rank - first.rank).max() < 1e-6

    def test_higher_damping_widens_spread(self, star_graph, backend) -> None:
        low = compute_rank(star_graph, 0.5, 1e-12, max_iterations=1000, backend=backend)
        high = compute_rank(star_graph, 0.9, 1e-12, max_iterations=1000, backend=backend)

        assert np.ptp(high.rank) > np.ptp(low.rank)
        assert high.rank[0] > low.rank[0]

    def test_history_tracks_iterations(self, star_graph, backend) -> None:
        result = compute_rank(star_graph, 0.85, 1e-8, max_iterations=1000, backend=backend)

        assert len(result.history) == result.iterations
        assert result.history[-1] == result.delta
        assert result.delta < 1e-8

    def test_parallel_workers_match_single_worker(self, random_graph, backend) -> None:
        single = compute_rank(random_graph, 0.85, 1e-10, max_iterations=1000, backend=backend)
        with NumpyBackend(workers=4) as pooled:
            parallel = compute_rank(random_graph, 0.85, 1e-10, max_iterations=1000, backend=pooled)

        assert parallel.iterations == single.iterations
        assert parallel.rank == pytest.approx(single.rank, abs=1e-14)

    def test_default_parameters_from_config(self, cycle_graph) -> None:
        result = compute_rank(cycle_graph)

        assert result.converged
        assert result.rank.sum() == pytest.approx(1.0)


class TestRankErrors:
    """Test rank engine failure modes."""

    def test_non_convergence_carries_best_effort_result(self, star_graph, backend) -> None:
        with pytest.raises(NonConvergence) as exc_info:
            compute_rank(star_graph, 0.85, 1e-12, max_iterations=2, backend=backend)

        err = exc_info.value
        assert err.iterations == 2
        assert err.delta >= 1e-12
        assert not err.result.converged
        assert err.result.rank.sum() == pytest.approx(1.0)

    def test_partial_result_returned_when_accepted(self, star_graph, backend) -> None:
        result = compute_rank(
            star_graph, 0.85, 1e-12, max_iterations=2, backend=backend,
            fail_on_nonconvergence=False
        )

        assert not result.converged
        assert result.iterations == 2

    @pytest.mark.parametrize("damping", [0.0, 1.0, 1.5, -0.1])
    def test_damping_out_of_range(self, cycle_graph, backend, damping) -> None:
        with pytest.raises(ValueError, match="damping_factor"):
            compute_rank(cycle_graph, damping, 1e-6, backend=backend)

    def test_tolerance_must_be_positive(self, cycle_graph, backend) -> None:
        with pytest.raises(ValueError, match="tolerance"):
            compute_rank(cycle_graph, 0.85, 0.0, backend=backend)

    def test_max_iterations_must_be_positive(self, cycle_graph, backend) -> None:
        with pytest.raises(ValueError, match="max_iterations"):
            compute_rank(cycle_graph, 0.85, 1e-6, max_iterations=0, backend=backend)

    def test_out_of_range_neighbor(self, backend) -> None:
        graph = ContentGraph(
            in_count=np.array([1, 0]),
            out_count=np.array([0, 1]),
            in_links=np.array([7]),
            out_links=np.array([0]),
            in_start=np.array([0, 1]),
            out_start=np.array([0, 0]),
        )
        with pytest.raises(MalformedGraph):
            compute_rank(graph, 0.85, 1e-6, backend=backend)

    def test_initial_vector_wrong_length(self, cycle_graph, backend) -> None:
        with pytest.raises(MalformedGraph):
            compute_rank(cycle_graph, 0.85, 1e-6, initial=[0.5, 0.5], backend=backend)

    def test_initial_vector_negative(self, cycle_graph, backend) -> None:
        with pytest.raises(ValueError):
            compute_rank(cycle_graph, 0.85, 1e-6, initial=[1.0, -0.5, 0.5], backend=backend)


class TestIterateRank:
    """Test the per-iteration generator."""

    def test_caller_can_stop_between_iterations(self, star_graph, backend) -> None:
        states = list(itertools.islice(iterate_rank(star_graph, 0.85, 100, backend=backend), 3))

        assert [s.iteration for s in states] == [1, 2, 3]
        assert float(states[-1].rank.sum()) == pytest.approx(1.0)

    def test_stops_at_bound(self, star_graph, backend) -> None:
        states = list(iterate_rank(star_graph, 0.85, 5, backend=backend))

        assert len(states) == 5

    def test_initial_vector_is_normalised(self, cycle_graph, backend) -> None:
        state = next(iterate_rank(cycle_graph, 0.85, 1, initial=[2.0, 2.0, 2.0], backend=backend))

        assert state.rank.tolist() == pytest.approx([1 / 3, 1 / 3, 1 / 3])
        assert state.delta == pytest.approx(0.0, abs=1e-15)


class TestTrackConvergence:
    """Test convergence tracking."""

    def test_runs_every_iteration(self, star_graph, backend) -> None:
        result, history = track_rank_convergence(star_graph, 0.85, max_iterations=30, backend=backend)

        assert len(history) == 30
        assert result.iterations == 30
        assert history[-1] < history[0]

    def test_uniform_fixed_point(self, cycle_graph, backend) -> None:
        result, history = track_rank_convergence(cycle_graph, 0.85, max_iterations=30, backend=backend)

        assert 1 <= len(history) <= 30
        assert max(history) < 1e-12
        assert result.converged

    def test_converged_uses_given_tolerance(self, star_graph, backend) -> None:
        loose, history = track_rank_convergence(star_graph, 0.85, max_iterations=5, backend=backend, tolerance=1.0)
        tight, _ = track_rank_convergence(star_graph, 0.85, max_iterations=5, backend=backend, tolerance=1e-15)

        assert history[-1] > 1e-15
        assert loose.converged
        assert not tight.converged


class TestNetworkxReference:
    """Test the NetworkX reference implementation."""

    def test_star(self, star_graph) -> None:
        result = run_rank_networkx(star_graph, 0.85, 1e-12, max_iterations=1000)

        assert result.rank[1] == pytest.approx(star_leaf_rank(0.85), abs=1e-8)

    def test_non_convergence(self, star_graph) -> None:
        with pytest.raises(NonConvergence):
            run_rank_networkx(star_graph, 0.85, 1e-15, max_iterations=1)
