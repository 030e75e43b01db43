"""
Rank computation for content graphs.

Damped power iteration over the flattened adjacency, with an optional
NetworkX reference implementation for cross-checking backends.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Tuple

from cbdrank import config
from cbdrank.backend import ComputeBackend, DeviceGraph, get_backend
from cbdrank.errors import MalformedGraph, NonConvergence
from cbdrank.graph import ContentGraph


@dataclass
class RankResult:
    """Result of rank computation."""
    rank: np.ndarray
    iterations: Optional[int] = None
    converged: bool = True
    delta: float = 0.0
    history: List[float] = field(default_factory=list)  # max abs change per iteration


@dataclass
class IterationState:
    """
    State after one sweep.

    ``rank`` is the backend buffer holding the new vector. It is reused two
    sweeps later, so copy it if it has to outlive the iteration.
    """
    iteration: int
    delta: float
    rank: Any


def _check_params(damping_factor: float, tolerance: Optional[float], max_iterations: int) -> None:
    if not 0.0 < damping_factor < 1.0:
        raise ValueError(f"damping_factor must be in (0, 1), got {damping_factor}")
    if tolerance is not None and not tolerance > 0.0:
        raise ValueError(f"tolerance must be positive, got {tolerance}")
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")


def _initial_vector(n: int, initial: Any = None) -> np.ndarray:
    if initial is None:
        return np.full(n, 1.0 / n, dtype=np.float64)

    vector = np.array(initial, dtype=np.float64)
    if vector.shape != (n,):
        raise MalformedGraph(f"Initial rank vector has shape {vector.shape}, expected ({n},)")
    if (vector < 0).any() or not vector.sum() > 0:
        raise ValueError("Initial rank vector must be non-negative with a positive sum")
    return vector / vector.sum()


def iterate_rank(
    graph: ContentGraph,
    damping_factor: float,
    max_iterations: int,
    initial: Any = None,
    backend: Optional[ComputeBackend] = None,
    device_graph: Optional[DeviceGraph] = None
) -> Iterator[IterationState]:
    """
    Run damped power iteration, yielding after every sweep.

    Every sweep reads the previous vector and writes the other of two
    preallocated buffers; the buffers are swapped before yielding. Stopping
    iteration over the generator is the only way to abort a run early.

    Args:
        graph: Validated content graph
        damping_factor: Damping factor d in (0, 1)
        max_iterations: Number of sweeps after which the generator stops
        initial: Optional starting vector (normalised to sum 1)
        backend: Compute backend (default from configuration)
        device_graph: Graph already prepared on ``backend``

    Yields:
        IterationState for each sweep
    """
    n = graph.num_nodes
    if n == 0:
        return

    backend = backend or get_backend()
    dg = device_graph if device_graph is not None else backend.prepare_graph(graph)

    current = backend.asarray(_initial_vector(n, initial))
    following = backend.empty(n)

    for iteration in range(1, max_iterations + 1):
        backend.rank_sweep(dg, current, following, damping_factor)
        delta = backend.max_delta(following, current)
        current, following = following, current
        yield IterationState(iteration=iteration, delta=delta, rank=current)


def compute_rank(
    graph: ContentGraph,
    damping_factor: Optional[float] = None,
    tolerance: Optional[float] = None,
    max_iterations: Optional[int] = None,
    initial: Any = None,
    backend: Optional[ComputeBackend] = None,
    fail_on_nonconvergence: bool = True,
    device_graph: Optional[DeviceGraph] = None
) -> RankResult:
    """
    Compute converged rank for every content node.

    Iterates r'[i] = (1-d)/N + d * (sum_{j->i} r[j]/out[j] + D/N), where D is
    the rank held by dangling nodes, until max |r' - r| < tolerance.

    Args:
        graph: Content graph
        damping_factor: Damping factor (default from configuration, 0.85)
        tolerance: Convergence tolerance on the max per-node change
        max_iterations: Iteration bound
        initial: Optional starting vector, e.g. a previously converged rank
        backend: Compute backend (default from configuration)
        fail_on_nonconvergence: Raise NonConvergence when the bound is hit;
            if False the best-effort result is returned with converged=False
        device_graph: Graph already validated and prepared on ``backend``,
            reused instead of copying the arrays again

    Returns:
        RankResult with the rank vector (sums to 1.0)

    Raises:
        MalformedGraph: If the graph arrays are inconsistent
        NonConvergence: If the tolerance is not met within max_iterations
    """
    damping_factor = config.DAMPING_FACTOR if damping_factor is None else damping_factor
    tolerance = config.TOLERANCE if tolerance is None else tolerance
    max_iterations = config.MAX_ITERATIONS if max_iterations is None else max_iterations
    _check_params(damping_factor, tolerance, max_iterations)
    if device_graph is None:
        graph.validate()

    if graph.num_nodes == 0:
        return RankResult(rank=np.zeros(0, dtype=np.float64), iterations=0)

    owns_backend = backend is None
    backend = backend or get_backend()
    history: List[float] = []
    state = None
    try:
        for state in iterate_rank(graph, damping_factor, max_iterations, initial, backend, device_graph):
            history.append(state.delta)
            if state.delta < tolerance:
                break
        final_rank = np.array(backend.asnumpy(state.rank), dtype=np.float64)
    finally:
        if owns_backend:
            backend.close()

    result = RankResult(
        rank=final_rank,
        iterations=state.iteration,
        converged=state.delta < tolerance,
        delta=state.delta,
        history=history,
    )

    if not result.converged and fail_on_nonconvergence:
        raise NonConvergence(
            f"Rank did not converge within {max_iterations} iterations "
            f"(max change {state.delta:.3e}, tolerance {tolerance:.3e})",
            result=result
        )
    return result


def track_rank_convergence(
    graph: ContentGraph,
    damping_factor: Optional[float] = None,
    max_iterations: Optional[int] = None,
    backend: Optional[ComputeBackend] = None,
    tolerance: Optional[float] = None
) -> Tuple[RankResult, List[float]]:
    """
    Track rank convergence by running every iteration without a tolerance stop.

    Iteration stops early only when a sweep leaves the vector unchanged.

    Args:
        graph: Content graph
        damping_factor: Damping factor
        max_iterations: Maximum iterations
        backend: Compute backend (default from configuration)
        tolerance: Threshold the final change is compared against to set
            ``converged``; it never stops the run

    Returns:
        Tuple of (final RankResult, convergence_history)
        where convergence_history is the max abs change per iteration
    """
    damping_factor = config.DAMPING_FACTOR if damping_factor is None else damping_factor
    max_iterations = config.MAX_ITERATIONS if max_iterations is None else max_iterations
    tolerance = config.TOLERANCE if tolerance is None else tolerance
    _check_params(damping_factor, tolerance, max_iterations)
    graph.validate()

    if graph.num_nodes == 0:
        return RankResult(rank=np.zeros(0, dtype=np.float64), iterations=0), []

    owns_backend = backend is None
    backend = backend or get_backend()
    convergence_history: List[float] = []
    state = None
    try:
        for state in iterate_rank(graph, damping_factor, max_iterations, backend=backend):
            convergence_history.append(state.delta)
            if state.delta == 0.0:
                break
        final_rank = np.array(backend.asnumpy(state.rank), dtype=np.float64)
    finally:
        if owns_backend:
            backend.close()

    result = RankResult(
        rank=final_rank,
        iterations=state.iteration,
        converged=state.delta < tolerance,
        delta=state.delta,
        history=list(convergence_history),
    )
    return result, convergence_history


def run_rank_networkx(
    graph: ContentGraph,
    damping_factor: Optional[float] = None,
    tolerance: Optional[float] = None,
    max_iterations: Optional[int] = None
) -> RankResult:
    """
    Compute rank using NetworkX (CPU reference).

    Duplicate links are kept as parallel edges, and dangling nodes are spread
    uniformly, matching compute_rank. Note that NetworkX stops on the L1 change
    being below N * tolerance.

    Args:
        graph: Content graph
        damping_factor: Damping factor (default 0.85)
        tolerance: NetworkX convergence tolerance
        max_iterations: Maximum iterations

    Returns:
        RankResult with scores in node index order
    """
    import networkx as nx

    damping_factor = config.DAMPING_FACTOR if damping_factor is None else damping_factor
    tolerance = config.TOLERANCE if tolerance is None else tolerance
    max_iterations = config.MAX_ITERATIONS if max_iterations is None else max_iterations
    _check_params(damping_factor, tolerance, max_iterations)
    graph.validate()

    G = nx.MultiDiGraph()
    G.add_nodes_from(range(graph.num_nodes))
    G.add_edges_from(zip(graph.in_links.tolist(), graph.in_targets().tolist()))

    if graph.num_nodes == 0:
        return RankResult(rank=np.zeros(0, dtype=np.float64), iterations=0)

    try:
        pr_scores = nx.pagerank(G, alpha=damping_factor, max_iter=max_iterations, tol=tolerance)
    except nx.PowerIterationFailedConvergence as e:
        raise NonConvergence(str(e)) from e

    rank = np.array([pr_scores[i] for i in range(graph.num_nodes)], dtype=np.float64)
    return RankResult(rank=rank)
