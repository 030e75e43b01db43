"""
Diversity of incoming influence per content node.
"""

import numpy as np
from typing import Any, Optional

from cbdrank.backend import ComputeBackend, DeviceGraph, get_backend
from cbdrank.errors import MalformedGraph
from cbdrank.graph import ContentGraph


def compute_entropy(
    graph: ContentGraph,
    rank: Any,
    backend: Optional[ComputeBackend] = None,
    device_graph: Optional[DeviceGraph] = None
) -> np.ndarray:
    """
    Compute the Shannon entropy of each node's incoming influence.

    Neighbor j contributes r[j] / out[j] to node i. Contributions are
    normalised over i's incoming edges into p_j and
    entropy[i] = -sum_j p_j * ln(p_j). Nodes with fewer than two incoming
    edges, or whose contributions are all zero, get 0.

    Args:
        graph: Content graph
        rank: Converged rank vector of length N
        backend: Compute backend (default from configuration)
        device_graph: Graph already prepared on ``backend``; the graph is
            then taken as validated and its arrays are not copied again

    Returns:
        Entropy vector of length N (natural log units)
    """
    rank = np.asarray(rank, dtype=np.float64)
    if rank.shape != (graph.num_nodes,):
        raise MalformedGraph(
            f"Rank vector has shape {rank.shape}, expected ({graph.num_nodes},)"
        )
    if device_graph is None:
        graph.validate()

    if graph.num_nodes == 0:
        return np.zeros(0, dtype=np.float64)

    backend = backend or get_backend()
    dg = device_graph if device_graph is not None else backend.prepare_graph(graph)
    entropy = backend.entropy(dg, backend.asarray(rank))
    return np.array(backend.asnumpy(entropy), dtype=np.float64)
