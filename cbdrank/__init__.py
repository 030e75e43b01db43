"""
cbdrank - reputation ranking over stake-weighted content graphs.

This package provides tools for:
- Encoding content links and stakeholder ownership as flat CSR-style arrays
- Computing rank by damped power iteration (NumPy or CuPy backends)
- Measuring the diversity (entropy) of each node's incoming influence
- Aggregating rank into per-stakeholder karma
- Deriving luminosity from rank and entropy
"""

from cbdrank.errors import CbdRankError, MalformedGraph, NonConvergence, BackendDispatchFailure
from cbdrank.graph import (
    ContentGraph,
    OwnershipMapping,
    encode,
    build_content_graph,
    build_ownership,
    from_networkx
)
from cbdrank.backend import ComputeBackend, NumpyBackend, CupyBackend, get_backend
from cbdrank.rank import (
    RankResult,
    IterationState,
    compute_rank,
    iterate_rank,
    track_rank_convergence,
    run_rank_networkx
)
from cbdrank.entropy import compute_entropy
from cbdrank.karma import compute_karma
from cbdrank.luminosity import compute_luminosity
from cbdrank.pipeline import RankingResult, calculate_rank, top_k
from cbdrank.data_loader import load_links, load_ownership, load_stakes, build_inputs, load_inputs
from cbdrank.utils import check_gpu_available

__version__ = "0.1.0"

__all__ = [
    # Errors
    "CbdRankError",
    "MalformedGraph",
    "NonConvergence",
    "BackendDispatchFailure",
    # Graph encoding
    "ContentGraph",
    "OwnershipMapping",
    "encode",
    "build_content_graph",
    "build_ownership",
    "from_networkx",
    # Backends
    "ComputeBackend",
    "NumpyBackend",
    "CupyBackend",
    "get_backend",
    # Rank
    "RankResult",
    "IterationState",
    "compute_rank",
    "iterate_rank",
    "track_rank_convergence",
    "run_rank_networkx",
    # Derived scores
    "compute_entropy",
    "compute_karma",
    "compute_luminosity",
    # Pipeline
    "RankingResult",
    "calculate_rank",
    "top_k",
    # Data loading
    "load_links",
    "load_ownership",
    "load_stakes",
    "build_inputs",
    "load_inputs",
    # Utilities
    "check_gpu_available",
]
