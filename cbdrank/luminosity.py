"""
Visibility score combining rank and entropy.
"""

import numpy as np
from typing import Any, Optional

from cbdrank.backend import ComputeBackend, get_backend
from cbdrank.errors import MalformedGraph


def compute_luminosity(
    rank: Any,
    entropy: Any,
    backend: Optional[ComputeBackend] = None
) -> np.ndarray:
    """luminosity[i] = rank[i] * (1 + entropy[i])."""
    rank = np.asarray(rank, dtype=np.float64)
    entropy = np.asarray(entropy, dtype=np.float64)
    if rank.ndim != 1 or rank.shape != entropy.shape:
        raise MalformedGraph(
            f"Rank shape {rank.shape} and entropy shape {entropy.shape} must match"
        )

    backend = backend or get_backend()
    luminosity = backend.luminosity(backend.asarray(rank), backend.asarray(entropy))
    return np.array(backend.asnumpy(luminosity), dtype=np.float64)
