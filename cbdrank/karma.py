"""
Aggregation of content rank into per-stakeholder karma.
"""

import numpy as np
from typing import Any, Optional

from cbdrank.backend import ComputeBackend, get_backend
from cbdrank.errors import MalformedGraph
from cbdrank.graph import OwnershipMapping

SPLIT_MODES = ('full', 'even')


def compute_karma(
    ownership: OwnershipMapping,
    stakes: Any,
    rank: Any,
    split: str = 'full',
    scale_by_stake: bool = False,
    backend: Optional[ComputeBackend] = None
) -> np.ndarray:
    """
    Compute karma for every stakeholder from the rank of the content it owns.

    Args:
        ownership: Stakeholder ownership mapping
        stakes: Stake per stakeholder (length M, non-negative)
        rank: Converged content rank vector (length ownership.num_cids)
        split: 'full' credits every owner with the full rank of a content
            node; 'even' divides it evenly among the node's owners
        scale_by_stake: Multiply each karma value by the stakeholder's share
            of total stake
        backend: Compute backend (default from configuration)

    Returns:
        Karma vector of length M; stakeholders owning nothing get 0
    """
    if split not in SPLIT_MODES:
        raise ValueError(f"Unknown split: {split}. Supported: {SPLIT_MODES}")

    stakes = np.asarray(stakes, dtype=np.float64)
    rank = np.asarray(rank, dtype=np.float64)
    m = ownership.num_stakeholders

    if stakes.shape != (m,):
        raise MalformedGraph(f"Stake array has shape {stakes.shape}, expected ({m},)")
    if (stakes < 0).any():
        raise MalformedGraph("Stakes must be non-negative")
    if rank.shape != (ownership.num_cids,):
        raise MalformedGraph(
            f"Rank vector has shape {rank.shape}, ownership refers to {ownership.num_cids} content nodes"
        )
    ownership.validate()

    if m == 0:
        return np.zeros(0, dtype=np.float64)

    scale = None
    if scale_by_stake:
        total_stake = stakes.sum()
        scale = stakes / total_stake if total_stake > 0 else np.zeros(m, dtype=np.float64)

    backend = backend or get_backend()
    do = backend.prepare_ownership(ownership)
    karma = backend.karma(
        do,
        backend.asarray(rank),
        split=split,
        scale=backend.asarray(scale) if scale is not None else None
    )
    return np.array(backend.asnumpy(karma), dtype=np.float64)
