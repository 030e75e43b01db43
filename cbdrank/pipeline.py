"""
End-to-end ranking run: rank, then entropy, karma and luminosity.
"""

import time
import numpy as np
import pandas as pd
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from cbdrank.backend import ComputeBackend, get_backend
from cbdrank.entropy import compute_entropy
from cbdrank.graph import ContentGraph, OwnershipMapping
from cbdrank.karma import compute_karma
from cbdrank.luminosity import compute_luminosity
from cbdrank.rank import RankResult, compute_rank


@dataclass
class RankingResult:
    """All outputs of one ranking run."""
    rank: np.ndarray
    entropy: np.ndarray
    luminosity: np.ndarray
    karma: np.ndarray
    rank_result: RankResult
    timings: Dict[str, float] = field(default_factory=dict)

    def to_frames(
        self,
        vid_df: Optional[pd.DataFrame] = None,
        sid_df: Optional[pd.DataFrame] = None
    ) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Convert outputs to DataFrames.

        Args:
            vid_df: Optional mapping of content vertex_id to int_id
            sid_df: Optional mapping of stakeholder_id to int_id

        Returns:
            Tuple of (scores_df, karma_df) with columns
            cid, rank, entropy, luminosity and stakeholder, karma
        """
        cids: Any = np.arange(len(self.rank))
        if vid_df is not None:
            cids = vid_df.sort_values('int_id')['vertex_id'].to_numpy()
            if len(cids) != len(self.rank):
                raise ValueError(f"vid_df has {len(cids)} rows but there are {len(self.rank)} content nodes")

        stakeholders: Any = np.arange(len(self.karma))
        if sid_df is not None:
            stakeholders = sid_df.sort_values('int_id')['stakeholder_id'].to_numpy()
            if len(stakeholders) != len(self.karma):
                raise ValueError(f"sid_df has {len(stakeholders)} rows but there are {len(self.karma)} stakeholders")

        scores_df = pd.DataFrame({
            'cid': cids,
            'rank': self.rank,
            'entropy': self.entropy,
            'luminosity': self.luminosity,
        })
        karma_df = pd.DataFrame({
            'stakeholder': stakeholders,
            'karma': self.karma,
        })
        return scores_df, karma_df


def top_k(scores_df: pd.DataFrame, k: int = 10, by: str = 'rank') -> pd.DataFrame:
    """Return the k highest scoring rows by the given column."""
    if by not in scores_df.columns:
        raise ValueError(f"Unknown column: {by}. Found: {list(scores_df.columns)}")
    return scores_df.sort_values(by, ascending=False).head(k).reset_index(drop=True)


def calculate_rank(
    graph: ContentGraph,
    ownership: OwnershipMapping,
    stakes: Any,
    damping_factor: Optional[float] = None,
    tolerance: Optional[float] = None,
    max_iterations: Optional[int] = None,
    backend: Optional[ComputeBackend] = None,
    karma_split: str = 'full',
    scale_by_stake: bool = False,
    fail_on_nonconvergence: bool = True,
    verbose: bool = False
) -> RankingResult:
    """
    Compute rank, entropy, karma and luminosity in one run.

    Entropy and karma only start once rank has converged, and run
    concurrently with each other; luminosity follows entropy. The graph is
    validated and copied to the backend once, for both rank and entropy.

    Args:
        graph: Content graph
        ownership: Stakeholder ownership mapping over the same content nodes
        stakes: Stake per stakeholder
        damping_factor: Damping factor (default from configuration)
        tolerance: Convergence tolerance (default from configuration)
        max_iterations: Iteration bound (default from configuration)
        backend: Compute backend (default from configuration)
        karma_split: 'full' or 'even' ownership fan-out
        scale_by_stake: Multiply karma by each stakeholder's share of total stake
        fail_on_nonconvergence: Raise NonConvergence instead of returning a
            best-effort result
        verbose: If True, print progress information

    Returns:
        RankingResult
    """
    owns_backend = backend is None
    backend = backend or get_backend()
    timings: Dict[str, float] = {}

    try:
        start = time.perf_counter()
        graph.validate()
        dg = backend.prepare_graph(graph)
        rank_result = compute_rank(
            graph,
            damping_factor=damping_factor,
            tolerance=tolerance,
            max_iterations=max_iterations,
            backend=backend,
            fail_on_nonconvergence=fail_on_nonconvergence,
            device_graph=dg,
        )
        timings['rank'] = time.perf_counter() - start

        if verbose:
            status = "converged" if rank_result.converged else "did NOT converge"
            print(f"Rank computation: {timings['rank']:.3f}s "
                  f"({rank_result.iterations} iterations, {status}, max change {rank_result.delta:.3e})")

        start = time.perf_counter()
        rank = rank_result.rank
        with ThreadPoolExecutor(max_workers=2) as executor:
            entropy_future = executor.submit(compute_entropy, graph, rank, backend, dg)
            karma_future = executor.submit(
                compute_karma, ownership, stakes, rank, karma_split, scale_by_stake, backend
            )
            entropy = entropy_future.result()
            karma = karma_future.result()
        luminosity = compute_luminosity(rank, entropy, backend)
        timings['post'] = time.perf_counter() - start
    finally:
        if owns_backend:
            backend.close()

    if verbose:
        print(f"Entropy, karma and luminosity: {timings['post']:.3f}s")
        print(f"Ranked {graph.num_nodes:,} content nodes and {len(karma):,} stakeholders")

    return RankingResult(
        rank=rank,
        entropy=entropy,
        luminosity=luminosity,
        karma=karma,
        rank_result=rank_result,
        timings=timings,
    )
