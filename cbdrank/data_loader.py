"""
Data loading utilities for ranking runs.

Content links, ownership and stakes are read from CSV files and turned into
the dense index structures the ranking core works on.
"""

import numpy as np
import pandas as pd
from pathlib import Path
from typing import List, Optional, Tuple, Union

from cbdrank.graph import ContentGraph, OwnershipMapping, build_content_graph, build_ownership

PathLike = Union[str, Path]


def _read_csv(filepath: PathLike, required: List[str], dtype=None) -> pd.DataFrame:
    filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"CSV file not found: {filepath}")

    df = pd.read_csv(filepath, dtype=dtype)

    for col in required:
        if col not in df.columns:
            raise ValueError(f"CSV must contain '{col}' column. Found: {list(df.columns)}")

    return df[required]


def load_links(filepath: PathLike) -> pd.DataFrame:
    """
    Load content links from CSV.

    Args:
        filepath: Path to CSV file with 'source' and 'target' columns

    Returns:
        DataFrame with 'source' and 'target' columns (string IDs)
    """
    return _read_csv(filepath, ['source', 'target'], dtype={'source': str, 'target': str})


def load_ownership(filepath: PathLike) -> pd.DataFrame:
    """
    Load content ownership from CSV.

    Args:
        filepath: Path to CSV file with 'stakeholder' and 'cid' columns

    Returns:
        DataFrame with 'stakeholder' and 'cid' columns (string IDs)
    """
    return _read_csv(filepath, ['stakeholder', 'cid'], dtype={'stakeholder': str, 'cid': str})


def load_stakes(filepath: PathLike) -> pd.DataFrame:
    """
    Load stakes from CSV.

    Args:
        filepath: Path to CSV file with 'stakeholder' and 'stake' columns

    Returns:
        DataFrame with 'stakeholder' and 'stake' columns
    """
    df = _read_csv(filepath, ['stakeholder', 'stake'], dtype={'stakeholder': str})
    return df.assign(stake=pd.to_numeric(df['stake'], errors='raise').fillna(0.0))


def build_inputs(
    links_df: pd.DataFrame,
    ownership_df: Optional[pd.DataFrame] = None,
    stakes_df: Optional[pd.DataFrame] = None,
    verbose: bool = True
) -> Tuple[ContentGraph, pd.DataFrame, OwnershipMapping, pd.DataFrame, np.ndarray]:
    """
    Build all ranking inputs from link, ownership and stake tables.

    Content that is owned but never linked becomes an isolated node.
    Stakeholders listed only in the stakes table get a karma slot; stakeholders
    without a stakes row get stake 0.

    Args:
        links_df: DataFrame with 'source' and 'target' columns
        ownership_df: Optional DataFrame with 'stakeholder' and 'cid' columns
        stakes_df: Optional DataFrame with 'stakeholder' and 'stake' columns
        verbose: If True, print progress information

    Returns:
        Tuple of (graph, vid_df, ownership, sid_df, stakes)
    """
    if ownership_df is None:
        ownership_df = pd.DataFrame({'stakeholder': pd.Series(dtype=str), 'cid': pd.Series(dtype=str)})
    if stakes_df is None:
        stakes_df = pd.DataFrame({'stakeholder': pd.Series(dtype=str), 'stake': pd.Series(dtype=float)})

    # repeated stakeholder rows are summed
    stakes_df = (
        stakes_df.dropna(subset=['stakeholder'])
        .groupby('stakeholder', sort=False, as_index=False)['stake']
        .sum()
    )

    graph, vid_df = build_content_graph(links_df, nodes=ownership_df['cid'].dropna().unique())
    if verbose:
        print(f"Built content graph: {graph.num_nodes:,} nodes, {graph.num_edges:,} links")

    ownership, sid_df = build_ownership(
        ownership_df, vid_df, stakeholders=stakes_df['stakeholder'].unique()
    )

    stakes = (
        sid_df[['stakeholder_id']]
        .merge(stakes_df, left_on='stakeholder_id', right_on='stakeholder', how='left')['stake']
        .fillna(0.0)
        .to_numpy(dtype=np.float64)
    )
    if verbose:
        print(f"Built ownership: {ownership.num_stakeholders:,} stakeholders, "
              f"{ownership.num_edges:,} ownership edges, total stake {stakes.sum():,.0f}")

    return graph, vid_df, ownership, sid_df, stakes


def load_inputs(
    links_path: PathLike,
    ownership_path: Optional[PathLike] = None,
    stakes_path: Optional[PathLike] = None,
    verbose: bool = True
) -> Tuple[ContentGraph, pd.DataFrame, OwnershipMapping, pd.DataFrame, np.ndarray]:
    """
    Load CSV files and build all ranking inputs.

    Returns:
        Tuple of (graph, vid_df, ownership, sid_df, stakes)
    """
    if verbose:
        print(f"Loading links from: {links_path}")
    links_df = load_links(links_path)
    ownership_df = load_ownership(ownership_path) if ownership_path else None
    stakes_df = load_stakes(stakes_path) if stakes_path else None
    return build_inputs(links_df, ownership_df, stakes_df, verbose=verbose)
