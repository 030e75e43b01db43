"""
Graph encoding for content links and stakeholder ownership.

Both node spaces are stored as flat CSR-style arrays: a per-node edge count,
a prefix-sum start offset per node and one flattened index array. The arrays
can be handed to a compute backend without any pointer translation.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

from cbdrank.errors import MalformedGraph

INDEX_DTYPE = np.int64


def _as_index_array(values: Any, name: str) -> np.ndarray:
    """Convert ``values`` to a one-dimensional int64 array."""
    arr = np.asarray(values)
    if arr.size == 0:
        return np.zeros(0, dtype=INDEX_DTYPE)
    if arr.ndim != 1:
        raise MalformedGraph(f"{name} must be one-dimensional, got shape {arr.shape}")
    if not np.issubdtype(arr.dtype, np.integer):
        if not np.issubdtype(arr.dtype, np.floating) or not np.all(np.mod(arr, 1) == 0):
            raise MalformedGraph(f"{name} must contain integers, got dtype {arr.dtype}")
    return arr.astype(INDEX_DTYPE, copy=False)


def _check_range(indices: np.ndarray, upper: int, name: str) -> None:
    if indices.size == 0:
        return
    low, high = int(indices.min()), int(indices.max())
    if low < 0 or high >= upper:
        bad = low if low < 0 else high
        raise MalformedGraph(f"{name} contains index {bad} outside [0, {upper})")


def encode(counts: Any, expected_edges: Optional[int] = None) -> Tuple[np.ndarray, int]:
    """
    Compute prefix-sum start offsets from per-node edge counts.

    Args:
        counts: Per-node edge counts (non-negative integers)
        expected_edges: Length of the flattened edge array the counts describe.
            When given, the total must match it.

    Returns:
        Tuple of (start_offsets, total_edges) where start_offsets[0] == 0 and
        start_offsets[i] == start_offsets[i - 1] + counts[i - 1]

    Raises:
        MalformedGraph: If a count is negative or the total does not match
            expected_edges
    """
    counts = _as_index_array(counts, 'counts')
    if counts.size and counts.min() < 0:
        raise MalformedGraph(f"Edge counts must be non-negative, found {int(counts.min())}")

    start = np.zeros(len(counts), dtype=INDEX_DTYPE)
    if len(counts) > 1:
        np.cumsum(counts[:-1], out=start[1:])
    total = int(counts.sum())

    if expected_edges is not None and total != expected_edges:
        raise MalformedGraph(
            f"Edge counts sum to {total} but {expected_edges} edges were supplied"
        )
    return start, total


@dataclass
class ContentGraph:
    """
    Content link adjacency, stored twice.

    ``in_links`` holds the source of every edge grouped by target and
    ``out_links`` holds the target of every edge grouped by source.
    """
    in_count: np.ndarray
    out_count: np.ndarray
    in_links: np.ndarray
    out_links: np.ndarray
    in_start: np.ndarray
    out_start: np.ndarray

    @property
    def num_nodes(self) -> int:
        return len(self.in_count)

    @property
    def num_edges(self) -> int:
        return len(self.in_links)

    @classmethod
    def from_arrays(
        cls,
        in_count: Any,
        out_count: Any,
        in_links: Any,
        out_links: Any
    ) -> "ContentGraph":
        """
        Build a graph from already flattened per-node arrays.

        Args:
            in_count: Incoming edge count per node
            out_count: Outgoing edge count per node
            in_links: Source node of each incoming edge, grouped by target
            out_links: Target node of each outgoing edge, grouped by source

        Returns:
            Validated ContentGraph
        """
        in_count = _as_index_array(in_count, 'in_count')
        out_count = _as_index_array(out_count, 'out_count')
        in_links = _as_index_array(in_links, 'in_links')
        out_links = _as_index_array(out_links, 'out_links')

        in_start, _ = encode(in_count, expected_edges=len(in_links))
        out_start, _ = encode(out_count, expected_edges=len(out_links))

        graph = cls(in_count, out_count, in_links, out_links, in_start, out_start)
        graph.validate()
        return graph

    @classmethod
    def from_edges(cls, sources: Any, targets: Any, num_nodes: int) -> "ContentGraph":
        """
        Build a graph from parallel source/target index arrays.

        Args:
            sources: Source node index of each edge
            targets: Target node index of each edge
            num_nodes: Size of the node index space

        Returns:
            Validated ContentGraph
        """
        sources = _as_index_array(sources, 'sources')
        targets = _as_index_array(targets, 'targets')
        if len(sources) != len(targets):
            raise MalformedGraph(
                f"Got {len(sources)} sources but {len(targets)} targets"
            )
        _check_range(sources, num_nodes, 'sources')
        _check_range(targets, num_nodes, 'targets')

        in_links = sources[np.argsort(targets, kind='stable')]
        out_links = targets[np.argsort(sources, kind='stable')]

        return cls.from_arrays(
            np.bincount(targets, minlength=num_nodes),
            np.bincount(sources, minlength=num_nodes),
            in_links,
            out_links,
        )

    def in_targets(self) -> np.ndarray:
        """Target node of each entry in ``in_links``."""
        return np.repeat(np.arange(self.num_nodes, dtype=INDEX_DTYPE), self.in_count)

    def validate(self) -> None:
        """
        Check that the arrays describe one consistent edge multiset.

        Raises:
            MalformedGraph: On length mismatches, out-of-range indices, bad
                offsets or when the two groupings disagree
        """
        n = self.num_nodes
        for name in ('out_count', 'in_start', 'out_start'):
            if len(getattr(self, name)) != n:
                raise MalformedGraph(
                    f"{name} has length {len(getattr(self, name))}, expected {n}"
                )
        if len(self.in_links) != len(self.out_links):
            raise MalformedGraph(
                f"in_links has {len(self.in_links)} entries but out_links has {len(self.out_links)}"
            )

        _check_range(self.in_links, n, 'in_links')
        _check_range(self.out_links, n, 'out_links')

        in_start, _ = encode(self.in_count, expected_edges=len(self.in_links))
        out_start, _ = encode(self.out_count, expected_edges=len(self.out_links))
        if not np.array_equal(in_start, self.in_start):
            raise MalformedGraph("in_start does not match prefix sums of in_count")
        if not np.array_equal(out_start, self.out_start):
            raise MalformedGraph("out_start does not match prefix sums of out_count")

        if not np.array_equal(np.bincount(self.in_links, minlength=n), self.out_count):
            raise MalformedGraph("in_links sources disagree with out_count")
        if not np.array_equal(np.bincount(self.out_links, minlength=n), self.in_count):
            raise MalformedGraph("out_links targets disagree with in_count")


@dataclass
class OwnershipMapping:
    """
    Stakeholder to content ownership edges.

    Indexed by stakeholder; ``owned_cids`` holds content node indices in the
    separate content index space of size ``num_cids``.
    """
    owned_count: np.ndarray
    owned_cids: np.ndarray
    owned_start: np.ndarray
    num_cids: int

    @property
    def num_stakeholders(self) -> int:
        return len(self.owned_count)

    @property
    def num_edges(self) -> int:
        return len(self.owned_cids)

    @classmethod
    def from_arrays(cls, owned_count: Any, owned_cids: Any, num_cids: int) -> "OwnershipMapping":
        owned_count = _as_index_array(owned_count, 'owned_count')
        owned_cids = _as_index_array(owned_cids, 'owned_cids')
        owned_start, _ = encode(owned_count, expected_edges=len(owned_cids))

        mapping = cls(owned_count, owned_cids, owned_start, int(num_cids))
        mapping.validate()
        return mapping

    @classmethod
    def from_pairs(
        cls,
        owners: Any,
        cids: Any,
        num_stakeholders: int,
        num_cids: int
    ) -> "OwnershipMapping":
        """
        Build ownership from parallel (stakeholder, content) index arrays.

        Repeated (stakeholder, content) pairs are kept once.

        Args:
            owners: Stakeholder index of each ownership edge
            cids: Content node index of each ownership edge
            num_stakeholders: Size of the stakeholder index space
            num_cids: Size of the content index space

        Returns:
            Validated OwnershipMapping
        """
        owners = _as_index_array(owners, 'owners')
        cids = _as_index_array(cids, 'cids')
        if len(owners) != len(cids):
            raise MalformedGraph(f"Got {len(owners)} owners but {len(cids)} content ids")
        _check_range(owners, num_stakeholders, 'owners')
        _check_range(cids, num_cids, 'cids')

        _, first = np.unique(owners * max(num_cids, 1) + cids, return_index=True)
        keep = np.sort(first)
        owners, cids = owners[keep], cids[keep]

        return cls.from_arrays(
            np.bincount(owners, minlength=num_stakeholders),
            cids[np.argsort(owners, kind='stable')],
            num_cids,
        )

    def owners(self) -> np.ndarray:
        """Stakeholder index of each entry in ``owned_cids``."""
        return np.repeat(
            np.arange(self.num_stakeholders, dtype=INDEX_DTYPE), self.owned_count
        )

    def validate(self) -> None:
        if len(self.owned_start) != self.num_stakeholders:
            raise MalformedGraph(
                f"owned_start has length {len(self.owned_start)}, expected {self.num_stakeholders}"
            )
        _check_range(self.owned_cids, self.num_cids, 'owned_cids')
        owned_start, _ = encode(self.owned_count, expected_edges=len(self.owned_cids))
        if not np.array_equal(owned_start, self.owned_start):
            raise MalformedGraph("owned_start does not match prefix sums of owned_count")


def build_content_graph(
    edges_df: pd.DataFrame,
    nodes: Optional[Iterable[Any]] = None,
    source_col: str = 'source',
    target_col: str = 'target'
) -> Tuple[ContentGraph, pd.DataFrame]:
    """
    Build a content graph with vertex ID mapping from an edge list.

    The ranking core works on dense integer indices, so this function creates
    a mapping between original IDs and integer IDs.

    Args:
        edges_df: DataFrame with source and target columns (any hashable IDs)
        nodes: Optional extra node IDs, e.g. content without any links
        source_col: Column name for link sources
        target_col: Column name for link targets

    Returns:
        Tuple of (ContentGraph, vid_df) where vid_df maps vertex_id to int_id
    """
    for col in (source_col, target_col):
        if col not in edges_df.columns:
            raise ValueError(f"Edge list must contain '{col}' column. Found: {list(edges_df.columns)}")

    edges_df = edges_df.dropna(subset=[source_col, target_col])

    columns = [edges_df[source_col], edges_df[target_col]]
    if nodes is not None:
        columns.append(pd.Series(list(nodes), dtype=object))
    vertices = pd.unique(pd.concat(columns, ignore_index=True))

    vid_df = pd.DataFrame({
        'vertex_id': vertices,
        'int_id': np.arange(len(vertices), dtype=INDEX_DTYPE),
    })

    index = pd.Index(vertices)
    sources = index.get_indexer(edges_df[source_col])
    targets = index.get_indexer(edges_df[target_col])

    graph = ContentGraph.from_edges(sources, targets, num_nodes=len(vertices))
    return graph, vid_df


def build_ownership(
    ownership_df: pd.DataFrame,
    vid_df: pd.DataFrame,
    stakeholders: Optional[Iterable[Any]] = None,
    stakeholder_col: str = 'stakeholder',
    cid_col: str = 'cid'
) -> Tuple[OwnershipMapping, pd.DataFrame]:
    """
    Build the stakeholder ownership mapping against an existing vertex mapping.

    Args:
        ownership_df: DataFrame with stakeholder and content ID columns
        vid_df: Vertex mapping returned by build_content_graph
        stakeholders: Optional extra stakeholder IDs, e.g. holders of stake
            that own no content
        stakeholder_col: Column name for stakeholder IDs
        cid_col: Column name for content IDs

    Returns:
        Tuple of (OwnershipMapping, sid_df) where sid_df maps stakeholder_id to int_id

    Raises:
        MalformedGraph: If an ownership row names content missing from vid_df
    """
    for col in (stakeholder_col, cid_col):
        if col not in ownership_df.columns:
            raise ValueError(f"Ownership table must contain '{col}' column. Found: {list(ownership_df.columns)}")

    ownership_df = ownership_df.dropna(subset=[stakeholder_col, cid_col])

    cids = pd.Index(vid_df['vertex_id']).get_indexer(ownership_df[cid_col])
    if (cids < 0).any():
        unknown = ownership_df[cid_col][cids < 0].unique()[:5]
        raise MalformedGraph(f"Ownership refers to unknown content ids: {list(unknown)}")

    columns = [ownership_df[stakeholder_col]]
    if stakeholders is not None:
        columns.append(pd.Series(list(stakeholders), dtype=object))
    stakeholder_ids = pd.unique(pd.concat(columns, ignore_index=True))

    sid_df = pd.DataFrame({
        'stakeholder_id': stakeholder_ids,
        'int_id': np.arange(len(stakeholder_ids), dtype=INDEX_DTYPE),
    })
    owners = pd.Index(stakeholder_ids).get_indexer(ownership_df[stakeholder_col])

    mapping = OwnershipMapping.from_pairs(
        owners, cids, num_stakeholders=len(stakeholder_ids), num_cids=len(vid_df)
    )
    return mapping, sid_df


def from_networkx(G) -> Tuple[ContentGraph, pd.DataFrame]:
    """
    Build a content graph from a NetworkX directed graph.

    Args:
        G: NetworkX DiGraph or MultiDiGraph

    Returns:
        Tuple of (ContentGraph, vid_df) where vid_df maps vertex_id to int_id
    """
    if not G.is_directed():
        raise MalformedGraph("Content graph must be directed")

    nodes = list(G.nodes())
    index = {node: i for i, node in enumerate(nodes)}
    sources = np.fromiter((index[u] for u, _ in G.edges()), dtype=INDEX_DTYPE)
    targets = np.fromiter((index[v] for _, v in G.edges()), dtype=INDEX_DTYPE)

    vid_df = pd.DataFrame({
        'vertex_id': pd.Series(nodes, dtype=object),
        'int_id': np.arange(len(nodes), dtype=INDEX_DTYPE),
    })
    return ContentGraph.from_edges(sources, targets, num_nodes=len(nodes)), vid_df
