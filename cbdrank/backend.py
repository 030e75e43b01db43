"""
Compute backends for the ranking core.

A backend owns the array module the numerical kernels run on. The kernels are
written against that module only (bincount, repeat, where, log), so the same
code runs on the host with NumPy and on a CUDA device with CuPy.
"""

import functools
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import numpy as np

from cbdrank import config
from cbdrank.errors import BackendDispatchFailure
from cbdrank.graph import ContentGraph, OwnershipMapping
from cbdrank.utils import check_gpu_available

FLOAT_DTYPE = np.float64


def dispatch(method):
    """Report array library failures inside a backend call as BackendDispatchFailure."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except self.dispatch_errors as e:
            raise BackendDispatchFailure(
                f"{self.name} backend failed in {method.__name__}: {e}",
                backend=self.name
            ) from e
    return wrapper


@dataclass
class DeviceGraph:
    """Content graph arrays as laid out on a backend."""
    num_nodes: int
    in_count: Any
    in_links: Any
    in_targets: Any
    inv_out: Any
    dangling: Any
    # (node_lo, node_hi, edge_lo, edge_hi) per worker, host side
    chunks: List[Tuple[int, int, int, int]] = field(default_factory=list)


@dataclass
class DeviceOwnership:
    """Ownership arrays as laid out on a backend."""
    num_stakeholders: int
    owners: Any
    owned_cids: Any
    owners_per_cid: Any


class ComputeBackend:
    """
    Base backend executing the numerical contracts with ``self.xp``.

    Subclasses pick the array module and the exceptions that count as a
    dispatch failure.
    """
    name = 'base'
    dispatch_errors: Tuple[type, ...] = (MemoryError,)

    def __init__(self, xp=np):
        self.xp = xp

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self) -> None:
        """Release resources held by the backend."""

    def describe(self) -> str:
        return self.name

    def asarray(self, values: Any, dtype=None):
        return self.xp.asarray(values, dtype=dtype)

    def asnumpy(self, arr: Any) -> np.ndarray:
        return np.asarray(arr)

    def empty(self, n: int):
        return self.xp.empty(n, dtype=FLOAT_DTYPE)

    @dispatch
    def prepare_graph(self, graph: ContentGraph) -> DeviceGraph:
        """Copy the graph arrays the kernels need onto the backend."""
        out_count = graph.out_count.astype(FLOAT_DTYPE)
        inv_out = np.zeros(graph.num_nodes, dtype=FLOAT_DTYPE)
        np.divide(1.0, out_count, out=inv_out, where=out_count > 0)

        return DeviceGraph(
            num_nodes=graph.num_nodes,
            in_count=self.asarray(graph.in_count),
            in_links=self.asarray(graph.in_links),
            in_targets=self.asarray(graph.in_targets()),
            inv_out=self.asarray(inv_out),
            dangling=self.asarray(graph.out_count == 0),
        )

    @dispatch
    def prepare_ownership(self, ownership: OwnershipMapping) -> DeviceOwnership:
        return DeviceOwnership(
            num_stakeholders=ownership.num_stakeholders,
            owners=self.asarray(ownership.owners()),
            owned_cids=self.asarray(ownership.owned_cids),
            owners_per_cid=self.asarray(
                np.bincount(ownership.owned_cids, minlength=ownership.num_cids)
            ),
        )

    @dispatch
    def rank_sweep(self, dg: DeviceGraph, rank, out, damping_factor: float) -> None:
        """
        One power-iteration sweep: read ``rank``, write every entry of ``out``.

        Rank held by dangling nodes is spread uniformly over all nodes so the
        total is conserved.
        """
        n = dg.num_nodes
        contrib = rank * dg.inv_out
        dangling_mass = float(rank[dg.dangling].sum())
        base = (1.0 - damping_factor) / n + damping_factor * dangling_mass / n
        self._sweep(dg, contrib, out, base, damping_factor)

    def _sweep(self, dg: DeviceGraph, contrib, out, base: float, damping_factor: float) -> None:
        sums = self.xp.bincount(
            dg.in_targets, weights=contrib[dg.in_links], minlength=dg.num_nodes
        )
        out[:] = base + damping_factor * sums

    @dispatch
    def max_delta(self, a, b) -> float:
        if a.size == 0:
            return 0.0
        return float(self.xp.abs(a - b).max())

    @dispatch
    def entropy(self, dg: DeviceGraph, rank):
        xp = self.xp
        contrib = rank[dg.in_links] * dg.inv_out[dg.in_links]
        totals = xp.bincount(dg.in_targets, weights=contrib, minlength=dg.num_nodes)

        denom = totals[dg.in_targets]
        p = xp.where(denom > 0, contrib / xp.where(denom > 0, denom, 1.0), 0.0)
        terms = xp.where(p > 0, -p * xp.log(xp.where(p > 0, p, 1.0)), 0.0)

        entropy = xp.bincount(dg.in_targets, weights=terms, minlength=dg.num_nodes)
        entropy[dg.in_count < 2] = 0.0
        return entropy

    @dispatch
    def karma(self, do: DeviceOwnership, rank, split: str = 'full', scale=None):
        credit = rank[do.owned_cids]
        if split == 'even':
            credit = credit / do.owners_per_cid[do.owned_cids]
        karma = self.xp.bincount(do.owners, weights=credit, minlength=do.num_stakeholders)
        if scale is not None:
            karma = karma * scale
        return karma

    @dispatch
    def luminosity(self, rank, entropy):
        return rank * (1.0 + entropy)


class NumpyBackend(ComputeBackend):
    """
    Host backend.

    With ``workers > 1`` each rank sweep is split into contiguous node ranges
    evaluated on a bounded thread pool. Workers share the old rank vector
    read-only and write disjoint slices of the new one.
    """
    name = 'numpy'

    def __init__(self, workers: int = 1):
        super().__init__(np)
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.workers = workers
        self._executor: Optional[ThreadPoolExecutor] = None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def describe(self) -> str:
        return f"numpy ({self.workers} worker{'s' if self.workers != 1 else ''})"

    def prepare_graph(self, graph: ContentGraph) -> DeviceGraph:
        dg = super().prepare_graph(graph)
        n = graph.num_nodes
        if self.workers > 1 and n >= self.workers:
            bounds = np.linspace(0, n, self.workers + 1).astype(int)
            edge_bounds = np.append(graph.in_start, graph.num_edges)
            dg.chunks = [
                (int(lo), int(hi), int(edge_bounds[lo]), int(edge_bounds[hi]))
                for lo, hi in zip(bounds[:-1], bounds[1:])
                if hi > lo
            ]
        return dg

    def _sweep(self, dg: DeviceGraph, contrib, out, base: float, damping_factor: float) -> None:
        if not dg.chunks:
            return super()._sweep(dg, contrib, out, base, damping_factor)

        def work(lo, hi, e0, e1):
            sums = np.bincount(
                dg.in_targets[e0:e1] - lo,
                weights=contrib[dg.in_links[e0:e1]],
                minlength=hi - lo
            )
            out[lo:hi] = base + damping_factor * sums

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.workers)
        futures = [self._executor.submit(work, *chunk) for chunk in dg.chunks]
        # barrier: every slice written before the caller compares buffers
        for future in futures:
            future.result()


class CupyBackend(ComputeBackend):
    """CUDA backend using CuPy on the current device."""
    name = 'cupy'

    def __init__(self):
        import cupy as cp
        super().__init__(cp)
        self.dispatch_errors = (
            MemoryError,
            cp.cuda.memory.OutOfMemoryError,
            cp.cuda.runtime.CUDARuntimeError,
            cp.cuda.driver.CUDADriverError,
        )

    def describe(self) -> str:
        device = self.xp.cuda.Device()
        props = self.xp.cuda.runtime.getDeviceProperties(device.id)
        name = props['name']
        if isinstance(name, bytes):
            name = name.decode()
        return f"cupy ({name})"

    def asnumpy(self, arr: Any) -> np.ndarray:
        return self.xp.asnumpy(arr)

    def close(self) -> None:
        """Return blocks cached by the device memory pool."""
        self.xp.get_default_memory_pool().free_all_blocks()


def get_backend(name: Optional[str] = None, workers: Optional[int] = None) -> ComputeBackend:
    """
    Create a compute backend by name.

    Args:
        name: 'numpy', 'cupy' or 'auto' (default from CBDRANK_BACKEND).
            'auto' picks cupy when a CUDA device is available.
        workers: Worker threads for the numpy backend (default from CBDRANK_WORKERS)

    Returns:
        ComputeBackend instance
    """
    name = (name or config.BACKEND).lower()
    workers = config.WORKERS if workers is None else workers

    if name == 'auto':
        name = 'cupy' if check_gpu_available() else 'numpy'

    if name == 'numpy':
        return NumpyBackend(workers=workers)
    if name == 'cupy':
        if not check_gpu_available():
            raise BackendDispatchFailure("cupy backend requested but no CUDA device is available", backend='cupy')
        return CupyBackend()
    raise ValueError(f"Unknown backend: {name}. Supported: 'numpy', 'cupy', 'auto'")
