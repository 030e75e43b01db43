"""Shared test fixtures."""

import numpy as np
import pytest

from cbdrank.backend import NumpyBackend
from cbdrank.graph import ContentGraph, OwnershipMapping


@pytest.fixture
def backend():
    with NumpyBackend(workers=1) as b:
        yield b


@pytest.fixture
def cycle_graph() -> ContentGraph:
    """0 -> 1 -> 2 -> 0"""
    return ContentGraph.from_edges([0, 1, 2], [1, 2, 0], num_nodes=3)


@pytest.fixture
def star_graph() -> ContentGraph:
    """Leaves 1..4 link to hub 0; the hub links nowhere (dangling)."""
    return ContentGraph.from_edges([1, 2, 3, 4], [0, 0, 0, 0], num_nodes=5)


@pytest.fixture
def random_graph() -> ContentGraph:
    rng = np.random.default_rng(42)
    n = 60
    sources = rng.integers(0, n, size=240)
    targets = rng.integers(0, n, size=240)
    # leave a few nodes without outgoing links
    keep = sources >= 5
    return ContentGraph.from_edges(sources[keep], targets[keep], num_nodes=n)


@pytest.fixture
def ownership() -> OwnershipMapping:
    """Stakeholder 0 owns content 0 and 1, stakeholder 1 owns 1, stakeholder 2 owns nothing."""
    return OwnershipMapping.from_pairs([0, 0, 1], [0, 1, 1], num_stakeholders=3, num_cids=3)
