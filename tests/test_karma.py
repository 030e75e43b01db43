"""Tests for the karma aggregator."""

import pytest

from cbdrank.errors import MalformedGraph
from cbdrank.graph import OwnershipMapping
from cbdrank.karma import compute_karma

RANK = [0.5, 0.3, 0.2]
STAKES = [1.0, 3.0, 0.0]


class TestComputeKarma:
    """Test karma aggregation."""

    def test_full_credit_per_owner(self, ownership, backend) -> None:
        karma = compute_karma(ownership, STAKES, RANK, backend=backend)

        assert karma == pytest.approx([0.8, 0.3, 0.0])

    def test_even_split_between_owners(self, ownership, backend) -> None:
        karma = compute_karma(ownership, STAKES, RANK, split='even', backend=backend)

        assert karma == pytest.approx([0.65, 0.15, 0.0])
        # unowned content (node 2) is credited to nobody
        assert karma.sum() == pytest.approx(0.8)

    def test_scaled_by_stake_share(self, ownership, backend) -> None:
        karma = compute_karma(ownership, STAKES, RANK, scale_by_stake=True, backend=backend)

        assert karma == pytest.approx([0.8 * 0.25, 0.3 * 0.75, 0.0])

    def test_zero_total_stake_scales_to_zero(self, ownership, backend) -> None:
        karma = compute_karma(ownership, [0, 0, 0], RANK, scale_by_stake=True, backend=backend)

        assert karma.tolist() == [0.0, 0.0, 0.0]

    def test_stakeholder_without_content_gets_zero(self, backend) -> None:
        mapping = OwnershipMapping.from_pairs([], [], num_stakeholders=2, num_cids=3)

        karma = compute_karma(mapping, [5, 7], RANK, backend=backend)

        assert karma.tolist() == [0.0, 0.0]

    def test_output_sized_by_stakeholders(self, backend) -> None:
        mapping = OwnershipMapping.from_pairs([4, 0], [2, 0], num_stakeholders=5, num_cids=3)

        karma = compute_karma(mapping, [1] * 5, RANK, backend=backend)

        assert len(karma) == 5
        assert karma.tolist() == pytest.approx([0.5, 0.0, 0.0, 0.0, 0.2])

    @pytest.mark.parametrize("split", ["full", "even"])
    def test_repeated_ownership_credited_once(self, split, backend) -> None:
        mapping = OwnershipMapping.from_pairs([0, 0, 1], [0, 0, 0], num_stakeholders=2, num_cids=3)

        karma = compute_karma(mapping, [1, 1], RANK, split=split, backend=backend)

        expected = [0.5, 0.5] if split == "full" else [0.25, 0.25]
        assert karma.tolist() == pytest.approx(expected)

    def test_no_stakeholders(self, backend) -> None:
        mapping = OwnershipMapping.from_pairs([], [], num_stakeholders=0, num_cids=3)

        assert len(compute_karma(mapping, [], RANK, backend=backend)) == 0


class TestKarmaErrors:
    """Test karma input validation."""

    def test_stake_length_mismatch(self, ownership, backend) -> None:
        with pytest.raises(MalformedGraph, match="Stake"):
            compute_karma(ownership, [1.0, 1.0], RANK, backend=backend)

    def test_negative_stake(self, ownership, backend) -> None:
        with pytest.raises(MalformedGraph):
            compute_karma(ownership, [1.0, -1.0, 0.0], RANK, backend=backend)

    def test_rank_length_mismatch(self, ownership, backend) -> None:
        with pytest.raises(MalformedGraph, match="Rank"):
            compute_karma(ownership, STAKES, [0.5, 0.5], backend=backend)

    def test_unknown_split(self, ownership, backend) -> None:
        with pytest.raises(ValueError, match="split"):
            compute_karma(ownership, STAKES, RANK, split='proportional', backend=backend)
