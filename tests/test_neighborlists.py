"""Tests for neighbor list implementations."""

import numpy as np
import pytest

from nbcore.neighborlists.cell import CellList, pair_codes
from nbcore.system.box import Box


def brute_force_pairs(positions, cutoff, box=None):
    """All pairs i < j closer than cutoff."""
    n = len(positions)
    i, j = np.triu_indices(n, k=1)
    if box is None:
        r = np.linalg.norm(positions[j] - positions[i], axis=1)
    else:
        r = np.linalg.norm(box.minimum_image(positions[i], positions[j]), axis=1)
    within = r < cutoff
    return set(zip(i[within].tolist(), j[within].tolist()))


def as_set(pairs):
    return set(map(tuple, pairs.tolist()))


class TestCellList:
    """Test voxel hash neighbor list."""

    @pytest.fixture
    def simple_positions(self):
        """Three atoms: 0 and 1 are close, 2 is far."""
        return np.array([[0.0, 0.0, 0.0], [0.5, 0.0, 0.0], [2.5, 0.0, 0.0]])

    def test_build_finds_close_pairs(self, simple_positions):
        """Test that build finds pairs within cutoff + skin."""
        nlist = CellList(cutoff=1.0, skin=0.3)
        nlist.build(simple_positions, Box.cubic(10.0))

        pairs = nlist.get_pairs()
        assert len(pairs) == 1
        assert list(pairs[0]) == [0, 1]
        assert nlist.n_pairs == 1

    def test_get_pairs_before_build(self):
        """Test that using an unbuilt list raises."""
        with pytest.raises(RuntimeError, match="not been built"):
            CellList(cutoff=1.0).get_pairs()

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            CellList(cutoff=0.0)
        with pytest.raises(ValueError):
            CellList(cutoff=1.0, skin=-0.1)

    @pytest.mark.parametrize("length", [1.6, 3.0, 5.0])
    def test_matches_brute_force_periodic(self, length):
        """Test periodic pairs against an all-pairs search for several voxel grids."""
        rng = np.random.default_rng(42)
        box = Box.cubic(length)
        positions = rng.uniform(0.0, length, size=(80, 3))
        nlist = CellList(cutoff=0.7, skin=0.1)
        nlist.build(positions, box)

        assert as_set(nlist.get_pairs()) == brute_force_pairs(positions, 0.8, box)

    def test_matches_brute_force_triclinic(self):
        """Test pairs in a reduced triclinic box."""
        rng = np.random.default_rng(7)
        box = Box.triclinic([[3.0, 0.0, 0.0], [1.0, 3.0, 0.0], [-0.8, 1.2, 3.0]])
        frac = rng.uniform(0.0, 1.0, size=(90, 3))
        positions = frac @ box.vectors
        nlist = CellList(cutoff=0.6, skin=0.1)
        nlist.build(positions, box)

        assert as_set(nlist.get_pairs()) == brute_force_pairs(positions, 0.7, box)

    def test_matches_brute_force_non_periodic(self):
        """Test the unbounded hash for non-periodic systems."""
        rng = np.random.default_rng(5)
        positions = rng.uniform(-2.0, 2.0, size=(70, 3))
        nlist = CellList(cutoff=0.8, skin=0.2)
        nlist.build(positions)

        assert as_set(nlist.get_pairs()) == brute_force_pairs(positions, 1.0)

    def test_unwrapped_positions(self):
        """Test that positions outside the primary cell are handled."""
        box = Box.cubic(3.0)
        positions = np.array([[0.1, 0.1, 0.1], [2.9 - 6.0, 0.1, 0.1], [1.5, 1.5, 1.5]])
        nlist = CellList(cutoff=0.5, skin=0.1)
        nlist.build(positions, box)

        assert as_set(nlist.get_pairs()) == {(0, 1)}

    def test_exclusions_removed(self):
        """Test that excluded pairs never appear."""
        rng = np.random.default_rng(1)
        box = Box.cubic(2.0)
        positions = rng.uniform(0.0, 2.0, size=(40, 3))
        full = CellList(cutoff=0.9, skin=0.1)
        full.build(positions, box)
        all_pairs = as_set(full.get_pairs())

        excluded = sorted(all_pairs)[:5]
        exclusions = np.array([[j, i] for i, j in excluded])  # reversed order
        nlist = CellList(cutoff=0.9, skin=0.1)
        nlist.build(positions, box, exclusions)

        assert as_set(nlist.get_pairs()) == all_pairs - set(excluded)

    def test_pairs_sorted_and_unique(self):
        """Test that pairs have i < j and appear once."""
        rng = np.random.default_rng(9)
        box = Box.cubic(1.7)
        positions = rng.uniform(0.0, 1.7, size=(50, 3))
        nlist = CellList(cutoff=0.75, skin=0.05)
        nlist.build(positions, box)

        pairs = nlist.get_pairs()
        assert np.all(pairs[:, 0] < pairs[:, 1])
        assert len(np.unique(pair_codes(pairs, 50))) == len(pairs)


class TestRebuildPolicy:
    """Test neighbor list validity tracking."""

    @pytest.fixture
    def built_list(self):
        rng = np.random.default_rng(0)
        positions = rng.uniform(0.0, 3.0, size=(30, 3))
        nlist = CellList(cutoff=1.0, skin=0.1)
        nlist.build(positions, Box.cubic(3.0))
        return nlist, positions

    def test_needs_rebuild_before_build(self):
        assert CellList(cutoff=1.0).needs_rebuild(np.zeros((2, 3)))

    def test_small_displacement_keeps_list(self, built_list):
        """Test that moving less than skin/2 keeps the list."""
        nlist, positions = built_list
        moved = positions.copy()
        moved[3, 0] += 0.04
        assert not nlist.needs_rebuild(moved, Box.cubic(3.0))

    def test_large_displacement_rebuilds(self, built_list):
        """Test that moving more than skin/2 triggers a rebuild."""
        nlist, positions = built_list
        moved = positions.copy()
        moved[3, 0] += 0.06
        assert nlist.needs_rebuild(moved, Box.cubic(3.0))

    def test_box_change_rebuilds(self, built_list):
        nlist, positions = built_list
        assert nlist.needs_rebuild(positions, Box.cubic(3.1))
        assert nlist.needs_rebuild(positions, None)
