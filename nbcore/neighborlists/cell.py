"""Voxel hash (cell list) neighbor list implementation."""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .base import NeighborList

if TYPE_CHECKING:
    from ..system import Box

logger = logging.getLogger(__name__)

_NEIGHBOR_OFFSETS = np.array(list(itertools.product((-1, 0, 1), repeat=3)), dtype=np.int64)


def pair_codes(pairs: NDArray[np.integer], n_particles: int) -> NDArray[np.int64]:
    """Encode unordered pairs as integers ``min * n + max``."""
    pairs = np.asarray(pairs, dtype=np.int64).reshape(-1, 2)
    lo = np.minimum(pairs[:, 0], pairs[:, 1])
    hi = np.maximum(pairs[:, 0], pairs[:, 1])
    return lo * n_particles + hi


class CellList(NeighborList):
    """
    Voxel hash neighbor list.

    Particles are hashed into voxels at least (cutoff + skin) wide; only
    particles in the same or adjacent voxels are distance-tested, which
    gives near-linear cost for roughly uniform densities.

    Periodic systems are hashed in fractional coordinates of the box (the
    voxel grid wraps around), so reduced triclinic boxes are supported.
    Non-periodic systems use an unbounded hash keyed by integer voxel
    coordinates.

    The list stays valid until the box changes or some particle has moved
    more than skin/2 since the last build.

    Attributes:
        _cutoff: Interaction cutoff distance.
        skin: Additional buffer distance.
        _n_cells: Number of voxels along each box vector (periodic only).
        _pairs: Cached neighbor pairs.
        _positions_at_build: Positions when the list was last built.
        _box: Box when the list was last built.
    """

    def __init__(self, cutoff: float, skin: float = 0.1) -> None:
        """
        Initialize cell list.

        Args:
            cutoff: Interaction cutoff distance.
            skin: Buffer distance for neighbor list validity.
        """
        if cutoff <= 0:
            raise ValueError(f"cutoff must be positive, got {cutoff}")
        if skin < 0:
            raise ValueError(f"skin must be non-negative, got {skin}")
        self._cutoff = cutoff
        self.skin = skin
        self._list_cutoff = cutoff + skin

        self._n_cells: NDArray[np.integer] = np.ones(3, dtype=np.int64)
        self._pairs: NDArray[np.integer] = np.empty((0, 2), dtype=np.int32)
        self._positions_at_build: NDArray[np.floating] | None = None
        self._box: Box | None = None
        self._periodic = False
        self._exclusions: NDArray[np.integer] | None = None
        self.n_builds = 0

    @property
    def cutoff(self) -> float:
        """Return the interaction cutoff distance."""
        return self._cutoff

    @property
    def list_cutoff(self) -> float:
        """Return the neighbor list cutoff (cutoff + skin)."""
        return self._list_cutoff

    @property
    def n_pairs(self) -> int:
        """Return the number of neighbor pairs."""
        return len(self._pairs)

    @property
    def n_cells(self) -> tuple[int, int, int]:
        """Return number of voxels along each box vector."""
        return tuple(int(n) for n in self._n_cells)

    def _voxel_coordinates(
        self, positions: NDArray[np.floating], box: Box | None
    ) -> NDArray[np.int64]:
        """Assign each particle to an integer voxel."""
        if box is None:
            self._n_cells = np.ones(3, dtype=np.int64)
            return np.floor(positions / self._list_cutoff).astype(np.int64)

        self._n_cells = np.maximum(
            np.floor(box.perpendicular_widths / self._list_cutoff).astype(np.int64), 1
        )
        frac = box.fractional(positions)
        frac = frac - np.floor(frac)
        voxels = np.floor(frac * self._n_cells).astype(np.int64)
        # Guard against frac == 1.0 after rounding
        return np.minimum(voxels, self._n_cells - 1)

    def _neighbor_voxels(self, voxel: tuple[int, int, int]) -> set[tuple[int, int, int]]:
        """Return the distinct voxels adjacent to (and including) a voxel."""
        shifted = np.asarray(voxel, dtype=np.int64) + _NEIGHBOR_OFFSETS
        if self._periodic:
            shifted = shifted % self._n_cells
        return {tuple(int(c) for c in row) for row in shifted}

    def build(
        self,
        positions: ArrayLike,
        box: Box | None = None,
        exclusions: NDArray[np.integer] | None = None,
    ) -> None:
        """
        Build the neighbor list.

        Args:
            positions: Particle positions, shape (N, 3).
            box: Periodic box, or None for a non-periodic system.
            exclusions: Excluded pairs, shape (M, 2).
        """
        positions = np.asarray(positions, dtype=np.float64)
        n_particles = len(positions)

        self._positions_at_build = positions.copy()
        self._box = box
        self._periodic = box is not None
        self._exclusions = (
            None if exclusions is None else np.asarray(exclusions, dtype=np.int64).reshape(-1, 2)
        )

        voxels = self._voxel_coordinates(positions, box)
        cells: dict[tuple[int, int, int], list[int]] = {}
        for index, voxel in enumerate(map(tuple, voxels.tolist())):
            cells.setdefault(voxel, []).append(index)
        members = {key: np.array(value, dtype=np.int64) for key, value in cells.items()}

        cutoff_sq = self._list_cutoff**2
        chunks = []
        for key, atoms_a in members.items():
            for other in self._neighbor_voxels(key):
                if other < key or other not in members:
                    continue
                atoms_b = members[other]
                if box is None:
                    dr = positions[atoms_b][np.newaxis, :, :] - positions[atoms_a][:, np.newaxis, :]
                else:
                    dr = box.minimum_image(
                        positions[atoms_a][:, np.newaxis, :], positions[atoms_b][np.newaxis, :, :]
                    )
                r_sq = np.einsum("ijk,ijk->ij", dr, dr)
                within = r_sq < cutoff_sq
                if other == key:
                    within &= atoms_a[:, np.newaxis] < atoms_b[np.newaxis, :]
                ia, ib = np.nonzero(within)
                if len(ia):
                    chunks.append(np.stack([atoms_a[ia], atoms_b[ib]], axis=1))

        if chunks:
            pairs = np.concatenate(chunks)
            pairs = np.sort(pairs, axis=1)
            if self._exclusions is not None and len(self._exclusions):
                keep = ~np.isin(
                    pair_codes(pairs, n_particles), pair_codes(self._exclusions, n_particles)
                )
                pairs = pairs[keep]
            self._pairs = np.unique(pairs, axis=0).astype(np.int32).reshape(-1, 2)
        else:
            self._pairs = np.empty((0, 2), dtype=np.int32)

        self.n_builds += 1
        logger.debug(
            "Built neighbor list: %d pairs, %d occupied voxels, grid %s",
            len(self._pairs),
            len(members),
            self.n_cells if self._periodic else "unbounded",
        )

    def needs_rebuild(self, positions: ArrayLike, box: Box | None = None) -> bool:
        """
        Check whether the list must be rebuilt.

        The list is stale if it was never built, the box changed, the
        periodicity changed, or any particle moved more than skin/2 since
        the last build (two particles could each close half the skin).
        """
        if self._positions_at_build is None:
            return True
        if (box is None) != (self._box is None):
            return True
        if box is not None and not box.same_as(self._box):
            return True

        positions = np.asarray(positions, dtype=np.float64)
        if positions.shape != self._positions_at_build.shape:
            return True
        if len(positions) == 0:
            return False
        dr = positions - self._positions_at_build
        max_displacement = np.max(np.linalg.norm(dr, axis=1))
        return bool(max_displacement > self.skin / 2)

    def get_pairs(self) -> NDArray[np.integer]:
        """Get all neighbor pairs."""
        if self._positions_at_build is None:
            raise RuntimeError("Neighbor list has not been built yet")
        return self._pairs
