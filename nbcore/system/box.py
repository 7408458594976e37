"""Simulation box representation."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray


@dataclass(frozen=True, eq=False)
class Box:
    """
    Periodic simulation cell.

    The cell is stored as a 3x3 matrix whose rows are the box vectors
    [a, b, c]. Orthorhombic boxes are diagonal. Triclinic boxes used by the
    periodic nonbonded methods must be in reduced form: a lies along x,
    b lies in the xy plane, and each vector's off-diagonal components are
    at most half the corresponding diagonal element of the earlier vectors.

    Attributes:
        vectors: 3x3 array where rows are box vectors [a, b, c].
    """

    vectors: NDArray[np.floating]

    def __post_init__(self) -> None:
        """Validate and convert vectors to proper shape."""
        vectors = np.asarray(self.vectors, dtype=np.float64)
        if vectors.shape == (3,):
            vectors = np.diag(vectors)
        if vectors.shape != (3, 3):
            raise ValueError(f"Box vectors must be (3,) or (3, 3), got {vectors.shape}")
        vectors = vectors.copy()
        vectors.flags.writeable = False
        object.__setattr__(self, "vectors", vectors)

    @classmethod
    def orthorhombic(cls, lx: float, ly: float, lz: float) -> Box:
        """Create an orthorhombic box with given side lengths."""
        return cls(np.array([lx, ly, lz]))

    @classmethod
    def cubic(cls, length: float) -> Box:
        """Create a cubic box with given side length."""
        return cls.orthorhombic(length, length, length)

    @classmethod
    def triclinic(cls, vectors: ArrayLike) -> Box:
        """Create a triclinic box from 3x3 matrix of box vectors."""
        return cls(np.asarray(vectors))

    @property
    def volume(self) -> float:
        """Return box volume."""
        return float(np.abs(np.linalg.det(self.vectors)))

    @property
    def is_orthorhombic(self) -> bool:
        """Check if box is orthorhombic (diagonal matrix)."""
        off_diag = self.vectors.copy()
        np.fill_diagonal(off_diag, 0)
        return np.allclose(off_diag, 0)

    @property
    def is_reduced(self) -> bool:
        """Check whether the box is in the reduced triclinic form."""
        a, b, c = self.vectors
        if a[1] != 0.0 or a[2] != 0.0 or b[2] != 0.0:
            return False
        if min(a[0], b[1], c[2]) <= 0.0:
            return False
        eps = 1e-12
        return (
            abs(b[0]) <= 0.5 * a[0] + eps
            and abs(c[0]) <= 0.5 * a[0] + eps
            and abs(c[1]) <= 0.5 * b[1] + eps
        )

    @property
    def reciprocal_vectors(self) -> NDArray[np.floating]:
        """
        Return the reciprocal basis without the 2*pi factor.

        Column k of the returned matrix is the reciprocal vector dual to box
        vector k, so ``positions @ box.reciprocal_vectors`` gives fractional
        coordinates.
        """
        return np.linalg.inv(self.vectors)

    @property
    def perpendicular_widths(self) -> NDArray[np.floating]:
        """Return the distance between opposite faces along each box vector."""
        return 1.0 / np.linalg.norm(self.reciprocal_vectors, axis=0)

    def same_as(self, other: Box | None) -> bool:
        """Check whether another box has exactly the same vectors."""
        return other is not None and np.array_equal(self.vectors, other.vectors)

    def fractional(self, positions: NDArray[np.floating]) -> NDArray[np.floating]:
        """Return fractional coordinates of positions (not wrapped)."""
        return np.asarray(positions, dtype=np.float64) @ self.reciprocal_vectors

    def minimum_image(
        self, r1: NDArray[np.floating], r2: NDArray[np.floating]
    ) -> NDArray[np.floating]:
        """
        Compute minimum image displacement vector r2 - r1.

        Broadcasts over leading dimensions. Triclinic boxes are handled by
        subtracting whole c, b and a vectors in turn, which yields the
        minimum image for reduced boxes and displacements shorter than half
        the smallest box width.

        Args:
            r1: First position(s), shape (..., 3).
            r2: Second position(s), shape (..., 3).

        Returns:
            Displacement vector(s) under minimum image convention.
        """
        dr = np.asarray(r2, dtype=np.float64) - np.asarray(r1, dtype=np.float64)
        if self.is_orthorhombic:
            lengths = np.diag(self.vectors)
            return dr - lengths * np.round(dr / lengths)
        a, b, c = self.vectors
        dr = dr - np.round(dr[..., 2] / c[2])[..., np.newaxis] * c
        dr = dr - np.round(dr[..., 1] / b[1])[..., np.newaxis] * b
        dr = dr - np.round(dr[..., 0] / a[0])[..., np.newaxis] * a
        return dr
