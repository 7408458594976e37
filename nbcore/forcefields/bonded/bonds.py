"""Quartic bond force implementation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ...errors import StructuralMismatchError
from ..base import EvaluationResult, ForceKernel

if TYPE_CHECKING:
    from ...system import Box


@dataclass
class QuarticBondForce:
    """
    Quartic bond stretching force definition.

    V(r) = k * (r - r0)^4

    Attributes:
        bonds: Per-bond (particle1, particle2, length, k).
        use_periodic: Whether bond vectors use the minimum image.
    """

    bonds: list[tuple[int, int, float, float]] = field(default_factory=list)
    use_periodic: bool = False

    @property
    def num_bonds(self) -> int:
        """Return the number of bonds."""
        return len(self.bonds)

    def add_bond(self, particle1: int, particle2: int, length: float, k: float) -> int:
        """Add a bond and return its index."""
        if particle1 == particle2:
            raise ValueError(f"Bond between particle {particle1} and itself")
        self.bonds.append((int(particle1), int(particle2), float(length), float(k)))
        return len(self.bonds) - 1

    def set_bond_parameters(
        self, index: int, particle1: int, particle2: int, length: float, k: float
    ) -> None:
        """Replace a bond."""
        if not 0 <= index < len(self.bonds):
            raise IndexError(f"Bond index {index} out of range [0, {len(self.bonds)})")
        self.bonds[index] = (int(particle1), int(particle2), float(length), float(k))

    def bond_indices(self) -> NDArray[np.integer]:
        """Return bonded particle pairs, shape (N_bonds, 2)."""
        return np.array([b[:2] for b in self.bonds], dtype=np.int32).reshape(-1, 2)


class QuarticBondKernel(ForceKernel):
    """
    Kernel evaluating a QuarticBondForce.

    Force on j from i: F = -4 k (r - r0)^3 (r_j - r_i) / r; coincident
    particles get no force.

    Attributes:
        bond_indices: Bond particle pairs, shape (N_bonds, 2).
        equilibrium_lengths: Equilibrium distances r0, shape (N_bonds,).
        force_constants: Force constants k, shape (N_bonds,).
    """

    def __init__(self) -> None:
        self.bond_indices: NDArray[np.integer] | None = None
        self.equilibrium_lengths = np.empty(0, dtype=np.float64)
        self.force_constants = np.empty(0, dtype=np.float64)
        self.use_periodic = False

    def initialize(self, force: QuarticBondForce, box: Box | None = None) -> None:
        """Copy bond indices and parameters from a force definition."""
        self.bond_indices = force.bond_indices()
        self.use_periodic = force.use_periodic
        self._copy_parameters(force)

    def update_parameters(self, force: QuarticBondForce) -> None:
        """
        Copy bond lengths and force constants.

        Raises:
            StructuralMismatchError: If the number of bonds or the particles
                of any bond changed.
        """
        if self.bond_indices is None:
            raise RuntimeError("Kernel has not been initialized yet")
        if force.num_bonds != len(self.bond_indices):
            raise StructuralMismatchError(
                f"Number of bonds changed from {len(self.bond_indices)} to {force.num_bonds}"
            )
        if not np.array_equal(force.bond_indices(), self.bond_indices):
            raise StructuralMismatchError("The particles involved in a bond changed")
        self._copy_parameters(force)

    def _copy_parameters(self, force: QuarticBondForce) -> None:
        params = np.array([b[2:] for b in force.bonds], dtype=np.float64).reshape(-1, 2)
        self.equilibrium_lengths = params[:, 0]
        self.force_constants = params[:, 1]

    def evaluate(
        self,
        positions: ArrayLike,
        box: Box | None = None,
        forces: NDArray[np.floating] | None = None,
        include_forces: bool = True,
        include_energy: bool = True,
    ) -> EvaluationResult:
        """Compute bond forces and potential energy."""
        if self.bond_indices is None:
            raise RuntimeError("Kernel has not been initialized yet")
        positions = np.asarray(positions, dtype=np.float64)
        buffer = self._force_buffer(forces, len(positions))
        if len(self.bond_indices) == 0:
            return EvaluationResult(forces=buffer, energy=0.0)

        i_indices = self.bond_indices[:, 0]
        j_indices = self.bond_indices[:, 1]

        pos_i = positions[i_indices]
        pos_j = positions[j_indices]
        if self.use_periodic and box is not None:
            dr = box.minimum_image(pos_i, pos_j)
        else:
            dr = pos_j - pos_i
        r = np.linalg.norm(dr, axis=1)

        stretch = r - self.equilibrium_lengths
        energy = float(np.sum(self.force_constants * stretch**4))

        if include_forces:
            # Force magnitude along r_j - r_i: -dV/dr = -4 k (r - r0)^3
            force_mag = -4.0 * self.force_constants * stretch**3
            # Zero-length bonds have no direction and get no force
            scale = np.divide(force_mag, r, out=np.zeros_like(r), where=r > 0.0)
            force_vectors = scale[:, np.newaxis] * dr
            np.add.at(buffer, j_indices, force_vectors)
            np.add.at(buffer, i_indices, -force_vectors)

        return EvaluationResult(forces=buffer, energy=energy if include_energy else 0.0)
