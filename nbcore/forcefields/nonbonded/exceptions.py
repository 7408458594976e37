"""1-4 exception interactions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .direct import COULOMB_CONSTANT, accumulate_pair_forces, drop_coincident, pair_displacements

if TYPE_CHECKING:
    from ...system import Box


class ExceptionEvaluator:
    """
    Evaluates 1-4 exceptions with their own parameters.

    Each pair interacts through plain Coulomb plus Lennard-Jones,
    V = k qq / r + 4 eps [(sigma/r)^12 - (sigma/r)^6], with no cutoff,
    no switching and no reaction field.

    Attributes:
        pairs: Particle pairs of the 1-4 exceptions, shape (M, 2).
        use_periodic: Whether displacements use the minimum image.
    """

    def __init__(
        self,
        pairs: NDArray[np.integer],
        use_periodic: bool = False,
        coulomb_constant: float = COULOMB_CONSTANT,
    ) -> None:
        """
        Initialize the evaluator.

        Args:
            pairs: Particle pairs of the 1-4 exceptions, shape (M, 2).
            use_periodic: Apply the minimum image to exception displacements.
            coulomb_constant: Coulomb constant in the energy units used.
        """
        self.pairs = np.asarray(pairs, dtype=np.int64).reshape(-1, 2)
        self.use_periodic = use_periodic
        self.coulomb_constant = coulomb_constant

    @property
    def n_exceptions(self) -> int:
        """Return the number of 1-4 exceptions."""
        return len(self.pairs)

    def compute(
        self,
        positions: NDArray[np.floating],
        params: NDArray[np.floating],
        box: Box | None = None,
    ) -> tuple[NDArray[np.floating], float]:
        """
        Compute 1-4 forces and energy.

        Args:
            positions: Particle positions, shape (N, 3).
            params: Per-exception (sigma, 4 eps, charge product), shape (M, 3).
            box: Periodic box; only used if ``use_periodic`` is set.

        Returns:
            Tuple of (forces array, energy).
        """
        forces = np.zeros((len(positions), 3), dtype=np.float64)
        if self.n_exceptions == 0:
            return forces, 0.0

        i_indices = self.pairs[:, 0]
        j_indices = self.pairs[:, 1]
        dr, r = pair_displacements(
            positions, i_indices, j_indices, box if self.use_periodic else None
        )
        mask = drop_coincident(r, "the 1-4 exceptions")
        if not np.all(mask):
            i_indices, j_indices, dr, r = i_indices[mask], j_indices[mask], dr[mask], r[mask]
            params = params[mask]

        sigma = params[:, 0]
        eps4 = params[:, 1]
        qq = params[:, 2]

        sig_over_r_6 = (sigma / r) ** 6
        sig_over_r_12 = sig_over_r_6**2
        coulomb = self.coulomb_constant * qq / r
        energy = coulomb + eps4 * (sig_over_r_12 - sig_over_r_6)
        dE_dr = -(coulomb + eps4 * (12.0 * sig_over_r_12 - 6.0 * sig_over_r_6)) / r

        accumulate_pair_forces(forces, i_indices, j_indices, dr, r, dE_dr)
        return forces, float(np.sum(energy))
