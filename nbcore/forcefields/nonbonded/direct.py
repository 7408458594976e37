"""Direct-space Coulomb and Lennard-Jones pair interactions."""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from scipy.special import erf, erfc

from ...errors import NumericalDomainWarning
from ...neighborlists.cell import pair_codes
from .definition import NonbondedMethod

if TYPE_CHECKING:
    from ...system import Box

logger = logging.getLogger(__name__)

# Coulomb constant in MD units (kJ*nm / (mol*e^2))
# This is 1/(4*pi*epsilon_0) in MD units
COULOMB_CONSTANT = 138.935458  # kJ*nm/(mol*e^2)

# Pairs closer than this are treated as coincident
MIN_DISTANCE = 1e-10

TWO_OVER_SQRT_PI = 2.0 / np.sqrt(np.pi)


def pair_displacements(
    positions: NDArray[np.floating],
    i_indices: NDArray[np.integer],
    j_indices: NDArray[np.integer],
    box: Box | None,
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """Return displacement vectors r_j - r_i and distances, minimum image if periodic."""
    pos_i = positions[i_indices]
    pos_j = positions[j_indices]
    dr = pos_j - pos_i if box is None else box.minimum_image(pos_i, pos_j)
    return dr, np.linalg.norm(dr, axis=1)


def drop_coincident(r: NDArray[np.floating], what: str) -> NDArray[np.bool_]:
    """Return a mask of usable pairs, warning if any pair is coincident."""
    usable = r >= MIN_DISTANCE
    if not np.all(usable):
        warnings.warn(
            f"{np.count_nonzero(~usable)} coincident particle pair(s) in {what}; "
            "their contribution was set to zero",
            NumericalDomainWarning,
            stacklevel=3,
        )
    return usable


def accumulate_pair_forces(
    forces: NDArray[np.floating],
    i_indices: NDArray[np.integer],
    j_indices: NDArray[np.integer],
    dr: NDArray[np.floating],
    r: NDArray[np.floating],
    dE_dr: NDArray[np.floating],
) -> None:
    """Add equal and opposite pair forces -dE/dr along the pair axis."""
    force_vectors = (-dE_dr / r)[:, np.newaxis] * dr
    np.add.at(forces, j_indices, force_vectors)
    np.add.at(forces, i_indices, -force_vectors)


def dispersion_screening(x: NDArray[np.floating]) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """
    Return the dispersion Ewald screening terms for x = beta*r.

    Returns:
        (1 - g(x), 1 - g(x) - x^6 exp(-x^2)/6), where
        g(x) = exp(-x^2) (1 + x^2 + x^4/2) is the short-range fraction of
        1/r^6. The second term is what the radial derivative needs.
    """
    x2 = x * x
    x4 = x2 * x2
    exp_x2 = np.exp(-x2)
    energy_factor = 1.0 + x2 + 0.5 * x4
    force_factor = energy_factor + x4 * x2 / 6.0
    return 1.0 - exp_x2 * energy_factor, 1.0 - exp_x2 * force_factor


class DirectSpaceEvaluator:
    """
    Pairwise electrostatics and Lennard-Jones over the candidate pairs.

    Electrostatics per method:
    - NO_CUTOFF: V = k q_i q_j / r
    - CUTOFF_*: reaction field, V = k q_i q_j (1/r + k_rf r^2 - c_rf)
    - EWALD/PME/LJPME: V = k q_i q_j erfc(alpha r) / r

    Lennard-Jones uses the pre-combined per-particle parameters:
    sigma_ij = sigma_i/2 + sigma_j/2, 4 eps_ij = (2 sqrt eps_i)(2 sqrt eps_j),
    V = 4 eps_ij [(sigma_ij/r)^12 - (sigma_ij/r)^6], optionally multiplied
    by a switching function between the switching distance and the cutoff.
    With LJPME, C6_ij (1 - g(beta r)) / r^6 is added so that the pair is
    exact inside the cutoff once the dispersion mesh is included.

    With lattice methods, every excluded pair has its implicit
    reciprocal-space interaction removed here.

    Attributes:
        method: Nonbonded method.
        cutoff: Cutoff distance, or None for NO_CUTOFF.
        switching_distance: Start of the switching region, or None.
        alpha: Electrostatic Ewald splitting parameter.
        dispersion_alpha: Dispersion Ewald splitting parameter (LJPME).
    """

    def __init__(
        self,
        method: NonbondedMethod,
        cutoff: float | None = None,
        switching_distance: float | None = None,
        reaction_field_dielectric: float = 78.3,
        alpha: float = 0.0,
        dispersion_alpha: float = 0.0,
        coulomb_constant: float = COULOMB_CONSTANT,
    ) -> None:
        """
        Initialize the direct-space evaluator.

        Args:
            method: Nonbonded method.
            cutoff: Cutoff distance. Ignored for NO_CUTOFF.
            switching_distance: Start of the Lennard-Jones switching region, or None.
            reaction_field_dielectric: Dielectric constant beyond the cutoff.
            alpha: Electrostatic Ewald splitting parameter.
            dispersion_alpha: Dispersion Ewald splitting parameter.
            coulomb_constant: Coulomb constant in the energy units used.
        """
        self.method = method
        self.cutoff = None if method is NonbondedMethod.NO_CUTOFF else cutoff
        self.switching_distance = switching_distance if self.cutoff is not None else None
        self.alpha = alpha
        self.dispersion_alpha = dispersion_alpha
        self.coulomb_constant = coulomb_constant

        if self.cutoff is not None and not method.uses_ewald:
            eps_rf = reaction_field_dielectric
            self.krf = (eps_rf - 1.0) / ((2.0 * eps_rf + 1.0) * self.cutoff**3)
            self.crf = 3.0 * eps_rf / ((2.0 * eps_rf + 1.0) * self.cutoff)
        else:
            self.krf = 0.0
            self.crf = 0.0

    def _switch(
        self, r: NDArray[np.floating]
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """Return switching function values and radial derivatives."""
        s = np.ones_like(r)
        ds = np.zeros_like(r)
        if self.switching_distance is None:
            return s, ds
        width = self.cutoff - self.switching_distance
        inside = r > self.switching_distance
        t = (r[inside] - self.switching_distance) / width
        s[inside] = 1.0 + t**3 * (-10.0 + t * (15.0 - 6.0 * t))
        ds[inside] = t**2 * (-30.0 + t * (60.0 - 30.0 * t)) / width
        return s, ds

    def _coulomb(
        self, qq: NDArray[np.floating], r: NDArray[np.floating]
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """Return Coulomb pair energies and dE/dr."""
        k = self.coulomb_constant
        if self.method.uses_ewald:
            alpha_r = self.alpha * r
            erfc_ar = erfc(alpha_r)
            energy = k * qq * erfc_ar / r
            dE_dr = -k * qq * (erfc_ar / r**2 + TWO_OVER_SQRT_PI * self.alpha * np.exp(-alpha_r**2) / r)
        elif self.cutoff is not None:
            energy = k * qq * (1.0 / r + self.krf * r**2 - self.crf)
            dE_dr = k * qq * (-1.0 / r**2 + 2.0 * self.krf * r)
        else:
            energy = k * qq / r
            dE_dr = -k * qq / r**2
        return energy, dE_dr

    def _lennard_jones(
        self,
        sigma: NDArray[np.floating],
        eps4: NDArray[np.floating],
        r: NDArray[np.floating],
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """Return switched Lennard-Jones pair energies and dE/dr."""
        sig_over_r_6 = (sigma / r) ** 6
        sig_over_r_12 = sig_over_r_6**2
        energy = eps4 * (sig_over_r_12 - sig_over_r_6)
        dE_dr = -eps4 * (12.0 * sig_over_r_12 - 6.0 * sig_over_r_6) / r
        if self.switching_distance is not None:
            s, ds = self._switch(r)
            dE_dr = dE_dr * s + energy * ds
            energy = energy * s
        return energy, dE_dr

    def all_pairs(
        self, n_particles: int, exclusions: NDArray[np.integer]
    ) -> tuple[NDArray[np.integer], NDArray[np.integer]]:
        """Return every non-excluded pair i < j."""
        i_indices, j_indices = np.triu_indices(n_particles, k=1)
        if len(exclusions):
            codes = i_indices.astype(np.int64) * n_particles + j_indices
            keep = ~np.isin(codes, pair_codes(exclusions, n_particles))
            i_indices = i_indices[keep]
            j_indices = j_indices[keep]
        return i_indices, j_indices

    def compute(
        self,
        positions: NDArray[np.floating],
        params: NDArray[np.floating],
        box: Box | None = None,
        pairs: NDArray[np.integer] | None = None,
        exclusions: NDArray[np.integer] | None = None,
    ) -> tuple[NDArray[np.floating], float]:
        """
        Compute direct-space forces and energy.

        Args:
            positions: Particle positions, shape (N, 3).
            params: Per-particle (sigma/2, 2 sqrt(eps), q), shape (N, 3).
            box: Periodic box, or None.
            pairs: Candidate pairs from a neighbor list (excluded pairs
                already removed). None means all non-excluded pairs.
            exclusions: Excluded pairs, shape (M, 2).

        Returns:
            Tuple of (forces array, energy).
        """
        n_particles = len(positions)
        forces = np.zeros((n_particles, 3), dtype=np.float64)
        energy = 0.0
        if exclusions is None:
            exclusions = np.empty((0, 2), dtype=np.int32)

        if pairs is None:
            i_indices, j_indices = self.all_pairs(n_particles, exclusions)
        else:
            i_indices = pairs[:, 0]
            j_indices = pairs[:, 1]

        if len(i_indices):
            dr, r = pair_displacements(positions, i_indices, j_indices, box)
            mask = drop_coincident(r, "the direct-space sum")
            if self.cutoff is not None:
                mask &= r < self.cutoff
            i_indices, j_indices, dr, r = i_indices[mask], j_indices[mask], dr[mask], r[mask]

        if len(i_indices):
            p_i = params[i_indices]
            p_j = params[j_indices]
            coul_energy, coul_dE = self._coulomb(p_i[:, 2] * p_j[:, 2], r)
            lj_energy, lj_dE = self._lennard_jones(p_i[:, 0] + p_j[:, 0], p_i[:, 1] * p_j[:, 1], r)
            pair_energy = coul_energy + lj_energy
            dE_dr = coul_dE + lj_dE

            if self.method is NonbondedMethod.LJPME:
                c6 = 64.0 * (p_i[:, 0] * p_j[:, 0]) ** 3 * p_i[:, 1] * p_j[:, 1]
                screen_e, screen_f = dispersion_screening(self.dispersion_alpha * r)
                inv_r6 = 1.0 / r**6
                pair_energy = pair_energy + c6 * inv_r6 * screen_e
                dE_dr = dE_dr - 6.0 * c6 * inv_r6 * screen_f / r

            energy = float(np.sum(pair_energy))
            accumulate_pair_forces(forces, i_indices, j_indices, dr, r, dE_dr)

        if self.method.uses_ewald and len(exclusions):
            excl_forces, excl_energy = self.exclusion_correction(positions, params, box, exclusions)
            forces += excl_forces
            energy += excl_energy

        return forces, energy

    def exclusion_correction(
        self,
        positions: NDArray[np.floating],
        params: NDArray[np.floating],
        box: Box | None,
        exclusions: NDArray[np.integer],
    ) -> tuple[NDArray[np.floating], float]:
        """
        Remove the reciprocal-space interaction of excluded pairs.

        The lattice sum covers every pair, so for excluded pairs the smooth
        long-range part -k q_i q_j erf(alpha r)/r (and, with LJPME,
        -C6 (1 - g(beta r))/r^6) is subtracted again.
        """
        forces = np.zeros_like(positions)
        i_indices = exclusions[:, 0]
        j_indices = exclusions[:, 1]
        dr, r = pair_displacements(positions, i_indices, j_indices, box)
        p_i = params[i_indices]
        p_j = params[j_indices]
        qq = p_i[:, 2] * p_j[:, 2]
        k = self.coulomb_constant

        alpha_r = self.alpha * r
        close = alpha_r <= 1e-6
        far = ~close
        energy = float(-k * self.alpha * TWO_OVER_SQRT_PI * np.sum(qq[close]))

        r_far = r[far]
        erf_ar = erf(alpha_r[far])
        energy -= float(k * np.sum(qq[far] * erf_ar / r_far))
        dE_dr = -k * qq[far] * (
            TWO_OVER_SQRT_PI * self.alpha * np.exp(-alpha_r[far] ** 2) / r_far - erf_ar / r_far**2
        )
        accumulate_pair_forces(forces, i_indices[far], j_indices[far], dr[far], r_far, dE_dr)

        if self.method is NonbondedMethod.LJPME:
            c6 = 64.0 * (p_i[:, 0] * p_j[:, 0]) ** 3 * p_i[:, 1] * p_j[:, 1]
            beta = self.dispersion_alpha
            beta_r = beta * r
            close = beta_r <= 1e-6
            far = ~close
            energy += float(np.sum(c6[close]) * beta**6 / 6.0)
            r_far = r[far]
            screen_e, screen_f = dispersion_screening(beta_r[far])
            inv_r6 = 1.0 / r_far**6
            energy += float(np.sum(c6[far] * inv_r6 * screen_e))
            dE_dr = -6.0 * c6[far] * inv_r6 * screen_f / r_far
            accumulate_pair_forces(forces, i_indices[far], j_indices[far], dr[far], r_far, dE_dr)

        return forces, energy
