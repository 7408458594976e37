"""Long-range dispersion correction for truncated Lennard-Jones."""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.integrate import quad

logger = logging.getLogger(__name__)


def _switched_tail(
    sigma: float, epsilon: float, switching_distance: float, cutoff: float
) -> float:
    """
    Energy integral removed by the switching function for one class pair.

    Returns eps * integral_{rs}^{rc} r^2 (1 - S(r)) [(sigma/r)^12 - (sigma/r)^6] dr.
    """
    width = cutoff - switching_distance

    def integrand(r: float) -> float:
        t = (r - switching_distance) / width
        switch = 1.0 + t**3 * (-10.0 + t * (15.0 - 6.0 * t))
        sr6 = (sigma / r) ** 6
        return r * r * (1.0 - switch) * (sr6 * sr6 - sr6)

    value, _ = quad(integrand, switching_distance, cutoff)
    return epsilon * value


class DispersionCorrection:
    """
    Isotropic tail correction for Lennard-Jones beyond the cutoff.

    Assuming a uniform density past the cutoff, the missing energy is

        V_tail = coef / V

    with, for N particles,

        coef = 8 pi N^2 [<eps sigma^12>/(9 rc^9) - <eps sigma^6>/(3 rc^3) + <switch>]

    Averages run over pairs of (sigma, epsilon) classes using
    Lorentz-Berthelot combination; a class with n members contributes
    n(n+1)/2 pairs with itself, two distinct classes n_a n_b pairs, and the
    total is normalised by N(N+1)/2. <switch> adds back the energy removed
    inside the cutoff by a switching function. The correction adds no
    forces.

    Attributes:
        cutoff: Lennard-Jones cutoff distance.
        switching_distance: Start of the switching region, or None.
        coefficient: The precomputed coef.
    """

    def __init__(
        self,
        sigma: ArrayLike,
        epsilon: ArrayLike,
        cutoff: float = 1.0,
        switching_distance: float | None = None,
    ) -> None:
        """
        Initialize dispersion correction.

        Args:
            sigma: Baseline sigma per particle, shape (N,).
            epsilon: Baseline epsilon per particle, shape (N,).
            cutoff: Lennard-Jones cutoff distance.
            switching_distance: Start of the switching region, or None.
        """
        self.cutoff = cutoff
        self.switching_distance = switching_distance
        self.coefficient = self.compute_coefficient(sigma, epsilon)

    def _get_class_counts(
        self, sigma: NDArray[np.floating], epsilon: NDArray[np.floating]
    ) -> tuple[NDArray[np.floating], NDArray[np.floating], NDArray[np.integer]]:
        """Group particles into distinct (sigma, epsilon) classes."""
        classes, counts = np.unique(np.column_stack([sigma, epsilon]), axis=0, return_counts=True)
        return classes[:, 0], classes[:, 1], counts

    def compute_coefficient(self, sigma: ArrayLike, epsilon: ArrayLike) -> float:
        """Compute coef from per-particle sigma and epsilon."""
        sigma = np.asarray(sigma, dtype=np.float64).ravel()
        epsilon = np.asarray(epsilon, dtype=np.float64).ravel()
        n_particles = len(sigma)
        if n_particles == 0:
            return 0.0

        class_sigma, class_epsilon, counts = self._get_class_counts(sigma, epsilon)
        n_classes = len(counts)
        rc = self.cutoff

        sum1 = 0.0
        sum2 = 0.0
        sum3 = 0.0
        # Sum over all class pairs
        for i in range(n_classes):
            for j in range(i, n_classes):
                n_i = float(counts[i])
                n_j = float(counts[j])
                n_pairs = n_i * (n_i + 1.0) / 2.0 if i == j else n_i * n_j

                # Lorentz-Berthelot combining rules
                sig_ij = 0.5 * (class_sigma[i] + class_sigma[j])
                eps_ij = np.sqrt(class_epsilon[i] * class_epsilon[j])
                sig6 = sig_ij**6

                sum1 += n_pairs * eps_ij * sig6 * sig6
                sum2 += n_pairs * eps_ij * sig6
                if self.switching_distance is not None:
                    sum3 += n_pairs * _switched_tail(sig_ij, eps_ij, self.switching_distance, rc)

        total_pairs = n_particles * (n_particles + 1) / 2.0
        sum1 /= total_pairs
        sum2 /= total_pairs
        sum3 /= total_pairs

        coefficient = 8.0 * np.pi * n_particles**2 * (
            sum1 / (9.0 * rc**9) - sum2 / (3.0 * rc**3) + sum3
        )
        logger.debug("Dispersion correction coefficient %.6g for %d particles", coefficient, n_particles)
        return float(coefficient)

    def energy(self, volume: float) -> float:
        """Return the tail energy for a box volume."""
        return self.coefficient / volume
