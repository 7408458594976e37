"""Ewald summation and automatic choice of Ewald/PME parameters."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import brentq

from .direct import COULOMB_CONSTANT

if TYPE_CHECKING:
    from ...system import Box

logger = logging.getLogger(__name__)

# Smallest automatically chosen mesh dimension
MIN_GRID_SIZE = 6

# Initial guess for the reciprocal vector search
_KMAX_GUESS = 10


@dataclass(frozen=True)
class EwaldState:
    """
    Splitting parameter and reciprocal-space resolution.

    For Ewald summation (nx, ny, nz) are the reciprocal vector bounds: the
    sum covers integer vectors with |n_a| < n_a. For PME they are the mesh
    dimensions.

    Attributes:
        alpha: Ewald splitting parameter (1/nm).
        nx: Bound or mesh size along the first box vector.
        ny: Bound or mesh size along the second box vector.
        nz: Bound or mesh size along the third box vector.
    """

    alpha: float
    nx: int
    ny: int
    nz: int

    @property
    def sizes(self) -> tuple[int, int, int]:
        """Return the grid sizes or reciprocal bounds (nx, ny, nz)."""
        return (self.nx, self.ny, self.nz)

    def as_tuple(self) -> tuple[float, int, int, int]:
        """Return (alpha, nx, ny, nz)."""
        return (self.alpha, self.nx, self.ny, self.nz)


def find_legal_fft_dimension(minimum: int) -> int:
    """Return the smallest size >= minimum whose prime factors are all in {2, 3, 5, 7}."""
    size = max(int(minimum), 1)
    while True:
        remainder = size
        for factor in (2, 3, 5, 7):
            while remainder % factor == 0:
                remainder //= factor
        if remainder == 1:
            return size
        size += 1


def ewald_alpha(cutoff: float, tolerance: float) -> float:
    """Splitting parameter for which erfc(alpha*rc) is about the tolerance."""
    return math.sqrt(-math.log(2.0 * tolerance)) / cutoff


def _find_zero(error, initial_guess: int) -> int:
    """Walk from the initial guess to the first integer where the error estimate turns negative."""
    arg = initial_guess
    value = error(arg)
    if value > 0.0:
        while value > 0.0 and arg > 0:
            arg -= 1
            value = error(arg)
        return arg + 1
    while value < 0.0:
        arg += 1
        value = error(arg)
    return arg


def calc_ewald_parameters(box: Box, cutoff: float, tolerance: float) -> EwaldState:
    """
    Choose alpha and reciprocal vector bounds for Ewald summation.

    Each bound is the number of vectors at which the estimated error
    0.05 sqrt(L alpha) k exp(-(pi k / (L alpha))^2) falls to the tolerance,
    rounded up to an odd number.
    """
    alpha = ewald_alpha(cutoff, tolerance)
    bounds = []
    for width in np.diag(box.vectors):
        scale = width * alpha

        def error(k: int, scale: float = scale) -> float:
            return tolerance - 0.05 * math.sqrt(scale) * k * math.exp(-((math.pi * k / scale) ** 2))

        kmax = _find_zero(error, _KMAX_GUESS)
        if kmax % 2 == 0:
            kmax += 1
        bounds.append(kmax)
    state = EwaldState(alpha, *bounds)
    logger.info("Ewald parameters: alpha=%.6g, kmax=%s", alpha, state.sizes)
    return state


def calc_pme_parameters(box: Box, cutoff: float, tolerance: float) -> EwaldState:
    """Choose alpha and mesh dimensions for electrostatic PME."""
    alpha = ewald_alpha(cutoff, tolerance)
    sizes = [
        find_legal_fft_dimension(
            max(math.ceil(2.0 * alpha * width / (3.0 * tolerance**0.2)), MIN_GRID_SIZE)
        )
        for width in np.diag(box.vectors)
    ]
    state = EwaldState(alpha, *sizes)
    logger.info("PME parameters: alpha=%.6g, grid=%s", alpha, state.sizes)
    return state


def dispersion_alpha(cutoff: float, tolerance: float) -> float:
    """
    Splitting parameter for dispersion PME.

    Solves exp(-x^2) (1 + x^2 + x^4/2) = tolerance for x = beta*rc, so the
    short-range part of 1/r^6 left out beyond the cutoff matches the
    requested relative error.
    """

    def error(x: float) -> float:
        x2 = x * x
        return math.exp(-x2) * (1.0 + x2 + 0.5 * x2 * x2) - tolerance

    return brentq(error, 0.0, 50.0) / cutoff


def calc_dispersion_pme_parameters(box: Box, cutoff: float, tolerance: float) -> EwaldState:
    """Choose beta and mesh dimensions for dispersion PME."""
    alpha = dispersion_alpha(cutoff, tolerance)
    sizes = [
        find_legal_fft_dimension(
            max(math.ceil(alpha * width / (3.0 * tolerance**0.2)), MIN_GRID_SIZE)
        )
        for width in np.diag(box.vectors)
    ]
    state = EwaldState(alpha, *sizes)
    logger.info("Dispersion PME parameters: beta=%.6g, grid=%s", alpha, state.sizes)
    return state


def explicit_parameters(parameters: tuple[float, int, int, int] | None) -> EwaldState | None:
    """
    Convert user-supplied (alpha, nx, ny, nz) to an EwaldState.

    Returns None when no parameters were given or alpha is zero, meaning the
    automatic choice applies.
    """
    if parameters is None:
        return None
    alpha, nx, ny, nz = parameters
    if alpha == 0:
        return None
    if alpha < 0 or min(nx, ny, nz) <= 0:
        raise ValueError(f"Invalid explicit Ewald parameters {tuple(parameters)}")
    return EwaldState(float(alpha), int(nx), int(ny), int(nz))


class EwaldSum:
    """
    Reciprocal-space part of the Ewald sum by explicit lattice summation.

    V_rec = (2 pi k_e / V) sum_k exp(-k^2/(4 alpha^2)) / k^2 |S(k)|^2

    where S(k) = sum_j q_j exp(i k.r_j) and k = 2 pi (n_a a* + n_b b* + n_c c*)
    runs over all nonzero integer vectors with |n| below the bounds. The
    self energy is not included.

    Attributes:
        alpha: Ewald splitting parameter.
        kmax: Reciprocal vector bounds along each box vector.
    """

    def __init__(
        self,
        alpha: float,
        kmax: tuple[int, int, int],
        coulomb_constant: float = COULOMB_CONSTANT,
    ) -> None:
        """
        Initialize the lattice sum.

        Args:
            alpha: Ewald splitting parameter.
            kmax: Reciprocal vector bounds along each box vector.
            coulomb_constant: Coulomb constant in the energy units used.
        """
        self.alpha = alpha
        self.kmax = tuple(int(k) for k in kmax)
        self.coulomb_constant = coulomb_constant

        ranges = [np.arange(-(k - 1), k) for k in self.kmax]
        grid = np.stack(np.meshgrid(*ranges, indexing="ij"), axis=-1).reshape(-1, 3)
        self._integer_vectors = grid[np.any(grid != 0, axis=1)].astype(np.float64)

    @classmethod
    def from_state(cls, state: EwaldState, coulomb_constant: float = COULOMB_CONSTANT) -> EwaldSum:
        """Create the sum from resolved Ewald parameters."""
        return cls(state.alpha, state.sizes, coulomb_constant)

    def k_vectors(self, box: Box) -> NDArray[np.floating]:
        """Return the reciprocal lattice vectors for a box, shape (n_k, 3)."""
        return 2.0 * np.pi * self._integer_vectors @ box.reciprocal_vectors.T

    def compute(
        self,
        positions: NDArray[np.floating],
        charges: NDArray[np.floating],
        box: Box,
    ) -> tuple[NDArray[np.floating], float]:
        """
        Compute reciprocal-space forces and energy.

        Args:
            positions: Particle positions, shape (N, 3).
            charges: Particle charges, shape (N,).
            box: Periodic box.

        Returns:
            Tuple of (forces array, energy).
        """
        forces = np.zeros((len(positions), 3), dtype=np.float64)
        if len(self._integer_vectors) == 0 or len(positions) == 0:
            return forces, 0.0

        k_vectors = self.k_vectors(box)
        k_sq = np.sum(k_vectors**2, axis=1)

        # k . r for all k and all atoms: shape (n_k, n_atoms)
        k_dot_r = k_vectors @ positions.T
        cos_kr = np.cos(k_dot_r)
        sin_kr = np.sin(k_dot_r)

        # Structure factor S(k) = sum_j q_j exp(i k.r_j)
        s_real = cos_kr @ charges
        s_imag = sin_kr @ charges

        prefactor = 2.0 * np.pi * self.coulomb_constant / box.volume
        weights = np.exp(-k_sq / (4.0 * self.alpha**2)) / k_sq

        energy = float(prefactor * np.sum(weights * (s_real**2 + s_imag**2)))

        # F_i = 2 C q_i sum_k w_k k Im[conj(S(k)) exp(i k.r_i)]
        im_part = s_real[:, np.newaxis] * sin_kr - s_imag[:, np.newaxis] * cos_kr
        forces = 2.0 * prefactor * charges[:, np.newaxis] * ((weights[:, np.newaxis] * im_part).T @ k_vectors)

        return forces, energy
