"""Particle Mesh Ewald (PME) reciprocal-space implementation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from scipy.special import erfc

from .direct import COULOMB_CONSTANT

if TYPE_CHECKING:
    from ...system import Box
    from .ewald import EwaldState

# Order of the cardinal B-splines used for spreading and interpolation
PME_ORDER = 5


def bspline_weights(
    fraction: NDArray[np.floating], order: int = PME_ORDER
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """
    Cardinal B-spline weights and derivatives.

    Args:
        fraction: Fractional offsets w in [0, 1) from the base grid point,
            any shape.

    Returns:
        Tuple (theta, dtheta) with a trailing axis of length ``order``:
        theta[..., k] is the weight of grid point base + k and dtheta its
        derivative with respect to w.
    """
    w = np.asarray(fraction, dtype=np.float64)
    data = np.zeros(w.shape + (order,), dtype=np.float64)
    data[..., 0] = 1.0 - w
    data[..., 1] = w
    for j in range(3, order):
        div = 1.0 / (j - 1)
        data[..., j - 1] = div * w * data[..., j - 2]
        for k in range(1, j - 1):
            data[..., j - k - 1] = div * (
                (w + k) * data[..., j - k - 2] + (j - k - w) * data[..., j - k - 1]
            )
        data[..., 0] = div * (1.0 - w) * data[..., 0]

    # Derivative of the order-n spline from the order-(n-1) values
    dtheta = np.empty_like(data)
    dtheta[..., 0] = -data[..., 0]
    dtheta[..., 1:] = data[..., :-1] - data[..., 1:]

    div = 1.0 / (order - 1)
    data[..., order - 1] = div * w * data[..., order - 2]
    for k in range(1, order - 1):
        data[..., order - k - 1] = div * (
            (w + k) * data[..., order - k - 2] + (order - k - w) * data[..., order - k - 1]
        )
    data[..., 0] = div * (1.0 - w) * data[..., 0]
    return data, dtheta


def bspline_moduli(size: int, order: int = PME_ORDER) -> NDArray[np.floating]:
    """
    Squared moduli of the discrete Fourier transform of the B-spline.

    Near-zero moduli (possible for odd orders at the Nyquist frequency) are
    replaced by the mean of their neighbours.
    """
    theta, _ = bspline_weights(np.zeros(1), order)
    padded = np.zeros(size, dtype=np.float64)
    count = min(order, size)
    padded[:count] = theta[0, :count]
    moduli = np.abs(np.fft.fft(padded)) ** 2
    for i in np.flatnonzero(moduli < 1e-7):
        moduli[i] = 0.5 * (moduli[i - 1] + moduli[(i + 1) % size])
    return moduli


class ParticleMeshEwald:
    """
    Smooth particle mesh Ewald for the reciprocal-space sum.

    Steps:
    1. Spread coefficients onto a 3D grid with order-5 B-splines.
    2. Forward FFT of the grid.
    3. Multiply by the influence function (energy is the weighted sum of
       the squared transform).
    4. Inverse FFT to get the convolved potential grid.
    5. Interpolate the potential gradient back to each particle.

    In electrostatic mode the coefficients are charges and the influence
    function is that of the Coulomb kernel. In dispersion mode they are the
    per-particle c_i with C6_ij = c_i c_j and the influence function is
    that of the attractive -1/r^6 kernel, including the k = 0 term.
    Self energies are not included.

    Attributes:
        alpha: Splitting parameter (beta in dispersion mode).
        grid_size: Mesh dimensions along each box vector.
        dispersion: Whether this is the dispersion (r^-6) mesh.
    """

    def __init__(
        self,
        alpha: float,
        grid_size: tuple[int, int, int],
        dispersion: bool = False,
        coulomb_constant: float = COULOMB_CONSTANT,
        order: int = PME_ORDER,
    ) -> None:
        """
        Initialize PME.

        Args:
            alpha: Ewald splitting parameter (1/nm).
            grid_size: Mesh dimensions (nx, ny, nz).
            dispersion: Use the dispersion influence function.
            coulomb_constant: Coulomb constant (electrostatic mode only).
            order: B-spline order.
        """
        self.alpha = alpha
        self.grid_size = tuple(int(n) for n in grid_size)
        if min(self.grid_size) < order:
            raise ValueError(f"PME grid {self.grid_size} is smaller than the spline order {order}")
        self.dispersion = dispersion
        self.coulomb_constant = coulomb_constant
        self.order = order
        self._moduli = [bspline_moduli(n, order) for n in self.grid_size]
        self._integer_frequencies = [np.fft.fftfreq(n, d=1.0 / n) for n in self.grid_size]

    @classmethod
    def from_state(
        cls,
        state: EwaldState,
        dispersion: bool = False,
        coulomb_constant: float = COULOMB_CONSTANT,
    ) -> ParticleMeshEwald:
        """Create the mesh from resolved Ewald parameters."""
        return cls(state.alpha, state.sizes, dispersion, coulomb_constant)

    def influence_function(self, box: Box) -> NDArray[np.floating]:
        """Return the reciprocal-space influence function on the mesh for a box."""
        recip = box.reciprocal_vectors
        mx, my, mz = np.meshgrid(*self._integer_frequencies, indexing="ij")
        # Cartesian reciprocal vectors m = m_a a* + m_b b* + m_c c*
        m_vec = [recip[d, 0] * mx + recip[d, 1] * my + recip[d, 2] * mz for d in range(3)]
        m_sq = m_vec[0] ** 2 + m_vec[1] ** 2 + m_vec[2] ** 2

        bx, by, bz = self._moduli
        moduli = bx[:, None, None] * by[None, :, None] * bz[None, None, :]
        volume = box.volume

        if self.dispersion:
            b = np.pi * np.sqrt(m_sq) / self.alpha
            b_sq = b * b
            shape = (
                (1.0 - 2.0 * b_sq) * np.exp(-b_sq) + 2.0 * b_sq * b * np.sqrt(np.pi) * erfc(b)
            ) / 3.0
            return -(np.pi**1.5) * self.alpha**3 * shape / (volume * moduli)

        m_sq[0, 0, 0] = 1.0
        eterm = self.coulomb_constant * np.exp(-(np.pi**2) * m_sq / self.alpha**2) / (
            np.pi * volume * m_sq * moduli
        )
        eterm[0, 0, 0] = 0.0
        return eterm

    def _spline_stencil(
        self, positions: NDArray[np.floating], box: Box
    ) -> tuple[NDArray[np.int64], NDArray[np.floating], NDArray[np.floating]]:
        """Return flat grid indices (N, o, o, o) and per-axis spline weights (N, 3, o)."""
        sizes = np.array(self.grid_size)
        frac = box.fractional(positions)
        frac = frac - np.floor(frac)
        scaled = frac * sizes
        base = np.floor(scaled).astype(np.int64)
        theta, dtheta = bspline_weights(scaled - base, self.order)

        offsets = np.arange(self.order)
        ix = (base[:, 0, None] + offsets) % sizes[0]
        iy = (base[:, 1, None] + offsets) % sizes[1]
        iz = (base[:, 2, None] + offsets) % sizes[2]
        flat = (
            ix[:, :, None, None] * sizes[1] + iy[:, None, :, None]
        ) * sizes[2] + iz[:, None, None, :]
        return flat, theta, dtheta

    def compute(
        self,
        positions: NDArray[np.floating],
        coefficients: NDArray[np.floating],
        box: Box,
    ) -> tuple[NDArray[np.floating], float]:
        """
        Compute reciprocal-space forces and energy.

        Args:
            positions: Particle positions, shape (N, 3).
            coefficients: Charges, or dispersion coefficients c_i, shape (N,).
            box: Periodic box.

        Returns:
            Tuple of (forces array, energy).
        """
        n_particles = len(positions)
        forces = np.zeros((n_particles, 3), dtype=np.float64)
        if n_particles == 0:
            return forces, 0.0

        sizes = np.array(self.grid_size)
        n_total = int(np.prod(sizes))
        flat, theta, dtheta = self._spline_stencil(positions, box)

        # 1. Spread
        weights = (
            theta[:, 0, :, None, None] * theta[:, 1, None, :, None] * theta[:, 2, None, None, :]
        )
        grid = np.bincount(
            flat.ravel(),
            weights=(coefficients[:, None, None, None] * weights).ravel(),
            minlength=n_total,
        ).reshape(self.grid_size)

        # 2-3. Transform and weight
        grid_hat = np.fft.fftn(grid)
        eterm = self.influence_function(box)
        energy = 0.5 * float(np.sum(eterm * np.abs(grid_hat) ** 2))

        # 4. Convolved potential, dE/dQ on every grid point
        potential = n_total * np.fft.ifftn(eterm * grid_hat).real
        local = potential.ravel()[flat]

        # 5. Interpolate gradient in scaled fractional coordinates
        t0, t1, t2 = theta[:, 0], theta[:, 1], theta[:, 2]
        d0, d1, d2 = dtheta[:, 0], dtheta[:, 1], dtheta[:, 2]
        dE_du = np.stack(
            [
                np.einsum("na,nb,nc,nabc->n", d0, t1, t2, local),
                np.einsum("na,nb,nc,nabc->n", t0, d1, t2, local),
                np.einsum("na,nb,nc,nabc->n", t0, t1, d2, local),
            ],
            axis=1,
        ) * coefficients[:, None]

        gradient = (dE_du * sizes) @ box.reciprocal_vectors.T
        forces = -gradient
        return forces, energy
