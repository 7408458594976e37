"""Tests for Ewald summation and particle mesh Ewald."""

import math

import numpy as np
import pytest

from nbcore.forcefields.nonbonded import (
    COULOMB_CONSTANT,
    EwaldSum,
    NonbondedForce,
    NonbondedForceKernel,
    NonbondedMethod,
    ParticleMeshEwald,
)
from nbcore.forcefields.nonbonded.ewald import (
    EwaldState,
    calc_dispersion_pme_parameters,
    calc_ewald_parameters,
    calc_pme_parameters,
    dispersion_alpha,
    explicit_parameters,
    find_legal_fft_dimension,
)
from nbcore.forcefields.nonbonded.pme import bspline_moduli, bspline_weights
from nbcore.system.box import Box

MADELUNG_NACL = 1.747565


def rock_salt(n_per_side=4, spacing=0.5):
    """Rock salt lattice: simple cubic grid with alternating unit charges."""
    grid = np.stack(np.meshgrid(*[np.arange(n_per_side)] * 3, indexing="ij"), axis=-1).reshape(-1, 3)
    charges = np.where(grid.sum(axis=1) % 2 == 0, 1.0, -1.0)
    return grid * spacing, charges, Box.cubic(n_per_side * spacing)


def neutral_system(seed=0, n_per_side=4, spacing=0.6):
    """Jittered lattice with random but neutral charges."""
    rng = np.random.default_rng(seed)
    grid = np.stack(np.meshgrid(*[np.arange(n_per_side)] * 3, indexing="ij"), axis=-1).reshape(-1, 3)
    positions = grid * spacing + rng.uniform(-0.15, 0.15, size=grid.shape)
    charges = np.where(np.arange(len(grid)) % 2 == 0, 0.5, -0.5)
    rng.shuffle(charges)
    return positions, charges, Box.cubic(n_per_side * spacing)


def coulomb_force(method, charges, cutoff, tolerance, **kwargs):
    force = NonbondedForce(
        nonbonded_method=method, cutoff=cutoff, ewald_error_tolerance=tolerance, **kwargs
    )
    for q in charges:
        force.add_particle(q, 0.0, 0.0)
    return force


class TestParameterSelection:
    """Test automatic choice of Ewald/PME parameters."""

    @pytest.mark.parametrize(
        "minimum, expected", [(1, 1), (6, 6), (11, 12), (13, 14), (17, 18), (49, 49), (121, 125)]
    )
    def test_legal_fft_dimension(self, minimum, expected):
        assert find_legal_fft_dimension(minimum) == expected

    def test_pme_parameters(self):
        box = Box.orthorhombic(2.0, 3.0, 4.0)
        state = calc_pme_parameters(box, 0.9, 5e-4)
        alpha = math.sqrt(-math.log(1e-3)) / 0.9
        assert np.isclose(state.alpha, alpha)
        for size, width in zip(state.sizes, (2.0, 3.0, 4.0)):
            minimum = max(math.ceil(2 * alpha * width / (3 * 5e-4**0.2)), 6)
            assert size == find_legal_fft_dimension(minimum)

    def test_small_box_grid_minimum(self):
        state = calc_pme_parameters(Box.cubic(0.5), 0.2, 0.4)
        assert min(state.sizes) >= 6

    def test_ewald_parameters_odd(self):
        state = calc_ewald_parameters(Box.orthorhombic(2.0, 2.5, 3.0), 0.9, 1e-6)
        assert all(k % 2 == 1 for k in state.sizes)
        assert state.nx <= state.nz

    def test_dispersion_alpha(self):
        """beta solves exp(-x^2)(1 + x^2 + x^4/2) = tol at x = beta*rc."""
        beta = dispersion_alpha(1.0, 1e-4)
        x2 = beta**2
        assert np.isclose(math.exp(-x2) * (1 + x2 + 0.5 * x2 * x2), 1e-4)

        state = calc_dispersion_pme_parameters(Box.cubic(3.0), 1.0, 1e-4)
        assert np.isclose(state.alpha, beta)

    def test_explicit_parameters(self):
        assert explicit_parameters(None) is None
        assert explicit_parameters((0.0, 10, 10, 10)) is None
        assert explicit_parameters((3.0, 10, 12, 14)) == EwaldState(3.0, 10, 12, 14)
        with pytest.raises(ValueError):
            explicit_parameters((3.0, 0, 12, 14))


class TestBSplines:
    """Test B-spline weights used for spreading."""

    def test_partition_of_unity(self):
        w = np.linspace(0.0, 0.999, 25)
        theta, dtheta = bspline_weights(w)
        assert theta.shape == (25, 5)
        assert np.allclose(theta.sum(axis=-1), 1.0)
        assert np.allclose(dtheta.sum(axis=-1), 0.0)
        assert np.all(theta >= 0.0)

    def test_derivative(self):
        w = np.array([0.1, 0.37, 0.8])
        h = 1e-6
        theta_p, _ = bspline_weights(w + h)
        theta_m, _ = bspline_weights(w - h)
        _, dtheta = bspline_weights(w)
        assert np.allclose(dtheta, (theta_p - theta_m) / (2 * h), atol=1e-8)

    def test_values_at_grid_point(self):
        theta, _ = bspline_weights(np.zeros(1))
        assert np.allclose(theta[0], [1 / 24, 11 / 24, 11 / 24, 1 / 24, 0.0])

    def test_moduli_positive(self):
        for size in (6, 7, 16, 25):
            moduli = bspline_moduli(size)
            assert moduli.shape == (size,)
            assert np.all(moduli > 1e-7)
            assert np.isclose(moduli[0], 1.0)


class TestReciprocalEngines:
    """Test the reciprocal-space engines directly."""

    def test_pme_matches_ewald(self):
        """PME with a fine mesh reproduces the explicit Ewald reciprocal sum."""
        positions, charges, box = neutral_system(seed=3)
        alpha = 3.0
        ewald = EwaldSum(alpha, (14, 14, 14))
        pme = ParticleMeshEwald(alpha, (48, 48, 48))

        f_ewald, e_ewald = ewald.compute(positions, charges, box)
        f_pme, e_pme = pme.compute(positions, charges, box)

        assert np.isclose(e_pme, e_ewald, rtol=1e-5)
        assert np.allclose(f_pme, f_ewald, atol=1e-3 * np.abs(f_ewald).max())

    def test_pme_matches_ewald_triclinic(self):
        positions, charges, _ = neutral_system(seed=8)
        box = Box.triclinic([[2.4, 0.0, 0.0], [0.6, 2.4, 0.0], [-0.5, 0.7, 2.4]])
        alpha = 3.0
        f_ewald, e_ewald = EwaldSum(alpha, (16, 16, 16)).compute(positions, charges, box)
        f_pme, e_pme = ParticleMeshEwald(alpha, (48, 48, 48)).compute(positions, charges, box)

        assert np.isclose(e_pme, e_ewald, rtol=1e-5)
        assert np.allclose(f_pme, f_ewald, atol=1e-3 * np.abs(f_ewald).max())

    def test_ewald_forces_finite_difference(self):
        positions, charges, box = neutral_system(seed=1, n_per_side=2, spacing=1.0)
        ewald = EwaldSum(2.0, (7, 7, 7))
        forces, _ = ewald.compute(positions, charges, box)
        h = 1e-6
        for i in range(len(positions)):
            for d in range(3):
                plus = positions.copy()
                minus = positions.copy()
                plus[i, d] += h
                minus[i, d] -= h
                numerical = -(
                    ewald.compute(plus, charges, box)[1] - ewald.compute(minus, charges, box)[1]
                ) / (2 * h)
                assert np.isclose(forces[i, d], numerical, rtol=1e-5, atol=1e-4)

    def test_pme_grid_smaller_than_order(self):
        with pytest.raises(ValueError):
            ParticleMeshEwald(3.0, (4, 8, 8))


class TestMadelung:
    """Rock salt lattice energy: E = -(N/2) k M / d."""

    @pytest.fixture
    def lattice(self):
        return rock_salt()

    def expected_energy(self, charges):
        return -0.5 * len(charges) * COULOMB_CONSTANT * MADELUNG_NACL / 0.5

    def test_ewald(self, lattice):
        positions, charges, box = lattice
        force = coulomb_force(NonbondedMethod.EWALD, charges, 0.9, 1e-6)
        with NonbondedForceKernel() as kernel:
            kernel.initialize(force, box)
            result = kernel.evaluate(positions)

        assert np.isclose(result.energy, self.expected_energy(charges), rtol=1e-5)
        assert np.allclose(result.forces, 0.0, atol=1e-3)

    def test_pme(self, lattice):
        positions, charges, box = lattice
        force = coulomb_force(NonbondedMethod.PME, charges, 0.9, 1e-5)
        with NonbondedForceKernel() as kernel:
            kernel.initialize(force, box)
            result = kernel.evaluate(positions)

        assert np.isclose(result.energy, self.expected_energy(charges), rtol=1e-4)
        assert np.allclose(result.forces, 0.0, atol=1e-2)


class TestConvergence:
    def test_pme_converges_to_ewald(self):
        """A finer mesh brings the PME energy closer to the Ewald reference."""
        positions, charges, box = neutral_system(seed=5)
        reference_force = coulomb_force(NonbondedMethod.EWALD, charges, 1.0, 1e-7)
        with NonbondedForceKernel() as kernel:
            kernel.initialize(reference_force, box)
            reference = kernel.evaluate(positions).energy

        alpha = math.sqrt(-math.log(2e-5)) / 1.0
        energies = []
        for grid in (8, 48):
            force = coulomb_force(
                NonbondedMethod.PME, charges, 1.0, 1e-5, pme_parameters=(alpha, grid, grid, grid)
            )
            with NonbondedForceKernel() as kernel:
                kernel.initialize(force, box)
                energies.append(kernel.evaluate(positions).energy)

        coarse, fine = energies
        assert abs(fine - reference) < 0.1 * abs(coarse - reference)
        assert np.isclose(fine, reference, rtol=1e-3, atol=0.5)

    def test_pme_momentum_conservation(self):
        positions, charges, box = neutral_system(seed=6)
        force = coulomb_force(NonbondedMethod.PME, charges, 1.0, 5e-4)
        with NonbondedForceKernel() as kernel:
            kernel.initialize(force, box)
            forces = kernel.evaluate(positions).forces
        assert np.linalg.norm(forces.sum(axis=0)) < 1e-2 * np.abs(forces).max()
