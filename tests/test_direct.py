"""Tests for direct-space pair interactions."""

import numpy as np
import pytest
from scipy.special import erf, erfc

from nbcore.errors import NumericalDomainWarning
from nbcore.forcefields.nonbonded.definition import NonbondedMethod
from nbcore.forcefields.nonbonded.direct import COULOMB_CONSTANT, DirectSpaceEvaluator
from nbcore.forcefields.nonbonded.parameters import ParameterResolver
from nbcore.system.box import Box


def combined(charges, sigmas, epsilons):
    """Per-particle (sigma/2, 2 sqrt(eps), q)."""
    return ParameterResolver(np.column_stack([charges, sigmas, epsilons]), []).resolve().particles


def pair_energy(evaluator, r, params, box=None, exclusions=None):
    positions = np.array([[0.0, 0.0, 0.0], [r, 0.0, 0.0]])
    return evaluator.compute(positions, params, box=box, exclusions=exclusions)


def numerical_forces(evaluator, positions, params, box=None, h=1e-6):
    forces = np.zeros_like(positions)
    for i in range(len(positions)):
        for d in range(3):
            plus = positions.copy()
            minus = positions.copy()
            plus[i, d] += h
            minus[i, d] -= h
            e_plus = evaluator.compute(plus, params, box=box)[1]
            e_minus = evaluator.compute(minus, params, box=box)[1]
            forces[i, d] = -(e_plus - e_minus) / (2 * h)
    return forces


class TestCoulomb:
    """Test electrostatic pair terms."""

    def test_opposite_charges_no_cutoff(self):
        """Unit charges 1 nm apart: E = -k, attractive force of magnitude k."""
        evaluator = DirectSpaceEvaluator(NonbondedMethod.NO_CUTOFF)
        params = combined([1.0, -1.0], [0.0, 0.0], [0.0, 0.0])
        forces, energy = pair_energy(evaluator, 1.0, params)

        assert np.isclose(energy, -COULOMB_CONSTANT)
        assert np.allclose(forces[0], [COULOMB_CONSTANT, 0.0, 0.0])
        assert np.allclose(forces[1], [-COULOMB_CONSTANT, 0.0, 0.0])

    def test_reaction_field(self):
        """Test the reaction-field energy and its zero at the cutoff."""
        eps_rf = 78.3
        rc = 1.0
        evaluator = DirectSpaceEvaluator(
            NonbondedMethod.CUTOFF_NON_PERIODIC, cutoff=rc, reaction_field_dielectric=eps_rf
        )
        params = combined([0.5, 0.5], [0.0, 0.0], [0.0, 0.0])
        krf = (eps_rf - 1) / ((2 * eps_rf + 1) * rc**3)
        crf = 3 * eps_rf / ((2 * eps_rf + 1) * rc)

        _, energy = pair_energy(evaluator, 0.4, params)
        assert np.isclose(energy, COULOMB_CONSTANT * 0.25 * (1 / 0.4 + krf * 0.16 - crf))

        _, energy = pair_energy(evaluator, rc - 1e-9, params)
        assert abs(energy) < 1e-6

    def test_cutoff(self):
        """Test that pairs beyond the cutoff do not interact."""
        evaluator = DirectSpaceEvaluator(NonbondedMethod.CUTOFF_NON_PERIODIC, cutoff=1.0)
        params = combined([1.0, 1.0], [0.3, 0.3], [1.0, 1.0])
        forces, energy = pair_energy(evaluator, 1.2, params)
        assert energy == 0.0
        assert np.all(forces == 0.0)

    def test_ewald_real_space(self):
        """Test the erfc-screened pair energy."""
        alpha = 3.0
        evaluator = DirectSpaceEvaluator(NonbondedMethod.EWALD, cutoff=1.0, alpha=alpha)
        params = combined([1.0, -0.5], [0.0, 0.0], [0.0, 0.0])
        _, energy = pair_energy(evaluator, 0.3, params, box=Box.cubic(3.0))
        assert np.isclose(energy, -0.5 * COULOMB_CONSTANT * erfc(alpha * 0.3) / 0.3)

    def test_exclusion_correction(self):
        """Test removal of the reciprocal interaction of an excluded pair."""
        alpha = 2.5
        evaluator = DirectSpaceEvaluator(NonbondedMethod.PME, cutoff=1.0, alpha=alpha)
        params = combined([0.4, -0.6], [0.3, 0.3], [0.5, 0.5])
        positions = np.array([[0.0, 0.0, 0.0], [0.15, 0.0, 0.0]])
        exclusions = np.array([[0, 1]])
        no_pairs = np.empty((0, 2), dtype=int)
        forces, energy = evaluator.compute(
            positions, params, box=Box.cubic(3.0), pairs=no_pairs, exclusions=exclusions
        )
        assert np.isclose(energy, -COULOMB_CONSTANT * (0.4 * -0.6) * erf(alpha * 0.15) / 0.15)
        assert np.allclose(forces.sum(axis=0), 0.0)

    def test_exclusion_correction_coincident(self):
        """Test the r -> 0 limit of the exclusion correction."""
        alpha = 2.5
        evaluator = DirectSpaceEvaluator(NonbondedMethod.EWALD, cutoff=1.0, alpha=alpha)
        params = combined([0.4, -0.6], [0.0, 0.0], [0.0, 0.0])
        positions = np.zeros((2, 3))
        forces, energy = evaluator.exclusion_correction(
            positions, params, Box.cubic(3.0), np.array([[0, 1]])
        )
        assert np.isclose(energy, -COULOMB_CONSTANT * (0.4 * -0.6) * 2 * alpha / np.sqrt(np.pi))
        assert np.all(forces == 0.0)


class TestLennardJones:
    """Test Lennard-Jones pair terms."""

    def test_minimum(self):
        """At r = 2^(1/6) sigma the energy is -eps and the force vanishes."""
        evaluator = DirectSpaceEvaluator(NonbondedMethod.NO_CUTOFF)
        params = combined([0.0, 0.0], [0.3, 0.3], [0.8, 0.8])
        forces, energy = pair_energy(evaluator, 2 ** (1 / 6) * 0.3, params)
        assert np.isclose(energy, -0.8)
        assert np.allclose(forces, 0.0, atol=1e-9)

    def test_lorentz_berthelot(self):
        """Test arithmetic sigma and geometric epsilon combination."""
        evaluator = DirectSpaceEvaluator(NonbondedMethod.NO_CUTOFF)
        params = combined([0.0, 0.0], [0.2, 0.4], [0.25, 1.0])
        _, energy = pair_energy(evaluator, 0.5, params)
        sig, eps = 0.3, 0.5
        assert np.isclose(energy, 4 * eps * ((sig / 0.5) ** 12 - (sig / 0.5) ** 6))

    def test_switching(self):
        """Test that switching acts between the switching distance and the cutoff."""
        plain = DirectSpaceEvaluator(NonbondedMethod.CUTOFF_NON_PERIODIC, cutoff=1.0)
        switched = DirectSpaceEvaluator(
            NonbondedMethod.CUTOFF_NON_PERIODIC, cutoff=1.0, switching_distance=0.8
        )
        params = combined([0.0, 0.0], [0.5, 0.5], [1.0, 1.0])

        assert np.isclose(pair_energy(switched, 0.7, params)[1], pair_energy(plain, 0.7, params)[1])
        assert abs(pair_energy(switched, 1.0 - 1e-7, params)[1]) < 1e-12
        # Halfway: S = 1 - 10/8 + 15/16 - 6/32 = 0.5
        assert np.isclose(
            pair_energy(switched, 0.9, params)[1], 0.5 * pair_energy(plain, 0.9, params)[1]
        )

    def test_switching_does_not_touch_coulomb(self):
        switched = DirectSpaceEvaluator(
            NonbondedMethod.CUTOFF_NON_PERIODIC, cutoff=1.0, switching_distance=0.5
        )
        plain = DirectSpaceEvaluator(NonbondedMethod.CUTOFF_NON_PERIODIC, cutoff=1.0)
        params = combined([1.0, 1.0], [0.0, 0.0], [0.0, 0.0])
        assert np.isclose(pair_energy(switched, 0.9, params)[1], pair_energy(plain, 0.9, params)[1])


class TestForces:
    """Test analytic forces against finite differences."""

    @pytest.fixture
    def cluster(self):
        rng = np.random.default_rng(21)
        grid = np.stack(np.meshgrid(*[np.arange(2)] * 3, indexing="ij"), axis=-1).reshape(-1, 3)
        positions = 0.6 * grid + rng.uniform(-0.1, 0.1, size=(8, 3))
        params = combined(
            rng.uniform(-0.8, 0.8, size=8), rng.uniform(0.25, 0.35, size=8), rng.uniform(0.1, 1.0, size=8)
        )
        return positions, params

    @pytest.mark.parametrize(
        "evaluator",
        [
            DirectSpaceEvaluator(NonbondedMethod.NO_CUTOFF),
            DirectSpaceEvaluator(NonbondedMethod.CUTOFF_NON_PERIODIC, cutoff=1.2, switching_distance=0.9),
            DirectSpaceEvaluator(NonbondedMethod.LJPME, cutoff=1.2, alpha=2.5, dispersion_alpha=2.8),
        ],
        ids=["no_cutoff", "switched_reaction_field", "ljpme"],
    )
    def test_finite_difference(self, evaluator, cluster):
        positions, params = cluster
        box = Box.cubic(3.0) if evaluator.method.is_periodic else None
        forces, _ = evaluator.compute(positions, params, box=box)
        expected = numerical_forces(evaluator, positions, params, box=box)
        assert np.allclose(forces, expected, rtol=1e-5, atol=1e-4)
        assert np.allclose(forces.sum(axis=0), 0.0, atol=1e-8)


class TestCoincidentParticles:
    def test_zero_distance_dropped_with_warning(self):
        """Test that coincident particles contribute nothing and warn."""
        evaluator = DirectSpaceEvaluator(NonbondedMethod.NO_CUTOFF)
        params = combined([1.0, 1.0, -1.0], [0.3, 0.3, 0.3], [0.5, 0.5, 0.5])
        positions = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])

        with pytest.warns(NumericalDomainWarning):
            forces, energy = evaluator.compute(positions, params)

        assert np.all(np.isfinite(forces))
        lj = 4 * 0.5 * (0.3**12 - 0.3**6)
        assert np.isclose(energy, 2 * (-COULOMB_CONSTANT + lj))
