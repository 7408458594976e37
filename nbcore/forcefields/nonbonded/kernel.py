"""Nonbonded force kernel: orchestrates all nonbonded contributions."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ...errors import ConfigurationError, StructuralMismatchError
from ...neighborlists import CellList
from ...parallel import ExecutionBackend, get_backend
from ..base import EvaluationResult, ForceKernel
from .definition import NonbondedForce, NonbondedMethod, ParameterOffset
from .direct import COULOMB_CONSTANT, DirectSpaceEvaluator
from .dispersion import DispersionCorrection
from .ewald import (
    EwaldState,
    EwaldSum,
    calc_dispersion_pme_parameters,
    calc_ewald_parameters,
    calc_pme_parameters,
    explicit_parameters,
)
from .exceptions import ExceptionEvaluator
from .parameters import ParameterResolver, ResolvedParameters
from .pme import ParticleMeshEwald

if TYPE_CHECKING:
    from ...parallel.dispatcher import BackendType
    from ...system import Box

logger = logging.getLogger(__name__)

# Periodic box edges must stay above this multiple of the cutoff
MIN_BOX_CUTOFF_RATIO = 1.999999

_CORRECTED_METHODS = (
    NonbondedMethod.CUTOFF_PERIODIC,
    NonbondedMethod.EWALD,
    NonbondedMethod.PME,
)


class KernelState(Enum):
    """
    Lifecycle of a NonbondedForceKernel.

    UNINITIALIZED: no force definition yet.
    INITIALIZED: definition cached, nothing evaluated yet.
    READY: cached pair list and resolved parameters match the last evaluation.
    STALE: parameters were updated since the last evaluation; derived
        caches are refreshed by the next evaluation.
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    READY = "ready"
    STALE = "stale"


class NonbondedForceKernel(ForceKernel):
    """
    Reference kernel for Coulomb plus Lennard-Jones nonbonded forces.

    An evaluation runs, in order:
    1. Resolve effective parameters for the current global parameters.
    2. Refresh the candidate pair list (cutoff methods).
    3. Direct-space pair sum, including the reciprocal-space correction of
       excluded pairs for lattice methods.
    4. Reciprocal space (Ewald sum or PME; for LJPME also dispersion PME)
       and self energies.
    5. 1-4 exceptions.
    6. Analytic dispersion correction.

    Independent stages are submitted to the execution backend and joined
    with a barrier before accumulation, which always happens in the order
    above. Forces go to a private buffer and are added to the caller's
    buffer only after every stage succeeded.

    Concurrent evaluations on one kernel are not supported.

    Attributes:
        backend: Execution backend owned by the kernel.
        skin: Neighbor list buffer distance.
    """

    def __init__(
        self,
        backend: BackendType | ExecutionBackend | None = None,
        skin: float = 0.1,
    ) -> None:
        """
        Initialize the kernel.

        Args:
            backend: Execution backend or backend name ("serial", "threads").
            skin: Neighbor list buffer distance.
        """
        self.backend = get_backend(backend)
        self.skin = skin
        self._state = KernelState.UNINITIALIZED

        self._method: NonbondedMethod | None = None
        self._cutoff = 0.0
        self._n_particles = 0
        self._box: Box | None = None
        self._exclusions: NDArray[np.integer] = np.empty((0, 2), dtype=np.int32)
        self._num14: tuple[int, ...] = ()
        self._resolver: ParameterResolver | None = None
        self._neighbor_list: CellList | None = None
        self._all_pairs: NDArray[np.integer] | None = None
        self._direct: DirectSpaceEvaluator | None = None
        self._exceptions: ExceptionEvaluator | None = None
        self._reciprocal: EwaldSum | ParticleMeshEwald | None = None
        self._dispersion_reciprocal: ParticleMeshEwald | None = None
        self._dispersion_correction: DispersionCorrection | None = None
        self._ewald_state: EwaldState | None = None
        self._dispersion_state: EwaldState | None = None

    @property
    def state(self) -> KernelState:
        """Return the lifecycle state."""
        return self._state

    @property
    def method(self) -> NonbondedMethod | None:
        """Return the nonbonded method, or None before initialize."""
        return self._method

    @property
    def neighbor_list(self) -> CellList | None:
        """Return the neighbor list (None for NO_CUTOFF)."""
        return self._neighbor_list

    @property
    def dispersion_correction_coefficient(self) -> float:
        """Return the tail correction coefficient (energy = coef / volume)."""
        if self._dispersion_correction is None:
            return 0.0
        return self._dispersion_correction.coefficient

    def __enter__(self) -> NonbondedForceKernel:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the execution backend."""
        self.backend.close()

    # ------------------------------------------------------------------
    # Initialization and updates
    # ------------------------------------------------------------------

    def initialize(self, force: NonbondedForce, box: Box | None = None) -> None:
        """
        Build the kernel from a force definition.

        Args:
            force: Nonbonded force definition.
            box: Default periodic box. Required by periodic methods; used
                to choose Ewald/PME parameters and when ``evaluate`` is
                called without a box.

        Raises:
            ConfigurationError: For a periodic method without a usable box,
                or parameter offsets naming undeclared global parameters.
        """
        method = force.nonbonded_method
        n_particles = force.num_particles
        if method.is_periodic:
            if box is None:
                raise ConfigurationError(f"Nonbonded method {method.value} requires a periodic box")
            self._check_box(box, force.cutoff)

        exclusions = force.exclusion_pairs()
        if len(exclusions) and exclusions.max() >= n_particles:
            raise ConfigurationError("Exception refers to a particle that does not exist")
        num14 = tuple(force.nonbonded14_indices())
        resolver = self._build_resolver(force, num14)

        self._method = method
        self._cutoff = force.cutoff
        self._n_particles = n_particles
        self._box = box if method.is_periodic else None
        self._exclusions = exclusions
        self._num14 = num14
        self._resolver = resolver

        cutoff = None if method is NonbondedMethod.NO_CUTOFF else force.cutoff
        switching_distance = None
        if force.use_switching_function and cutoff is not None and method is not NonbondedMethod.LJPME:
            switching_distance = force.switching_distance

        self._ewald_state = None
        self._dispersion_state = None
        self._reciprocal = None
        self._dispersion_reciprocal = None
        tolerance = force.ewald_error_tolerance
        if method is NonbondedMethod.EWALD:
            self._ewald_state = calc_ewald_parameters(box, force.cutoff, tolerance)
            self._reciprocal = EwaldSum.from_state(self._ewald_state)
        elif method in (NonbondedMethod.PME, NonbondedMethod.LJPME):
            self._ewald_state = explicit_parameters(force.pme_parameters) or calc_pme_parameters(
                box, force.cutoff, tolerance
            )
            self._reciprocal = ParticleMeshEwald.from_state(self._ewald_state)
            if method is NonbondedMethod.LJPME:
                self._dispersion_state = explicit_parameters(
                    force.ljpme_parameters
                ) or calc_dispersion_pme_parameters(box, force.cutoff, tolerance)
                self._dispersion_reciprocal = ParticleMeshEwald.from_state(
                    self._dispersion_state, dispersion=True
                )

        self._direct = DirectSpaceEvaluator(
            method,
            cutoff=cutoff,
            switching_distance=switching_distance,
            reaction_field_dielectric=force.reaction_field_dielectric,
            alpha=self._ewald_state.alpha if self._ewald_state is not None else 0.0,
            dispersion_alpha=(
                self._dispersion_state.alpha if self._dispersion_state is not None else 0.0
            ),
        )
        self._exceptions = ExceptionEvaluator(
            exclusions[list(num14)] if num14 else np.empty((0, 2), dtype=np.int32),
            use_periodic=force.exceptions_use_periodic and method.is_periodic,
        )

        if cutoff is None:
            self._neighbor_list = None
            i_indices, j_indices = self._direct.all_pairs(n_particles, exclusions)
            self._all_pairs = np.stack([i_indices, j_indices], axis=1).astype(np.int32)
        else:
            self._neighbor_list = CellList(cutoff, skin=self.skin)
            self._all_pairs = None

        self._dispersion_correction = None
        if force.use_dispersion_correction and method in _CORRECTED_METHODS:
            baseline = force.particle_parameter_array()
            self._dispersion_correction = DispersionCorrection(
                baseline[:, 1], baseline[:, 2], force.cutoff, switching_distance
            )

        self._state = KernelState.INITIALIZED
        logger.info(
            "Initialized nonbonded kernel: %d particles, %d exceptions (%d 1-4), method %s",
            n_particles,
            len(exclusions),
            len(num14),
            method.value,
        )

    def _build_resolver(self, force: NonbondedForce, num14: tuple[int, ...]) -> ParameterResolver:
        """Create the parameter resolver with exception offsets indexed by 1-4 position."""
        position = {index: slot for slot, index in enumerate(num14)}
        exception_offsets = [
            ParameterOffset(o.parameter, position[o.index], o.charge, o.sigma, o.epsilon)
            for o in force.exception_offsets
        ]
        exception_params = [
            [force.exceptions[i].charge_prod, force.exceptions[i].sigma, force.exceptions[i].epsilon]
            for i in num14
        ]
        return ParameterResolver(
            force.particle_parameter_array(),
            exception_params,
            force.particle_offsets,
            exception_offsets,
            force.global_parameters,
        )

    def update_parameters(self, force: NonbondedForce) -> None:
        """
        Copy per-particle and per-exception parameters from a force definition.

        Ewald/PME parameters are kept; the dispersion correction coefficient
        is recomputed.

        Raises:
            RuntimeError: If the kernel has not been initialized.
            StructuralMismatchError: If the particle count, exception count,
                exception pairs, set of 1-4 exceptions, method or cutoff
                differ from the initialized definition.
        """
        self._require_initialized()
        if force.num_particles != self._n_particles:
            raise StructuralMismatchError(
                f"Number of particles changed from {self._n_particles} to {force.num_particles}"
            )
        if force.num_exceptions != len(self._exclusions):
            raise StructuralMismatchError(
                f"Number of exceptions changed from {len(self._exclusions)} to {force.num_exceptions}"
            )
        if not np.array_equal(force.exclusion_pairs(), self._exclusions):
            raise StructuralMismatchError("The particles involved in an exception changed")
        num14 = tuple(force.nonbonded14_indices())
        if num14 != self._num14:
            raise StructuralMismatchError(
                "The set of nonexcluded exceptions changed; "
                "an exception cannot switch between 1-4 interaction and exclusion"
            )
        if force.nonbonded_method is not self._method or force.cutoff != self._cutoff:
            raise StructuralMismatchError("The nonbonded method or cutoff changed")

        self._resolver = self._build_resolver(force, num14)
        if self._dispersion_correction is not None:
            baseline = force.particle_parameter_array()
            self._dispersion_correction.coefficient = (
                self._dispersion_correction.compute_coefficient(baseline[:, 1], baseline[:, 2])
            )
        if self._state is KernelState.READY:
            self._state = KernelState.STALE
        logger.debug("Updated nonbonded parameters for %d particles", self._n_particles)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_pme_parameters(self) -> tuple[float, int, int, int]:
        """
        Return (alpha, nx, ny, nz) of the electrostatic mesh.

        Raises:
            ConfigurationError: If the method is not PME or LJPME.
        """
        self._require_initialized()
        if self._method not in (NonbondedMethod.PME, NonbondedMethod.LJPME):
            raise ConfigurationError("get_pme_parameters requires the PME or LJPME method")
        return self._ewald_state.as_tuple()

    def get_ljpme_parameters(self) -> tuple[float, int, int, int]:
        """
        Return (beta, nx, ny, nz) of the dispersion mesh.

        Raises:
            ConfigurationError: If the method is not LJPME.
        """
        self._require_initialized()
        if self._method is not NonbondedMethod.LJPME:
            raise ConfigurationError("get_ljpme_parameters requires the LJPME method")
        return self._dispersion_state.as_tuple()

    def get_ewald_parameters(self) -> tuple[float, int, int, int]:
        """
        Return (alpha, kx, ky, kz) of the Ewald sum.

        Raises:
            ConfigurationError: If the method is not EWALD.
        """
        self._require_initialized()
        if self._method is not NonbondedMethod.EWALD:
            raise ConfigurationError("get_ewald_parameters requires the Ewald method")
        return self._ewald_state.as_tuple()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def resolve_parameters(
        self, global_parameters: dict[str, float] | None = None
    ) -> ResolvedParameters:
        """Return effective parameters for the given global-parameter values."""
        self._require_initialized()
        return self._resolver.resolve(global_parameters)

    def evaluate(
        self,
        positions: ArrayLike,
        box: Box | None = None,
        forces: NDArray[np.floating] | None = None,
        include_forces: bool = True,
        include_energy: bool = True,
        include_direct: bool = True,
        include_reciprocal: bool = True,
        global_parameters: dict[str, float] | None = None,
    ) -> EvaluationResult:
        """
        Compute nonbonded forces and energy.

        Args:
            positions: Particle positions, shape (N, 3).
            box: Periodic box; defaults to the box given at initialize.
            forces: Buffer to add forces to, shape (N, 3).
            include_forces: Add forces to the buffer.
            include_energy: Return the energy.
            include_direct: Include direct-space, 1-4 and dispersion
                correction terms.
            include_reciprocal: Include reciprocal-space and self terms.
            global_parameters: Global parameter values; missing names use
                the defaults of the force definition.

        Returns:
            EvaluationResult with the force buffer and the energy (0.0
            unless ``include_energy``).

        Raises:
            RuntimeError: If the kernel has not been initialized.
            ConfigurationError: For an unusable box or unknown global
                parameters. Nothing is added to ``forces`` in that case.
        """
        self._require_initialized()
        positions = np.asarray(positions, dtype=np.float64)
        if positions.shape != (self._n_particles, 3):
            raise ValueError(
                f"positions shape {positions.shape} incompatible with {self._n_particles} particles"
            )
        if self._method.is_periodic:
            box = box if box is not None else self._box
            self._check_box(box, self._cutoff)
        else:
            box = None
        buffer = self._force_buffer(forces, self._n_particles)
        params = self._resolver.resolve(global_parameters)

        total_forces = np.zeros((self._n_particles, 3), dtype=np.float64)
        energies: dict[str, float] = {}

        direct_tasks = []
        if include_direct:
            pairs = self._candidate_pairs(positions, box)
            for start, end in self.backend.partition(len(pairs)):
                direct_tasks.append(
                    self.backend.submit(
                        self._direct.compute, positions, params.particles, box, pairs[start:end]
                    )
                )
            if self._method.uses_ewald and len(self._exclusions):
                direct_tasks.append(
                    self.backend.submit(
                        self._direct.exclusion_correction,
                        positions,
                        params.particles,
                        box,
                        self._exclusions,
                    )
                )

        reciprocal_tasks = []
        if include_reciprocal and self._reciprocal is not None:
            reciprocal_tasks.append(
                self.backend.submit(self._reciprocal.compute, positions, params.charges, box)
            )
            if self._dispersion_reciprocal is not None:
                reciprocal_tasks.append(
                    self.backend.submit(
                        self._dispersion_reciprocal.compute,
                        positions,
                        params.dispersion_coefficients,
                        box,
                    )
                )

        # Barrier: every stage has finished before anything is accumulated
        direct_results = self.backend.barrier(direct_tasks)
        reciprocal_results = self.backend.barrier(reciprocal_tasks)

        if include_direct:
            energies["direct"] = 0.0
            for stage_forces, stage_energy in direct_results:
                total_forces += stage_forces
                energies["direct"] += stage_energy

        if include_reciprocal and self._reciprocal is not None:
            for name, (stage_forces, stage_energy) in zip(
                ("reciprocal", "dispersion_reciprocal"), reciprocal_results
            ):
                total_forces += stage_forces
                energies[name] = stage_energy
            energies["self"] = self._self_energy(params)

        if include_direct:
            stage_forces, energies["exceptions"] = self._exceptions.compute(
                positions, params.exceptions, box
            )
            total_forces += stage_forces
            if self._dispersion_correction is not None:
                energies["dispersion_correction"] = self._dispersion_correction.energy(box.volume)

        self._state = KernelState.READY
        logger.debug("Nonbonded energy terms: %s", energies)

        if include_forces:
            buffer += total_forces
        energy = float(sum(energies.values())) if include_energy else 0.0
        return EvaluationResult(forces=buffer, energy=energy)

    def _candidate_pairs(self, positions: NDArray[np.floating], box: Box | None) -> NDArray[np.integer]:
        """Return the direct-space candidate pairs, rebuilding the neighbor list if stale."""
        if self._neighbor_list is None:
            return self._all_pairs
        if self._neighbor_list.needs_rebuild(positions, box):
            self._neighbor_list.build(positions, box, self._exclusions)
        return self._neighbor_list.get_pairs()

    def _self_energy(self, params: ResolvedParameters) -> float:
        """Return the lattice self energies."""
        energy = -COULOMB_CONSTANT * self._ewald_state.alpha / np.sqrt(np.pi) * float(
            np.sum(params.charges**2)
        )
        if self._dispersion_state is not None:
            energy += self._dispersion_state.alpha**6 / 12.0 * float(
                np.sum(params.dispersion_coefficients**2)
            )
        return energy

    def _check_box(self, box: Box | None, cutoff: float) -> None:
        if box is None:
            raise ConfigurationError(f"Nonbonded method {self._method_name()} requires a periodic box")
        if not box.is_reduced:
            raise ConfigurationError(
                "Periodic box vectors must be in reduced form "
                "(a along x, b in the xy plane, off-diagonal terms at most half a diagonal)"
            )
        if np.any(np.diag(box.vectors) < MIN_BOX_CUTOFF_RATIO * cutoff):
            raise ConfigurationError(
                f"The periodic box size {np.diag(box.vectors)} has decreased to less than "
                f"twice the nonbonded cutoff {cutoff}"
            )

    def _method_name(self) -> str:
        return self._method.value if self._method is not None else "periodic"

    def _require_initialized(self) -> None:
        if self._state is KernelState.UNINITIALIZED:
            raise RuntimeError("Kernel has not been initialized yet")
