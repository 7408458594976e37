"""Definition of a nonbonded force: particles, exceptions and settings."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
from numpy.typing import NDArray


class NonbondedMethod(Enum):
    """How nonbonded interactions are truncated and summed."""

    NO_CUTOFF = "NoCutoff"
    CUTOFF_NON_PERIODIC = "CutoffNonPeriodic"
    CUTOFF_PERIODIC = "CutoffPeriodic"
    EWALD = "Ewald"
    PME = "PME"
    LJPME = "LJPME"

    @property
    def is_periodic(self) -> bool:
        """Whether the method uses periodic boundary conditions."""
        return self not in (NonbondedMethod.NO_CUTOFF, NonbondedMethod.CUTOFF_NON_PERIODIC)

    @property
    def uses_ewald(self) -> bool:
        """Whether electrostatics are split into direct and reciprocal parts."""
        return self in (NonbondedMethod.EWALD, NonbondedMethod.PME, NonbondedMethod.LJPME)


@dataclass
class Particle:
    """Baseline nonbonded parameters of one particle."""

    charge: float
    sigma: float
    epsilon: float


@dataclass
class ExceptionPair:
    """
    A particle pair whose interaction replaces the normal pair interaction.

    The pair is always removed from the general pair sum. A pair with zero
    charge product and zero epsilon (and no parameter offset) is a pure
    exclusion; any other exception is a 1-4 interaction evaluated with its
    own parameters.
    """

    particle1: int
    particle2: int
    charge_prod: float
    sigma: float
    epsilon: float

    @property
    def key(self) -> tuple[int, int]:
        """Unordered particle pair."""
        return (min(self.particle1, self.particle2), max(self.particle1, self.particle2))


@dataclass
class ParameterOffset:
    """
    Linear offset of a particle's or exception's parameters.

    Effective value = baseline + value(parameter) * delta.
    """

    parameter: str
    index: int
    charge: float
    sigma: float
    epsilon: float


@dataclass
class NonbondedForce:
    """
    Nonbonded force definition.

    Holds the per-particle charge/sigma/epsilon, the exception list, the
    global-parameter offsets and the settings that select how the force is
    evaluated. A kernel is built from this definition with
    ``NonbondedForceKernel.initialize``.

    Attributes:
        nonbonded_method: Truncation and long-range treatment.
        cutoff: Cutoff distance (nm), ignored with NO_CUTOFF.
        use_switching_function: Whether Lennard-Jones is switched off smoothly.
        switching_distance: Distance at which switching starts.
        reaction_field_dielectric: Dielectric of the reaction field continuum.
        ewald_error_tolerance: Relative error target for Ewald/PME parameters.
        exceptions_use_periodic: Whether 1-4 pairs use the minimum image.
        use_dispersion_correction: Whether the analytic LJ tail is added.
        pme_parameters: Explicit (alpha, nx, ny, nz) for electrostatic PME.
        ljpme_parameters: Explicit (alpha, nx, ny, nz) for dispersion PME.
    """

    nonbonded_method: NonbondedMethod = NonbondedMethod.NO_CUTOFF
    cutoff: float = 1.0
    use_switching_function: bool = False
    switching_distance: float = -1.0
    reaction_field_dielectric: float = 78.3
    ewald_error_tolerance: float = 5e-4
    exceptions_use_periodic: bool = False
    use_dispersion_correction: bool = True
    pme_parameters: tuple[float, int, int, int] | None = None
    ljpme_parameters: tuple[float, int, int, int] | None = None
    particles: list[Particle] = field(default_factory=list)
    exceptions: list[ExceptionPair] = field(default_factory=list)
    global_parameters: dict[str, float] = field(default_factory=dict)
    particle_offsets: list[ParameterOffset] = field(default_factory=list)
    exception_offsets: list[ParameterOffset] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate settings."""
        self.nonbonded_method = NonbondedMethod(self.nonbonded_method)
        if self.cutoff <= 0:
            raise ValueError(f"cutoff must be positive, got {self.cutoff}")
        if self.use_switching_function and not 0 <= self.switching_distance < self.cutoff:
            raise ValueError(
                f"switching distance {self.switching_distance} must be in [0, {self.cutoff})"
            )
        if not 0 < self.ewald_error_tolerance < 0.5:
            raise ValueError(
                f"ewald_error_tolerance must be in (0, 0.5), got {self.ewald_error_tolerance}"
            )
        self._exception_index = {}
        for index, exception in enumerate(self.exceptions):
            self._register_exception(index, exception)

    @property
    def num_particles(self) -> int:
        """Return the number of particles."""
        return len(self.particles)

    @property
    def num_exceptions(self) -> int:
        """Return the number of exceptions."""
        return len(self.exceptions)

    @property
    def uses_periodic_boundary_conditions(self) -> bool:
        """Whether the selected method is periodic."""
        return self.nonbonded_method.is_periodic

    def add_particle(self, charge: float, sigma: float, epsilon: float) -> int:
        """Add a particle and return its index."""
        self.particles.append(Particle(float(charge), float(sigma), float(epsilon)))
        return len(self.particles) - 1

    def set_particle_parameters(
        self, index: int, charge: float, sigma: float, epsilon: float
    ) -> None:
        """Replace the baseline parameters of a particle."""
        self._check_particle(index)
        self.particles[index] = Particle(float(charge), float(sigma), float(epsilon))

    def add_exception(
        self,
        particle1: int,
        particle2: int,
        charge_prod: float,
        sigma: float,
        epsilon: float,
        replace: bool = False,
    ) -> int:
        """
        Add an exception for a particle pair and return its index.

        Args:
            particle1: First particle.
            particle2: Second particle.
            charge_prod: Charge product used for the pair.
            sigma: Lennard-Jones sigma used for the pair.
            epsilon: Lennard-Jones epsilon used for the pair.
            replace: Overwrite an existing exception for the same pair
                instead of raising.

        Raises:
            ValueError: For a self pair, or a duplicate pair without ``replace``.
        """
        self._check_particle(particle1)
        self._check_particle(particle2)
        if particle1 == particle2:
            raise ValueError(f"Exception between particle {particle1} and itself")
        exception = ExceptionPair(
            int(particle1), int(particle2), float(charge_prod), float(sigma), float(epsilon)
        )
        existing = self._exception_index.get(exception.key)
        if existing is not None:
            if not replace:
                raise ValueError(
                    f"There is already an exception for particles {particle1} and {particle2}"
                )
            self.exceptions[existing] = exception
            return existing
        self.exceptions.append(exception)
        self._register_exception(len(self.exceptions) - 1, exception)
        return len(self.exceptions) - 1

    def set_exception_parameters(
        self,
        index: int,
        particle1: int,
        particle2: int,
        charge_prod: float,
        sigma: float,
        epsilon: float,
    ) -> None:
        """Replace an exception."""
        if not 0 <= index < len(self.exceptions):
            raise IndexError(f"Exception index {index} out of range [0, {len(self.exceptions)})")
        exception = ExceptionPair(
            int(particle1), int(particle2), float(charge_prod), float(sigma), float(epsilon)
        )
        if self._exception_index.get(exception.key, index) != index:
            raise ValueError(
                f"There is already an exception for particles {particle1} and {particle2}"
            )
        del self._exception_index[self.exceptions[index].key]
        self.exceptions[index] = exception
        self._register_exception(index, exception)

    def create_exceptions_from_bonds(
        self,
        bonds: Iterable[tuple[int, int]],
        coulomb14_scale: float,
        lj14_scale: float,
    ) -> None:
        """
        Create exceptions from a bond graph.

        Pairs separated by one or two bonds become pure exclusions. Pairs
        separated by exactly three bonds become 1-4 exceptions with scaled
        parameters derived from the particles (Lorentz-Berthelot rules).
        Existing exceptions for the same pairs are replaced.

        Args:
            bonds: Bonded particle pairs.
            coulomb14_scale: Scale factor for 1-4 charge products.
            lj14_scale: Scale factor for 1-4 epsilon.
        """
        neighbors: list[set[int]] = [set() for _ in range(self.num_particles)]
        for i, j in bonds:
            self._check_particle(i)
            self._check_particle(j)
            neighbors[i].add(j)
            neighbors[j].add(i)

        for start in range(self.num_particles):
            # Breadth-first shells out to three bonds
            depth = {start: 0}
            frontier = [start]
            for level in (1, 2, 3):
                next_frontier = []
                for atom in frontier:
                    for other in sorted(neighbors[atom]):
                        if other not in depth:
                            depth[other] = level
                            next_frontier.append(other)
                frontier = next_frontier

            for other, level in sorted(depth.items()):
                if other <= start or level == 0:
                    continue
                if level < 3:
                    self.add_exception(start, other, 0.0, 1.0, 0.0, replace=True)
                else:
                    p1, p2 = self.particles[start], self.particles[other]
                    self.add_exception(
                        start,
                        other,
                        coulomb14_scale * p1.charge * p2.charge,
                        0.5 * (p1.sigma + p2.sigma),
                        lj14_scale * np.sqrt(p1.epsilon * p2.epsilon),
                        replace=True,
                    )

    def add_global_parameter(self, name: str, default_value: float) -> int:
        """Declare a global parameter used by parameter offsets and return its index."""
        self.global_parameters[name] = float(default_value)
        return list(self.global_parameters).index(name)

    def add_particle_parameter_offset(
        self,
        parameter: str,
        particle: int,
        charge_scale: float,
        sigma_scale: float,
        epsilon_scale: float,
    ) -> int:
        """Add a global-parameter offset to a particle and return its index."""
        self._check_particle(particle)
        self.particle_offsets.append(
            ParameterOffset(
                parameter, int(particle), float(charge_scale), float(sigma_scale), float(epsilon_scale)
            )
        )
        return len(self.particle_offsets) - 1

    def add_exception_parameter_offset(
        self,
        parameter: str,
        exception: int,
        charge_prod_scale: float,
        sigma_scale: float,
        epsilon_scale: float,
    ) -> int:
        """Add a global-parameter offset to an exception and return its index."""
        if not 0 <= exception < len(self.exceptions):
            raise IndexError(
                f"Exception index {exception} out of range [0, {len(self.exceptions)})"
            )
        self.exception_offsets.append(
            ParameterOffset(
                parameter,
                int(exception),
                float(charge_prod_scale),
                float(sigma_scale),
                float(epsilon_scale),
            )
        )
        return len(self.exception_offsets) - 1

    def exclusion_pairs(self) -> NDArray[np.integer]:
        """Return all exception pairs as an array of shape (M, 2)."""
        if not self.exceptions:
            return np.empty((0, 2), dtype=np.int32)
        return np.array([e.key for e in self.exceptions], dtype=np.int32)

    def nonbonded14_indices(self) -> list[int]:
        """
        Return the indices of exceptions evaluated as 1-4 interactions.

        An exception is a 1-4 interaction if its charge product or epsilon
        is nonzero, or if any parameter offset targets it.
        """
        with_offsets = {offset.index for offset in self.exception_offsets}
        return [
            index
            for index, e in enumerate(self.exceptions)
            if e.charge_prod != 0.0 or e.epsilon != 0.0 or index in with_offsets
        ]

    def particle_parameter_array(self) -> NDArray[np.floating]:
        """Return baseline (charge, sigma, epsilon) per particle, shape (N, 3)."""
        if not self.particles:
            return np.empty((0, 3), dtype=np.float64)
        return np.array([[p.charge, p.sigma, p.epsilon] for p in self.particles], dtype=np.float64)

    def _check_particle(self, index: int) -> None:
        if not 0 <= index < len(self.particles):
            raise IndexError(f"Particle index {index} out of range [0, {len(self.particles)})")

    def _register_exception(self, index: int, exception: ExceptionPair) -> None:
        if exception.key in self._exception_index:
            raise ValueError(
                f"There is already an exception for particles "
                f"{exception.particle1} and {exception.particle2}"
            )
        self._exception_index[exception.key] = index
