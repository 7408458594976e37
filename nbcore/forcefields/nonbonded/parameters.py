"""Resolution of effective particle and exception parameters."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ...errors import ConfigurationError
from .definition import ParameterOffset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedParameters:
    """
    Effective parameters in the forms the pair kernels consume.

    Attributes:
        particles: Per-particle (sigma/2, 2*sqrt(epsilon), charge), shape (N, 3).
        exceptions: Per-1-4-exception (sigma, 4*epsilon, charge product),
            shape (M, 3).
    """

    particles: NDArray[np.floating]
    exceptions: NDArray[np.floating]

    @property
    def charges(self) -> NDArray[np.floating]:
        """Effective particle charges."""
        return self.particles[:, 2]

    @property
    def dispersion_coefficients(self) -> NDArray[np.floating]:
        """
        Per-particle c_i = 2*sqrt(epsilon)*sigma^3.

        The products c_i*c_j are the geometric-mean C6 coefficients used by
        dispersion PME.
        """
        return 8.0 * self.particles[:, 0] ** 3 * self.particles[:, 1]


class _OffsetTable:
    """
    Offsets stored as flat arrays and grouped by the entity they target.

    Parameter names are mapped to integer slots once, so resolution only
    gathers global-parameter values by slot.
    """

    def __init__(self, offsets: Sequence[ParameterOffset], slots: Mapping[str, int]) -> None:
        """
        Args:
            offsets: Offsets targeting one kind of entity.
            slots: Global-parameter name to value slot.
        """
        order = sorted(range(len(offsets)), key=lambda k: offsets[k].index)
        self.targets = np.array([offsets[k].index for k in order], dtype=np.int64)
        self.slots = np.array([slots[offsets[k].parameter] for k in order], dtype=np.int64)
        self.deltas = np.array(
            [[offsets[k].charge, offsets[k].sigma, offsets[k].epsilon] for k in order],
            dtype=np.float64,
        ).reshape(-1, 3)
        # Start of each target's run of offsets
        if len(self.targets):
            self.group_starts = np.flatnonzero(np.r_[True, np.diff(self.targets) != 0])
        else:
            self.group_starts = np.empty(0, dtype=np.int64)
        self.group_targets = self.targets[self.group_starts]

    def apply(self, baseline: NDArray[np.floating], values: NDArray[np.floating]) -> NDArray[np.floating]:
        """Return baseline plus the summed offsets of every targeted entity."""
        result = baseline.copy()
        if len(self.targets) == 0:
            return result
        contributions = values[self.slots, np.newaxis] * self.deltas
        result[self.group_targets] += np.add.reduceat(contributions, self.group_starts, axis=0)
        return result


class ParameterResolver:
    """
    Resolves effective charge/sigma/epsilon from baselines and offsets.

    The effective value of every parameter is its baseline plus the sum,
    over all offsets targeting that entity, of the current global
    parameter value times the offset's delta. Results are cached and only
    recomputed when a referenced global parameter or a baseline changes.

    Attributes:
        parameter_names: Global parameters referenced by any offset.
    """

    def __init__(
        self,
        particle_params: ArrayLike,
        exception_params: ArrayLike,
        particle_offsets: Sequence[ParameterOffset] = (),
        exception_offsets: Sequence[ParameterOffset] = (),
        defaults: Mapping[str, float] | None = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            particle_params: Baseline (charge, sigma, epsilon) per particle.
            exception_params: Baseline (charge product, sigma, epsilon) per
                1-4 exception.
            particle_offsets: Offsets whose index is a particle index.
            exception_offsets: Offsets whose index is a 1-4 exception index.
            defaults: Default value of each global parameter.

        Raises:
            ConfigurationError: If an offset names an undeclared parameter.
        """
        self.defaults = dict(defaults or {})
        names = sorted({o.parameter for o in (*particle_offsets, *exception_offsets)})
        undeclared = [name for name in names if name not in self.defaults]
        if undeclared:
            raise ConfigurationError(
                f"Parameter offsets use undeclared global parameters: {', '.join(undeclared)}"
            )
        self.parameter_names: tuple[str, ...] = tuple(names)
        slots = {name: slot for slot, name in enumerate(names)}

        self._particle_table = _OffsetTable(particle_offsets, slots)
        self._exception_table = _OffsetTable(exception_offsets, slots)
        self._cache_key: tuple[float, ...] | None = None
        self._cached: ResolvedParameters | None = None
        self.set_baseline(particle_params, exception_params)

    def set_baseline(self, particle_params: ArrayLike, exception_params: ArrayLike) -> None:
        """Replace the baseline parameters and invalidate the cache."""
        self._particle_base = np.asarray(particle_params, dtype=np.float64).reshape(-1, 3)
        self._exception_base = np.asarray(exception_params, dtype=np.float64).reshape(-1, 3)
        self._cache_key = None
        self._cached = None

    def parameter_values(self, overrides: Mapping[str, float] | None = None) -> dict[str, float]:
        """
        Merge global-parameter overrides with the declared defaults.

        Raises:
            ConfigurationError: If an override names an unknown parameter.
        """
        values = dict(self.defaults)
        if overrides:
            unknown = sorted(set(overrides) - set(values))
            if unknown:
                raise ConfigurationError(f"Unknown global parameters: {', '.join(unknown)}")
            values.update({name: float(value) for name, value in overrides.items()})
        return values

    def resolve(self, overrides: Mapping[str, float] | None = None) -> ResolvedParameters:
        """
        Compute effective parameters for the given global-parameter values.

        Args:
            overrides: Global parameter values; missing names use defaults.

        Returns:
            ResolvedParameters for the pair and 1-4 kernels.
        """
        values = self.parameter_values(overrides)
        key = tuple(values[name] for name in self.parameter_names)
        if self._cached is not None and key == self._cache_key:
            return self._cached

        slot_values = np.array(key, dtype=np.float64)
        particles = self._particle_table.apply(self._particle_base, slot_values)
        exceptions = self._exception_table.apply(self._exception_base, slot_values)

        charge, sigma, epsilon = particles.T
        particle_array = np.column_stack([0.5 * sigma, 2.0 * np.sqrt(epsilon), charge])
        charge_prod, ex_sigma, ex_epsilon = exceptions.T
        exception_array = np.column_stack([ex_sigma, 4.0 * ex_epsilon, charge_prod])

        self._cached = ResolvedParameters(
            particles=particle_array.reshape(-1, 3), exceptions=exception_array.reshape(-1, 3)
        )
        self._cache_key = key
        logger.debug("Resolved parameters for global values %s", dict(zip(self.parameter_names, key)))
        return self._cached
