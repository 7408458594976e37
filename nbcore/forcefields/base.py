"""Base interface for force kernels."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

if TYPE_CHECKING:
    from ..system import Box


@dataclass
class EvaluationResult:
    """
    Output of a kernel evaluation.

    Attributes:
        forces: Force buffer the contributions were added to, shape (N, 3).
        energy: Potential energy; 0.0 unless energy was requested.
    """

    forces: NDArray[np.floating]
    energy: float = 0.0


class ForceKernel(ABC):
    """
    Abstract base class for force kernels.

    A kernel is initialized once from a force definition, evaluated many
    times with changing positions, and may have its per-particle
    parameters updated in place as long as the structure of the definition
    stays the same. Which implementation runs is decided by the caller.
    """

    @abstractmethod
    def initialize(self, force: Any, box: Box | None = None) -> None:
        """
        Validate a force definition and cache everything derived from it.

        Args:
            force: Force definition.
            box: Default periodic box, required by methods that size
                reciprocal-space parameters from it.
        """
        ...

    @abstractmethod
    def evaluate(
        self,
        positions: ArrayLike,
        box: Box | None = None,
        forces: NDArray[np.floating] | None = None,
        include_forces: bool = True,
        include_energy: bool = True,
    ) -> EvaluationResult:
        """
        Compute forces and/or energy.

        Forces are added to ``forces`` when given (so several kernels can
        share one buffer) or to a new zeroed buffer.

        Returns:
            EvaluationResult with the force buffer and the energy.
        """
        ...

    @abstractmethod
    def update_parameters(self, force: Any) -> None:
        """
        Copy changed parameters from a force definition.

        Raises:
            StructuralMismatchError: If the structure of the definition changed.
        """
        ...

    @staticmethod
    def _force_buffer(
        forces: NDArray[np.floating] | None, n_particles: int
    ) -> NDArray[np.floating]:
        """Return the caller's force buffer or a new one, checking its shape."""
        if forces is None:
            return np.zeros((n_particles, 3), dtype=np.float64)
        if forces.shape != (n_particles, 3):
            raise ValueError(
                f"forces shape {forces.shape} incompatible with {n_particles} particles"
            )
        return forces
