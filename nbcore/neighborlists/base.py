"""Base interface for neighbor lists."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

if TYPE_CHECKING:
    from ..system import Box


class NeighborList(ABC):
    """
    Abstract base class for neighbor list implementations.

    Neighbor lists accelerate the computation of pairwise interactions
    by pre-computing and caching which particle pairs are within the cutoff
    plus a safety margin (the skin). Excluded pairs never appear in the list.
    """

    @abstractmethod
    def build(
        self,
        positions: ArrayLike,
        box: Box | None = None,
        exclusions: NDArray[np.integer] | None = None,
    ) -> None:
        """
        Build the neighbor list from scratch.

        Args:
            positions: Particle positions, shape (N, 3).
            box: Periodic box, or None for a non-periodic system.
            exclusions: Excluded pairs, shape (M, 2), in any order.
        """
        ...

    @abstractmethod
    def needs_rebuild(self, positions: ArrayLike, box: Box | None = None) -> bool:
        """
        Check whether the cached list may miss a pair within the cutoff.

        Args:
            positions: Current particle positions, shape (N, 3).
            box: Current periodic box, or None.

        Returns:
            True if the list must be rebuilt before use.
        """
        ...

    @abstractmethod
    def get_pairs(self) -> NDArray[np.integer]:
        """
        Get all neighbor pairs.

        Returns:
            Array of shape (N_pairs, 2) containing (i, j) indices
            where i < j for all pairs.
        """
        ...

    @property
    @abstractmethod
    def n_pairs(self) -> int:
        """Return the number of neighbor pairs."""
        ...

    @property
    @abstractmethod
    def cutoff(self) -> float:
        """Return the cutoff distance."""
        ...
