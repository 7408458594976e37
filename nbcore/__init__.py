"""
nbcore - Reference nonbonded force kernel for molecular simulation.

Coulomb plus Lennard-Jones interactions with no cutoff, cutoff with
reaction field, Ewald summation, particle mesh Ewald and dispersion PME,
plus 1-4 exceptions, global-parameter offsets and the analytic
dispersion correction.

Quick Start:
    >>> from nbcore import Box, NonbondedForce, NonbondedForceKernel, NonbondedMethod
    >>> force = NonbondedForce(nonbonded_method=NonbondedMethod.PME, cutoff=0.9)
    >>> force.add_particle(1.0, 0.3, 0.5)
    >>> force.add_particle(-1.0, 0.3, 0.5)
    >>> kernel = NonbondedForceKernel()
    >>> kernel.initialize(force, Box.cubic(2.0))
    >>> result = kernel.evaluate([[0, 0, 0], [0.5, 0, 0]])
"""

import logging

__version__ = "0.1.0"

from .errors import (
    ConfigurationError,
    NonbondedError,
    NumericalDomainWarning,
    StructuralMismatchError,
)
from .forcefields.bonded import QuarticBondForce, QuarticBondKernel
from .forcefields.nonbonded import (
    KernelState,
    NonbondedForce,
    NonbondedForceKernel,
    NonbondedMethod,
)
from .parallel import get_backend
from .system import Box

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Box",
    "ConfigurationError",
    "KernelState",
    "NonbondedError",
    "NonbondedForce",
    "NonbondedForceKernel",
    "NonbondedMethod",
    "NumericalDomainWarning",
    "QuarticBondForce",
    "QuarticBondKernel",
    "StructuralMismatchError",
    "get_backend",
]
