"""Nonbonded interaction terms."""

from .definition import ExceptionPair, NonbondedForce, NonbondedMethod, ParameterOffset, Particle
from .direct import COULOMB_CONSTANT, DirectSpaceEvaluator
from .dispersion import DispersionCorrection
from .ewald import EwaldState, EwaldSum
from .exceptions import ExceptionEvaluator
from .kernel import KernelState, NonbondedForceKernel
from .parameters import ParameterResolver, ResolvedParameters
from .pme import PME_ORDER, ParticleMeshEwald

__all__ = [
    "COULOMB_CONSTANT",
    "PME_ORDER",
    "DirectSpaceEvaluator",
    "DispersionCorrection",
    "EwaldState",
    "EwaldSum",
    "ExceptionEvaluator",
    "ExceptionPair",
    "KernelState",
    "NonbondedForce",
    "NonbondedForceKernel",
    "NonbondedMethod",
    "ParameterOffset",
    "ParameterResolver",
    "Particle",
    "ParticleMeshEwald",
    "ResolvedParameters",
]
