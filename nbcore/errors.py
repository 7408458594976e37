"""Exceptions and warnings raised by nonbonded force kernels."""

from __future__ import annotations


class NonbondedError(Exception):
    """Base class for nbcore errors."""


class ConfigurationError(NonbondedError, ValueError):
    """
    The kernel configuration cannot be used for the requested operation.

    Raised for a periodic box smaller than twice the cutoff, a box that is
    not in reduced form, a missing box for a periodic method, unknown
    global parameters, or PME diagnostics requested in a non-PME mode.
    """


class StructuralMismatchError(NonbondedError, ValueError):
    """
    A parameter update changes the structure fixed at initialize.

    The particle count, exception count, exception particle pairs, the
    split between 1-4 exceptions and pure exclusions, the nonbonded method
    and the cutoff cannot change.
    """


class NumericalDomainWarning(RuntimeWarning):
    """Coincident particles were found; their pair contribution was dropped."""
