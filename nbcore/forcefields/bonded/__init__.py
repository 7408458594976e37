"""Bonded interaction terms."""

from .bonds import QuarticBondForce, QuarticBondKernel

__all__ = ["QuarticBondForce", "QuarticBondKernel"]
