"""Force kernel implementations."""

from .base import EvaluationResult, ForceKernel

__all__ = ["EvaluationResult", "ForceKernel"]
