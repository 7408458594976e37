"""Periodic cell geometry."""

from .box import Box

__all__ = ["Box"]
