"""Execution backend implementations."""

from .base import ExecutionBackend
from .serial import SerialBackend
from .threads import ThreadBackend

__all__ = [
    "ExecutionBackend",
    "SerialBackend",
    "ThreadBackend",
]
