"""Execution backends for concurrent evaluation stages."""

from .backends.base import ExecutionBackend
from .backends.serial import SerialBackend
from .backends.threads import ThreadBackend
from .dispatcher import get_backend

__all__ = [
    "ExecutionBackend",
    "SerialBackend",
    "ThreadBackend",
    "get_backend",
]
