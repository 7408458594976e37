"""Serial (single-thread) backend."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

from .base import ExecutionBackend


class SerialBackend(ExecutionBackend):
    """
    Serial backend for single-thread execution.

    This is the default backend and provides the reference evaluation
    order. Tasks run immediately on submission.
    """

    @property
    def name(self) -> str:
        """Return backend name."""
        return "serial"

    @property
    def n_workers(self) -> int:
        """Return number of parallel workers."""
        return 1

    def submit(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Run the task now and return an already completed future."""
        future: Future = Future()
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future
