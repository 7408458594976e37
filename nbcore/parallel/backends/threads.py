"""Thread pool backend."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from .base import ExecutionBackend

logger = logging.getLogger(__name__)


class ThreadBackend(ExecutionBackend):
    """
    Thread pool backend.

    numpy and scipy release the GIL inside FFTs and large array kernels,
    so the mesh pipelines and pair-loop partitions overlap in practice.
    The pool is created on first use and shut down by ``close``.
    """

    def __init__(self, n_workers: int | None = None) -> None:
        """
        Initialize thread backend.

        Args:
            n_workers: Number of worker threads. Defaults to CPU count.
        """
        if n_workers is not None and n_workers < 1:
            raise ValueError(f"n_workers must be at least 1, got {n_workers}")
        self._n_workers = n_workers or os.cpu_count() or 1
        self._executor: ThreadPoolExecutor | None = None

    @property
    def name(self) -> str:
        """Return backend name."""
        return "threads"

    @property
    def n_workers(self) -> int:
        """Return number of parallel workers."""
        return self._n_workers

    def submit(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Submit the task to the thread pool."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._n_workers, thread_name_prefix="nbcore"
            )
            logger.debug("Started thread pool with %d workers", self._n_workers)
        return self._executor.submit(func, *args, **kwargs)

    def close(self) -> None:
        """Shut down the thread pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
