"""Abstract base class for execution backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from typing import Any


class ExecutionBackend(ABC):
    """
    Abstract base class for execution backends.

    Independent stages of a force evaluation (pair-loop partitions, the
    electrostatic and dispersion mesh pipelines) are submitted as tasks and
    joined with ``barrier`` before their results are accumulated, allowing
    transparent switching between serial and threaded execution.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return backend name."""
        ...

    @property
    @abstractmethod
    def n_workers(self) -> int:
        """Return number of parallel workers."""
        ...

    @abstractmethod
    def submit(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """
        Schedule a task.

        Args:
            func: Function to run.
            *args: Positional arguments for ``func``.
            **kwargs: Keyword arguments for ``func``.

        Returns:
            Future holding the task result.
        """
        ...

    def barrier(self, futures: Iterable[Future]) -> list[Any]:
        """
        Wait for all tasks and return their results in submission order.

        Every task is waited for before the first failure is re-raised, so
        no task is still running when the caller sees the error.
        """
        futures = list(futures)
        errors = [future.exception() for future in futures]
        for error in errors:
            if error is not None:
                raise error
        return [future.result() for future in futures]

    def close(self) -> None:
        """Release resources held by the backend."""

    def partition(self, n_items: int) -> list[tuple[int, int]]:
        """
        Split a range of items into one contiguous chunk per worker.

        Args:
            n_items: Total number of items.

        Returns:
            Non-empty (start, end) ranges covering [0, n_items).
        """
        n_chunks = max(min(self.n_workers, n_items), 1)
        per_chunk = n_items // n_chunks
        remainder = n_items % n_chunks

        ranges = []
        start = 0
        for rank in range(n_chunks):
            end = start + per_chunk + (1 if rank < remainder else 0)
            ranges.append((start, end))
            start = end
        return ranges

    def __enter__(self) -> ExecutionBackend:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
