"""Backend dispatcher for selecting execution backends."""

from __future__ import annotations

from typing import Literal

from .backends.base import ExecutionBackend
from .backends.serial import SerialBackend
from .backends.threads import ThreadBackend

# Available backend types
BackendType = Literal["serial", "threads"]


def get_backend(
    backend: BackendType | ExecutionBackend | None = None,
    **kwargs,
) -> ExecutionBackend:
    """
    Get an execution backend instance.

    Args:
        backend: Backend specification. Can be:
            - None: A new serial backend
            - String: Create backend by name
            - ExecutionBackend: Use provided instance directly
        **kwargs: Additional arguments for backend initialization.

    Returns:
        ExecutionBackend instance.

    Raises:
        ValueError: If backend name is unknown.

    Examples:
        >>> backend = get_backend()  # serial
        >>> backend = get_backend("threads", n_workers=4)
    """
    if isinstance(backend, ExecutionBackend):
        return backend

    if backend is None or backend == "serial":
        return SerialBackend()

    elif backend == "threads":
        return ThreadBackend(**kwargs)

    else:
        raise ValueError(f"Unknown backend: {backend}. Available: serial, threads")
